#!/usr/bin/env python
import argparse
from . import config as ctconf
from .wrappers import chronogram
import chronotree

chronotree_description = \
    "chronotree: calibrate a phylogram to a time tree\n\n"\
    "Roots the tree with an outgroup, resolves the calibrated nodes as common "\
    "ancestors of sets of taxa and estimates divergence times by penalized "\
    "likelihood. The time tree is saved in newick and nexus format and plotted "\
    "on a time axis counting backwards from the present.\n\n"

calibrations_description = "csv or tsv file with columns 'taxa', 'age_min', "\
    "'age_max' and optionally 'soft_bound'. 'taxa' is 'root' or two or more tip "\
    "labels separated by spaces or semicolons (or commas within quotes), e.g.\n"\
    "taxa,age_min,age_max,soft_bound\nroot,100,160,FALSE\n\"Sp_A,Sp_B\",6.3,13.3,FALSE"

model_description = "rate model: 'strict' uses one rate for all branches, 'relaxed' "\
    "allows autocorrelated rates that change from parent to child branches, "\
    "'uncorrelated' allows rates to vary around the mean rate."

smoothing_description = "smoothing parameter lambda, weight of the penalty "\
    "on rate changes. Larger values constrain rate variation more strongly."


def add_common_args(parser):
    parser.add_argument('--verbose', default=1, type=int, help='verbosity of output 0-6')
    parser.add_argument('--outdir', type=str, help='directory to write the output to')


def make_parser():
    parser = argparse.ArgumentParser(description=chronotree_description,
                                     formatter_class=argparse.RawDescriptionHelpFormatter)
    subparsers = parser.add_subparsers()

    parser.add_argument('--tree', type=str, help="file containing the phylogram in newick or nexus format")
    parser.add_argument('--outgroup', nargs='+', type=str, help="one or more tip labels forming the outgroup")
    parser.add_argument('--calibrations', type=str, help=calibrations_description)
    parser.add_argument('--smoothing', '--lambda', dest='smoothing', type=float, default=ctconf.SMOOTHING,
                        help=smoothing_description)
    parser.add_argument('--model', type=str, default=ctconf.MODEL, choices=ctconf.MODELS, help=model_description)
    parser.add_argument('--seq-len', type=int, help="sequence length, used to convert branch lengths "
                        "to numbers of substitutions in the likelihood")
    parser.add_argument('--rng-seed', type=int, help="random seed for starting dates")
    parser.add_argument('--basename', type=str, default='timetree',
                        help="file name stem of the tree output (<basename>.tree, <basename>.nex)")
    parser.add_argument('--plot', type=str, default='timetree.pdf',
                        help="filename to save the plot to. Suffix will determine format"
                             " (choices pdf, png, svg, default=pdf)")
    parser.add_argument('--minor-ticks', type=float, default=ctconf.MINOR_TICKS,
                        help="interval of unlabeled ticks on the time axis")
    parser.add_argument('--major-ticks', type=float, default=ctconf.MAJOR_TICKS,
                        help="interval of labeled ticks on the time axis")
    parser.add_argument('--shade', action='store_true', help="shade alternating time intervals")
    parser.add_argument('--show-calibrations', action='store_true',
                        help="draw calibration intervals at the calibrated nodes")
    add_common_args(parser)

    def toplevel(params):
        if params.tree and params.outgroup and params.calibrations:
            return chronogram(params)
        else:
            print(chronotree_description+
                  "'--tree', '--outgroup' and '--calibrations' are REQUIRED inputs, "
                  "type 'chronotree -h' for a full list of arguments.\n")
            return 1

    parser.set_defaults(func=toplevel)

    # make a version subcommand
    v_parser = subparsers.add_parser('version', description='print version')
    v_parser.set_defaults(func=lambda x: print(chronotree.version))

    return parser
