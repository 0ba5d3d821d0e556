import os, sys
from . import config as ctconf
from . import ChronoTreeError
from .rooted_tree import RootedTree
from .calibration import CalibrationTable, read_calibrations
from .estimator import PenalizedLikelihood
from .tree_io import export_timetree
from .plotting import plot_timetree
from .utils import verbose_logger


def get_outdir(params, suffix='_chronotree'):
    if params.outdir:
        if os.path.exists(params.outdir):
            if os.path.isdir(params.outdir):
                return params.outdir.rstrip('/') + '/'
            else:
                raise ChronoTreeError("designated output location %s is not a directory"%params.outdir)
        else:
            os.makedirs(params.outdir)
            return params.outdir.rstrip('/') + '/'

    from datetime import datetime
    outdir_stem = datetime.now().date().isoformat()
    outdir = outdir_stem + suffix.rstrip('/')+'/'
    count = 1
    while os.path.exists(outdir):
        outdir = outdir_stem + '-%04d'%count + suffix.rstrip('/')+'/'
        count += 1

    os.makedirs(outdir)
    return outdir


def calibrate(tree, outgroup, calibrations, smoothing=ctconf.SMOOTHING, model=ctconf.MODEL,
              seq_len=None, control=None, rng_seed=None, verbose=ctconf.VERBOSE):
    """
    Root a phylogram, build the calibration table and estimate divergence times.

    Parameters
    ----------
     tree : str, Bio.Phylo.Tree, RootedTree
        phylogram or name of the file containing it

     outgroup : str, list
        outgroup tip(s) used to root the tree. If None, the current root is kept.

     calibrations : CalibrationTable, list
        calibration table or list of (anchor, age_min, age_max[, soft_bound])
        tuples, anchors are resolved after rooting

     smoothing, model, seq_len, control, rng_seed :
        parameters of the PenalizedLikelihood estimator

    Returns
    -------
     timetree : Bio.Phylo.BaseTree.Tree
     table : CalibrationTable
    """
    logger = verbose_logger(verbose)
    rtree = tree if isinstance(tree, RootedTree) else RootedTree(tree, verbose=verbose, logger=logger)
    if outgroup is not None:
        rtree.reroot(outgroup)

    if isinstance(calibrations, CalibrationTable):
        table = calibrations
    else:
        table = CalibrationTable.from_anchors(rtree, calibrations)
    logger("calibrate: %d calibrated nodes"%len(table), 2)

    estimator = PenalizedLikelihood(smoothing=smoothing, model=model, seq_len=seq_len,
                                    control=control, rng_seed=rng_seed, logger=logger)
    return estimator.estimate(rtree, table), table


def chronogram(params):
    """
    the function implementing the chronotree command line interface: root the
    tree, calibrate it, and save the time tree and its plot.
    """
    stage = 'setting up the output directory'
    try:
        outdir = get_outdir(params)
        basename = outdir + params.basename

        stage = 'reading the tree'
        tree = RootedTree(params.tree, verbose=params.verbose)
        print("read tree from file %s with %d leaves"%(params.tree, tree.n_tips))

        stage = 'rooting the tree'
        tree.reroot(params.outgroup)

        stage = 'building the calibration table'
        table = CalibrationTable.from_anchors(tree, read_calibrations(params.calibrations))
        print("\nCalibrations:\n%s\n"%str(table))

        stage = 'estimating divergence times'
        estimator = PenalizedLikelihood(smoothing=params.smoothing, model=params.model,
                                        seq_len=params.seq_len, rng_seed=params.rng_seed,
                                        verbose=params.verbose)
        timetree = estimator.estimate(tree, table)
        print(timetree.estimation)

        stage = 'saving the time tree'
        fnames = export_timetree(timetree, basename)
        print("--- time tree saved in newick format as \n\t %s\n"%fnames['newick'])
        print("--- time tree saved in nexus format as \n\t %s\n"%fnames['nexus'])
        print("--- node ages and rates saved as \n\t %s\n"%fnames['rates'])

        stage = 'plotting the time tree'
        plot_fname = outdir + params.plot
        plot_timetree(timetree, plot_fname, minor_interval=params.minor_ticks,
                      major_interval=params.major_ticks, shade=params.shade,
                      calibrations=table if params.show_calibrations else None)
        print("--- saved tree plot as \n\t %s\n"%plot_fname)
    except ChronoTreeError as e:
        print("\nchronotree FAILED while %s:\n\t%s\n"%(stage, e), file=sys.stderr)
        return 1

    return 0
