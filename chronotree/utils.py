import sys
import time
from textwrap import fill
import numpy as np
from . import config as ctconf


def verbose_logger(verbose=ctconf.VERBOSE, t_start=None):
    """
    Create a logging function that prints messages to stdout.

    Parameters
    ----------
     verbose : int
        Verbosity level. Only messages with a level lower than `verbose`
        are shown; warnings are shown when their level is at most `verbose`.

     t_start : float, optional
        reference time for the time stamp of the messages

    Returns
    -------
     logger : callable
        logger(msg, level, warn=False, only_once=False)
    """
    t_start = time.time() if t_start is None else t_start
    log_messages = set()

    def logger(msg, level, warn=False, only_once=False):
        if only_once and msg in log_messages:
            return
        log_messages.add(msg)

        lw=80
        if level<verbose or (warn and level<=verbose):
            dt = time.time() - t_start
            outstr = '\n' if level<2 else ''
            initial_indent = format(dt, '4.2f')+'\t' + level*'-'
            subsequent_indent = " "*len(format(dt, '4.2f')) + "\t" + " "*level
            outstr += fill(msg, width=lw, initial_indent=initial_indent, subsequent_indent=subsequent_indent)
            print(outstr, file=sys.stdout)

    logger.verbose = verbose
    return logger


def node_depths(tree):
    """
    cumulative edge length from the root to every clade, the length of the
    root branch itself is ignored.
    """
    depths = {tree.root:0.0}
    for clade in tree.get_nonterminals(order='preorder'):
        for c in clade.clades:
            depths[c] = depths[clade] + (c.branch_length or 0.0)
    return depths


def root_age(tree):
    """maximal root-to-tip distance of the tree"""
    depths = node_depths(tree)
    return max(depths[n] for n in tree.get_terminals())


def is_ultrametric(tree, rtol=ctconf.ULTRAMETRIC_TOL):
    depths = node_depths(tree)
    tip_depths = np.array([depths[n] for n in tree.get_terminals()])
    return np.max(tip_depths) - np.min(tip_depths) <= rtol*max(np.max(tip_depths), ctconf.MIN_DURATION)


def tree_layout(tree):
    leaf_count=0
    for ni,node in enumerate(tree.find_clades(order="postorder")):
        if node.is_terminal():
            leaf_count+=1
            node.ypos=leaf_count
        else:
            tmp = np.array([c.ypos for c in node])
            node.ypos=0.5*(np.max(tmp) + np.min(tmp))
