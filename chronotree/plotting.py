import os
import numpy as np
from Bio import Phylo
from . import config as ctconf
from . import ConfigError
from .tree_io import atomic_output
from .utils import root_age, tree_layout


def time_axis_ticks(age, interval):
    """
    Tick positions of a time axis that counts backwards from the present.

    Parameters
    ----------
     age : float
        age of the root, i.e. the x-coordinate of the present
     interval : float
        distance between ticks in time units

    Returns
    -------
     positions, ages : numpy.ndarray
        ages k*interval for k=0,1,... up to the root age and their
        x-coordinates age - k*interval
    """
    if not interval>0:
        raise ConfigError("time_axis_ticks: tick interval needs to be positive, got %s"%str(interval))
    n_ticks = int(np.floor(age/interval + 1e-9))
    ages = interval*np.arange(n_ticks+1)
    return age - ages, ages


def draw_timetree(tree, ax, minor_interval=ctconf.MINOR_TICKS, major_interval=ctconf.MAJOR_TICKS,
                  calibrations=None, shade=False, time_label=ctconf.TIME_LABEL, **kwargs):
    '''
    Draw a time tree with a reversed time axis on the axis `ax`.

    Parameters
    ----------
     tree : Bio.Phylo.BaseTree.Tree
        ultrametric tree with branch lengths in time units

     ax : matplotlib axes

     minor_interval : float
        interval of unlabeled minor ticks

     major_interval : float
        interval of labeled major ticks

     calibrations : CalibrationTable, optional
        if given, the calibration intervals are drawn as grey bars at the calibrated nodes

     shade : bool
        draw alternating shaded bands of width `major_interval`

     **kwargs : dict
        Key word arguments that are passed down to Phylo.draw
    '''
    if not (major_interval>0 and minor_interval>0):
        raise ConfigError("draw_timetree: tick intervals need to be positive")
    if major_interval<minor_interval:
        raise ConfigError("draw_timetree: major tick interval %g is smaller than the minor interval %g"
                          %(major_interval, minor_interval))

    T = root_age(tree)
    nleafs = tree.count_terminals()
    if "label_func" not in kwargs:
        kwargs["label_func"] = lambda x:x.name if (x.is_terminal() and nleafs<ctconf.MAX_TIP_LABELS) else ""
    Phylo.draw(tree, axes=ax, do_show=False, **kwargs)

    minor_pos, _ = time_axis_ticks(T, minor_interval)
    major_pos, major_ages = time_axis_ticks(T, major_interval)
    ax.set_xticks(major_pos)
    ax.set_xticklabels(["%g"%x for x in major_ages])
    ax.set_xticks(minor_pos, minor=True)
    ax.tick_params(axis='x', which='minor', length=3, color='gray')
    ax.tick_params(axis='x', which='major', length=6, color='black')
    ax.set_xlabel(time_label)
    ax.set_ylabel('')
    ax.set_yticks([])
    for side in ['left', 'right', 'top']:
        ax.spines[side].set_visible(False)

    # put shaded boxes to delineate time intervals
    if shade:
        ylim = ax.get_ylim()
        from matplotlib.patches import Rectangle
        for yi, pos in enumerate(major_pos):
            r = Rectangle((max(pos-major_interval, 0), ylim[1]), min(major_interval, pos), ylim[0]-ylim[1],
                          facecolor=[0.8+0.1*(yi%2)]*3, edgecolor='none', zorder=0)
            ax.add_patch(r)

    if calibrations is not None:
        tree_layout(tree)
        by_index = {n.index:n for n in tree.get_nonterminals() if hasattr(n, 'index')}
        for r in calibrations:
            node = by_index.get(r.node)
            if node is None:
                continue
            ax.plot([T-r.age_max, T-r.age_min], [node.ypos, node.ypos], lw=4,
                    c=(0.5,0.5,0.5), alpha=0.6, ls='--' if r.soft_bound else '-')

    return ax


def plot_timetree(tree, fname, minor_interval=ctconf.MINOR_TICKS, major_interval=ctconf.MAJOR_TICKS,
                  figsize=ctconf.FIGSIZE, **kwargs):
    """
    Plot a time tree and save it to `fname`. The format is determined by the
    suffix of the file name, pdf if there is none. The file is only created
    if the plot could be saved completely.
    """
    import matplotlib.pyplot as plt
    fmt = os.path.splitext(fname)[1][1:].lower() or 'pdf'
    fig = plt.figure(figsize=figsize)
    try:
        ax = plt.subplot(111)
        draw_timetree(tree, ax, minor_interval=minor_interval, major_interval=major_interval, **kwargs)
        fig.tight_layout()
        with atomic_output(fname) as tmp_name:
            fig.savefig(tmp_name, format=fmt)
    finally:
        plt.close(fig)
    return fname
