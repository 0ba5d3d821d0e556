from io import StringIO
import os
import pytest
import numpy as np
import matplotlib
matplotlib.use('AGG')
from Bio import Phylo
from chronotree import ConfigError, RootedTree, CalibrationTable
from chronotree.plotting import time_axis_ticks, plot_timetree


nwk = "(Sp_0:50.0,((Sp_A:10.0,Sp_B:10.0):22.5,(Sp_C:6.0,Sp_D:6.0):26.5):17.5);"


def test_time_axis_ticks():
    pos, ages = time_axis_ticks(23.0, 5)
    assert np.allclose(ages, [0, 5, 10, 15, 20])
    assert np.allclose(pos, [23, 18, 13, 8, 3])

    # the root age is a multiple of the interval
    pos, ages = time_axis_ticks(20.0, 5)
    assert np.allclose(ages, [0, 5, 10, 15, 20])
    assert np.allclose(pos[-1], 0)

    pos, ages = time_axis_ticks(0.3, 0.1)
    assert len(ages) == 4

    with pytest.raises(ConfigError):
        time_axis_ticks(23.0, 0)


def test_plot_timetree(tmp_path):
    tree = Phylo.read(StringIO(nwk), 'newick')
    fname = str(tmp_path / "timetree.pdf")
    plot_timetree(tree, fname, minor_interval=5, major_interval=10, shade=True)
    with open(fname, 'rb') as fh:
        assert fh.read(4) == b'%PDF'


def test_plot_calibrations(tmp_path):
    rtree = RootedTree(Phylo.read(StringIO(nwk), 'newick'), verbose=0)
    table = CalibrationTable.from_anchors(rtree, [('root', 60, 80), (['Sp_A', 'Sp_B'], 5, 15, True)])
    fname = str(tmp_path / "timetree.png")
    plot_timetree(rtree.tree, fname, calibrations=table)
    assert os.path.getsize(fname) > 0


def test_invalid_tick_intervals(tmp_path):
    tree = Phylo.read(StringIO(nwk), 'newick')
    fname = str(tmp_path / "timetree.pdf")
    with pytest.raises(ConfigError):
        plot_timetree(tree, fname, minor_interval=10, major_interval=5)
    with pytest.raises(ConfigError):
        plot_timetree(tree, fname, minor_interval=-1, major_interval=5)
    assert not os.path.exists(fname)
