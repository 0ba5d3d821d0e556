from io import StringIO
import pytest
import numpy as np
from Bio import Phylo
from Bio.Phylo.BaseTree import Clade, Tree
from chronotree import RootedTree, CalibrationTable, PenalizedLikelihood, DivergenceTimeEstimator
from chronotree import ConfigError, EstimationError, calibrate
from chronotree.utils import node_depths, root_age, is_ultrametric
from chronotree import config as ctconf
from chronotree.tree_io import tree_to_newick, export_timetree, read_tree


nwk = "(Sp_0:0.5,((Sp_A:0.05,Sp_B:0.06):0.1,(Sp_C:0.04,Sp_D:0.03):0.12):0.2);"
ingroup = ['Sp_A', 'Sp_B', 'Sp_C', 'Sp_D']
calibrations = [('root', 100, 160, False),
                (['Sp_A', 'Sp_B'], 6.3, 13.3, False),
                (['Sp_C', 'Sp_D'], 4.25, 8.87, False),
                (ingroup, 23, 36.5, False)]

def rooted_tree():
    tree = RootedTree(Phylo.read(StringIO(nwk), 'newick'), verbose=0)
    tree.reroot(['Sp_0'])
    return tree

def splits(tree):
    return {frozenset(t.name for t in c.get_terminals()) for c in tree.get_nonterminals()}

def check_timetree(timetree, tree, table):
    # same tips and clades as the phylogram
    assert sorted(t.name for t in timetree.get_terminals()) == sorted(tree.leaves_lookup)
    assert splits(timetree) == splits(tree.tree)
    assert is_ultrametric(timetree)

    for n in timetree.get_terminals():
        assert n.age == 0.0
    for n in timetree.get_nonterminals():
        for c in n.clades:
            assert n.age >= c.age
            assert c.branch_length >= 0
            assert np.abs(n.age - c.age - c.branch_length) < 1e-6*timetree.root.age

    depths = node_depths(timetree)
    T = root_age(timetree)
    assert np.abs(T - timetree.root.age) < 1e-6*T
    for n in timetree.get_nonterminals():
        assert np.abs(T - depths[n] - n.age) < 1e-6*T

    by_index = {n.index:n for n in timetree.get_nonterminals()}
    for r in table:
        if not r.soft_bound:
            assert r.age_min <= by_index[r.node].age <= r.age_max


def test_interface():
    assert issubclass(PenalizedLikelihood, DivergenceTimeEstimator)
    with pytest.raises(TypeError):
        DivergenceTimeEstimator()


def test_relaxed_clock():
    tree = rooted_tree()
    before = tree_to_newick(tree.tree)
    table = CalibrationTable.from_anchors(tree, calibrations)
    timetree = PenalizedLikelihood(smoothing=1, model='relaxed', verbose=0).estimate(tree, table)

    check_timetree(timetree, tree, table)
    assert 100 <= timetree.root.age <= 160
    assert timetree.root.branch_length is None
    assert all(c.rate > 0 for c in timetree.find_clades() if c is not timetree.root)
    # the input tree is not modified
    assert tree_to_newick(tree.tree) == before

    result = timetree.estimation
    assert result.model == 'relaxed'
    assert np.isfinite(result.log_likelihood)
    assert result.penalty >= 0
    assert np.isfinite(result.phiic)


@pytest.mark.parametrize("model", ['strict', 'uncorrelated'])
def test_clock_models(model):
    tree = rooted_tree()
    table = CalibrationTable.from_anchors(tree, calibrations)
    timetree = PenalizedLikelihood(smoothing=10, model=model, verbose=0).estimate(tree, table)
    check_timetree(timetree, tree, table)
    rates = np.array([c.rate for c in timetree.find_clades() if c is not timetree.root])
    if model == 'strict':
        assert np.allclose(rates, rates[0])
        assert timetree.estimation.penalty == 0


def test_soft_bounds():
    tree = rooted_tree()
    cals = [('root', 100, 160, False), (['Sp_A', 'Sp_B'], 6.3, 13.3, True), (ingroup, 23, 36.5, True)]
    table = CalibrationTable.from_anchors(tree, cals)
    timetree = PenalizedLikelihood(verbose=0, rng_seed=1).estimate(tree, table)
    check_timetree(timetree, tree, table)


def test_fixed_root_age():
    tree = rooted_tree()
    table = CalibrationTable.from_anchors(tree, [('root', 120, 120), (['Sp_A', 'Sp_B'], 6.3, 13.3)])
    timetree = PenalizedLikelihood(verbose=0).estimate(tree, table)
    check_timetree(timetree, tree, table)
    assert timetree.root.age == 120


def test_no_calibrations():
    tree = rooted_tree()
    timetree = PenalizedLikelihood(verbose=0).estimate(tree, CalibrationTable([]))
    assert np.abs(timetree.root.age - 1) < 1e-6
    assert is_ultrametric(timetree)


def test_conflicting_calibrations():
    tree = rooted_tree()
    table = CalibrationTable.from_anchors(tree, [('root', 100, 160), (['Sp_A', 'Sp_B'], 50, 60),
                                                 (ingroup, 23, 36.5)])
    estimator = PenalizedLikelihood(verbose=0, control={'max_init_tries':20}, rng_seed=3)
    with pytest.raises(EstimationError):
        estimator.estimate(tree, table)


def test_invalid_settings():
    for smoothing in [0, -1, np.nan, 'large']:
        with pytest.raises(ConfigError):
            PenalizedLikelihood(smoothing=smoothing)
    with pytest.raises(ConfigError):
        PenalizedLikelihood(model='lognormal')
    with pytest.raises(ConfigError):
        PenalizedLikelihood(seq_len=0)
    with pytest.raises(ConfigError):
        PenalizedLikelihood(control={'nsteps':10})


def test_requires_rooted_tree():
    tree = rooted_tree()
    table = CalibrationTable.from_anchors(tree, calibrations)
    with pytest.raises(TypeError):
        PenalizedLikelihood(verbose=0).estimate(tree.tree, table)


def test_calibrate():
    timetree, table = calibrate(Phylo.read(StringIO(nwk), 'newick'), ['Sp_0'], calibrations,
                                smoothing=1, verbose=0)
    assert len(table) == 4
    assert 100 <= timetree.root.age <= 160
    assert sorted(len(c.get_terminals()) for c in timetree.root.clades) == [1, 4]


def random_tree(n_tips, seed):
    """coalescent-like tree with outgroup T0 and log-normally varying rates"""
    rng = np.random.default_rng(seed)
    clades = [Clade(name='T%d'%i) for i in range(1, n_tips)]
    ages = {c:0.0 for c in clades}
    t = 0.0
    while len(clades)>1:
        t += rng.exponential(1.0/len(clades))
        i, j = rng.choice(len(clades), size=2, replace=False)
        parent = Clade(clades=[clades[i], clades[j]])
        ages[parent] = t
        clades = [c for k, c in enumerate(clades) if k not in (i, j)] + [parent]
    outgroup = Clade(name='T0')
    ages[outgroup] = 0.0
    root = Clade(clades=[clades[0], outgroup])
    ages[root] = 1.5*t
    for c in root.find_clades(order='preorder'):
        for child in c.clades:
            child.branch_length = 0.05*(ages[c] - ages[child])*rng.lognormal(0, 0.3)
    return Tree(root=root, rooted=False)


@pytest.mark.parametrize("model", ['strict', 'relaxed', 'uncorrelated'])
@pytest.mark.parametrize("n_tips", [15, 25, 40])
def test_larger_trees(n_tips, model):
    tree = RootedTree(random_tree(n_tips, seed=n_tips), verbose=0)
    tree.reroot('T0')
    assert tree.n_tips == n_tips
    ingroup_clade = [c for c in tree.tree.root.clades if not c.is_terminal()][0]
    inner = max(ingroup_clade.clades, key=lambda c: c.count_terminals())
    table = CalibrationTable.from_anchors(tree, [('root', 100, 160),
                                                 ([x.name for x in inner.get_terminals()], 5, 30)])

    timetree = PenalizedLikelihood(smoothing=1, model=model, rng_seed=n_tips, verbose=0).estimate(tree, table)
    check_timetree(timetree, tree, table)
    assert 100 <= timetree.root.age <= 160


def test_uncalibrated_root():
    tree = rooted_tree()
    cals = [(ingroup, 23, 36.5, False), (['Sp_A', 'Sp_B'], 6.3, 13.3, True)]
    table = CalibrationTable.from_anchors(tree, cals)
    timetree = PenalizedLikelihood(verbose=0, rng_seed=2).estimate(tree, table)
    check_timetree(timetree, tree, table)

    ingroup_age = [n for n in timetree.root.clades if not n.is_terminal()][0].age
    assert 23 <= ingroup_age <= 36.5
    assert ingroup_age < timetree.root.age <= ctconf.MAX_ROOT_FACTOR*3*36.5*(1 + 1e-6)


def test_uncorrelated_penalty():
    pl = PenalizedLikelihood(model='uncorrelated', verbose=0)
    s = np.array([0.5, 1.0, 2.0, 1.5, 0.1])
    pen, grad = pl._rate_penalty(s)
    # only relative rate differences are penalized
    assert np.isclose(pen, pl._rate_penalty(3*s)[0])
    assert np.isclose(pl._rate_penalty(np.ones(5))[0], 0)

    eps = 1e-6
    numerical = [(pl._rate_penalty(s + eps*e)[0] - pl._rate_penalty(s - eps*e)[0])/(2*eps)
                 for e in np.eye(len(s))]
    assert np.allclose(grad, numerical, atol=1e-5)


def test_export_estimated_timetree(tmp_path):
    tree = rooted_tree()
    table = CalibrationTable.from_anchors(tree, calibrations)
    timetree = PenalizedLikelihood(verbose=0).estimate(tree, table)
    ages = {frozenset(t.name for t in c.get_terminals()):c.age for c in timetree.find_clades()}

    fnames = export_timetree(timetree, str(tmp_path / "timetree"))
    for fmt in ['newick', 'nexus']:
        tree2 = read_tree(fnames[fmt])
        assert splits(tree2) == splits(timetree)
        depths = node_depths(tree2)
        T = root_age(tree2)
        assert np.abs(T - timetree.root.age) < 1e-4
        for c in tree2.find_clades():
            assert np.abs(T - depths[c] - ages[frozenset(t.name for t in c.get_terminals())]) < 1e-4
