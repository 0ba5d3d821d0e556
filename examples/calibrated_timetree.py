from chronotree import RootedTree, CalibrationTable, PenalizedLikelihood
from chronotree import export_timetree, plot_timetree
from chronotree.utils import root_age


if __name__ == '__main__':

    # load the phylogram and root it with the outgroup
    base_name = 'data/five_species'
    outgroup = ['Sp_0']
    tree = RootedTree(base_name+'.nwk', verbose=2)
    tree.reroot(outgroup)
    ingroup = tree.ingroup(outgroup)

    # calibrated nodes: the root and the common ancestors of sets of species,
    # ages in million years before present. hard bounds (soft_bound=False)
    # can not be violated.
    calibrations = [
        ('root', 100, 160, False),
        (['Sp_A', 'Sp_B'], 6.3, 13.3, False),
        (['Sp_C', 'Sp_D'], 4.25, 8.87, False),
        (ingroup, 23, 36.5, False),
    ]
    table = CalibrationTable.from_anchors(tree, calibrations)
    print(table)

    # estimate divergence times with an autocorrelated relaxed clock
    pl = PenalizedLikelihood(smoothing=1.0, model='relaxed', verbose=2)
    timetree = pl.estimate(tree, table)
    print(timetree.estimation)
    print("root age: %1.2f Mya"%root_age(timetree))

    ##############
    # OUTPUT
    ##############
    export_timetree(timetree, 'five_species_calibrated')
    plot_timetree(timetree, 'five_species_calibrated.pdf', minor_interval=5, major_interval=10,
                  calibrations=table, shade=True)
