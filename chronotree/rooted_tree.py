from Bio import Phylo
from Bio.Phylo.BaseTree import Clade
from . import config as ctconf
from . import ParseError, ConfigError
from .tree_io import read_tree
from .utils import verbose_logger


class RootedTree(object):
    """
    Phylogram with parent links and ape-style node indices. Tips are numbered
    1..N, internal nodes N+1..N+M in preorder such that the root is always N+1.
    """

    def __init__(self, tree=None, verbose=ctconf.VERBOSE, logger=None):
        """
        Parameters
        ----------
         tree : str, Bio.Phylo.Tree
            Phylogenetic tree. A string is interpreted as the name of a newick
            or nexus file.

         verbose : int
            Verbosity level as number from 0 (lowest) to 10 (highest).

         logger : callable, optional
            logging function as created by `utils.verbose_logger`
        """
        if tree is None:
            raise TypeError("RootedTree requires a tree!")
        self.verbose = verbose
        self.logger = logger or verbose_logger(verbose)
        self._tree = None
        self.tree = tree


    @property
    def tree(self):
        """
        The phylogenetic tree.

        :setter: Sets the tree. Directly if passed as Phylo.Tree, or by reading from \
        file if passed as a str.
        """
        return self._tree


    @tree.setter
    def tree(self, in_tree):
        if isinstance(in_tree, Phylo.BaseTree.Tree):
            tree = in_tree
        elif isinstance(in_tree, str):
            tree = read_tree(in_tree)
        else:
            raise ParseError('RootedTree: could not load tree! input was '+str(in_tree))

        if tree.count_terminals()<ctconf.MIN_TIPS:
            raise ParseError('RootedTree: tree %s has only %d tips. Please check your tree!'
                             %(str(in_tree), tree.count_terminals()))

        names = [n.name for n in tree.get_terminals()]
        if any(not x for x in names) or len(set(names))!=len(names):
            raise ParseError('RootedTree: tip labels need to be present and unique')

        for node in tree.find_clades():
            node.branch_length = node.branch_length if node.branch_length else 0.0
            if node.branch_length<0:
                raise ParseError("RootedTree: negative branch length above %s"%(node.name or 'an internal node'))

        self._tree = tree
        self.logger("RootedTree: loaded tree with %d tips"%tree.count_terminals(), 1)
        self.prepare_tree()


    @property
    def leaves_lookup(self):
        """
        The :code:`{leaf-name:leaf-node}` dictionary.
        """
        return self._leaves_lookup


    @property
    def n_tips(self):
        return len(self._leaves_lookup)


    @property
    def root_index(self):
        """index of the root node, always number of tips + 1"""
        return self.n_tips + 1


    def prepare_tree(self):
        """
        Set links to parents, node indices and distance to root.
        Needs to be rerun after every rerooting or topology change.
        """
        self.tree.root.branch_length = 0.0
        self.tree.ladderize()
        self._prepare_nodes()
        self._leaves_lookup = {node.name:node for node in self.tree.get_terminals()}
        self._index_lookup = {node.index:node for node in self.tree.find_clades()}


    def _prepare_nodes(self):
        self.tree.root.up = None
        for clade in self.tree.get_nonterminals(order='preorder'): # parents first
            for c in clade.clades:
                c.up = clade

        tips = self.tree.get_terminals()
        for ni, node in enumerate(tips):
            node.index = ni + 1
        for ni, node in enumerate(self.tree.get_nonterminals(order='preorder')):
            node.index = len(tips) + ni + 1

        self._calc_dist2root()


    def _calc_dist2root(self):
        self.tree.root.dist2root = 0.0
        for clade in self.tree.get_nonterminals(order='preorder'): # parents first
            for c in clade.clades:
                c.dist2root = clade.dist2root + c.branch_length


    def node(self, index):
        """return the clade with ape-style index `index`"""
        try:
            return self._index_lookup[index]
        except KeyError:
            raise ConfigError("RootedTree: no node with index %s"%str(index)) from None


    def node_index(self, clade):
        return clade.index


    def check_taxa(self, taxa, what='taxon set'):
        """
        Normalize a taxon name or a collection of names to a list without
        duplicates and check that all names are tips of the tree.
        """
        if isinstance(taxa, str):
            taxa = [taxa]
        if taxa is None:
            raise ConfigError("RootedTree: %s is missing"%what)
        taxa = list(dict.fromkeys(taxa))
        if len(taxa)==0:
            raise ConfigError("RootedTree: %s is empty"%what)
        unknown = [x for x in taxa if x not in self._leaves_lookup]
        if unknown:
            raise ConfigError("RootedTree: %s contains taxa that are not in the tree: %s"
                              %(what, ", ".join(map(str, unknown))))
        return taxa


    def mrca(self, taxa):
        """
        most recent common ancestor of a set of tips. The MRCA of a single tip
        is the tip itself.
        """
        taxa = self.check_taxa(taxa)
        if len(taxa)==1:
            return self._leaves_lookup[taxa[0]]
        return self.tree.common_ancestor(*[self._leaves_lookup[x] for x in taxa])


    def ingroup(self, outgroup):
        og = set(self.check_taxa(outgroup, 'outgroup'))
        return [n.name for n in self.tree.get_terminals() if n.name not in og]


    def reroot(self, outgroup):
        """
        Reroot the tree such that the root splits the outgroup from all other tips.

        Parameters
        ----------
         outgroup : str, list
            name of a single outgroup tip or a list of tip names. A single tip
            is rooted on its parent edge, several tips on the edge above their
            common ancestor. The outgroup edge is split in half.

        Raises
        ------
         ConfigError
            if a name is unknown, the outgroup is empty, contains all tips, or
            is not monophyletic.
        """
        outgroup = self.check_taxa(outgroup, 'outgroup')
        ingroup = self.ingroup(outgroup)
        if len(ingroup)==0:
            raise ConfigError("RootedTree.reroot: outgroup contains all tips of the tree")
        self.logger("RootedTree.reroot: rerooting with outgroup %s"%", ".join(outgroup), 1)

        # the bipartition outgroup|ingroup is a clade on either side of the current root
        new_root = None
        for taxa in [outgroup, ingroup]:
            candidate = self.mrca(taxa)
            if candidate!=self.tree.root and {n.name for n in candidate.get_terminals()}==set(taxa):
                new_root = candidate
                break
        if new_root is None:
            raise ConfigError("RootedTree.reroot: outgroup %s is not monophyletic"%", ".join(outgroup))

        # split the edge above the new root and reroot on the inserted node.
        # this forces a bifurcating root also for zero length branches.
        parent = new_root.up
        half = 0.5*new_root.branch_length
        split = Clade(branch_length=half, clades=[new_root])
        new_root.branch_length = half
        parent.clades[parent.clades.index(new_root)] = split
        self.tree.root_with_outgroup(split)
        self.tree.rooted = True

        self._collapse_unary_nodes()
        self.prepare_tree()
        self.logger("RootedTree.reroot: root %d splits %d outgroup from %d ingroup tips"
                    %(self.root_index, len(outgroup), len(ingroup)), 2)
        return ctconf.SUCCESS


    def _collapse_unary_nodes(self):
        """remove internal nodes with a single child, merging their branches"""
        while len(self.tree.root.clades)==1:
            child = self.tree.root.clades[0]
            self.tree.root = child

        for clade in list(self.tree.get_nonterminals(order='postorder')):
            new_children = []
            for c in clade.clades:
                while len(c.clades)==1:
                    grand_child = c.clades[0]
                    grand_child.branch_length = (grand_child.branch_length or 0.0) + (c.branch_length or 0.0)
                    c = grand_child
                new_children.append(c)
            clade.clades = new_children
