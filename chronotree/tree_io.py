import os
import tempfile
from contextlib import contextmanager
from io import StringIO
from copy import deepcopy
from Bio import Phylo
from . import config as ctconf
from . import ParseError, OutputError

NEXUS_TEMPLATE = """\
#NEXUS
Begin Taxa;
 Dimensions NTax=%(count)d;
 TaxLabels %(labels)s;
End;
Begin Trees;
 Translate
%(translate)s
 ;
 Tree %(name)s = %(rooting)s %(tree)s
End;
"""


def read_tree(fname, fmt=None):
    """
    Read exactly one tree from a newick or nexus file.

    Parameters
    ----------
     fname : str
        name of the tree file
     fmt : str, optional
        'newick' or 'nexus'. If not given, the format is guessed from the
        suffix and newick is tried first for all other suffixes.

    Returns
    -------
     tree : Bio.Phylo.BaseTree.Tree

    Raises
    ------
     ParseError
        if the file is absent, empty, malformed or does not contain exactly one tree
    """
    if not isinstance(fname, str) or not os.path.isfile(fname):
        raise ParseError("read_tree: tree file %s does not exist"%str(fname))
    if os.path.getsize(fname)==0:
        raise ParseError("read_tree: tree file %s is empty"%fname)

    if fmt is None:
        suffix = fname.split('.')[-1].lower()
        fmts = ['nexus', 'newick'] if suffix in ['nex', 'nexus'] else ['newick', 'nexus']
    else:
        fmts = [fmt]

    trees, err = None, None
    for tree_fmt in fmts:
        try:
            trees = list(Phylo.parse(fname, tree_fmt))
            break
        except Exception as e:
            err = e
            continue
    if trees is None:
        raise ParseError("read_tree: could not parse %s as %s: %s"%(fname, ' or '.join(fmts), err))

    if len(trees)!=1:
        raise ParseError("read_tree: expected exactly one tree in %s, found %d"%(fname, len(trees)))

    tree = trees[0]
    if tree.count_terminals()<2:
        raise ParseError("read_tree: %s is not a valid tree"%fname)
    names = [n.name for n in tree.get_terminals()]
    if any(not x for x in names):
        raise ParseError("read_tree: tree in %s has unlabeled tips"%fname)
    if len(set(names))!=len(names):
        dups = sorted({x for x in names if names.count(x)>1})
        raise ParseError("read_tree: tree in %s has duplicated tip labels: %s"%(fname, ", ".join(dups)))
    return tree


def _remove(fname):
    if os.path.exists(fname):
        os.remove(fname)


@contextmanager
def atomic_output(fname):
    """
    Context manager that yields the name of a temporary file in the directory
    of `fname`. The temporary file is moved to `fname` once the block completes.
    If the block fails, the temporary file is removed and `fname` is left untouched.
    """
    dirname = os.path.dirname(os.path.abspath(fname))
    base, suffix = os.path.splitext(os.path.basename(fname))
    try:
        fd, tmp_name = tempfile.mkstemp(dir=dirname, prefix='.'+base+'.', suffix=suffix)
    except OSError as e:
        raise OutputError("cannot write to %s: %s"%(fname, e)) from e
    os.close(fd)

    try:
        yield tmp_name
        os.replace(tmp_name, fname)
    except OutputError:
        _remove(tmp_name)
        raise
    except OSError as e:
        _remove(tmp_name)
        raise OutputError("cannot write to %s: %s"%(fname, e)) from e
    except BaseException:
        _remove(tmp_name)
        raise


def tree_to_newick(tree, format_branch_length=ctconf.BRANCH_LENGTH_FORMAT):
    handle = StringIO()
    Phylo.write(tree, handle, 'newick', format_branch_length=format_branch_length)
    return handle.getvalue().strip()


def write_newick(tree, fname, format_branch_length=ctconf.BRANCH_LENGTH_FORMAT):
    with atomic_output(fname) as tmp_name:
        with open(tmp_name, 'w', encoding='utf-8') as fh:
            fh.write(tree_to_newick(tree, format_branch_length)+'\n')
    return fname


def _nexus_label(name):
    if all(c.isalnum() or c in '_.' for c in name):
        return name
    return "'" + name.replace("'", "''") + "'"


def write_nexus(tree, fname, format_branch_length=ctconf.BRANCH_LENGTH_FORMAT, name='chronogram'):
    '''
    write a tree to a nexus file with a TAXA block and a TREES block. Tip labels
    in the tree string are replaced by integers resolved via a translate table.
    '''
    tips = tree.get_terminals()
    labels = [n.name for n in tips]

    numbered = deepcopy(tree)
    for ni, n in enumerate(numbered.get_terminals()):
        n.name = str(ni+1)

    translate = ",\n".join(["  %d %s"%(ni+1, _nexus_label(x)) for ni, x in enumerate(labels)])
    content = NEXUS_TEMPLATE%{'count':len(labels),
                              'labels':" ".join(map(_nexus_label, labels)),
                              'translate':translate,
                              'name':name,
                              'rooting':'[&R]' if getattr(tree, 'rooted', True) else '[&U]',
                              'tree':tree_to_newick(numbered, format_branch_length)}

    with atomic_output(fname) as tmp_name:
        with open(tmp_name, 'w', encoding='utf-8') as fh:
            fh.write(content)
    return fname


def node_label(node):
    if node.is_terminal():
        return node.name
    return "NODE_%04d"%node.index if hasattr(node, 'index') else (node.name or '')


def write_node_table(tree, fname):
    """
    write age, branch length and rate of each node to a tab separated file
    """
    with atomic_output(fname) as tmp_name:
        with open(tmp_name, 'w', encoding='utf-8') as fh:
            fh.write("#node\tage\tbranch_length\trate\n")
            for n in tree.find_clades(order='preorder'):
                rate = getattr(n, 'rate', None)
                fh.write("%s\t%1.6f\t%s\t%s\n"%(node_label(n), getattr(n, 'age', 0.0),
                          "--" if n==tree.root else "%1.6f"%n.branch_length,
                          "--" if rate is None else "%1.6e"%rate))
    return fname


def export_timetree(tree, basename):
    """
    Save a time tree as <basename>.tree (newick), <basename>.nex (nexus) and
    the node ages and rates as <basename>_rates.tsv

    Returns
    -------
     fnames : dict
        names of the written files keyed by 'newick', 'nexus', 'rates'
    """
    fnames = {'newick':basename+'.tree', 'nexus':basename+'.nex', 'rates':basename+'_rates.tsv'}
    write_newick(tree, fnames['newick'])
    write_nexus(tree, fnames['nexus'])
    write_node_table(tree, fnames['rates'])
    return fnames
