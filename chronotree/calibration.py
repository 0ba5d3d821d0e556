import os
import re
import numbers
import numpy as np
import pandas as pd
from . import config as ctconf
from . import ConfigError, ValidationError


class CalibrationRecord(object):
    """
    Age constraint on one internal node of a rooted tree.

    Parameters
    ----------
     node : int
        ape-style index of the calibrated node (> number of tips)
     age_min, age_max : float
        lower and upper bound of the node age in time units before present
     soft_bound : bool
        if True, the bounds may be violated at a cost, otherwise they are strict
     anchor : str, tuple
        'root' or the taxa whose common ancestor is calibrated
     position : int
        position of the record in the calibration table
    """
    def __init__(self, node, age_min, age_max, soft_bound=False, anchor=None, position=None):
        self.node = node
        self.age_min = age_min
        self.age_max = age_max
        self.soft_bound = soft_bound
        self.anchor = anchor
        self.position = position

    @property
    def fixed(self):
        return self.age_min==self.age_max

    def contains(self, age, rtol=0.0):
        slack = rtol*max(abs(self.age_max), 1.0)
        return self.age_min - slack <= age <= self.age_max + slack

    def __repr__(self):
        return "CalibrationRecord(node=%d, age_min=%g, age_max=%g, soft_bound=%s, anchor=%s)"\
                %(self.node, self.age_min, self.age_max, self.soft_bound, describe_anchor(self.anchor))


def describe_anchor(anchor):
    if isinstance(anchor, str):
        return anchor
    if isinstance(anchor, numbers.Integral):
        return "node %d"%anchor
    try:
        return "MRCA(" + ",".join(map(str, anchor)) + ")"
    except TypeError:
        return str(anchor)


def _is_root_anchor(anchor):
    return isinstance(anchor, str) and anchor.strip().lower()==ctconf.ROOT_ANCHOR


def resolve_anchor(tree, anchor, position=None):
    """
    Map a calibration anchor to the index of a node of a rooted tree.

    Parameters
    ----------
     tree : RootedTree
        the already rooted tree
     anchor : str, int, list
        'root', an internal node index, or two or more tip labels

    Returns
    -------
     index : int
    """
    what = "calibration anchor %s"%('' if position is None else position)
    if _is_root_anchor(anchor):
        return tree.root_index

    if isinstance(anchor, numbers.Integral) and not isinstance(anchor, (bool, np.bool_)):
        if anchor<=tree.n_tips:
            raise ValidationError("%s: node %d is a tip, tips are not calibration targets"%(what, anchor))
        return tree.node(int(anchor)).index

    taxa = tree.check_taxa(anchor, what)
    if len(taxa)<2:
        raise ConfigError("%s: needs at least two tips to define a common ancestor, got %s"
                          %(what, ", ".join(taxa)))
    node = tree.mrca(taxa)
    if node.is_terminal():
        raise ConfigError("%s: %s does not map to an internal node"%(what, describe_anchor(taxa)))
    return node.index


class CalibrationTable(object):
    """
    Ordered, validated collection of CalibrationRecords. Records keep the order
    in which the calibrations were declared.
    """

    def __init__(self, records):
        self._records = tuple(records)
        for ri, r in enumerate(self._records):
            if r.position is None:
                r.position = ri
        self.validate()


    @classmethod
    def from_anchors(cls, tree, calibrations):
        """
        Build a calibration table from declared anchors.

        Parameters
        ----------
         tree : RootedTree
            rooted tree against which anchors are resolved. It is not modified.

         calibrations : iterable
            tuples (anchor, age_min, age_max) or (anchor, age_min, age_max, soft_bound),
            anchor being 'root' or a list of tip labels

        Returns
        -------
         CalibrationTable
        """
        records = []
        for pos, cal in enumerate(calibrations):
            if isinstance(cal, CalibrationRecord):
                anchor, age_min, age_max, soft = cal.anchor, cal.age_min, cal.age_max, cal.soft_bound
            else:
                if len(cal) not in [3, 4]:
                    raise ValidationError("calibration %d: expected (anchor, age_min, age_max[, soft_bound]), got %s"
                                          %(pos, str(cal)))
                anchor, age_min, age_max = cal[:3]
                soft = cal[3] if len(cal)==4 else False
            node = resolve_anchor(tree, anchor, pos)
            anchor = anchor if isinstance(anchor, (str, numbers.Integral)) else tuple(anchor)
            records.append(CalibrationRecord(node, age_min, age_max, soft, anchor=anchor, position=pos))
        return cls(records)


    @classmethod
    def from_lists(cls, tree, anchors, age_min, age_max, soft_bound=None):
        """
        Build a calibration table from four parallel lists. The lists are
        aligned by position and have to be of equal length.
        """
        if soft_bound is None:
            soft_bound = [False]*len(anchors)
        lengths = {'anchors':len(anchors), 'age_min':len(age_min),
                   'age_max':len(age_max), 'soft_bound':len(soft_bound)}
        if len(set(lengths.values()))!=1:
            raise ValidationError("calibration lists have different lengths: "
                                  + ", ".join("%s=%d"%(k,v) for k,v in lengths.items()))
        return cls.from_anchors(tree, zip(anchors, age_min, age_max, soft_bound))


    def validate(self):
        seen = {}
        for r in self._records:
            what = "calibration %d (%s)"%(r.position, describe_anchor(r.anchor))
            for label, age in [('age_min', r.age_min), ('age_max', r.age_max)]:
                if isinstance(age, (bool, np.bool_)) or not isinstance(age, numbers.Real):
                    raise ValidationError("%s: %s=%s is not a number"%(what, label, str(age)))
                if not np.isfinite(age):
                    raise ValidationError("%s: %s=%s is not finite"%(what, label, str(age)))
                if age<0:
                    raise ValidationError("%s: %s=%s is negative"%(what, label, str(age)))
            if r.age_min>r.age_max:
                raise ValidationError("%s: age_min=%g is larger than age_max=%g"%(what, r.age_min, r.age_max))
            if not isinstance(r.soft_bound, (bool, np.bool_)):
                raise ValidationError("%s: soft_bound=%s is not a boolean"%(what, str(r.soft_bound)))
            if r.node in seen:
                raise ValidationError("%s: node %d is already calibrated by calibration %d"
                                      %(what, r.node, seen[r.node]))
            seen[r.node] = r.position
        return True


    def __len__(self):
        return len(self._records)

    def __iter__(self):
        return iter(self._records)

    def __getitem__(self, i):
        return self._records[i]

    @property
    def nodes(self):
        return [r.node for r in self._records]

    @property
    def fixed(self):
        return [r for r in self._records if r.fixed]

    def get(self, node):
        """record calibrating node `node` or None"""
        for r in self._records:
            if r.node==node:
                return r
        return None

    def to_dataframe(self):
        return pd.DataFrame({'node':[r.node for r in self._records],
                             'age.min':[r.age_min for r in self._records],
                             'age.max':[r.age_max for r in self._records],
                             'soft.bound':[bool(r.soft_bound) for r in self._records]})

    def __str__(self):
        return str(self.to_dataframe())


def _parse_bool(val, what):
    if val is None or (isinstance(val, float) and np.isnan(val)):
        return False
    tmp = str(val).strip().lower()
    if tmp in ['true', 't', '1', 'yes', 'soft']:
        return True
    if tmp in ['false', 'f', '0', 'no', 'hard', '']:
        return False
    raise ConfigError("%s: cannot interpret '%s' as soft bound flag"%(what, val))


def read_calibrations(cal_file):
    """
    parse calibrations from a csv or tsv file.

    Parameters
    ----------
     cal_file : str
        file with columns 'taxa', 'age_min', 'age_max' and optionally 'soft_bound'.
        'taxa' is either 'root' or a list of tip labels separated by commas,
        semicolons or white space. Column names like 'age.min' are accepted.

    Returns
    -------
     list
        tuples (anchor, age_min, age_max, soft_bound) in file order
    """
    if not os.path.isfile(cal_file):
        raise ConfigError("read_calibrations: file %s does not exist"%cal_file)
    sep = '\t' if cal_file.endswith('.tsv') else ','

    try:
        df = pd.read_csv(cal_file, sep=sep, dtype='str', index_col=False,
                         skipinitialspace=True, comment='#', keep_default_na=False)
    except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as e:
        raise ConfigError("read_calibrations: cannot read %s: %s"%(cal_file, e)) from e

    df.columns = [c.strip().lower().replace('.', '_').replace('-', '_') for c in df.columns]
    missing = [c for c in ['taxa', 'age_min', 'age_max'] if c not in df.columns]
    if missing:
        raise ConfigError("read_calibrations: missing column(s) %s. Available columns are: %s"
                          %(", ".join(missing), ", ".join(df.columns)))

    calibrations = []
    for ri, row in df.iterrows():
        what = "read_calibrations: row %d"%(ri+1)
        taxa = row.loc['taxa'].strip()
        if _is_root_anchor(taxa):
            anchor = ctconf.ROOT_ANCHOR
        else:
            anchor = [x for x in re.split(r'[,;\s]+', taxa) if x]
        ages = []
        for col in ['age_min', 'age_max']:
            try:
                ages.append(float(row.loc[col]))
            except ValueError:
                raise ConfigError("%s: cannot interpret %s='%s' as a number"%(what, col, row.loc[col])) from None
        soft = _parse_bool(row.loc['soft_bound'], what) if 'soft_bound' in df.columns else False
        calibrations.append((anchor, ages[0], ages[1], soft))

    return calibrations
