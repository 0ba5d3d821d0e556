version="0.1.0"
## Error classes for chronotree. ParseError, ConfigError and ValidationError are due
## to input data or options that do not fit our base assumptions and name the offending
## input. EstimationError is raised when the divergence time optimization fails, and
## OutputError when results cannot be written.
class ChronoTreeError(Exception):
    """
    ChronoTreeError class
    Parent class for more specific errors
    """
    pass

class ParseError(ChronoTreeError):
    """ParseError class raised when the input tree is missing or malformed"""
    pass

class ConfigError(ChronoTreeError):
    """ConfigError class raised for unknown taxa, invalid anchors or invalid options"""
    pass

class ValidationError(ChronoTreeError):
    """ValidationError class raised when the calibration table violates its invariants"""
    pass

class EstimationError(ChronoTreeError):
    """EstimationError class raised when the divergence time estimation fails to converge
    or produces an invalid time tree"""
    pass

class OutputError(ChronoTreeError, IOError):
    """OutputError class raised when an output file cannot be written"""
    pass

import os, sys
recursion_limit = os.environ.get("CHRONOTREE_RECURSION_LIMIT")
if recursion_limit:
    sys.setrecursionlimit(int(recursion_limit))
else:
    sys.setrecursionlimit(max(sys.getrecursionlimit(), 10000))

from .rooted_tree import RootedTree
from .calibration import CalibrationRecord, CalibrationTable, read_calibrations
from .estimator import DivergenceTimeEstimator, PenalizedLikelihood, EstimationResult
from .tree_io import read_tree, write_newick, write_nexus, export_timetree
from .plotting import plot_timetree, time_axis_ticks
from .wrappers import calibrate
from .argument_parser import make_parser
