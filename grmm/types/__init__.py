"""
Types module: variables, assignments, factors, factor graphs and trees.
"""

from grmm.types.semiring import SemiringRuntime, prob_semiring, logprob_semiring, PROB, LOGPROB
from grmm.types.variable import Variable, VarSet, as_varset
from grmm.types.assignment import Assignment
from grmm.types.factor import TableFactor, LogTableFactor, multiply_all, one_distance
from grmm.types.factor_graph import FactorGraph, as_log_graph
from grmm.types.tree import Tree
from grmm.types.evidence import unary_evidence, observe_variable, with_evidence

__all__ = [
    "SemiringRuntime",
    "prob_semiring",
    "logprob_semiring",
    "PROB",
    "LOGPROB",
    "Variable",
    "VarSet",
    "as_varset",
    "Assignment",
    "TableFactor",
    "LogTableFactor",
    "multiply_all",
    "one_distance",
    "FactorGraph",
    "as_log_graph",
    "Tree",
    "unary_evidence",
    "observe_variable",
    "with_evidence",
]
