"""
grmm/types/evidence.py

Evidence handling for factor graphs.

Evidence is injected as indicator factors, not domain slicing: the
conditioned graph keeps every variable and its outcome count, so marginals
and assignments stay comparable with the unconditioned graph.
"""

from __future__ import annotations

from typing import Iterable

import numpy as np

from grmm.types.assignment import Assignment
from grmm.types.factor import TableFactor
from grmm.types.factor_graph import FactorGraph
from grmm.types.variable import Variable


def unary_evidence(var: Variable, allowed: Iterable[int]) -> TableFactor:
    """
    Create a unary evidence factor.

    Args:
        var: The constrained variable
        allowed: Outcomes that remain possible

    Returns:
        TableFactor that is 1 on allowed outcomes and 0 elsewhere
    """
    data = np.zeros(var.num_outcomes)
    for a in allowed:
        if a < 0 or a >= var.num_outcomes:
            raise ValueError(f"Outcome {a} out of range for {var}")
        data[a] = 1.0
    return TableFactor(var, data)


def observe_variable(var: Variable, value: int) -> TableFactor:
    """Create an observation factor fixing ``var`` to ``value``."""
    return unary_evidence(var, [value])


def with_evidence(graph: FactorGraph, evidence: Assignment) -> FactorGraph:
    """
    Condition a graph on an assignment.

    Returns:
        A new FactorGraph with the original factors plus one observation
        factor per assigned variable. ``graph`` is not modified.
    """
    out = graph.duplicate()
    for var in evidence:
        if not graph.contains_var(var):
            raise ValueError(f"Evidence variable {var} is not in the graph")
        out.add_factor(observe_variable(var, evidence[var]))
    return out
