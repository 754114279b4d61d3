"""
grmm/inference/utils.py

Helpers for comparing and summarising inference results.
"""

from __future__ import annotations

from typing import List

import numpy as np

from grmm.inference.inferencer import Inferencer
from grmm.types.assignment import Assignment
from grmm.types.factor import one_distance
from grmm.types.factor_graph import FactorGraph
from grmm.types.variable import Variable


def lookup_minus_log_z(graph: FactorGraph, inf: Inferencer) -> float:
    """
    -log Z of ``graph`` according to ``inf``.

    ``inf.compute_marginals(graph)`` must already have run. Exact when
    ``inf`` is exact. The joint is evaluated at the assignment of
    per-variable belief maxima, which is unlikely to have probability 0.
    """
    assn = Assignment()
    for var in graph.variables:
        assn[var] = inf.lookup_marginal(var).argmax()[var]
    return inf.lookup_log_joint(assn) - graph.log_value(assn)


def local_magnetization(inf: Inferencer, var: Variable) -> float:
    """p(var=0) - p(var=1) for a binary variable."""
    if var.num_outcomes != 2:
        raise ValueError(f"Magnetization needs a binary variable, {var} has {var.num_outcomes} outcomes")
    probs = inf.lookup_marginal(var).probabilities()
    probs = probs / probs.sum()
    return float(probs[0] - probs[1])


def all_l1_marginal_distance(graph: FactorGraph, inf1: Inferencer, inf2: Inferencer) -> List[float]:
    """L1 distance between the two inferencers' beliefs, per variable."""
    return [one_distance(inf1.lookup_marginal(v), inf2.lookup_marginal(v)) for v in graph.variables]


def avg_l1_marginal_distance(graph: FactorGraph, inf1: Inferencer, inf2: Inferencer) -> float:
    return float(np.mean(all_l1_marginal_distance(graph, inf1, inf2)))


def max_l1_marginal_distance(graph: FactorGraph, inf1: Inferencer, inf2: Inferencer) -> float:
    return float(np.max(all_l1_marginal_distance(graph, inf1, inf2)))
