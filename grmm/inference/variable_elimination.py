"""
grmm/inference/variable_elimination.py

Variable elimination, kept as a correctness oracle.

Variables are eliminated in the graph's insertion order with no fill-in
heuristic, so the cost can be exponential even on graphs with small
treewidth. Every lookup reruns the elimination.
"""

from __future__ import annotations

import logging
import math
from typing import List, Optional, Union

from grmm.inference.inferencer import AbstractInferencer
from grmm.types.assignment import Assignment
from grmm.types.factor import TableFactor, multiply_all, product_of
from grmm.types.factor_graph import FactorGraph
from grmm.types.variable import Variable, VarSet, as_varset

logger = logging.getLogger(__name__)


def _pop_factors_with(pool: List[TableFactor], var: Variable) -> List[TableFactor]:
    """Remove and return the factors of ``pool`` that mention ``var`` or are constants."""
    taken = [f for f in pool if not f.vars() or var in f.vars()]
    pool[:] = [f for f in pool if f.vars() and var not in f.vars()]
    return taken


class VariableElimination(AbstractInferencer):
    """Sum out every non-query variable, one at a time."""

    _transient = ("_graph",)

    def __init__(self):
        self._graph: Optional[FactorGraph] = None

    def compute_marginals(self, graph: FactorGraph) -> None:
        # All the work happens at lookup time.
        self._graph = graph

    def unnormalized_marginal(self, graph: FactorGraph, query: Union[Variable, VarSet]) -> TableFactor:
        """
        Sum of the factor product over every variable outside ``query``.

        The result is over exactly the query variables and is not
        normalised; its total is the partition function.
        """
        query = as_varset(query)
        for var in query:
            if not graph.contains_var(var):
                raise ValueError(f"Cannot find variable {var} in factor graph {graph}")

        pool = [f.duplicate() for f in graph.factors]
        for var in graph.variables:
            if var in query:
                continue
            bucket = _pop_factors_with(pool, var)
            # The identity keeps variables without factors in Z.
            bucket.append(TableFactor(var))
            pool.append(multiply_all(bucket).marginalize_out(var))
        return product_of(pool, query)

    def compute_normalization_factor(self, graph: FactorGraph) -> float:
        """The partition function Z of ``graph``."""
        if graph.num_variables() == 0:
            return multiply_all(graph.factors).sum()
        return self.unnormalized_marginal(graph, graph.get_variable(0)).sum()

    def _require_graph(self) -> FactorGraph:
        if self._graph is None:
            raise RuntimeError("VariableElimination: call compute_marginals first")
        return self._graph

    def lookup_variable_marginal(self, var: Variable) -> TableFactor:
        return self.unnormalized_marginal(self._require_graph(), var).normalize()

    def lookup_clique_marginal(self, varset: VarSet) -> TableFactor:
        return self.unnormalized_marginal(self._require_graph(), varset).normalize()

    def lookup_log_joint(self, assn: Assignment) -> float:
        graph = self._require_graph()
        return graph.log_value(assn) - math.log(self.compute_normalization_factor(graph))
