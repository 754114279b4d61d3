"""
grmm/inference/junction_tree_inferencer.py

Exact inference with the junction tree algorithm.

compute_marginals(graph):
1. Convert the factor graph to its Markov network
2. Triangulate (min-fill, min-weight tie-break)
3. Join the elimination cliques into a junction tree
4. Multiply every factor into the lightest cluster containing it
5. Run Hugin propagation

Steps 1-3 depend only on the graph's topology. With caching on, the
built structure is stored on the graph and every later call takes a
fresh copy of it, so no two runs share potentials.
"""

from __future__ import annotations

import logging
import sys
from typing import Optional, TextIO

from grmm.inference.inferencer import AbstractInferencer
from grmm.inference.junction_tree import JunctionTree
from grmm.inference.junction_tree_propagation import JunctionTreePropagation
from grmm.inference.triangulation import build_junction_tree_structure, triangulate
from grmm.types.assignment import Assignment
from grmm.types.factor import LogTableFactor, TableFactor
from grmm.types.factor_graph import FactorGraph
from grmm.types.variable import Variable, VarSet

logger = logging.getLogger(__name__)


class JunctionTreeInferencer(AbstractInferencer):
    """
    Hugin junction tree inference.

    Args:
        propagator: Clique propagation; sum-product when omitted
        use_caching: Reuse the junction tree structure across calls on
            the same graph
    """

    cache_key = "junction_tree"

    _transient = ("_jt",)

    def __init__(self, propagator: Optional[JunctionTreePropagation] = None, use_caching: bool = True):
        self.propagator = propagator if propagator is not None else JunctionTreePropagation.create_sum_product()
        self.use_caching = use_caching
        self._jt: Optional[JunctionTree] = None

    @classmethod
    def create_for_max_product(cls, **kwargs) -> "JunctionTreeInferencer":
        return cls(JunctionTreePropagation.create_max_product(), **kwargs)

    @property
    def total_messages_sent(self) -> int:
        return self.propagator.total_messages_sent

    def compute_marginals(self, graph: FactorGraph) -> None:
        self.build_junction_tree(graph)
        self.propagator.compute_marginals(self._jt)

    def compute_marginals_for_tree(self, jt: JunctionTree) -> None:
        """Propagate a junction tree the caller has built and filled."""
        self._jt = jt
        self.propagator.compute_marginals(jt)

    def build_junction_tree(self, graph: FactorGraph) -> JunctionTree:
        """
        Build the junction tree for ``graph`` and load its factors.

        No propagation is done: the potentials are products of factors,
        not marginals, until ``compute_marginals_for_tree`` runs.
        """
        factor_class = LogTableFactor if graph.is_in_log_space() else TableFactor
        structure = graph.get_inference_cache(self.cache_key) if self.use_caching else None
        if structure is None or structure.factor_class is not factor_class:
            cliques, _ = triangulate(graph.to_markov_network())
            structure = build_junction_tree_structure(cliques, factor_class)
            if self.use_caching:
                graph.set_inference_cache(self.cache_key, structure)
        jt = structure.copy_structure()
        self._init_cpfs(graph, jt)
        self._jt = jt
        return jt

    @staticmethod
    def _init_cpfs(graph: FactorGraph, jt: JunctionTree) -> None:
        for factor in graph.factors:
            cluster = jt.find_parent_cluster(factor.vars())
            if cluster is None:
                raise RuntimeError(f"Unable to find parent cluster for {factor} in {jt}")
            jt.get_cpf(cluster).multiply_by(factor)

    def lookup_junction_tree(self) -> Optional[JunctionTree]:
        """The junction tree of the last run. Callers must not modify it."""
        return self._jt

    def _require_jt(self) -> JunctionTree:
        if self._jt is None:
            raise RuntimeError("JunctionTreeInferencer: call compute_marginals first")
        return self._jt

    def lookup_variable_marginal(self, var: Variable) -> TableFactor:
        jt = self._require_jt()
        if jt.find_parent_cluster(var) is None:
            raise ValueError(f"Variable {var} is not in the current junction tree")
        return self.propagator.lookup_marginal(jt, var)

    def lookup_clique_marginal(self, varset: VarSet) -> TableFactor:
        jt = self._require_jt()
        for var in varset:
            if jt.find_parent_cluster(var) is None:
                raise ValueError(f"Variable {var} is not in the current junction tree")
        return self.propagator.lookup_marginal(jt, varset)

    def lookup_log_joint(self, assn: Assignment) -> float:
        return self._require_jt().lookup_log_joint(assn)

    def best_assignment(self) -> Assignment:
        """Argmax of every variable's belief; the MAP assignment under max-product."""
        jt = self._require_jt()
        variables = VarSet(v for c in jt.clusters for v in c)
        assn = Assignment()
        for var in variables:
            assn[var] = self.lookup_variable_marginal(var).argmax()[var]
        return assn

    def dump(self, out: Optional[TextIO] = None) -> None:
        out = out if out is not None else sys.stdout
        if self._jt is None:
            out.write("NO current junction tree\n")
        else:
            out.write("Current junction tree\n")
            self._jt.dump(out)

    def report_time(self) -> None:
        logger.info("JunctionTreeInferencer: total messages sent %d", self.total_messages_sent)

    def __repr__(self) -> str:
        return f"JunctionTreeInferencer(strategy={self.propagator.strategy!r})"
