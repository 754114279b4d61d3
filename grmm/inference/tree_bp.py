"""
grmm/inference/tree_bp.py

Exact belief propagation for tree-structured factor graphs.

The variable/factor incidence graph must be a forest. Each connected
component is rooted at its first variable; one upward and one downward
pass then leave every message exact, with no convergence loop. Cyclic
graphs are rejected before any message is sent.
"""

from __future__ import annotations

import logging

import networkx as nx

from grmm.exceptions import NotATreeError
from grmm.inference.belief_propagation import AbstractBeliefPropagation
from grmm.inference.strategies import MaxProductMessageStrategy
from grmm.types.factor_graph import FactorGraph
from grmm.types.tree import Tree

logger = logging.getLogger(__name__)


class TreeBP(AbstractBeliefPropagation):
    """Two-pass BP; exact on factor graphs without cycles."""

    cache_key = "tree_bp_messages"

    @classmethod
    def create_for_max_product(cls, **kwargs) -> "TreeBP":
        return cls(MaxProductMessageStrategy(), **kwargs)

    def compute_marginals(self, graph: FactorGraph) -> None:
        self.reset_messages_sent_at_start()
        tree = self.build_schedule(graph)
        self.init_for_graph(graph)
        self._propagate(tree)
        self._iters_used = 1
        self._converged = True
        logger.debug("TreeBP sent %d messages", self.messages_used_last_time())
        self.done_with_graph(graph)

    @staticmethod
    def build_schedule(graph: FactorGraph) -> Tree:
        """
        Root the incidence graph of ``graph``.

        Raises:
            NotATreeError: if the incidence graph has a cycle
        """
        bipartite = graph.to_bipartite_graph()
        if bipartite.number_of_nodes() and not nx.is_forest(bipartite):
            raise NotATreeError(f"TreeBP needs an acyclic factor graph; {graph} has cycles")
        return Tree.from_graph(bipartite)
