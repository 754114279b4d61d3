"""
grmm/inference/junction_tree_propagation.py

Hugin propagation over a junction tree.

Propagation rewrites the tree's potentials in place: a collect pass sends
messages from the leaves to the root, a distribute pass sends them back,
and afterwards every clique potential is the (max-)marginal of its
cluster. A message from clique F to clique T over separator S is

    lambda = reduce(cpf_F onto S), normalised
    cpf_T  = cpf_T * lambda / old sepset_S, normalised
    sepset_S = lambda

where reduce is a sum for sum-product and a max for max-product.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from grmm.exceptions import UnsupportedQueryError
from grmm.inference.junction_tree import JunctionTree
from grmm.types.factor import TableFactor
from grmm.types.variable import VarSet, as_varset

logger = logging.getLogger(__name__)


class CliqueMessageStrategy(ABC):
    """How one clique-to-clique message reduces onto its separator."""

    @abstractmethod
    def reduce(self, cpf: TableFactor, varset: VarSet) -> TableFactor:
        ...

    def send_message(self, jt: JunctionTree, src: VarSet, dst: VarSet) -> None:
        sepset = jt.get_sepset(src, dst)
        old_sepset_ptl = jt.get_sepset_potential(src, dst)
        lam = self.reduce(jt.get_cpf(src), sepset).normalize()
        jt.set_sepset_potential(lam, src, dst)
        to_cpf = jt.get_cpf(dst).multiply(lam)
        to_cpf.divide_by(old_sepset_ptl)
        jt.set_cpf(dst, to_cpf.normalize())

    def extract_belief(self, cpf: TableFactor, varset: VarSet) -> TableFactor:
        return self.reduce(cpf, varset)

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class SumProductCliqueStrategy(CliqueMessageStrategy):
    def reduce(self, cpf: TableFactor, varset: VarSet) -> TableFactor:
        return cpf.marginalize(varset)


class MaxProductCliqueStrategy(CliqueMessageStrategy):
    def reduce(self, cpf: TableFactor, varset: VarSet) -> TableFactor:
        return cpf.extract_max(varset)


class JunctionTreePropagation:
    """
    Two-pass propagation with a pluggable clique strategy.

    This is not an Inferencer: it modifies the junction tree it is given.
    """

    def __init__(self, strategy: CliqueMessageStrategy):
        self.strategy = strategy
        self.total_messages_sent = 0

    @classmethod
    def create_sum_product(cls) -> "JunctionTreePropagation":
        return cls(SumProductCliqueStrategy())

    @classmethod
    def create_max_product(cls) -> "JunctionTreePropagation":
        return cls(MaxProductCliqueStrategy())

    def compute_marginals(self, jt: JunctionTree) -> None:
        self.propagate(jt)
        # Needed when the tree started unnormalised.
        jt.normalize_all()

    def propagate(self, jt: JunctionTree) -> None:
        # Collect: each cluster after all of its children.
        for child in jt.postorder():
            parent = jt.get_parent(child)
            if parent is not None:
                logger.debug("collectEvidence %s --> %s", child, parent)
                self._send(jt, child, parent)
        # Distribute: each cluster before its children.
        for parent in jt.preorder():
            for child in jt.get_children(parent):
                logger.debug("distributeEvidence %s --> %s", parent, child)
                self._send(jt, parent, child)

    def _send(self, jt: JunctionTree, src: VarSet, dst: VarSet) -> None:
        self.total_messages_sent += 1
        self.strategy.send_message(jt, src, dst)

    def lookup_marginal(self, jt: JunctionTree, query) -> TableFactor:
        """(Max-)marginal of a variable or clique from its lightest containing cluster."""
        if jt is None:
            raise RuntimeError("Call compute_marginals() first")
        varset = as_varset(query)
        cluster = jt.find_parent_cluster(varset)
        if cluster is None:
            raise UnsupportedQueryError(f"No parent cluster in {jt} for clique {varset}")
        logger.debug("Lookup jt marginal: clique %s cluster %s", varset, cluster)
        return self.strategy.extract_belief(jt.get_cpf(cluster), varset).normalize()
