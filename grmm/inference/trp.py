"""
grmm/inference/trp.py

Tree-based reparameterisation (TRP) schedule for loopy BP.

TRP repeatedly picks an acyclic piece of the factor graph and runs exact
two-pass BP over it, reusing the messages left by earlier trees. Which
trees are used, and when to stop, are pluggable:
- TreeFactory: produces the next tree
- TerminationCondition: decides after each tree whether to go on

The default factory favours factors that no earlier tree has used, and
the default condition keeps going until every factor has been used and
the messages have converged, or 1000 iterations have passed.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

import networkx as nx
import numpy as np
from networkx.utils import UnionFind

from grmm.inference.belief_propagation import AbstractBeliefPropagation
from grmm.inference.strategies import MaxProductMessageStrategy, MessageStrategy
from grmm.types.factor import TableFactor
from grmm.types.factor_graph import FactorGraph
from grmm.types.tree import Tree

logger = logging.getLogger(__name__)


# Tree factories


class TreeFactory(ABC):
    """Strategy for choosing the tree of each TRP iteration."""

    @abstractmethod
    def next_tree(self, graph: FactorGraph, trp: "TRP") -> Tree:
        """Return an acyclic subgraph of ``graph`` rooted as a Tree."""


class AlmostRandomTreeFactory(TreeFactory):
    """
    Random maximal forest that prefers unused factors.

    Factors are visited in random order, first those no earlier tree has
    touched, then the rest. A factor joins the forest when none of its
    variables are already connected to each other; union-find over
    variables and factors tracks the connectivity.
    """

    def next_tree(self, graph: FactorGraph, trp: "TRP") -> Tree:
        factors = graph.factors
        order = [factors[i] for i in trp.rng.permutation(len(factors))]
        uf = UnionFind()
        chosen: List[TableFactor] = []

        def no_pair_connected(factor: TableFactor) -> bool:
            roots = [uf[v] for v in factor.vars()]
            return len(set(roots)) == len(roots)

        rest = []
        for factor in order:
            if not trp.is_factor_touched(factor) and no_pair_connected(factor):
                chosen.append(factor)
                uf.union(factor, *factor.vars())
            else:
                rest.append(factor)
        for factor in rest:
            if no_pair_connected(factor):
                chosen.append(factor)
                uf.union(factor, *factor.vars())

        for factor in chosen:
            trp.touch_factor(factor)

        g = nx.Graph()
        g.add_nodes_from(graph.variables)
        for factor in chosen:
            g.add_node(factor)
            for v in factor.vars():
                g.add_edge(factor, v)
        return Tree.from_graph(g)


class TreeListFactory(TreeFactory):
    """Cycles through a fixed list of trees."""

    def __init__(self, trees: Sequence[Tree]):
        if not trees:
            raise ValueError("TreeListFactory needs at least one tree")
        self.trees = list(trees)
        self._pos = 0

    def next_tree(self, graph: FactorGraph, trp: "TRP") -> Tree:
        tree = self.trees[self._pos]
        self._pos = (self._pos + 1) % len(self.trees)
        for node in tree.nodes:
            if isinstance(node, TableFactor):
                trp.touch_factor(node)
        return tree


# Termination conditions


class TerminationCondition(ABC):
    """Decides, before each TRP iteration, whether another one should run."""

    @abstractmethod
    def should_continue(self, trp: "TRP") -> bool:
        ...

    def reset(self) -> None:
        pass


class IterationTerminator(TerminationCondition):
    """Allows exactly ``max_iter`` iterations."""

    def __init__(self, max_iter: int):
        self.max_iter = max_iter
        self.current = 0

    def reset(self) -> None:
        self.current = 0

    def should_continue(self, trp: "TRP") -> bool:
        self.current += 1
        if self.current > self.max_iter:
            logger.debug("TRP quitting: iteration %d > %d", self.current, self.max_iter)
        return self.current <= self.max_iter


class ConvergenceTerminator(TerminationCondition):
    """Continues until no message changed by more than ``delta`` since the last check."""

    def __init__(self, delta: float = 0.01):
        self.delta = delta

    def should_continue(self, trp: "TRP") -> bool:
        if trp.graph.num_factors() == 0:
            trp.mark_converged()
            return False
        if not len(trp.messages):
            # Nothing sent yet; keep the initial snapshot.
            return True
        converged = trp.has_converged(self.delta)
        trp.copy_old_messages()
        if converged:
            trp.mark_converged()
        return not converged


class DefaultConvergenceTerminator(TerminationCondition):
    """
    Convergence test that never stops before every factor has been used,
    and always stops after ``max_iter`` iterations.
    """

    def __init__(self, delta: float = 0.001, max_iter: int = 1000):
        self.cterminator = ConvergenceTerminator(delta)
        self.iterminator = IterationTerminator(max_iter)

    def reset(self) -> None:
        self.iterminator.reset()
        self.cterminator.reset()

    def should_continue(self, trp: "TRP") -> bool:
        all_touched = trp.all_factors_touched()
        if not self.iterminator.should_continue(trp):
            logger.warning("TRP quitting: over %d iterations", self.iterminator.max_iter)
            if not all_touched:
                logger.warning("TRP warning: not all factors used")
            return False
        if not all_touched:
            return True
        return self.cterminator.should_continue(trp)


class TRP(AbstractBeliefPropagation):
    """
    Loopy BP by repeated exact inference on trees.

    Args:
        factory: Tree factory; AlmostRandomTreeFactory when omitted
        terminator: Termination condition; DefaultConvergenceTerminator when omitted
        messager: Message strategy; sum-product when omitted
        rng: Random generator or seed used by the tree factory
        verbose_output_directory: When set, messages, beliefs and the tree
            of iteration n are written to iter{n}.txt, beliefs{n}.txt and
            tree{n}.txt in this directory
        **kwargs: Passed to AbstractBeliefPropagation
    """

    cache_key = "trp_messages"

    _transient = AbstractBeliefPropagation._transient + ("_touched",)

    def __init__(
        self,
        factory: Optional[TreeFactory] = None,
        terminator: Optional[TerminationCondition] = None,
        messager: Optional[MessageStrategy] = None,
        rng: Union[None, int, np.random.Generator] = None,
        verbose_output_directory: Union[None, str, Path] = None,
        **kwargs,
    ):
        super().__init__(messager, **kwargs)
        self.factory = factory if factory is not None else AlmostRandomTreeFactory()
        self.terminator = terminator if terminator is not None else DefaultConvergenceTerminator()
        self.rng = np.random.default_rng(rng)
        self.verbose_output_directory = (
            Path(verbose_output_directory) if verbose_output_directory is not None else None
        )
        self._touched: Optional[Dict[int, int]] = None

    @classmethod
    def create_for_max_product(cls, **kwargs) -> "TRP":
        return cls(messager=MaxProductMessageStrategy(), **kwargs)

    def set_random_seed(self, seed: int) -> None:
        self.rng = np.random.default_rng(seed)

    def init_for_graph(self, graph: FactorGraph) -> None:
        super().init_for_graph(graph)
        self._touched = {}
        self.terminator.reset()

    # -- factor usage ------------------------------------------------------

    def touch_factor(self, factor: TableFactor) -> None:
        idx = self._graph.get_index(factor)
        self._touched[idx] = self._touched.get(idx, 0) + 1

    def num_touches(self, factor: TableFactor) -> int:
        return self._touched.get(self._graph.get_index(factor), 0)

    def is_factor_touched(self, factor: TableFactor) -> bool:
        return self.num_touches(factor) > 0

    def all_factors_touched(self) -> bool:
        for factor in self._graph.factors:
            if not self.is_factor_touched(factor):
                logger.debug("TRP continuing: factor %d not touched", self._graph.get_index(factor))
                return False
        return True

    def mark_converged(self) -> None:
        self._converged = True

    # -- main loop ---------------------------------------------------------

    def compute_marginals(self, graph: FactorGraph) -> None:
        self.reset_messages_sent_at_start()
        self.init_for_graph(graph)

        iteration = 0
        while not self._stop_requested(iteration) and self.terminator.should_continue(self):
            logger.debug("TRP iteration %d", iteration)
            tree = self.factory.next_tree(graph, self)
            self._propagate(tree)
            iteration += 1
            self._dump_for_iter(iteration, tree)

        self._iters_used = iteration
        logger.info("TRP used %d iterations (converged: %s)", iteration, self._converged)
        self.done_with_graph(graph)

    def _dump_for_iter(self, iteration: int, tree: Tree) -> None:
        directory = self.verbose_output_directory
        if directory is None:
            return
        directory.mkdir(parents=True, exist_ok=True)
        with open(directory / f"iter{iteration}.txt", "w", encoding="utf-8") as f:
            self.dump(f)
        with open(directory / f"beliefs{iteration}.txt", "w", encoding="utf-8") as f:
            # Beliefs are recomputed from the current messages for every dump.
            self._beliefs = {}
            self.dump_beliefs(f)
            self._beliefs = {}
        with open(directory / f"tree{iteration}.txt", "w", encoding="utf-8") as f:
            f.write(tree.dump_to_string())
            f.write("\n")

    def __repr__(self) -> str:
        return f"TRP(factory={type(self.factory).__name__}, terminator={type(self.terminator).__name__})"
