"""
grmm/inference/belief_propagation.py

Shared machinery for belief propagation over general factor graphs.

AbstractBeliefPropagation owns the message arrays, convergence testing
against a snapshot, belief extraction and message telemetry. Concrete
subclasses only decide the schedule: which messages to send, in which
order, and when to stop. How a single message is computed is delegated
to a MessageStrategy, so every schedule runs both sum-product and
max-product.
"""

from __future__ import annotations

import logging
import math
import sys
import time
from typing import Callable, Dict, Optional, TextIO

import numpy as np

from grmm.exceptions import UnsupportedQueryError
from grmm.inference.inferencer import AbstractInferencer
from grmm.inference.messages import MessageArray, create_empty_msg
from grmm.inference.strategies import (
    NO_EXCLUSION,
    MessageStrategy,
    SumProductMessageStrategy,
)
from grmm.inference.telemetry import MessageCounter
from grmm.types.assignment import Assignment
from grmm.types.factor import TableFactor, multiply_all
from grmm.types.factor_graph import FactorGraph
from grmm.types.tree import Tree
from grmm.types.variable import Variable, VarSet

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 1e-5


class AbstractBeliefPropagation(AbstractInferencer):
    """
    Base class for message-passing inferencers.

    Args:
        messager: Message strategy; sum-product when omitted
        threshold: Largest per-entry message change still counted as converged
        normalize_beliefs: Normalise variable beliefs
        use_caching: Keep the final messages on the graph and start the
            next run on the same graph from them
        counter: Shared message counter; a private one when omitted
        timeout: Wall-clock limit in seconds for iterative schedules
        should_stop: Called with the iteration number at every iteration
            boundary of iterative schedules; returning True stops early
    """

    cache_key = "bp_messages"

    _transient = ("_graph", "_messages", "_old_messages", "_beliefs", "_started_at")

    def __init__(
        self,
        messager: Optional[MessageStrategy] = None,
        threshold: float = DEFAULT_THRESHOLD,
        normalize_beliefs: bool = True,
        use_caching: bool = False,
        counter: Optional[MessageCounter] = None,
        timeout: Optional[float] = None,
        should_stop: Optional[Callable[[int], bool]] = None,
    ):
        self.messager = messager if messager is not None else SumProductMessageStrategy()
        self.threshold = threshold
        self.normalize_beliefs = normalize_beliefs
        self.use_caching = use_caching
        self.counter = counter if counter is not None else MessageCounter()
        self.timeout = timeout
        self.should_stop = should_stop

        self.messages_sent = 0
        self._sent_at_start = 0
        self._iters_used = 0
        self._converged = False

        self._graph: Optional[FactorGraph] = None
        self._messages: Optional[MessageArray] = None
        self._old_messages: Optional[MessageArray] = None
        self._beliefs: Optional[Dict[Variable, TableFactor]] = None
        self._started_at: Optional[float] = None

    def set_messager(self, messager: MessageStrategy) -> "AbstractBeliefPropagation":
        self.messager = messager
        return self

    # -- telemetry ---------------------------------------------------------

    @property
    def total_messages_sent(self) -> int:
        """Messages sent by every inferencer sharing this one's counter."""
        return self.counter.total

    def messages_used_last_time(self) -> int:
        """Messages sent during the last call to ``compute_marginals``."""
        return self.messages_sent - self._sent_at_start

    def reset_messages_sent_at_start(self) -> None:
        self._sent_at_start = self.messages_sent

    def iterations_used(self) -> int:
        return self._iters_used

    def is_converged(self) -> bool:
        return self._converged

    # -- message bookkeeping -----------------------------------------------

    @property
    def messages(self) -> MessageArray:
        return self._messages

    @property
    def graph(self) -> Optional[FactorGraph]:
        return self._graph

    def init_for_graph(self, graph: FactorGraph) -> None:
        """Set up fresh (or cached) messages and the first snapshot for ``graph``."""
        self._graph = graph
        self._beliefs = {}
        self._converged = False
        self._iters_used = 0
        self._started_at = time.monotonic()

        cached = graph.get_inference_cache(self.cache_key) if self.use_caching else None
        if cached is not None:
            logger.info("%s: reusing cached messages", type(self).__name__)
            self._messages = cached
            self.copy_old_messages()
        else:
            self._messages = MessageArray(graph)
            self._old_messages = MessageArray(graph)
            for factor in graph.factors:
                for var in factor.vars():
                    self._old_messages.put(var, factor, create_empty_msg(var))
                    self._old_messages.put(factor, var, create_empty_msg(var))

        self.messager.set_message_array(self._messages, self._old_messages)

    def copy_old_messages(self) -> None:
        """Snapshot the current messages for the next convergence test."""
        self._old_messages = self._messages.duplicate()
        self.messager.set_message_array(self._messages, self._old_messages)

    def has_converged(self, threshold: Optional[float] = None) -> bool:
        """
        Compare the current messages with the last snapshot.

        Every snapshot message must have a current counterpart whose
        entries all differ by at most ``threshold``. A snapshot message
        with no current counterpart counts as not converged. Messages that
        only exist in the current array are not compared, and a graph
        with no messages at all is converged.
        """
        if threshold is None:
            threshold = self.threshold
        max_diff = 0.0
        for from_idx, to_idx, old in self._old_messages.items():
            new = self._messages.get_by_index(from_idx, to_idx)
            if new is None:
                logger.debug("Not converged: no current message %d --> %d", from_idx, to_idx)
                return False
            diff = float(np.max(np.abs(old.probabilities() - new.probabilities())))
            if diff > threshold:
                logger.debug("Not converged: difference %g on %d --> %d", diff, from_idx, to_idx)
                return False
            max_diff = max(max_diff, diff)
        logger.debug("Converged: max absolute difference %g", max_diff)
        return True

    def send_message(self, graph: FactorGraph, src, dst) -> None:
        """Send one message from ``src`` to ``dst`` (variable or factor)."""
        self.messages_sent += 1
        self.counter.increment()
        self.messager.send_message(graph, src, dst)

    def done_with_graph(self, graph: FactorGraph) -> None:
        self._old_messages = None
        if self.use_caching:
            graph.set_inference_cache(self.cache_key, self._messages)

    def _propagate(self, tree: Tree) -> None:
        """
        Exact two-pass schedule over a tree of variables and factors.

        Messages go from every node to its parent, leaves first, and then
        from every node to its children, roots first.
        """
        graph = self._graph
        for node in tree.postorder():
            parent = tree.get_parent(node)
            if parent is not None:
                self.send_message(graph, node, parent)
        for node in tree.preorder():
            for child in tree.get_children(node):
                self.send_message(graph, node, child)

    def _stop_requested(self, iteration: int) -> bool:
        if self.should_stop is not None and self.should_stop(iteration):
            logger.warning("%s: stopped by caller at iteration %d", type(self).__name__, iteration)
            return True
        if self.timeout is not None and time.monotonic() - self._started_at > self.timeout:
            logger.warning(
                "%s: timeout of %gs reached at iteration %d", type(self).__name__, self.timeout, iteration
            )
            return True
        return False

    # -- beliefs -----------------------------------------------------------

    def _require_graph(self) -> FactorGraph:
        if self._graph is None:
            raise RuntimeError(f"{type(self).__name__}: call compute_marginals first")
        return self._graph

    def lookup_variable_marginal(self, var: Variable) -> TableFactor:
        graph = self._require_graph()
        idx = graph.get_index(var)
        if idx < 0:
            raise ValueError(f"Cannot find variable {var} in factor graph {graph}")
        belief = self._beliefs.get(var)
        if belief is None:
            belief = self.messager.msg_product(None, idx, NO_EXCLUSION)
            if self.normalize_beliefs:
                belief.normalize()
            self._beliefs[var] = belief
        return belief

    def lookup_clique_marginal(self, varset: VarSet) -> TableFactor:
        graph = self._require_graph()
        for var in varset:
            if not graph.contains_var(var):
                raise ValueError(f"Cannot find variable {var} in factor graph {graph}")
        factors = graph.all_factors_of(varset)
        if not factors:
            raise UnsupportedQueryError(
                f"Cannot compute marginal of {varset}: must be a single variable or a factor in the graph"
            )
        marginal = multiply_all(factors)
        for factor in factors:
            for var in varset:
                # Absent if the run was stopped before reaching this factor.
                msg = self._messages.get(var, factor)
                if msg is not None:
                    marginal.multiply_by(msg)
        return marginal.normalize()

    def lookup_log_joint(self, assn: Assignment) -> float:
        """
        Bethe approximation of log p(assn).

        sum over factor scopes C of log b_C(x_C), minus
        (deg(v) - 1) log b_v(x_v) for every variable v. Exact on trees.
        """
        graph = self._require_graph()
        accum = 0.0
        # Factors sharing a scope count once.
        degree: Dict[Variable, int] = {}
        for varset in graph.var_sets():
            lv = self.lookup_marginal(varset).log_value(assn)
            if math.isinf(lv):
                return float("-inf")
            accum += lv
            for var in varset:
                degree[var] = degree.get(var, 0) + 1
        for var in graph.variables:
            deg = degree.get(var, 0)
            if deg != 1:
                # Degree 0 adds the variable's own belief.
                accum -= (deg - 1) * self.lookup_variable_marginal(var).log_value(assn)
        return accum

    def best_assignment(self) -> Assignment:
        """Argmax of every variable belief; the MAP assignment under max-product."""
        graph = self._require_graph()
        assn = Assignment()
        for var in graph.variables:
            belief = self.lookup_variable_marginal(var)
            assn[var] = belief.argmax()[var]
        return assn

    # -- diagnostics -------------------------------------------------------

    def dump(self, out: Optional[TextIO] = None) -> None:
        out = out if out is not None else sys.stdout
        if self._messages is None:
            out.write(f"{type(self).__name__}: no messages\n")
            return
        self._messages.dump(out)

    def dump_beliefs(self, out: Optional[TextIO] = None) -> None:
        out = out if out is not None else sys.stdout
        for var in self._require_graph().variables:
            out.write(self.lookup_variable_marginal(var).dump_to_string())
            out.write("\n\n")

    def report_time(self) -> None:
        logger.info(
            "%s: messages sent %d (last call %d), total on shared counter %d",
            type(self).__name__,
            self.messages_sent,
            self.messages_used_last_time(),
            self.total_messages_sent,
        )

    def __repr__(self) -> str:
        return f"{type(self).__name__}(messager={self.messager!r})"
