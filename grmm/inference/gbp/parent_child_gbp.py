"""
grmm/inference/gbp/parent_child_gbp.py

Generalized belief propagation on a region graph, parent-to-child form.

Messages run only from a region to its children. The belief of a region
is the product of its factors, the messages from its parents, and the
messages that reach its descendants from outside the region's family.
A message is recomputed from the parent's factors the child lacks, times
the messages entering the parent's family at regions outside the
child's family, summed down to the child and divided by the messages
flowing from the parent's family into the child's. At a fixed point
every child belief is the marginal of each parent belief.

Which regions exist is decided by a RegionGraphGenerator: Bethe regions
reproduce loopy BP, Kikuchi squares and cluster-variation regions give
larger-cluster approximations.
"""

from __future__ import annotations

import logging
import sys
import time
from typing import Callable, Dict, Optional, TextIO, Tuple

import numpy as np

from grmm.exceptions import UnsupportedQueryError
from grmm.inference.belief_propagation import DEFAULT_THRESHOLD
from grmm.inference.gbp.region_generators import (
    BPRegionGenerator,
    ClusterVariationalRegionGenerator,
    Kikuchi4SquareRegionGenerator,
    RegionGraphGenerator,
)
from grmm.inference.gbp.region_graph import Region, RegionEdge, RegionGraph
from grmm.inference.inferencer import AbstractInferencer
from grmm.inference.telemetry import MessageCounter
from grmm.types.assignment import Assignment
from grmm.types.factor import LogTableFactor, TableFactor, product_of
from grmm.types.factor_graph import FactorGraph
from grmm.types.variable import Variable, VarSet

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITER = 500

RegionMessages = Dict[Tuple[int, int], TableFactor]


class ParentChildGBP(AbstractInferencer):
    """
    Parent-to-child generalized belief propagation.

    Each iteration sends every message once, to small children first.
    With inertia on, the new messages are then mixed with the previous
    iteration's.

    Args:
        regioner: Region graph generator; ClusterVariationalRegionGenerator
            over factor scopes when omitted
        threshold: Largest per-entry message change still counted as converged
        max_iter: Iteration cap
        use_inertia: Mix each iteration's messages with the previous ones
        inertia_weight: Weight of the previous message in the mix
        counter: Shared message counter; a private one when omitted
        should_stop: Called with the iteration number at every iteration
            boundary; returning True stops early
    """

    _transient = ("_graph", "_region_graph", "_messages", "_old_messages", "_beliefs")

    def __init__(
        self,
        regioner: Optional[RegionGraphGenerator] = None,
        threshold: float = DEFAULT_THRESHOLD,
        max_iter: int = DEFAULT_MAX_ITER,
        use_inertia: bool = True,
        inertia_weight: float = 0.5,
        counter: Optional[MessageCounter] = None,
        should_stop: Optional[Callable[[int], bool]] = None,
    ):
        if not 0.0 <= inertia_weight < 1.0:
            raise ValueError(f"inertia_weight must be in [0, 1), got {inertia_weight}")
        self.regioner = regioner if regioner is not None else ClusterVariationalRegionGenerator()
        self.threshold = threshold
        self.max_iter = max_iter
        self.use_inertia = use_inertia
        self.inertia_weight = inertia_weight
        self.counter = counter if counter is not None else MessageCounter()
        self.should_stop = should_stop

        self.messages_sent = 0
        self._sent_at_start = 0
        self._iters_used = 0
        self._converged = False
        self._factor_class = TableFactor

        self._graph: Optional[FactorGraph] = None
        self._region_graph: Optional[RegionGraph] = None
        self._messages: Optional[RegionMessages] = None
        self._old_messages: Optional[RegionMessages] = None
        self._beliefs: Optional[Dict[int, TableFactor]] = None

    @classmethod
    def make_bp_inferencer(cls, **kwargs) -> "ParentChildGBP":
        """GBP over Bethe regions, equivalent to loopy BP."""
        return cls(BPRegionGenerator(), **kwargs)

    @classmethod
    def make_kikuchi_inferencer(cls, **kwargs) -> "ParentChildGBP":
        """GBP over the 2x2 squares of an UndirectedGrid."""
        return cls(Kikuchi4SquareRegionGenerator(), **kwargs)

    # -- telemetry ---------------------------------------------------------

    @property
    def total_messages_sent(self) -> int:
        return self.counter.total

    def messages_used_last_time(self) -> int:
        return self.messages_sent - self._sent_at_start

    def iterations_used(self) -> int:
        return self._iters_used

    def is_converged(self) -> bool:
        return self._converged

    @property
    def region_graph(self) -> Optional[RegionGraph]:
        return self._region_graph

    # -- message passing ---------------------------------------------------

    def compute_marginals(self, graph: FactorGraph) -> None:
        self._sent_at_start = self.messages_sent
        self._graph = graph
        self._factor_class = LogTableFactor if graph.is_in_log_space() else TableFactor
        self._beliefs = {}
        self._converged = False

        started = time.monotonic()
        rg = self.regioner.construct_region_graph(graph)
        self._region_graph = rg
        logger.debug("GBP region graph construction took %.3fs", time.monotonic() - started)

        # Stable sort: edges into smaller regions go first.
        schedule = sorted(rg.edges, key=lambda e: len(e.child.vars))
        self._messages = {edge.key: self._factor_class(edge.child.vars).normalize() for edge in rg.edges}

        iteration = 0
        while iteration < self.max_iter:
            if self.should_stop is not None and self.should_stop(iteration):
                logger.warning("GBP: stopped by caller at iteration %d", iteration)
                break
            self._old_messages = {k: msg.duplicate() for k, msg in self._messages.items()}
            for edge in schedule:
                self.send_message(edge)
            iteration += 1
            if self.use_inertia:
                for k, msg in self._messages.items():
                    self._messages[k] = msg.interpolate(self._old_messages[k], 1.0 - self.inertia_weight)
            logger.debug("GBP iteration %d", iteration)
            if self.has_converged():
                self._converged = True
                break

        self._iters_used = iteration
        self._old_messages = None
        logger.info("GBP: used %d iterations", iteration)
        if not self._converged:
            logger.warning("GBP: not converged after %d iterations", iteration)

    def send_message(self, edge: RegionEdge) -> None:
        """Recompute the message from ``edge.parent`` to ``edge.child``."""
        msg = self._factor_class(edge.parent.vars)
        for factor in edge.factors_to_send:
            msg.multiply_by(factor)
        for other in edge.neighboring_parents:
            msg.multiply_by(self._messages[other.key])
        msg = msg.marginalize(edge.child.vars)
        for other in edge.looping_messages:
            msg.divide_by(self._messages[other.key])
        self._messages[edge.key] = msg.normalize()
        self.messages_sent += 1
        self.counter.increment()

    def has_converged(self) -> bool:
        if self._old_messages is None:
            return False
        for k, msg in self._messages.items():
            if not msg.almost_equals(self._old_messages[k], self.threshold):
                return False
        return True

    # -- beliefs -----------------------------------------------------------

    def _require_region_graph(self) -> RegionGraph:
        if self._region_graph is None:
            raise RuntimeError(f"{type(self).__name__}: call compute_marginals first")
        return self._region_graph

    def compute_belief(self, region: Region) -> TableFactor:
        """Normalised belief of ``region`` under the current messages."""
        cached = self._beliefs.get(region.index)
        if cached is not None:
            return cached
        belief = self._factor_class(region.vars)
        for factor in region.factors:
            belief.multiply_by(factor)
        for parent in region.parents:
            belief.multiply_by(self._messages[(parent.index, region.index)])
        for descendant in region.descendants:
            for uncle in descendant.parents:
                if uncle is not region and uncle not in region.descendants:
                    belief.multiply_by(self._messages[(uncle.index, descendant.index)])
        belief.normalize()
        self._beliefs[region.index] = belief
        return belief

    def _containing_region(self, varset: VarSet) -> Region:
        rg = self._require_region_graph()
        for var in varset:
            if not self._graph.contains_var(var):
                raise ValueError(f"Cannot find variable {var} in factor graph {self._graph}")
        region = rg.find_containing_region(varset)
        if region is None:
            raise UnsupportedQueryError(f"No region contains {varset} in {rg}")
        return region

    def lookup_variable_marginal(self, var: Variable) -> TableFactor:
        region = self._containing_region(VarSet.of(var))
        return self.compute_belief(region).marginalize(var)

    def lookup_clique_marginal(self, varset: VarSet) -> TableFactor:
        region = self._containing_region(varset)
        return self.compute_belief(region).marginalize(varset)

    def free_energy(self) -> float:
        """
        Region free energy of the current beliefs.

        Sum over regions of c(R) times (average energy - entropy) of the
        region belief. At a fixed point this approximates -log Z.
        """
        rg = self._require_region_graph()
        avg_energy = 0.0
        entropy = 0.0
        for region in rg:
            c = region.counting_number
            if c == 0:
                continue
            belief = self.compute_belief(region)
            probs = belief.probabilities()
            with np.errstate(divide="ignore"):
                log_factor = product_of(region.factors, region.vars).log_probabilities()
            mask = probs > 0
            avg_energy += c * float(-np.sum(probs[mask] * log_factor[mask]))
            entropy += c * belief.entropy()
        logger.debug("GBP free energy: avg energy %g, entropy %g", avg_energy, entropy)
        return avg_energy - entropy

    def lookup_log_joint(self, assn: Assignment) -> float:
        self._require_region_graph()
        return self._graph.log_value(assn) + self.free_energy()

    # -- debugging ---------------------------------------------------------

    def dump(self, out: Optional[TextIO] = None) -> None:
        out = out if out is not None else sys.stdout
        if self._region_graph is None:
            out.write(f"{type(self).__name__}: no messages\n")
            return
        for edge in self._region_graph.edges:
            out.write(f"Message: {edge.parent} --> {edge.child}\n")
            out.write(self._messages[edge.key].dump_to_string())
            out.write("\n")

    def report_time(self) -> None:
        logger.info(
            "%s: messages sent %d (last call %d), total on shared counter %d",
            type(self).__name__,
            self.messages_sent,
            self.messages_used_last_time(),
            self.total_messages_sent,
        )

    def __repr__(self) -> str:
        return f"ParentChildGBP(regioner={type(self.regioner).__name__})"
