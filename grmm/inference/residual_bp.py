"""
grmm/inference/residual_bp.py

Loopy belief propagation with a randomised asynchronous schedule.

Each iteration shuffles the factors, sends every variable-to-factor
message in that order, then every factor-to-variable message. Iteration
stops when no message moved by more than the threshold since the previous
iteration, or at ``max_iter``.
"""

from __future__ import annotations

import logging
from typing import Optional, Union

import numpy as np

from grmm.inference.belief_propagation import AbstractBeliefPropagation
from grmm.inference.strategies import MaxProductMessageStrategy, MessageStrategy
from grmm.types.factor_graph import FactorGraph

logger = logging.getLogger(__name__)


class ResidualBP(AbstractBeliefPropagation):
    """
    Asynchronous loopy BP in random factor order.

    Args:
        messager: Message strategy; sum-product when omitted
        max_iter: Iteration cap
        rng: Random generator or seed for the factor order
        **kwargs: Passed to AbstractBeliefPropagation
    """

    DEFAULT_MAX_ITER = 1000

    cache_key = "residual_bp_messages"

    def __init__(
        self,
        messager: Optional[MessageStrategy] = None,
        max_iter: int = DEFAULT_MAX_ITER,
        rng: Union[None, int, np.random.Generator] = None,
        **kwargs,
    ):
        super().__init__(messager, **kwargs)
        self.max_iter = max_iter
        self.rng = np.random.default_rng(rng)

    @classmethod
    def create_for_max_product(cls, **kwargs) -> "ResidualBP":
        return cls(MaxProductMessageStrategy(), **kwargs)

    def compute_marginals(self, graph: FactorGraph) -> None:
        self.reset_messages_sent_at_start()
        self.init_for_graph(graph)

        iteration = 0
        while iteration < self.max_iter:
            if self._stop_requested(iteration):
                break
            logger.debug("ResidualBP iteration %d", iteration)
            self._sweep(graph)
            iteration += 1
            if self.has_converged():
                self._converged = True
                break
            self.copy_old_messages()

        self._iters_used = iteration
        if self._converged:
            logger.info("ResidualBP converged: %d iterations", iteration)
        else:
            logger.warning("ResidualBP quitting: not converged after %d iterations", iteration)

        self.done_with_graph(graph)

    def _sweep(self, graph: FactorGraph) -> None:
        factors = graph.factors
        order = [factors[i] for i in self.rng.permutation(len(factors))]
        for factor in order:
            for var in factor.vars():
                self.send_message(graph, var, factor)
        for factor in order:
            for var in factor.vars():
                self.send_message(graph, factor, var)

    def __repr__(self) -> str:
        return f"ResidualBP(messager={self.messager!r}, max_iter={self.max_iter})"
