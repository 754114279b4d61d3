"""
grmm/inference/sampling.py

Samplers that draw joint assignments from a factor graph.

ExactSampler draws independent samples by ancestral sampling over a
calibrated junction tree. GibbsSampler runs a Markov chain that
resamples one variable at a time from its conditional given all others.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Iterator, List, Optional, Union

import numpy as np

from grmm.exceptions import InfeasibleModelError
from grmm.inference.junction_tree_inferencer import JunctionTreeInferencer
from grmm.types.assignment import Assignment
from grmm.types.factor import TableFactor
from grmm.types.factor_graph import FactorGraph
from grmm.types.semiring import LOGPROB
from grmm.types.variable import Variable

logger = logging.getLogger(__name__)

# Factor values at or below this count as zero in the feasibility search.
FEASIBILITY_THRESHOLD = 1e-50

RandomLike = Union[None, int, np.random.Generator]


class Sampler(ABC):
    """Draws joint assignments from the distribution of a factor graph."""

    @abstractmethod
    def sample(self, graph: FactorGraph, n: int) -> List[Assignment]:
        ...


class ExactSampler(Sampler):
    """
    Independent samples from a junction tree.

    Each sample draws the root cluster from its marginal, then every
    other cluster from its marginal conditioned on the variables it
    shares with its parent, working down the tree.
    """

    def __init__(self, rng: RandomLike = None):
        self.rng = np.random.default_rng(rng)

    def sample(self, graph: FactorGraph, n: int) -> List[Assignment]:
        inf = JunctionTreeInferencer(use_caching=False)
        inf.compute_marginals(graph)
        jt = inf.lookup_junction_tree()
        order = list(jt.preorder())
        return [self._sample_once(jt, order) for _ in range(n)]

    def _sample_once(self, jt, order) -> Assignment:
        assn = Assignment()
        for cluster in order:
            conditional = jt.get_cpf(cluster).slice(assn)
            if conditional.vars():
                assn.update(conditional.sample(self.rng))
        return assn


class GibbsSampler(Sampler):
    """
    Single-site Gibbs sampling.

    Args:
        burnin: Full sweeps discarded before collecting samples
        rng: Random generator or seed
    """

    def __init__(self, burnin: int = 0, rng: RandomLike = None):
        self.burnin = burnin
        self.rng = np.random.default_rng(rng)

    def sample(self, graph: FactorGraph, n: int) -> List[Assignment]:
        """
        Draw ``n`` samples, one per sweep after burn-in.

        Raises:
            InfeasibleModelError: if no assignment has positive probability
        """
        assn = self.initial_assignment(graph)
        if assn is None:
            raise InfeasibleModelError(f"GibbsSampler: could not find feasible assignment for {graph}")
        for _ in range(self.burnin):
            assn = self._one_pass(graph, assn)
        samples = []
        for _ in range(n):
            assn = self._one_pass(graph, assn)
            samples.append(assn)
        return samples

    @staticmethod
    def initial_assignment(graph: FactorGraph) -> Optional[Assignment]:
        """
        Backtracking search for an assignment with nonzero probability.

        Factors are visited in graph order; each extends the partial
        assignment with values that keep it above the feasibility
        threshold. Variables that no factor touches are set to 0.

        Returns:
            The assignment, or None when the model is infeasible
        """
        factors = graph.factors

        def extensions(fi: int, assn: Assignment) -> Iterator[Assignment]:
            factor = factors[fi]
            sliced = factor.slice(assn)
            if not sliced.vars():
                if factor.value(assn) > FEASIBILITY_THRESHOLD:
                    yield assn
                return
            for sub in sliced.assignments():
                if sliced.value(sub) > FEASIBILITY_THRESHOLD:
                    yield Assignment.union(assn, sub)

        found: Optional[Assignment] = Assignment() if not factors else None
        stack = [(0, extensions(0, Assignment()))] if factors else []
        while stack:
            fi, options = stack[-1]
            nxt = next(options, None)
            if nxt is None:
                stack.pop()
                continue
            if fi + 1 == len(factors):
                found = nxt
                break
            stack.append((fi + 1, extensions(fi + 1, nxt)))

        if found is None:
            return None
        for var in graph.variables:
            if var not in found:
                found[var] = 0
        return found

    def _one_pass(self, graph: FactorGraph, initial: Assignment) -> Assignment:
        assn = initial.duplicate()
        for var in graph.variables:
            conditional = self._conditional(graph, var, assn)
            assn[var] = conditional.sample(self.rng)[var]
        return assn

    @staticmethod
    def _conditional(graph: FactorGraph, var: Variable, assn: Assignment) -> TableFactor:
        """p(var | everything else), from the factors that touch ``var``."""
        factors = graph.all_factors_containing(var)
        logs = np.zeros(var.num_outcomes)
        for value in range(var.num_outcomes):
            assn[var] = value
            logs[value] = sum(f.log_value(assn) for f in factors)
        return TableFactor(var, LOGPROB.to_prob(LOGPROB.normalize(logs)))
