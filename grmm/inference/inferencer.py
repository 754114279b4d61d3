"""
grmm/inference/inferencer.py

Common interface of all inference engines.

An inferencer is used in two steps: ``compute_marginals(graph)`` runs the
algorithm and keeps per-call state; ``lookup_marginal`` and
``lookup_joint`` then read results from that state. Inferencers are not
reentrant. Use ``duplicate()`` to get an independent engine with the same
configuration.
"""

from __future__ import annotations

import copy
import logging
import math
import sys
from abc import ABC, abstractmethod
from typing import Iterable, Optional, TextIO, Tuple, Union

from grmm.types.assignment import Assignment
from grmm.types.evidence import with_evidence
from grmm.types.factor import TableFactor
from grmm.types.factor_graph import FactorGraph
from grmm.types.variable import Variable, VarSet, as_varset

logger = logging.getLogger(__name__)

MarginalQuery = Union[Variable, VarSet, Iterable[Variable]]


class Inferencer(ABC):
    """Interface for algorithms that compute marginals of a factor graph."""

    @abstractmethod
    def compute_marginals(self, graph: FactorGraph) -> None:
        """Run inference on ``graph``; results are read with the lookup methods."""

    @abstractmethod
    def lookup_marginal(self, query: MarginalQuery) -> TableFactor:
        """Marginal of a variable or of a clique of variables."""

    @abstractmethod
    def lookup_joint(self, assn: Assignment) -> float:
        """Joint probability of a full assignment, from the factorised beliefs."""

    @abstractmethod
    def lookup_log_joint(self, assn: Assignment) -> float:
        """Natural log of ``lookup_joint``, computed without underflow."""

    @abstractmethod
    def query(self, graph: FactorGraph, assn: Assignment) -> float:
        """Marginal probability of a partial assignment."""

    @abstractmethod
    def duplicate(self) -> "Inferencer":
        """An independent inferencer with the same configuration."""

    @abstractmethod
    def dump(self, out: Optional[TextIO] = None) -> None:
        """Write the current inference state for debugging."""

    @abstractmethod
    def report_time(self) -> None:
        """Log how much work the last calls took."""


class AbstractInferencer(Inferencer):
    """
    Defaults shared by the concrete inferencers.

    Subclasses implement ``compute_marginals``, ``lookup_variable_marginal``,
    ``lookup_clique_marginal`` and ``lookup_log_joint``.
    """

    def lookup_marginal(self, query: MarginalQuery) -> TableFactor:
        if isinstance(query, Variable):
            return self.lookup_variable_marginal(query)
        varset = as_varset(query)
        if len(varset) == 1:
            return self.lookup_variable_marginal(varset[0])
        return self.lookup_clique_marginal(varset)

    @abstractmethod
    def lookup_variable_marginal(self, var: Variable) -> TableFactor:
        ...

    @abstractmethod
    def lookup_clique_marginal(self, varset: VarSet) -> TableFactor:
        ...

    def lookup_joint(self, assn: Assignment) -> float:
        return math.exp(self.lookup_log_joint(assn))

    def query(self, graph: FactorGraph, assn: Assignment) -> float:
        """
        Marginal probability of ``assn`` by the chain rule.

        P(a1, ..., ak) = P(a1) P(a2 | a1) ... P(ak | a1..ak-1). Each factor
        of the product is one inference run on ``graph`` conditioned on the
        variables already handled. The runs use a duplicate of this
        inferencer, so its own state is left alone.
        """
        inf = self.duplicate()
        prob = 1.0
        evidence = Assignment()
        for var in assn:
            conditioned = with_evidence(graph, evidence) if evidence else graph
            inf.compute_marginals(conditioned)
            marg = inf.lookup_marginal(var)
            p = marg.value(assn.restriction([var]))
            logger.debug("query: P(%s=%d | %s) = %g", var, assn[var], evidence, p)
            prob *= p
            if prob == 0.0:
                return 0.0
            evidence[var] = assn[var]
        return prob

    # Per-call attributes that a duplicate starts without.
    _transient: Tuple[str, ...] = ()

    def duplicate(self) -> "AbstractInferencer":
        state = {k: v for k, v in self.__dict__.items() if k not in self._transient}
        dup = self.__class__.__new__(self.__class__)
        dup.__dict__.update(copy.deepcopy(state))
        for name in self._transient:
            setattr(dup, name, None)
        return dup

    def dump(self, out: Optional[TextIO] = None) -> None:
        out = out if out is not None else sys.stdout
        out.write(f"{type(self).__name__}\n")

    def report_time(self) -> None:
        logger.info("%s: no timing information", type(self).__name__)

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"
