"""
grmm/inference/brute_force.py

Inference by building the full joint table.

Exponential in the number of variables; meant for checking other
inferencers on small graphs.
"""

from __future__ import annotations

import logging
from typing import Optional

from grmm.inference.inferencer import AbstractInferencer
from grmm.types.assignment import Assignment
from grmm.types.factor import TableFactor
from grmm.types.factor_graph import FactorGraph
from grmm.types.variable import Variable, VarSet

logger = logging.getLogger(__name__)


class BruteForceInferencer(AbstractInferencer):
    """Multiplies every factor into one normalised joint."""

    _transient = ("_joint",)

    def __init__(self):
        self._joint: Optional[TableFactor] = None

    @staticmethod
    def joint(graph: FactorGraph) -> TableFactor:
        """The normalised joint distribution of ``graph`` over all its variables."""
        return graph.factor_product().normalize()

    def compute_marginals(self, graph: FactorGraph) -> None:
        logger.debug("Brute force joint over %d variables", graph.num_variables())
        self._joint = self.joint(graph)

    def _require_joint(self) -> TableFactor:
        if self._joint is None:
            raise RuntimeError("BruteForceInferencer: call compute_marginals first")
        return self._joint

    def _check_vars(self, varset: VarSet) -> TableFactor:
        joint = self._require_joint()
        for var in varset:
            if var not in joint.vars():
                raise ValueError(f"Variable {var} is not in the current graph")
        return joint

    def lookup_variable_marginal(self, var: Variable) -> TableFactor:
        return self._check_vars(VarSet(var)).marginalize(var).normalize()

    def lookup_clique_marginal(self, varset: VarSet) -> TableFactor:
        return self._check_vars(varset).marginalize(varset).normalize()

    def lookup_log_joint(self, assn: Assignment) -> float:
        return self._require_joint().log_value(assn)

    def best_assignment(self) -> Assignment:
        return self._require_joint().argmax()
