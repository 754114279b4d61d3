"""
GRMM: Graphical Models inference core

Approximate and exact inference over discrete factor graphs.

Key components:
- types: Variables, assignments, table factors, factor graphs, trees
- models: Grid graphs and random model generators
- inference: Loopy, tree and tree-reweighted belief propagation,
  junction trees, generalized BP on region graphs, variable
  elimination, brute force and samplers
"""

__version__ = "1.0.0"
__author__ = "GRMM Team"

from grmm.exceptions import (
    InferenceError,
    UnsupportedQueryError,
    NotATreeError,
    InfeasibleModelError,
)
from grmm.types import (
    Variable,
    VarSet,
    Assignment,
    TableFactor,
    LogTableFactor,
    FactorGraph,
    Tree,
)
from grmm.inference import (
    Inferencer,
    MessageCounter,
    SumProductMessageStrategy,
    MaxProductMessageStrategy,
    ResidualBP,
    TreeBP,
    TRP,
    JunctionTreeInferencer,
    VariableElimination,
    BruteForceInferencer,
    ExactSampler,
    GibbsSampler,
    ParentChildGBP,
)

__all__ = [
    # Errors
    "InferenceError",
    "UnsupportedQueryError",
    "NotATreeError",
    "InfeasibleModelError",
    # Types
    "Variable",
    "VarSet",
    "Assignment",
    "TableFactor",
    "LogTableFactor",
    "FactorGraph",
    "Tree",
    # Inference
    "Inferencer",
    "MessageCounter",
    "SumProductMessageStrategy",
    "MaxProductMessageStrategy",
    "ResidualBP",
    "TreeBP",
    "TRP",
    "JunctionTreeInferencer",
    "VariableElimination",
    "BruteForceInferencer",
    "ExactSampler",
    "GibbsSampler",
    "ParentChildGBP",
]
