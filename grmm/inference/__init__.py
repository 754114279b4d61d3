"""
Inference module: belief propagation, generalized BP, junction trees, exact baselines
and samplers.
"""

from grmm.inference.inferencer import Inferencer, AbstractInferencer
from grmm.inference.telemetry import MessageCounter
from grmm.inference.messages import MessageArray, create_empty_msg
from grmm.inference.strategies import (
    MessageStrategy,
    SumProductMessageStrategy,
    MaxProductMessageStrategy,
)
from grmm.inference.belief_propagation import AbstractBeliefPropagation, DEFAULT_THRESHOLD
from grmm.inference.residual_bp import ResidualBP
from grmm.inference.tree_bp import TreeBP
from grmm.inference.trp import (
    TRP,
    TreeFactory,
    AlmostRandomTreeFactory,
    TreeListFactory,
    TerminationCondition,
    IterationTerminator,
    ConvergenceTerminator,
    DefaultConvergenceTerminator,
)
from grmm.inference.junction_tree import JunctionTree
from grmm.inference.triangulation import triangulate, build_junction_tree_structure
from grmm.inference.junction_tree_propagation import (
    CliqueMessageStrategy,
    SumProductCliqueStrategy,
    MaxProductCliqueStrategy,
    JunctionTreePropagation,
)
from grmm.inference.junction_tree_inferencer import JunctionTreeInferencer
from grmm.inference.variable_elimination import VariableElimination
from grmm.inference.brute_force import BruteForceInferencer
from grmm.inference.sampling import Sampler, ExactSampler, GibbsSampler
from grmm.inference.gbp import (
    ParentChildGBP,
    RegionGraph,
    BPRegionGenerator,
    Kikuchi4SquareRegionGenerator,
    ClusterVariationalRegionGenerator,
)

__all__ = [
    "Inferencer",
    "AbstractInferencer",
    "MessageCounter",
    "MessageArray",
    "create_empty_msg",
    "MessageStrategy",
    "SumProductMessageStrategy",
    "MaxProductMessageStrategy",
    "AbstractBeliefPropagation",
    "DEFAULT_THRESHOLD",
    "ResidualBP",
    "TreeBP",
    "TRP",
    "TreeFactory",
    "AlmostRandomTreeFactory",
    "TreeListFactory",
    "TerminationCondition",
    "IterationTerminator",
    "ConvergenceTerminator",
    "DefaultConvergenceTerminator",
    "JunctionTree",
    "triangulate",
    "build_junction_tree_structure",
    "CliqueMessageStrategy",
    "SumProductCliqueStrategy",
    "MaxProductCliqueStrategy",
    "JunctionTreePropagation",
    "JunctionTreeInferencer",
    "VariableElimination",
    "BruteForceInferencer",
    "Sampler",
    "ExactSampler",
    "GibbsSampler",
    "ParentChildGBP",
    "RegionGraph",
    "BPRegionGenerator",
    "Kikuchi4SquareRegionGenerator",
    "ClusterVariationalRegionGenerator",
]
