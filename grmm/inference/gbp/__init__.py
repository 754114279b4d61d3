"""
Generalized belief propagation: region graphs, region generators and
parent-to-child message passing.
"""

from grmm.inference.gbp.region_graph import Region, RegionEdge, RegionGraph
from grmm.inference.gbp.region_generators import (
    RegionGraphGenerator,
    BPRegionGenerator,
    Kikuchi4SquareRegionGenerator,
    ClusterVariationalRegionGenerator,
    BaseRegionComputer,
    ByFactorRegionComputer,
    Grid2x2RegionComputer,
    remove_subsumed_regions,
    add_all_factors,
)
from grmm.inference.gbp.parent_child_gbp import ParentChildGBP

__all__ = [
    "Region",
    "RegionEdge",
    "RegionGraph",
    "RegionGraphGenerator",
    "BPRegionGenerator",
    "Kikuchi4SquareRegionGenerator",
    "ClusterVariationalRegionGenerator",
    "BaseRegionComputer",
    "ByFactorRegionComputer",
    "Grid2x2RegionComputer",
    "remove_subsumed_regions",
    "add_all_factors",
    "ParentChildGBP",
]
