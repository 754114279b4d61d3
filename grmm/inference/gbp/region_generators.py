"""
grmm/inference/gbp/region_generators.py

Ways of building a region graph for a factor graph.

BPRegionGenerator gives one region per factor scope over single-variable
regions, which makes parent-child GBP the same as loopy BP.
Kikuchi4SquareRegionGenerator uses the squares of an UndirectedGrid.
ClusterVariationalRegionGenerator starts from base regions and keeps
adding their intersections, level by level, until none are left.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

from grmm.inference.gbp.region_graph import Region, RegionGraph
from grmm.models.grid import UndirectedGrid
from grmm.types.factor_graph import FactorGraph
from grmm.types.variable import VarSet

logger = logging.getLogger(__name__)


class RegionGraphGenerator(ABC):
    """Builds the region graph that GBP runs on."""

    @abstractmethod
    def construct_region_graph(self, graph: FactorGraph) -> RegionGraph:
        ...


def _assign_factors(rg: RegionGraph, graph: FactorGraph) -> None:
    """Put every factor in the smallest region containing its variables."""
    for factor in graph.factors:
        if not len(factor.vars()):
            continue
        region = rg.find_region(factor.vars())
        if region is None:
            region = rg.find_containing_region(factor.vars())
        if region is None:
            raise ValueError(f"No region contains the factor over {factor.vars()}")
        region.add_factor(factor)


class BPRegionGenerator(RegionGraphGenerator):
    """Bethe regions: factor scopes above single variables."""

    def construct_region_graph(self, graph: FactorGraph) -> RegionGraph:
        rg = RegionGraph()
        for var in graph.variables:
            rg.find_region([var], create=True)
        for varset in graph.var_sets():
            if len(varset) < 2:
                continue
            region = rg.find_region(varset, create=True)
            for var in varset:
                rg.add(region, rg.find_region([var]))
        _assign_factors(rg, graph)
        rg.compute_inference_caches()
        logger.debug("BPRegionGenerator: %d regions, %d edges", len(rg), rg.num_edges())
        return rg


class Kikuchi4SquareRegionGenerator(RegionGraphGenerator):
    """
    Kikuchi regions of a grid: every 2x2 square, the lattice edges below
    it, and the variables below those.

    Only works on an UndirectedGrid with at least two rows and two columns.
    """

    def construct_region_graph(self, graph: FactorGraph) -> RegionGraph:
        if not isinstance(graph, UndirectedGrid):
            raise ValueError("Kikuchi4SquareRegionGenerator requires an UndirectedGrid")
        if graph.width < 2 or graph.height < 2:
            raise ValueError(f"Grid {graph.width}x{graph.height} has no squares")

        rg = RegionGraph()
        for x in range(graph.width - 1):
            for y in range(graph.height - 1):
                corners = [graph.get(x, y), graph.get(x + 1, y), graph.get(x + 1, y + 1), graph.get(x, y + 1)]
                square = rg.add_region(Region(corners))
                for i in range(4):
                    v1, v2 = corners[i], corners[(i + 1) % 4]
                    edge = rg.find_region([v1, v2], create=True)
                    rg.add(square, edge)
                    rg.add(edge, rg.find_region([v1], create=True))
                    rg.add(edge, rg.find_region([v2], create=True))

        _assign_factors(rg, graph)
        rg.compute_inference_caches()
        logger.debug("Kikuchi4SquareRegionGenerator: %d regions, %d edges", len(rg), rg.num_edges())
        return rg


# Base regions for the cluster variation method


class BaseRegionComputer(ABC):
    """Top-level regions for ClusterVariationalRegionGenerator. No region may contain another."""

    @abstractmethod
    def compute_base_regions(self, graph: FactorGraph) -> List[Region]:
        ...


def remove_subsumed_regions(regions: Sequence[Region]) -> List[Region]:
    """
    Drop every region whose variables are contained in another region.

    Of several regions over the same variables only the last is kept.
    """
    kept: List[Region] = []
    for i, region in enumerate(regions):
        others = kept + list(regions[i + 1:])
        if not any(len(o.vars) >= len(region.vars) and o.vars.issuperset(region.vars) for o in others):
            kept.append(region)
    return kept


def add_all_factors(graph: FactorGraph, regions: Sequence[Region]) -> None:
    """Add to each region every factor of ``graph`` that fits inside it."""
    for region in regions:
        for factor in graph.factors:
            if len(factor.vars()) and region.vars.issuperset(factor.vars()):
                region.add_factor(factor)


class ByFactorRegionComputer(BaseRegionComputer):
    """
    One base region per maximal factor scope. On a pairwise model this
    gives the Bethe approximation.

    Variables outside every factor get a region of their own.
    """

    def compute_base_regions(self, graph: FactorGraph) -> List[Region]:
        regions = [Region(varset) for varset in graph.var_sets() if len(varset)]
        covered = set()
        for varset in graph.var_sets():
            covered.update(varset)
        regions.extend(Region([v]) for v in graph.variables if v not in covered)
        regions = remove_subsumed_regions(regions)
        add_all_factors(graph, regions)
        return regions


class Grid2x2RegionComputer(BaseRegionComputer):
    """Every 2x2 square of an UndirectedGrid."""

    def compute_base_regions(self, graph: FactorGraph) -> List[Region]:
        if not isinstance(graph, UndirectedGrid):
            raise ValueError("Grid2x2RegionComputer requires an UndirectedGrid")
        regions = []
        for x in range(graph.width - 1):
            for y in range(graph.height - 1):
                regions.append(
                    Region([graph.get(x, y), graph.get(x, y + 1), graph.get(x + 1, y + 1), graph.get(x + 1, y)])
                )
        add_all_factors(graph, regions)
        return regions


def _any_subsumes(regions: Sequence[Region], varset: VarSet) -> bool:
    return any(r.vars.issuperset(varset) for r in regions)


class ClusterVariationalRegionGenerator(RegionGraphGenerator):
    """
    Region graph of the cluster variation method.

    Args:
        region_computer: Source of the base regions; ByFactorRegionComputer
            when omitted
    """

    def __init__(self, region_computer: Optional[BaseRegionComputer] = None):
        self.region_computer = region_computer if region_computer is not None else ByFactorRegionComputer()

    def construct_region_graph(self, graph: FactorGraph) -> RegionGraph:
        rg = RegionGraph()
        level = self.region_computer.compute_base_regions(graph)
        for region in level:
            rg.add_region(region)

        depth = 0
        while level:
            overlaps = self._compute_overlaps(level)
            logger.debug("Cluster variation depth %d: %d regions, %d overlaps", depth, len(level), len(overlaps))
            for parent in level:
                for child in overlaps:
                    if parent.vars.issuperset(child.vars):
                        rg.add(parent, child)
            level = overlaps
            depth += 1

        for factor in graph.factors:
            if len(factor.vars()) and rg.find_containing_region(factor.vars()) is None:
                raise ValueError(f"No base region contains the factor over {factor.vars()}")

        rg.compute_inference_caches()
        logger.info("ClusterVariationalRegionGenerator: %d regions, %d edges", len(rg), rg.num_edges())
        return rg

    @staticmethod
    def _compute_overlaps(regions: Sequence[Region]) -> List[Region]:
        overlaps: List[Region] = []
        for r1 in regions:
            for r2 in regions:
                if r1 is r2:
                    continue
                common = r1.vars.intersection(r2.vars)
                if len(common) and not _any_subsumes(overlaps, common):
                    shared = [f for f in r1.factors if f in r2.factors]
                    overlaps.append(Region(common, shared))

        # A smaller overlap found first can still be inside a later one.
        return [r for i, r in enumerate(overlaps) if not _any_subsumes(overlaps[i + 1:], r.vars)]
