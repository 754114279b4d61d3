"""
grmm/inference/gbp/region_graph.py

Region graphs for generalized belief propagation.

A region is a set of variables together with factors over subsets of
them. Edges run from a parent region to a child region whose variables
are a subset of the parent's. After all edges are added,
``compute_inference_caches`` derives what parent-to-child message
passing needs: descendant sets, the upward closure of factors, counting
numbers, and for every edge the messages entering its update.
"""

from __future__ import annotations

from typing import Dict, Iterable, Iterator, List, Optional, Set, Tuple

import networkx as nx

from grmm.types.factor import TableFactor
from grmm.types.variable import VarSet, as_varset


class Region:
    """
    A cluster of variables and the factors assigned to it.

    Args:
        variables: Variables of the region
        factors: Factors whose variables all belong to the region
    """

    def __init__(self, variables, factors: Iterable[TableFactor] = ()):
        self.vars: VarSet = as_varset(variables)
        self.factors: List[TableFactor] = []
        for factor in factors:
            self.add_factor(factor)

        self.parents: List[Region] = []
        self.children: List[Region] = []
        self.descendants: Set[Region] = set()
        self.counting_number = 1
        self.index = -1

    def add_factor(self, factor: TableFactor) -> None:
        if not factor.vars().issubset(self.vars):
            raise ValueError(f"Factor over {factor.vars()} does not fit in region {self.vars}")
        if factor not in self.factors:
            self.factors.append(factor)

    def is_root(self) -> bool:
        return not self.parents

    def __repr__(self) -> str:
        return f"Region{self.vars}"


class RegionEdge:
    """
    A parent -> child link and the bookkeeping for its message.

    ``factors_to_send`` are the parent's factors the child lacks.
    ``neighboring_parents`` are the edges whose messages multiply into the
    update: they enter the parent's region family from outside it, at a
    region outside the child's family. ``looping_messages`` are the edges
    whose messages divide out of it: they leave the parent's family minus
    the child's, and enter the child's family.
    """

    def __init__(self, parent: Region, child: Region):
        self.parent = parent
        self.child = child
        self.factors_to_send: List[TableFactor] = []
        self.neighboring_parents: List[RegionEdge] = []
        self.looping_messages: List[RegionEdge] = []

    @property
    def key(self) -> Tuple[int, int]:
        return (self.parent.index, self.child.index)

    def __repr__(self) -> str:
        return f"RegionEdge({self.parent} --> {self.child})"


class RegionGraph:
    """Directed acyclic graph of regions."""

    def __init__(self):
        self.regions: List[Region] = []
        self.edges: List[RegionEdge] = []
        self._edge_index: Dict[Tuple[int, int], RegionEdge] = {}
        self._by_vars: Dict[VarSet, Region] = {}

    # -- construction ------------------------------------------------------

    def add_region(self, region: Region) -> Region:
        if region.index >= 0:
            if region.index < len(self.regions) and self.regions[region.index] is region:
                return region
            raise ValueError(f"Region {region} has already been added to a different region graph")
        region.index = len(self.regions)
        self.regions.append(region)
        self._by_vars.setdefault(region.vars, region)
        return region

    def add(self, parent: Region, child: Region) -> None:
        """Link ``parent`` to ``child``, adding either region if needed."""
        if not child.vars.issubset(parent.vars):
            raise ValueError(f"Child {child} is not contained in parent {parent}")
        if parent is child:
            raise ValueError(f"Region {parent} cannot be its own child")
        self.add_region(parent)
        self.add_region(child)
        if self.is_connected(parent, child):
            return
        parent.children.append(child)
        child.parents.append(parent)
        edge = RegionEdge(parent, child)
        self.edges.append(edge)
        self._edge_index[edge.key] = edge

    def is_connected(self, parent: Region, child: Region) -> bool:
        return (parent.index, child.index) in self._edge_index

    def find_edge(self, parent: Region, child: Region) -> Optional[RegionEdge]:
        return self._edge_index.get((parent.index, child.index))

    def find_region(self, variables, create: bool = False) -> Optional[Region]:
        """
        The region over exactly ``variables``.

        When none exists and ``create`` is set, a new empty region is added.
        """
        varset = as_varset(variables)
        region = self._by_vars.get(varset)
        if region is None and create:
            region = self.add_region(Region(varset))
        return region

    def find_containing_region(self, variables) -> Optional[Region]:
        """Smallest region holding every variable of ``variables``; None if there is none."""
        varset = as_varset(variables)
        best = None
        for region in self.regions:
            if region.vars.issuperset(varset):
                if best is None or len(region.vars) < len(best.vars):
                    best = region
        return best

    # -- accessors ---------------------------------------------------------

    def __len__(self) -> int:
        return len(self.regions)

    def __iter__(self) -> Iterator[Region]:
        return iter(self.regions)

    def __contains__(self, region: object) -> bool:
        if not isinstance(region, Region) or not 0 <= region.index < len(self.regions):
            return False
        return self.regions[region.index] is region

    def num_edges(self) -> int:
        return len(self.edges)

    def to_networkx(self) -> nx.DiGraph:
        """Directed graph over region indices, parent -> child."""
        g = nx.DiGraph()
        g.add_nodes_from(r.index for r in self.regions)
        g.add_edges_from(e.key for e in self.edges)
        return g

    def topological_order(self) -> List[Region]:
        """Regions with every parent before its children."""
        try:
            return [self.regions[i] for i in nx.topological_sort(self.to_networkx())]
        except nx.NetworkXUnfeasible:
            raise ValueError("Region graph has a directed cycle") from None

    def ancestors(self, region: Region) -> List[Region]:
        return [r for r in self.regions if region in r.descendants]

    # -- inference caches --------------------------------------------------

    def compute_inference_caches(self) -> None:
        order = self.topological_order()
        self._compute_descendants(order)
        self._include_descendant_factors(order)
        self._compute_counting_numbers(order)
        self._compute_edge_messages()

    @staticmethod
    def _compute_descendants(order: List[Region]) -> None:
        for region in reversed(order):
            descendants: Set[Region] = set()
            for child in region.children:
                descendants.add(child)
                descendants.update(child.descendants)
            region.descendants = descendants

    @staticmethod
    def _include_descendant_factors(order: List[Region]) -> None:
        # Children come later in ``order``, so their closure is complete first.
        for region in reversed(order):
            for child in region.children:
                for factor in child.factors:
                    region.add_factor(factor)

    def _compute_counting_numbers(self, order: List[Region]) -> None:
        # c(R) = 1 - sum of c over all ancestors of R
        for region in order:
            region.counting_number = 1 - sum(a.counting_number for a in self.ancestors(region))

    def _compute_edge_messages(self) -> None:
        for edge in self.edges:
            parent, child = edge.parent, edge.child
            parent_family = {parent} | parent.descendants
            child_family = {child} | child.descendants
            between = parent_family - child_family

            edge.factors_to_send = [f for f in parent.factors if f not in child.factors]
            edge.neighboring_parents = [
                e for e in self.edges if e.child in between and e.parent not in parent_family
            ]
            edge.looping_messages = [
                e for e in self.edges if e is not edge and e.child in child_family and e.parent in between
            ]

    def dump_to_string(self) -> str:
        lines = ["REGION GRAPH", "Regions:"]
        for region in self.regions:
            lines.append(f"    {region}  c={region.counting_number}  factors={len(region.factors)}")
        lines.append("Edges:")
        for edge in self.edges:
            lines.append(f"    {edge.parent} --> {edge.child}")
        return "\n".join(lines)

    def __repr__(self) -> str:
        return f"RegionGraph(regions={len(self.regions)}, edges={len(self.edges)})"
