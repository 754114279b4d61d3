"""
grmm/inference/triangulation.py

Triangulation and clique-tree construction for junction trees.

Triangulation eliminates variables one at a time from the Markov network,
greedily choosing the variable whose elimination adds the fewest fill-in
edges, and on ties the one with the lightest elimination clique. Each
elimination clique is recorded unless an earlier one already contains
it. The recorded cliques are then joined into a tree by adding clique
pairs in order of decreasing separator size, skipping pairs that would
close a cycle.
"""

from __future__ import annotations

import itertools
import logging
from typing import List, Sequence, Tuple, Type

import networkx as nx
from networkx.utils import UnionFind

from grmm.inference.junction_tree import JunctionTree
from grmm.types.factor import TableFactor
from grmm.types.variable import Variable, VarSet

logger = logging.getLogger(__name__)


def new_edges_required(graph: nx.Graph, v: Variable) -> int:
    """Number of fill-in edges that eliminating ``v`` would add."""
    count = 0
    for n1, n2 in itertools.combinations(list(graph.neighbors(v)), 2):
        if not graph.has_edge(n1, n2):
            count += 1
    return count


def elimination_weight(graph: nx.Graph, v: Variable) -> int:
    """Product of the outcome counts of ``v``'s neighbours."""
    weight = 1
    for n in graph.neighbors(v):
        weight *= n.num_outcomes
    return weight


def pick_vertex_to_remove(graph: nx.Graph, candidates: Sequence[Variable]) -> Variable:
    """Min-fill choice with min-weight tie-break; earlier candidates win exact ties."""
    best = candidates[0]
    best_key = (new_edges_required(graph, best), elimination_weight(graph, best))
    for v in candidates[1:]:
        fill = new_edges_required(graph, v)
        if fill > best_key[0]:
            continue
        key = (fill, elimination_weight(graph, v))
        if key < best_key:
            best, best_key = v, key
    return best


def triangulate(graph: nx.Graph) -> Tuple[List[VarSet], nx.Graph]:
    """
    Triangulate a Markov network by greedy elimination.

    Args:
        graph: Undirected graph over variables; it is not modified

    Returns:
        (cliques, filled) where cliques are the maximal elimination
        cliques in elimination order and filled is ``graph`` plus all
        fill-in edges, which is chordal
    """
    work = graph.copy()
    filled = graph.copy()
    remaining = list(graph.nodes)
    cliques: List[VarSet] = []

    while remaining:
        v = pick_vertex_to_remove(work, remaining)
        neighbors = list(work.neighbors(v))
        clique = VarSet(neighbors + [v])
        if not any(c.issuperset(clique) for c in cliques):
            cliques.append(clique)
            logger.debug("Elim clique %s size %d weight %d", clique, len(clique), clique.weight())
        for n1, n2 in itertools.combinations(neighbors, 2):
            if not work.has_edge(n1, n2):
                work.add_edge(n1, n2)
                filled.add_edge(n1, n2)
        work.remove_node(v)
        remaining.remove(v)

    if cliques:
        sizes = [len(c) for c in cliques]
        weights = [c.weight() for c in cliques]
        logger.info(
            "Triangulation created %d cliques. Size: avg %.2f max %d Weight: avg %.2f max %d",
            len(cliques),
            sum(sizes) / len(cliques),
            max(sizes),
            sum(weights) / len(cliques),
            max(weights),
        )
    return cliques, filled


def build_junction_tree_structure(
    cliques: Sequence[VarSet], factor_class: Type[TableFactor] = TableFactor
) -> JunctionTree:
    """
    Join cliques into a junction tree.

    Clique pairs are ranked by separator size (largest first), then by the
    sum of the two clique weights (smallest first), then by position.
    Pairs are added greedily unless they would close a cycle, until the
    tree spans every clique. Cliques with nothing in common are still
    joined, through an empty separator.
    """
    n = len(cliques)
    pairs = []
    for i in range(n):
        for j in range(i):
            ci, cj = cliques[i], cliques[j]
            pairs.append((-len(ci.intersection(cj)), ci.weight() + cj.weight(), i, j))
    pairs.sort()

    g = nx.Graph()
    g.add_nodes_from(cliques)
    uf = UnionFind(range(n))
    added = 0
    for _, _, i, j in pairs:
        if added >= n - 1:
            break
        if uf[i] != uf[j]:
            uf.union(i, j)
            g.add_edge(cliques[i], cliques[j])
            added += 1

    jt = JunctionTree.from_graph(g, factor_class=factor_class) if n else JunctionTree(factor_class)
    logger.debug("jt structure was %s", jt)
    return jt
