"""
grmm/types/tree.py

Rooted forests with work-list traversals.

Nodes are arbitrary hashable objects (variables, factors, VarSets). Each
node is numbered in insertion order. Traversals use explicit stacks, so
tree depth never touches the interpreter's recursion limit.
"""

from __future__ import annotations

from collections import deque
from typing import Dict, Hashable, Iterator, List, Optional, Tuple

import networkx as nx


class Tree:
    """
    A forest of rooted trees.

    ``add(node)`` starts a new tree; ``add_node(parent, child)`` hangs a
    child below an existing node.
    """

    def __init__(self):
        self._parent: Dict[Hashable, Optional[Hashable]] = {}
        self._children: Dict[Hashable, List[Hashable]] = {}
        self._nodes: List[Hashable] = []
        self._index: Dict[Hashable, int] = {}
        self._roots: List[Hashable] = []

    def _register(self, node: Hashable, parent: Optional[Hashable]) -> None:
        if node in self._index:
            raise ValueError(f"Node {node!r} already in tree")
        self._index[node] = len(self._nodes)
        self._nodes.append(node)
        self._parent[node] = parent
        self._children[node] = []

    def add(self, node: Hashable) -> None:
        """Add ``node`` as the root of a new tree in the forest."""
        self._register(node, None)
        self._roots.append(node)

    def add_node(self, parent: Hashable, child: Hashable) -> None:
        if parent not in self._index:
            raise ValueError(f"Parent {parent!r} not in tree")
        self._register(child, parent)
        self._children[parent].append(child)

    def __contains__(self, node: object) -> bool:
        return node in self._index

    def __len__(self) -> int:
        return len(self._nodes)

    @property
    def nodes(self) -> List[Hashable]:
        return list(self._nodes)

    @property
    def roots(self) -> List[Hashable]:
        return list(self._roots)

    def get_root(self) -> Hashable:
        if not self._roots:
            raise ValueError("Empty tree has no root")
        return self._roots[0]

    def get_parent(self, node: Hashable) -> Optional[Hashable]:
        return self._parent[node]

    def get_children(self, node: Hashable) -> List[Hashable]:
        return list(self._children[node])

    def is_leaf(self, node: Hashable) -> bool:
        return not self._children[node]

    def lookup_index(self, node: Hashable) -> int:
        return self._index[node]

    def lookup_vertex(self, i: int) -> Hashable:
        return self._nodes[i]

    def edges(self) -> List[Tuple[Hashable, Hashable]]:
        """(parent, child) pairs in insertion order of the child."""
        return [(self._parent[n], n) for n in self._nodes if self._parent[n] is not None]

    def preorder(self) -> Iterator[Hashable]:
        """Every node after its parent."""
        stack = list(reversed(self._roots))
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(self._children[node]))

    def postorder(self) -> Iterator[Hashable]:
        """Every node after all of its children."""
        order = list(self.preorder())
        return reversed(order)

    def path(self, u: Hashable, v: Hashable) -> List[Hashable]:
        """Nodes on the tree path from ``u`` to ``v``, both included."""
        ancestors_u = self._ancestors(u)
        pos = {n: i for i, n in enumerate(ancestors_u)}
        down: List[Hashable] = []
        node: Optional[Hashable] = v
        while node is not None and node not in pos:
            down.append(node)
            node = self._parent[node]
        if node is None:
            raise ValueError(f"{u!r} and {v!r} are in different trees")
        return ancestors_u[: pos[node] + 1] + list(reversed(down))

    def _ancestors(self, node: Hashable) -> List[Hashable]:
        out = []
        cur: Optional[Hashable] = node
        while cur is not None:
            out.append(cur)
            cur = self._parent[cur]
        return out

    def to_networkx(self) -> nx.Graph:
        g = nx.Graph()
        g.add_nodes_from(self._nodes)
        g.add_edges_from(self.edges())
        return g

    @classmethod
    def from_graph(cls, graph: nx.Graph, root: Optional[Hashable] = None, **kwargs) -> "Tree":
        """
        Root an acyclic networkx graph.

        Components are rooted breadth-first, at ``root`` for its own
        component and at the first node otherwise. Extra keyword arguments go
        to the constructor.

        Raises:
            ValueError: if ``graph`` has a cycle
        """
        if graph.number_of_nodes() and not nx.is_forest(graph):
            raise ValueError("Graph has cycles; cannot build a tree")
        tree = cls(**kwargs)
        starts = list(graph.nodes)
        if root is not None:
            starts.remove(root)
            starts.insert(0, root)
        for start in starts:
            if start in tree:
                continue
            tree.add(start)
            queue = deque([start])
            while queue:
                u = queue.popleft()
                for w in graph.neighbors(u):
                    if w not in tree:
                        tree.add_node(u, w)
                        queue.append(w)
        return tree

    def dump_to_string(self) -> str:
        lines = []
        stack = [(r, 0) for r in reversed(self._roots)]
        while stack:
            node, depth = stack.pop()
            lines.append("  " * depth + str(node))
            stack.extend((c, depth + 1) for c in reversed(self._children[node]))
        return "\n".join(lines)

    def __repr__(self) -> str:
        return f"Tree({len(self._nodes)} nodes, {len(self._roots)} roots)"
