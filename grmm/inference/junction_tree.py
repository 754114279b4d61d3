"""
grmm/inference/junction_tree.py

Junction tree: a tree of cliques with potentials.

Every node is a VarSet (a cluster) carrying a clique potential, and every
edge carries a separator potential over the cluster intersection. After
propagation, clique potentials are clique marginals and

    p(x) = prod_C cpf_C(x_C) / prod_S sepset_S(x_S)

The structure (clusters and edges) can be shared between runs; potentials
belong to one run and are reset with ``clear_cpfs`` or by taking a
``copy_structure``.
"""

from __future__ import annotations

import itertools
import sys
from typing import Dict, Iterable, List, Optional, TextIO, Tuple, Type

from grmm.types.assignment import Assignment
from grmm.types.factor import TableFactor
from grmm.types.tree import Tree
from grmm.types.variable import Variable, VarSet, as_varset


class _Sepset:
    __slots__ = ("vars", "potential")

    def __init__(self, vars_: VarSet, potential: TableFactor):
        self.vars = vars_
        self.potential = potential


class JunctionTree(Tree):
    """
    Tree of clusters with clique and separator potentials.

    Args:
        factor_class: Class of fresh potentials (TableFactor or LogTableFactor)
    """

    def __init__(self, factor_class: Type[TableFactor] = TableFactor):
        super().__init__()
        self.factor_class = factor_class
        self._sepsets: Dict[Tuple[int, int], _Sepset] = {}
        self._cpfs: Dict[VarSet, TableFactor] = {}

    # -- structure ---------------------------------------------------------

    def add(self, node: VarSet) -> None:
        super().add(node)
        self._cpfs[node] = self._new_cpf(node)

    def add_node(self, parent: VarSet, child: VarSet) -> None:
        super().add_node(parent, child)
        self._cpfs[child] = self._new_cpf(child)
        sepset = parent.intersection(child)
        self._sepsets[self._key(parent, child)] = _Sepset(sepset, self._new_sepset_ptl(sepset))

    def _key(self, c1: VarSet, c2: VarSet) -> Tuple[int, int]:
        i1 = self.lookup_index(c1)
        i2 = self.lookup_index(c2)
        return (i1, i2) if i1 < i2 else (i2, i1)

    def _new_cpf(self, cluster: VarSet) -> TableFactor:
        return self.factor_class(cluster)

    def _new_sepset_ptl(self, sepset: VarSet) -> TableFactor:
        if not sepset:
            return self.factor_class.constant(1.0)
        return self.factor_class(sepset)

    @property
    def clusters(self) -> List[VarSet]:
        return self.nodes

    def copy_structure(self) -> "JunctionTree":
        """A tree with the same clusters and edges and fresh potentials."""
        out = JunctionTree(self.factor_class)
        for node in self.preorder():
            parent = self.get_parent(node)
            if parent is None:
                out.add(node)
            else:
                out.add_node(parent, node)
        return out

    def clear_cpfs(self) -> None:
        for cluster in self.nodes:
            self._cpfs[cluster] = self._new_cpf(cluster)
        for sep in self._sepsets.values():
            sep.potential = self._new_sepset_ptl(sep.vars)

    # -- potentials --------------------------------------------------------

    def get_cpf(self, cluster: VarSet) -> TableFactor:
        return self._cpfs[cluster]

    def set_cpf(self, cluster: VarSet, potential: TableFactor) -> None:
        if cluster not in self._cpfs:
            raise ValueError(f"{cluster} is not a cluster of this junction tree")
        self._cpfs[cluster] = potential

    def get_sepset(self, c1: VarSet, c2: VarSet) -> VarSet:
        return self._sepsets[self._key(c1, c2)].vars

    def get_sepset_potential(self, c1: VarSet, c2: VarSet) -> TableFactor:
        return self._sepsets[self._key(c1, c2)].potential

    def set_sepset_potential(self, potential: TableFactor, c1: VarSet, c2: VarSet) -> None:
        self._sepsets[self._key(c1, c2)].potential = potential

    def cluster_potentials(self) -> List[TableFactor]:
        """Numerator terms of the junction tree factorisation."""
        return [self._cpfs[c] for c in self.nodes]

    def sepset_potentials(self) -> List[TableFactor]:
        """Denominator terms of the junction tree factorisation."""
        return [sep.potential for sep in self._sepsets.values()]

    # -- lookup ------------------------------------------------------------

    def find_parent_cluster(self, variables) -> Optional[VarSet]:
        """The lightest cluster containing every variable in ``variables``."""
        varset = as_varset(variables)
        best: Optional[VarSet] = None
        best_weight = None
        for cluster in self.nodes:
            if cluster.issuperset(varset):
                w = cluster.weight()
                if best_weight is None or w < best_weight:
                    best, best_weight = cluster, w
        return best

    def find_cluster(self, variables: Iterable[Variable]) -> Optional[VarSet]:
        """The cluster over exactly ``variables``, if there is one."""
        varset = as_varset(variables)
        return varset if varset in self._cpfs else None

    def lookup_marginal(self, var: Variable) -> TableFactor:
        cluster = self.find_parent_cluster(var)
        if cluster is None:
            raise ValueError(f"No cluster contains {var}")
        return self._cpfs[cluster].marginalize(var)

    def lookup_log_joint(self, assn: Assignment) -> float:
        accum = 0.0
        for cpf in self.cluster_potentials():
            accum += cpf.log_value(assn)
        for ptl in self.sepset_potentials():
            accum -= ptl.log_value(assn)
        return accum

    def normalize_all(self) -> None:
        """Normalise every clique and separator potential in place."""
        for cpf in self.cluster_potentials():
            cpf.normalize()
        for ptl in self.sepset_potentials():
            ptl.normalize()

    def is_nan(self) -> bool:
        return any(p.is_nan() for p in self.cluster_potentials()) or any(
            p.is_nan() for p in self.sepset_potentials()
        )

    def entropy(self) -> float:
        """Entropy of the distribution the normalised tree represents."""
        h = sum(p.entropy() for p in self.cluster_potentials())
        h -= sum(p.entropy() for p in self.sepset_potentials())
        return h

    def satisfies_running_intersection(self) -> bool:
        """True when every shared variable of two clusters is in all clusters between them."""
        for c1, c2 in itertools.combinations(self.nodes, 2):
            shared = c1.intersection(c2)
            if not shared:
                continue
            for cluster in self.path(c1, c2):
                if not cluster.issuperset(shared):
                    return False
        return True

    def dump(self, out: Optional[TextIO] = None) -> None:
        out = out if out is not None else sys.stdout
        out.write(self.dump_to_string() + "\n")
        out.write("Vertex CPFs\n")
        for i, cpf in enumerate(self.cluster_potentials()):
            out.write(f"CPF {i} {cpf.dump_to_string()}\n")
        out.write("sepset CPFs\n")
        for ptl in self.sepset_potentials():
            out.write(ptl.dump_to_string() + "\n")
        out.write("/End JT\n")

    def __repr__(self) -> str:
        return f"JunctionTree({' '.join(map(str, self.nodes))})"
