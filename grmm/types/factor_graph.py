"""
grmm/types/factor_graph.py

Factor graph over discrete variables.

A factor graph consists of:
- Variables, indexed in insertion order
- Factors, indexed in insertion order, each over a VarSet
- Variable-to-factor incidence

The graph also carries a small cache that inference engines use to keep
structures (built junction trees, converged messages) between calls.
Entries are keyed by explicit string tags, and any change to the graph's
topology clears the cache.
"""

from __future__ import annotations

import itertools
import logging
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Union

import networkx as nx
import numpy as np
from scipy.sparse import coo_matrix
from scipy.sparse.csgraph import connected_components

from grmm.types.assignment import Assignment
from grmm.types.factor import LogTableFactor, TableFactor
from grmm.types.variable import Variable, VarSet, as_varset

logger = logging.getLogger(__name__)


class FactorGraph:
    """
    A product of factors over a set of variables.

    Variables referenced by an added factor are added to the graph
    automatically.
    """

    def __init__(self, variables: Iterable[Variable] = ()):
        self._variables: List[Variable] = []
        self._var_index: Dict[Variable, int] = {}
        self._factors: List[TableFactor] = []
        self._factor_index: Dict[TableFactor, int] = {}
        self._var_to_factors: Dict[Variable, List[TableFactor]] = {}
        self._cache: Dict[str, Any] = {}
        for v in variables:
            self.add_variable(v)

    # -- construction ------------------------------------------------------

    def add_variable(self, var: Variable) -> None:
        """Add a variable; adding one twice is a no-op."""
        if var in self._var_index:
            return
        self._var_index[var] = len(self._variables)
        self._variables.append(var)
        self._var_to_factors[var] = []
        self.clear_inference_cache()

    def add_factor(self, factor: TableFactor) -> TableFactor:
        """Add a factor and any of its variables not yet in the graph."""
        if factor in self._factor_index:
            raise ValueError(f"Factor {factor} already belongs to this graph")
        for v in factor.vars():
            self.add_variable(v)
        self._factor_index[factor] = len(self._factors)
        self._factors.append(factor)
        for v in factor.vars():
            self._var_to_factors[v].append(factor)
        self.clear_inference_cache()
        return factor

    def add_table_factor(self, variables: Union[Variable, Sequence[Variable]], values) -> TableFactor:
        """Build a TableFactor from ``values`` and add it."""
        return self.add_factor(TableFactor(variables, values))

    def add_factors(self, factors: Iterable[TableFactor]) -> None:
        for f in factors:
            self.add_factor(f)

    # -- accessors ---------------------------------------------------------

    @property
    def variables(self) -> List[Variable]:
        return list(self._variables)

    @property
    def factors(self) -> List[TableFactor]:
        return list(self._factors)

    def variables_iterator(self) -> Iterator[Variable]:
        return iter(self._variables)

    def num_variables(self) -> int:
        return len(self._variables)

    def num_factors(self) -> int:
        return len(self._factors)

    def get_index(self, item: Union[Variable, TableFactor]) -> int:
        """Index of a variable or a factor; -1 when absent."""
        if isinstance(item, Variable):
            return self._var_index.get(item, -1)
        return self._factor_index.get(item, -1)

    def get_variable(self, i: int) -> Variable:
        return self._variables[i]

    def get_factor(self, i: int) -> TableFactor:
        return self._factors[i]

    def contains_var(self, var: Variable) -> bool:
        return var in self._var_index

    def contains_factor(self, factor: TableFactor) -> bool:
        return factor in self._factor_index

    def get_degree(self, var: Variable) -> int:
        """Number of factors that touch ``var``."""
        return len(self._var_to_factors.get(var, ()))

    def all_factors_containing(self, var: Variable) -> List[TableFactor]:
        return list(self._var_to_factors.get(var, ()))

    def all_factors_of(self, variables) -> List[TableFactor]:
        """Factors whose scope is exactly ``variables``."""
        varset = as_varset(variables)
        if not varset:
            return [f for f in self._factors if not f.vars()]
        candidates = self._var_to_factors.get(varset[0], ())
        return [f for f in candidates if f.vars() == varset]

    def factor_of(self, variables) -> Optional[TableFactor]:
        """The first factor whose scope is exactly ``variables``, if any."""
        found = self.all_factors_of(variables)
        return found[0] if found else None

    def var_sets(self) -> List[VarSet]:
        """Distinct factor scopes, in insertion order."""
        seen: Dict[VarSet, None] = {}
        for f in self._factors:
            seen.setdefault(f.vars(), None)
        return list(seen)

    def is_adjacent(self, v1: Variable, v2: Variable) -> bool:
        return any(v2 in f.vars() for f in self._var_to_factors.get(v1, ()))

    def is_in_log_space(self) -> bool:
        return bool(self._factors) and all(f.is_in_log_space() for f in self._factors)

    # -- evaluation --------------------------------------------------------

    def log_value(self, assn: Assignment) -> float:
        """Log of the unnormalised product of all factors at ``assn``."""
        total = 0.0
        for f in self._factors:
            lv = f.log_value(assn)
            if np.isneginf(lv):
                return float("-inf")
            total += lv
        return total

    def value(self, assn: Assignment) -> float:
        return float(np.exp(self.log_value(assn)))

    def assignments(self) -> Iterator[Assignment]:
        """Every joint assignment of the graph's variables."""
        ranges = [range(v.num_outcomes) for v in self._variables]
        for values in itertools.product(*ranges):
            yield Assignment.from_values(self._variables, values)

    def factor_product(self) -> TableFactor:
        """The full unnormalised joint as one table."""
        out = TableFactor(VarSet(self._variables))
        for f in self._factors:
            out.multiply_by(f)
        return out

    # -- graph views -------------------------------------------------------

    def to_markov_network(self) -> nx.Graph:
        """Undirected graph over variables, one clique per factor."""
        g = nx.Graph()
        g.add_nodes_from(self._variables)
        for f in self._factors:
            g.add_edges_from(itertools.combinations(f.vars(), 2))
        return g

    def to_bipartite_graph(self) -> nx.Graph:
        """Variable/factor incidence graph; factor nodes carry ``kind="factor"``."""
        g = nx.Graph()
        for v in self._variables:
            g.add_node(v, kind="variable")
        for f in self._factors:
            g.add_node(f, kind="factor")
            for v in f.vars():
                g.add_edge(f, v)
        return g

    def connected_components(self) -> List[List[Variable]]:
        """Groups of variables linked through shared factors."""
        n = len(self._variables)
        if n == 0:
            return []
        rows: List[int] = []
        cols: List[int] = []
        for f in self._factors:
            idx = [self._var_index[v] for v in f.vars()]
            for a, b in zip(idx, idx[1:]):
                rows.append(a)
                cols.append(b)
        adj = coo_matrix((np.ones(len(rows)), (rows, cols)), shape=(n, n))
        count, labels = connected_components(adj, directed=False)
        groups: List[List[Variable]] = [[] for _ in range(count)]
        for var, label in zip(self._variables, labels):
            groups[label].append(var)
        return groups

    def duplicate(self) -> "FactorGraph":
        """A new graph sharing this graph's variables and factors."""
        out = FactorGraph(self._variables)
        out.add_factors(self._factors)
        return out

    # -- inference cache ---------------------------------------------------

    def set_inference_cache(self, key: str, value: Any) -> None:
        self._cache[key] = value

    def get_inference_cache(self, key: str) -> Any:
        return self._cache.get(key)

    def clear_inference_cache(self) -> None:
        if self._cache:
            logger.debug("Clearing inference cache (%d entries)", len(self._cache))
        self._cache.clear()

    def dump_to_string(self) -> str:
        lines = [f"FactorGraph: {len(self._variables)} variables, {len(self._factors)} factors"]
        for f in self._factors:
            lines.append(f.dump_to_string())
        return "\n".join(lines)

    def __repr__(self) -> str:
        return f"FactorGraph({len(self._variables)} vars, {len(self._factors)} factors)"


def as_log_graph(graph: FactorGraph) -> FactorGraph:
    """Copy of ``graph`` with every factor converted to log space."""
    out = FactorGraph(graph.variables)
    for f in graph.factors:
        out.add_factor(f if isinstance(f, LogTableFactor) else f.to_log_factor())
    return out
