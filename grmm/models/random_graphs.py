"""
grmm/models/random_graphs.py

Generators of test models: chains, grids and trees of binary variables
with uniform or random potentials.

Pairwise potentials use a spin parameterisation: a coupling ``b`` gives
the table [e^b, e^-b, e^-b, e^b], which prefers equal values when b > 0
(attractive) and different values when b < 0 (repulsive).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List

import numpy as np

from grmm.models.grid import UndirectedGrid
from grmm.types.factor import TableFactor
from grmm.types.factor_graph import FactorGraph
from grmm.types.variable import Variable, VarSet


def _spin_table(b: float) -> List[float]:
    eb = float(np.exp(b))
    emb = float(np.exp(-b))
    return [eb, emb, emb, eb]


def generate_attractive_potential_values(rng: np.random.Generator, edge_weight: float) -> List[float]:
    """Pairwise table with coupling |N(0, 1)| * edge_weight."""
    return _spin_table(abs(rng.standard_normal()) * edge_weight)


def generate_mixed_potential_values(rng: np.random.Generator, edge_weight: float) -> List[float]:
    """Pairwise table with coupling N(0, 1) * edge_weight, of either sign."""
    return _spin_table(rng.standard_normal() * edge_weight)


class FactorGenerator(ABC):
    """Produces a factor for a given clique."""

    @abstractmethod
    def next_factor(self, varset: VarSet) -> TableFactor:
        ...


class UniformFactorGenerator(FactorGenerator):
    """All-ones tables."""

    def next_factor(self, varset: VarSet) -> TableFactor:
        return TableFactor(varset, np.ones(varset.weight()))


class RandomFactorGenerator(FactorGenerator):
    """Tables of log-normal entries, exp(N(0, scale^2))."""

    def __init__(self, rng: np.random.Generator, scale: float = 1.0):
        self.rng = rng
        self.scale = scale

    def next_factor(self, varset: VarSet) -> TableFactor:
        return TableFactor(varset, np.exp(self.scale * self.rng.standard_normal(varset.weight())))


def _add_lattice_edges(grid: UndirectedGrid, size: int, values) -> None:
    # Interior cells to the right and down, then the bottom row, then the right column.
    for i in range(size - 1):
        for j in range(size - 1):
            v = grid.get(i, j)
            grid.add_table_factor([v, grid.get(i + 1, j)], values())
            grid.add_table_factor([v, grid.get(i, j + 1)], values())
    for i in range(size - 1):
        grid.add_table_factor([grid.get(i, size - 1), grid.get(i + 1, size - 1)], values())
    for i in range(size - 1):
        grid.add_table_factor([grid.get(size - 1, i), grid.get(size - 1, i + 1)], values())


def random_attractive_grid(size: int, edge_weight: float, rng: np.random.Generator) -> UndirectedGrid:
    """
    Square grid of binary variables with attractive couplings.

    Node potentials are weak: [e^a, e^-a] with a ~ N(0, 0.0625^2).
    """
    grid = UndirectedGrid(size, size, 2)
    _add_lattice_edges(grid, size, lambda: generate_attractive_potential_values(rng, edge_weight))
    for i in range(size):
        for j in range(size):
            a = rng.standard_normal() * 0.0625
            grid.add_table_factor(grid.get(i, j), [np.exp(a), np.exp(-a)])
    return grid


def random_repulsive_grid(size: int, edge_weight: float, rng: np.random.Generator) -> UndirectedGrid:
    """Square grid whose couplings push neighbours towards different values."""
    return random_attractive_grid(size, -edge_weight, rng)


def random_frustrated_grid(size: int, edge_weight: float, rng: np.random.Generator) -> UndirectedGrid:
    """Square grid with couplings of mixed sign and random node potentials."""
    grid = UndirectedGrid(size, size, 2)
    _add_lattice_edges(grid, size, lambda: generate_mixed_potential_values(rng, edge_weight))
    add_random_node_potentials(rng, grid)
    return grid


def random_frustrated_tree(
    size: int, max_children: int, edge_weight: float, rng: np.random.Generator
) -> FactorGraph:
    """
    Random tree of binary variables with mixed couplings.

    Grows from a root by repeatedly picking a random leaf and giving it
    between 1 and ``max_children`` children, until at least ``size``
    variables exist.
    """
    graph = FactorGraph()
    root = Variable(2)
    graph.add_variable(root)
    leaves = [root]
    while graph.num_variables() < size:
        parent = leaves.pop(int(rng.integers(len(leaves))))
        for _ in range(int(rng.integers(max_children)) + 1):
            child = Variable(2)
            graph.add_table_factor([parent, child], generate_mixed_potential_values(rng, edge_weight))
            leaves.append(child)
    add_random_node_potentials(rng, graph)
    return graph


def random_node_potential(rng: np.random.Generator, var: Variable) -> TableFactor:
    a = rng.standard_normal()
    return TableFactor(var, [np.exp(a), np.exp(-a)])


def add_random_node_potentials(rng: np.random.Generator, graph: FactorGraph) -> None:
    """Add a random unary potential to every variable of a binary model."""
    for var in graph.variables:
        graph.add_factor(random_node_potential(rng, var))


def create_uniform_chain(length: int) -> FactorGraph:
    variables = [Variable(2) for _ in range(length)]
    graph = FactorGraph(variables)
    for v1, v2 in zip(variables, variables[1:]):
        graph.add_table_factor([v1, v2], np.ones(4))
    return graph


def create_grid(generator: FactorGenerator, size: int) -> UndirectedGrid:
    """Square grid of binary variables, one generated factor per lattice edge."""
    grid = UndirectedGrid(size, size, 2)
    for x in range(size):
        for y in range(size - 1):
            grid.add_factor(generator.next_factor(VarSet.of(grid.get(x, y), grid.get(x, y + 1))))
    for x in range(size - 1):
        for y in range(size):
            grid.add_factor(generator.next_factor(VarSet.of(grid.get(x, y), grid.get(x + 1, y))))
    return grid


def create_uniform_grid(size: int) -> UndirectedGrid:
    return create_grid(UniformFactorGenerator(), size)


def create_grid_with_obs(grid_gen: FactorGenerator, obs_gen: FactorGenerator, size: int) -> FactorGraph:
    """Square grid of hidden variables, each with its own observed child."""
    grid_vars = [[Variable(2, label=f"GRID[{i}][{j}]") for j in range(size)] for i in range(size)]
    obs_vars = [[Variable(2, label=f"OBS[{i}][{j}]") for j in range(size)] for i in range(size)]
    graph = FactorGraph()
    for i in range(size):
        for j in range(size):
            graph.add_variable(grid_vars[i][j])
            graph.add_variable(obs_vars[i][j])

    for i in range(size):
        for j in range(size):
            v = grid_vars[i][j]
            if i < size - 1:
                graph.add_factor(grid_gen.next_factor(VarSet.of(v, grid_vars[i + 1][j])))
            if j < size - 1:
                graph.add_factor(grid_gen.next_factor(VarSet.of(v, grid_vars[i][j + 1])))
    for i in range(size):
        for j in range(size):
            graph.add_factor(obs_gen.next_factor(VarSet.of(grid_vars[i][j], obs_vars[i][j])))
    return graph


def create_random_chain(rng: np.random.Generator, length: int) -> FactorGraph:
    """Binary chain whose pairwise tables are drawn from a flat Dirichlet."""
    variables = [Variable(2) for _ in range(length)]
    graph = FactorGraph(variables)
    for v1, v2 in zip(variables, variables[1:]):
        graph.add_table_factor([v1, v2], rng.dirichlet(np.ones(4)))
    return graph
