"""
Models module: grid graphs and random model generators.
"""

from grmm.models.grid import UndirectedGrid
from grmm.models.random_graphs import (
    FactorGenerator,
    UniformFactorGenerator,
    RandomFactorGenerator,
    generate_attractive_potential_values,
    generate_mixed_potential_values,
    random_attractive_grid,
    random_repulsive_grid,
    random_frustrated_grid,
    random_frustrated_tree,
    random_node_potential,
    add_random_node_potentials,
    create_uniform_chain,
    create_grid,
    create_uniform_grid,
    create_grid_with_obs,
    create_random_chain,
)

__all__ = [
    "UndirectedGrid",
    "FactorGenerator",
    "UniformFactorGenerator",
    "RandomFactorGenerator",
    "generate_attractive_potential_values",
    "generate_mixed_potential_values",
    "random_attractive_grid",
    "random_repulsive_grid",
    "random_frustrated_grid",
    "random_frustrated_tree",
    "random_node_potential",
    "add_random_node_potentials",
    "create_uniform_chain",
    "create_grid",
    "create_uniform_grid",
    "create_grid_with_obs",
    "create_random_chain",
]
