"""
grmm/models/grid.py

Factor graph whose variables are laid out on a 2-D grid.
"""

from __future__ import annotations

from typing import List

from grmm.types.factor_graph import FactorGraph
from grmm.types.variable import Variable


class UndirectedGrid(FactorGraph):
    """
    A ``width`` x ``height`` lattice of variables with no factors yet.

    Variables are added column by column, so ``get(x, y)`` has graph
    index ``x * height + y``.
    """

    def __init__(self, width: int, height: int, num_outcomes: int):
        self.width = width
        self.height = height
        self._grid: List[List[Variable]] = [
            [Variable(num_outcomes, label=f"V[{x}][{y}]") for y in range(height)] for x in range(width)
        ]
        super().__init__(v for column in self._grid for v in column)

    def get(self, x: int, y: int) -> Variable:
        return self._grid[x][y]
