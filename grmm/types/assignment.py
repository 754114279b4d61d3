"""
grmm/types/assignment.py

Assignments of outcome indices to variables.
"""

from __future__ import annotations

from typing import Dict, Iterable, Iterator, Mapping, MutableMapping, Optional, Tuple

import numpy as np

from grmm.types.variable import Variable, VarSet, as_varset


class Assignment(MutableMapping):
    """
    A total or partial mapping from variables to outcome indices.

    Iteration follows the canonical variable order, so two assignments
    with the same content print and iterate identically.
    """

    def __init__(self, values: Optional[Mapping[Variable, int]] = None):
        self._values: Dict[Variable, int] = {}
        if values is not None:
            for var, val in values.items():
                self[var] = val

    @classmethod
    def from_index(cls, varset: VarSet, flat_index: int) -> "Assignment":
        """The assignment at position ``flat_index`` of a table over ``varset``."""
        varset = as_varset(varset)
        if not varset:
            return cls()
        idx = np.unravel_index(int(flat_index), varset.shape)
        return cls({v: int(i) for v, i in zip(varset, idx)})

    @classmethod
    def from_values(cls, variables: Iterable[Variable], values: Iterable[int]) -> "Assignment":
        return cls(dict(zip(variables, values)))

    @staticmethod
    def union(a: "Assignment", b: "Assignment") -> "Assignment":
        """Merge two assignments; ``b`` wins where both assign a variable."""
        out = a.duplicate()
        out.update(b)
        return out

    def __getitem__(self, var: Variable) -> int:
        return self._values[var]

    def __setitem__(self, var: Variable, value: int) -> None:
        value = int(value)
        if value < 0 or value >= var.num_outcomes:
            raise ValueError(f"Outcome {value} out of range for {var} ({var.num_outcomes} outcomes)")
        self._values[var] = value

    def __delitem__(self, var: Variable) -> None:
        del self._values[var]

    def __iter__(self) -> Iterator[Variable]:
        return iter(sorted(self._values))

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        body = " ".join(f"{v}={self._values[v]}" for v in self)
        return f"[Assignment {body}]"

    def set_value(self, var: Variable, value: int) -> None:
        self[var] = value

    def get_value(self, var: Variable) -> int:
        return self._values[var]

    def vars(self) -> VarSet:
        return VarSet(self._values)

    def contains_all(self, varset: Iterable[Variable]) -> bool:
        return all(v in self._values for v in varset)

    def restriction(self, varset: Iterable[Variable]) -> "Assignment":
        """Keep only the variables in ``varset`` that this assignment sets."""
        return Assignment({v: self._values[v] for v in varset if v in self._values})

    def index_in(self, varset: VarSet) -> Tuple[int, ...]:
        """Table index of this assignment for a factor over ``varset``."""
        return tuple(self._values[v] for v in varset)

    def duplicate(self) -> "Assignment":
        return Assignment(self._values)
