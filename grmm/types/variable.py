"""
grmm/types/variable.py

Discrete random variables and canonical variable sets.

Variables are compared by identity. Each one receives a serial number at
creation, which fixes a canonical ordering: every VarSet, and therefore
every factor table, lays out its axes in serial order.
"""

from __future__ import annotations

import itertools
import threading
from typing import Iterable, Iterator, Optional, Tuple, Union

_serials = itertools.count()
_serial_lock = threading.Lock()


def _next_serial() -> int:
    with _serial_lock:
        return next(_serials)


class Variable:
    """A discrete random variable with ``num_outcomes`` values."""

    __slots__ = ("num_outcomes", "label", "serial")

    def __init__(self, num_outcomes: int, label: Optional[str] = None):
        if num_outcomes < 1:
            raise ValueError(f"Variable needs at least one outcome, got {num_outcomes}")
        self.num_outcomes = int(num_outcomes)
        self.serial = _next_serial()
        self.label = label if label is not None else f"VAR{self.serial}"

    def __lt__(self, other: "Variable") -> bool:
        return self.serial < other.serial

    def __repr__(self) -> str:
        return self.label

    def __copy__(self) -> "Variable":
        return self

    def __deepcopy__(self, memo) -> "Variable":
        return self


class VarSet:
    """
    Immutable set of variables in canonical order.

    Two VarSets are equal when they hold the same variables, whatever
    order they were built from.
    """

    __slots__ = ("_vars", "_members", "_hash")

    def __init__(self, variables: Union[Variable, Iterable[Variable]] = ()):
        if isinstance(variables, Variable):
            variables = (variables,)
        members = frozenset(variables)
        self._members = members
        self._vars: Tuple[Variable, ...] = tuple(sorted(members))
        self._hash = hash(members)

    @classmethod
    def of(cls, *variables: Variable) -> "VarSet":
        return cls(variables)

    def __iter__(self) -> Iterator[Variable]:
        return iter(self._vars)

    def __len__(self) -> int:
        return len(self._vars)

    def __getitem__(self, i: int) -> Variable:
        return self._vars[i]

    def __contains__(self, var: object) -> bool:
        return var in self._members

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, VarSet):
            return NotImplemented
        return self._members == other._members

    def __hash__(self) -> int:
        return self._hash

    def __repr__(self) -> str:
        return "(" + " ".join(v.label for v in self._vars) + ")"

    def __copy__(self) -> "VarSet":
        return self

    def __deepcopy__(self, memo) -> "VarSet":
        return self

    @property
    def variables(self) -> Tuple[Variable, ...]:
        return self._vars

    @property
    def shape(self) -> Tuple[int, ...]:
        return tuple(v.num_outcomes for v in self._vars)

    def weight(self) -> int:
        """Number of joint assignments, the product of outcome counts."""
        w = 1
        for v in self._vars:
            w *= v.num_outcomes
        return w

    def index_of(self, var: Variable) -> int:
        return self._vars.index(var)

    def intersection(self, other: Iterable[Variable]) -> "VarSet":
        return VarSet(self._members.intersection(_as_members(other)))

    def union(self, other: Iterable[Variable]) -> "VarSet":
        return VarSet(self._members.union(_as_members(other)))

    def difference(self, other: Iterable[Variable]) -> "VarSet":
        return VarSet(self._members.difference(_as_members(other)))

    def issubset(self, other: Iterable[Variable]) -> bool:
        return self._members.issubset(_as_members(other))

    def issuperset(self, other: Iterable[Variable]) -> bool:
        return self._members.issuperset(_as_members(other))

    def is_disjoint(self, other: Iterable[Variable]) -> bool:
        return self._members.isdisjoint(_as_members(other))


def _as_members(other) -> frozenset:
    if isinstance(other, VarSet):
        return other._members
    if isinstance(other, Variable):
        return frozenset((other,))
    return frozenset(other)


def as_varset(arg: Union[Variable, VarSet, Iterable[Variable]]) -> VarSet:
    """Coerce a variable, a VarSet or an iterable of variables to a VarSet."""
    if isinstance(arg, VarSet):
        return arg
    return VarSet(arg)
