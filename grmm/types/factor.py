"""
grmm/types/factor.py

Dense table factors over discrete variables.

A factor maps every joint assignment of its VarSet to a non-negative
weight. Tables are numpy arrays whose axes follow the canonical variable
order of the VarSet, so combining two factors only needs reshaping for
broadcast, never transposition.

TableFactor stores probabilities; LogTableFactor stores their natural
logarithms. Binary operations convert the argument into the receiver's
representation, and the result keeps the receiver's class.
"""

from __future__ import annotations

from typing import Iterable, Iterator, Optional, Sequence, Tuple, Union

import numpy as np

from grmm.types.assignment import Assignment
from grmm.types.semiring import LOGPROB, PROB, SemiringRuntime
from grmm.types.variable import Variable, VarSet, as_varset

VarsLike = Union[Variable, VarSet, Iterable[Variable]]


def _given_order(variables: VarsLike) -> Tuple[Variable, ...]:
    if isinstance(variables, Variable):
        return (variables,)
    return tuple(variables)


class TableFactor:
    """
    Potential over a VarSet stored as a probability table.

    Factors are hashed by identity: inference code uses them as message
    endpoints and dictionary keys.

    Args:
        variables: Variables of the factor. When given as a sequence, the
            ``values`` axes follow that sequence and are transposed into
            canonical order.
        values: Table entries in this factor's representation. Flat or
            shaped input is accepted. Defaults to the identity table.
    """

    semiring: SemiringRuntime = PROB

    def __init__(self, variables: VarsLike = (), values=None):
        given = _given_order(variables)
        varset = VarSet(given)
        if len(varset) != len(given):
            raise ValueError(f"Duplicate variables in factor scope: {given}")

        if values is None:
            table = self.semiring.one(varset.shape)
        else:
            arr = np.array(values, dtype=np.float64)
            expected = int(np.prod([v.num_outcomes for v in given], dtype=np.int64))
            if arr.size != expected:
                raise ValueError(
                    f"Factor over {varset} needs {expected} values, got {arr.size}"
                )
            arr = arr.reshape(tuple(v.num_outcomes for v in given))
            if given != varset.variables:
                perm = [given.index(v) for v in varset]
                arr = np.transpose(arr, perm)
            table = np.ascontiguousarray(arr)

        self._vars = varset
        self._table = table

    @classmethod
    def _from_table(cls, varset: VarSet, table: np.ndarray) -> "TableFactor":
        obj = cls.__new__(cls)
        obj._vars = varset
        obj._table = np.array(table, dtype=np.float64)
        return obj

    @classmethod
    def constant(cls, value: float = 1.0) -> "TableFactor":
        """A factor over no variables."""
        return cls._from_table(VarSet(), cls.semiring.from_prob(np.array(value)))

    # -- accessors ---------------------------------------------------------

    def vars(self) -> VarSet:
        return self._vars

    @property
    def table(self) -> np.ndarray:
        """The underlying table, in this factor's representation."""
        return self._table

    def probabilities(self) -> np.ndarray:
        """A copy of the table in probability space."""
        return np.array(self.semiring.to_prob(self._table), dtype=np.float64)

    def log_probabilities(self) -> np.ndarray:
        return np.array(self.semiring.to_log(self._table), dtype=np.float64)

    def is_in_log_space(self) -> bool:
        return self.semiring.is_log

    def contains_var(self, var: Variable) -> bool:
        return var in self._vars

    def num_locations(self) -> int:
        return int(self._table.size)

    def _index(self, assn: Assignment) -> Tuple[int, ...]:
        try:
            return tuple(assn[v] for v in self._vars)
        except KeyError as exc:
            raise ValueError(f"Assignment does not set {exc.args[0]} of factor {self._vars}") from None

    def value(self, assn: Assignment) -> float:
        """Probability-space value of the factor at ``assn``."""
        return float(self.semiring.to_prob(self._table[self._index(assn)]))

    def log_value(self, assn: Assignment) -> float:
        with np.errstate(divide="ignore"):
            return float(self.semiring.to_log(self._table[self._index(assn)]))

    def assignments(self) -> Iterator[Assignment]:
        """All joint assignments of the factor's variables, in table order."""
        for i in range(self._table.size):
            yield Assignment.from_index(self._vars, i)

    # -- combination -------------------------------------------------------

    def _expand(self, target: VarSet) -> np.ndarray:
        shape = tuple(v.num_outcomes if v in self._vars else 1 for v in target)
        return self._table.reshape(shape)

    def _combine(self, other: "TableFactor", op) -> Tuple[VarSet, np.ndarray]:
        target = self._vars.union(other._vars)
        mine = self._expand(target)
        theirs = self.semiring.convert(other._expand(target), other.semiring)
        table = op(mine, theirs)
        return target, np.broadcast_to(table, target.shape)

    def multiply(self, other: "TableFactor") -> "TableFactor":
        target, table = self._combine(other, self.semiring.mul)
        return self._from_table(target, table)

    def multiply_by(self, other: "TableFactor") -> "TableFactor":
        """Multiply ``other`` into this factor, widening its scope if needed."""
        self._vars, table = self._combine(other, self.semiring.mul)
        self._table = np.array(table, dtype=np.float64)
        return self

    def divide_by(self, other: "TableFactor") -> "TableFactor":
        """Divide this factor by ``other`` in place, with 0 / 0 = 0."""
        self._vars, table = self._combine(other, self.semiring.div)
        self._table = np.array(table, dtype=np.float64)
        return self

    # -- reduction ---------------------------------------------------------

    def _reduce(self, keep: VarSet, reducer) -> "TableFactor":
        keep = keep.intersection(self._vars)
        axes = tuple(i for i, v in enumerate(self._vars) if v not in keep)
        if not axes:
            return self._from_table(keep, self._table.copy())
        return self._from_table(keep, np.asarray(reducer(self._table, axes)))

    def marginalize(self, variables: VarsLike) -> "TableFactor":
        """Sum out every variable except ``variables``."""
        return self._reduce(as_varset(variables), self.semiring.add_reduce)

    def marginalize_out(self, variables: VarsLike) -> "TableFactor":
        """Sum out ``variables``."""
        return self._reduce(self._vars.difference(as_varset(variables)), self.semiring.add_reduce)

    def extract_max(self, variables: VarsLike) -> "TableFactor":
        """Maximise out every variable except ``variables``."""
        return self._reduce(as_varset(variables), self.semiring.max_reduce)

    def extract_max_out(self, variables: VarsLike) -> "TableFactor":
        return self._reduce(self._vars.difference(as_varset(variables)), self.semiring.max_reduce)

    def normalize(self) -> "TableFactor":
        """Rescale in place so the table sums to one. Returns ``self``."""
        self._table = self.semiring.normalize(self._table)
        return self

    def slice(self, assn: Assignment) -> "TableFactor":
        """Fix the variables that ``assn`` sets; the result is over the rest."""
        idx = tuple(assn[v] if v in assn else slice(None) for v in self._vars)
        rest = VarSet(v for v in self._vars if v not in assn)
        return self._from_table(rest, self._table[idx].copy())

    def sum(self) -> float:
        return float(np.sum(self.probabilities()))

    def log_sum(self) -> float:
        with np.errstate(divide="ignore"):
            return float(LOGPROB.add_reduce(self.log_probabilities(), None))

    # -- queries -----------------------------------------------------------

    def argmax(self) -> Assignment:
        """The assignment with the largest table entry (first one on ties)."""
        if not self._vars:
            return Assignment()
        return Assignment.from_index(self._vars, int(np.argmax(self._table)))

    def sample(self, rng: np.random.Generator) -> Assignment:
        """Draw one assignment with probability proportional to the table."""
        if not self._vars:
            return Assignment()
        p = self.probabilities().ravel()
        total = p.sum()
        if not total > 0:
            raise ValueError(f"Cannot sample from factor over {self._vars} with zero mass")
        idx = rng.choice(p.size, p=p / total)
        return Assignment.from_index(self._vars, int(idx))

    def entropy(self) -> float:
        p = self.probabilities().ravel()
        total = p.sum()
        if total <= 0:
            return 0.0
        p = p[p > 0] / total
        return float(-np.sum(p * np.log(p)))

    def is_nan(self) -> bool:
        return bool(np.any(np.isnan(self._table)))

    def almost_equals(self, other: "TableFactor", tolerance: float = 1e-5) -> bool:
        """True when both factors share a scope and every probability is within ``tolerance``."""
        if self._vars != other._vars:
            return False
        diff = np.abs(self.probabilities() - other.probabilities())
        return bool(np.all(diff <= tolerance))

    def interpolate(self, other: "TableFactor", weight: float) -> "TableFactor":
        """``weight * self + (1 - weight) * other`` in probability space."""
        if self._vars != other._vars:
            raise ValueError(f"Cannot interpolate factors over {self._vars} and {other._vars}")
        mixed = weight * self.probabilities() + (1.0 - weight) * other.probabilities()
        return self._from_table(self._vars, self.semiring.from_prob(mixed))

    # -- copies and conversion ---------------------------------------------

    def duplicate(self) -> "TableFactor":
        return self._from_table(self._vars, self._table.copy())

    def to_prob_factor(self) -> "TableFactor":
        return TableFactor._from_table(self._vars, self.probabilities())

    def to_log_factor(self) -> "LogTableFactor":
        return LogTableFactor._from_table(self._vars, self.log_probabilities())

    def dump_to_string(self) -> str:
        lines = [f"{type(self).__name__} {self._vars}"]
        flat = self._table.ravel()
        for i, assn in enumerate(self.assignments()):
            lines.append(f"  {assn}  {flat[i]:.6g}")
        return "\n".join(lines)

    def __repr__(self) -> str:
        return f"{type(self).__name__}{self._vars}"


class LogTableFactor(TableFactor):
    """Potential stored as natural logarithms of probabilities."""

    semiring: SemiringRuntime = LOGPROB

    @classmethod
    def from_probabilities(cls, variables: VarsLike, values) -> "LogTableFactor":
        probs = TableFactor(variables, values)
        return cls._from_table(probs.vars(), LOGPROB.from_prob(probs.table))


def multiply_all(factors: Iterable[TableFactor]) -> TableFactor:
    """Product of ``factors``; the constant 1 factor when there are none."""
    result: Optional[TableFactor] = None
    for f in factors:
        result = f.duplicate() if result is None else result.multiply_by(f)
    if result is None:
        return TableFactor.constant(1.0)
    return result


def one_distance(f1: TableFactor, f2: TableFactor) -> float:
    """L1 distance between two factors after normalising both."""
    if f1.vars() != f2.vars():
        raise ValueError(f"Scopes differ: {f1.vars()} vs {f2.vars()}")
    p1 = f1.probabilities()
    p2 = f2.probabilities()
    p1 = p1 / p1.sum()
    p2 = p2 / p2.sum()
    return float(np.sum(np.abs(p1 - p2)))


def product_of(factors: Sequence[TableFactor], scope: VarSet) -> TableFactor:
    """Product of ``factors`` started from the identity over ``scope``."""
    out: TableFactor = TableFactor(scope)
    for f in factors:
        out.multiply_by(f)
    return out
