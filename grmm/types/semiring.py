"""
grmm/types/semiring.py

Table semirings for factor arithmetic.

A factor stores its table either as plain probabilities or as natural
logarithms of probabilities. The two representations share one set of
operations, bundled in a SemiringRuntime:
- mul / div: pointwise product and quotient
- add_reduce: summation over axes (logsumexp in log space)
- max_reduce: maximisation over axes
- normalize: rescale so the table sums to one

Division follows the Hugin convention 0 / 0 = 0, so separator updates
never introduce NaNs where the old separator potential was zero.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional, Tuple, Union

import numpy as np

Axes = Optional[Union[int, Tuple[int, ...]]]


def _logsumexp(x: np.ndarray, axis: Axes = None) -> np.ndarray:
    """Numerically stable logsumexp."""
    if x.size == 0:
        return np.array(-np.inf)

    if axis is None:
        m = np.max(x)
        if np.isneginf(m):
            return np.array(-np.inf)
        return m + np.log(np.sum(np.exp(x - m)))

    if isinstance(axis, int):
        axis = (axis,)

    m = np.max(x, axis=axis, keepdims=True)
    m_safe = np.where(np.isneginf(m), 0.0, m)
    with np.errstate(divide="ignore"):
        y = np.log(np.sum(np.exp(x - m_safe), axis=axis, keepdims=True)) + m_safe
    y = np.where(np.isneginf(m), -np.inf, y)
    return np.squeeze(y, axis=axis)


def _axis_tuple(axis: Axes) -> Optional[Tuple[int, ...]]:
    if axis is None:
        return None
    if isinstance(axis, int):
        return (axis,)
    return tuple(axis)


@dataclass(frozen=True)
class SemiringRuntime:
    """
    Numpy-backed table arithmetic for one value representation.

    Attributes:
        name: Identifier for the representation ("PROB" or "LOGPROB")
        is_log: True when tables hold natural logarithms
        mul: Elementwise product
        div: Elementwise quotient with 0 / 0 = 0
        add_reduce: Sum over the given axes
        max_reduce: Maximum over the given axes
        normalize: Rescale a whole table to sum to one
        one: Factory for the multiplicative identity table
        zero: Factory for the additive identity table
        to_prob: Convert a table to probabilities
        from_prob: Convert a probability table to this representation
    """
    name: str
    is_log: bool
    mul: Callable[[np.ndarray, np.ndarray], np.ndarray]
    div: Callable[[np.ndarray, np.ndarray], np.ndarray]
    add_reduce: Callable[[np.ndarray, Axes], np.ndarray]
    max_reduce: Callable[[np.ndarray, Axes], np.ndarray]
    normalize: Callable[[np.ndarray], np.ndarray]
    one: Callable[[Tuple[int, ...]], np.ndarray]
    zero: Callable[[Tuple[int, ...]], np.ndarray]
    to_prob: Callable[[np.ndarray], np.ndarray]
    from_prob: Callable[[np.ndarray], np.ndarray]

    def to_log(self, x: np.ndarray) -> np.ndarray:
        if self.is_log:
            return x
        with np.errstate(divide="ignore"):
            return np.log(x)

    def convert(self, x: np.ndarray, other: "SemiringRuntime") -> np.ndarray:
        """Convert a table held in ``other``'s representation into this one."""
        if other.name == self.name:
            return x
        return self.from_prob(other.to_prob(x))


def prob_semiring(dtype: type = np.float64) -> SemiringRuntime:
    """Create a probability semiring runtime."""
    dt = np.dtype(dtype)

    def _div(x: np.ndarray, y: np.ndarray) -> np.ndarray:
        with np.errstate(divide="ignore", invalid="ignore"):
            out = np.true_divide(x, y)
        return np.where(y == 0, 0.0, out)

    def _normalize(x: np.ndarray) -> np.ndarray:
        s = np.sum(x)
        if s == 0 or not np.isfinite(s):
            return x
        return x / s

    return SemiringRuntime(
        name="PROB",
        is_log=False,
        mul=np.multiply,
        div=_div,
        add_reduce=lambda x, axis: np.sum(x, axis=_axis_tuple(axis), dtype=dt),
        max_reduce=lambda x, axis: np.max(x, axis=_axis_tuple(axis)),
        normalize=_normalize,
        one=lambda shape: np.ones(shape, dtype=dt),
        zero=lambda shape: np.zeros(shape, dtype=dt),
        to_prob=lambda x: x,
        from_prob=lambda x: np.asarray(x, dtype=dt),
    )


def logprob_semiring(dtype: type = np.float64) -> SemiringRuntime:
    """Create a log-probability semiring runtime."""
    dt = np.dtype(dtype)

    def _div(x: np.ndarray, y: np.ndarray) -> np.ndarray:
        with np.errstate(invalid="ignore"):
            out = np.subtract(x, y)
        return np.where(np.isneginf(y), -np.inf, out)

    def _add_reduce(x: np.ndarray, axis: Axes) -> np.ndarray:
        ax = _axis_tuple(axis)
        if ax is None:
            return _logsumexp(x)
        if not ax:
            return x
        return _logsumexp(x, axis=ax)

    def _normalize(x: np.ndarray) -> np.ndarray:
        z = _logsumexp(x)
        if not np.isfinite(z):
            return x
        return x - z

    def _from_prob(x: np.ndarray) -> np.ndarray:
        with np.errstate(divide="ignore"):
            return np.log(np.asarray(x, dtype=dt))

    return SemiringRuntime(
        name="LOGPROB",
        is_log=True,
        mul=np.add,  # log(a*b) = log(a) + log(b)
        div=_div,
        add_reduce=_add_reduce,
        max_reduce=lambda x, axis: np.max(x, axis=_axis_tuple(axis)),
        normalize=_normalize,
        one=lambda shape: np.zeros(shape, dtype=dt),  # log(1) = 0
        zero=lambda shape: np.full(shape, -np.inf, dtype=dt),  # log(0) = -inf
        to_prob=np.exp,
        from_prob=_from_prob,
    )


PROB = prob_semiring()
LOGPROB = logprob_semiring()
