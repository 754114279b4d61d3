"""
grmm/exceptions.py

Errors raised by the inference engines.

Non-convergence of an iterative engine is not an error; it is logged and
reported through ``is_converged()``.
"""

from __future__ import annotations


class InferenceError(Exception):
    """Base class for inference failures."""


class UnsupportedQueryError(InferenceError):
    """The engine cannot answer a marginal query for the requested clique."""


class NotATreeError(InferenceError, ValueError):
    """An exact tree schedule was asked to run on a graph with cycles."""


class InfeasibleModelError(InferenceError):
    """Every joint assignment of the model has probability zero."""
