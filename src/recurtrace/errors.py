"""Validation errors raised by recurtrace.

All of them are deterministic input-validation failures raised at the
point of detection. They subclass ``ValueError`` so callers that already
guard numeric code with ``except ValueError`` keep working.
"""

from __future__ import annotations


class RecurtraceError(ValueError):
    """Base class for recurtrace validation errors."""


class DimensionMismatch(RecurtraceError):
    """Two point clouds do not share the same embedding dimension."""


class ShapeMismatch(RecurtraceError):
    """Two recurrence matrices (or trajectories) have different shapes."""


class InvalidMetric(RecurtraceError):
    """A distance function returned a negative, non-finite or asymmetric value."""


class InvalidRate(RecurtraceError):
    """A recurrence rate lies outside [0, 1]."""


class UnsupportedShape(RecurtraceError):
    """The matrix has no diagonal semantics for the requested operation."""
