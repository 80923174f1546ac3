"""recurtrace: recurrence matrices for dynamical-system trajectories.

The package computes distance matrices between trajectories, resolves a
recurrence threshold policy into a numeric cutoff, builds sparse self,
cross and joint recurrence matrices, and thins thickened diagonal lines
(skeletonization).

Core implementation:
- NumPy/SciPy for the numerics and sparse storage.
- pandas for tabular views of coordinates and lines.
- networkx for grouping adjacent diagonal lines during skeletonization.
"""

from __future__ import annotations

from recurtrace.distances.matrix import DistanceMatrix
from recurtrace.distances.metrics import Metric, resolve_metric
from recurtrace.errors import (
    DimensionMismatch,
    InvalidMetric,
    InvalidRate,
    RecurtraceError,
    ShapeMismatch,
    UnsupportedShape,
)
from recurtrace.io import load_recurrence_matrix, save_recurrence_matrix
from recurtrace.phase.trajectory import as_point_cloud
from recurtrace.recurrence.builder import (
    DiagonalPolicy,
    RecurrenceConfig,
    build_recurrence,
    cross_recurrence_matrix,
    joint_recurrence_from_trajectories,
    joint_recurrence_matrix,
    recurrence_matrix,
)
from recurtrace.recurrence.lines import (
    LineStructure,
    determinism,
    diagonal_line_histogram,
    diagonal_lines,
    line_table,
    max_line_length,
    mean_line_length,
)
from recurtrace.recurrence.matrix import RecurrenceMatrix
from recurtrace.recurrence.skeleton import skeletonize
from recurtrace.recurrence.thresholds import (
    Fixed,
    FixedScaled,
    GlobalRate,
    LocalRate,
    ResolvedThreshold,
    resolve_threshold,
)

__all__ = [
    "DiagonalPolicy",
    "DimensionMismatch",
    "DistanceMatrix",
    "Fixed",
    "FixedScaled",
    "GlobalRate",
    "InvalidMetric",
    "InvalidRate",
    "LineStructure",
    "LocalRate",
    "Metric",
    "RecurrenceConfig",
    "RecurrenceMatrix",
    "RecurtraceError",
    "ResolvedThreshold",
    "ShapeMismatch",
    "UnsupportedShape",
    "as_point_cloud",
    "build_recurrence",
    "cross_recurrence_matrix",
    "determinism",
    "diagonal_line_histogram",
    "diagonal_lines",
    "joint_recurrence_from_trajectories",
    "joint_recurrence_matrix",
    "line_table",
    "load_recurrence_matrix",
    "max_line_length",
    "mean_line_length",
    "recurrence_matrix",
    "resolve_metric",
    "resolve_threshold",
    "save_recurrence_matrix",
    "skeletonize",
]
