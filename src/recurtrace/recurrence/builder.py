"""Construction of self, cross and joint recurrence matrices.

Entry ``(i, j)`` is recurrent iff ``D[i, j] <= epsilon`` (``epsilon_i``
for per-row thresholds). Distances are consumed one block of rows at a
time; blocks can be compared in a thread pool and are merged in row
order.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Optional, Tuple

import numpy as np

from recurtrace.distances.matrix import DEFAULT_CHUNK_ROWS, DistanceMatrix
from recurtrace.errors import ShapeMismatch
from recurtrace.recurrence.matrix import DiagonalPolicy, RecurrenceMatrix
from recurtrace.recurrence.thresholds import GlobalRate, ResolvedThreshold, resolve_threshold
from recurtrace.utils.parallel import ordered_map

logger = logging.getLogger(__name__)

Entries = Tuple[np.ndarray, np.ndarray]


@dataclass(frozen=True)
class RecurrenceConfig:
    """Configuration for building a recurrence matrix."""

    threshold: Any = GlobalRate(0.05)
    metric: Any = "euclidean"
    kind: str = "self"  # "self", "cross" or "joint"
    diagonal: DiagonalPolicy = DiagonalPolicy.NATURAL
    # Second trajectory of a joint matrix; None reuses threshold and metric.
    threshold_y: Any = None
    metric_y: Any = None

    mode: str = "auto"  # distance access: "auto", "dense" or "rows"
    chunk_rows: int = DEFAULT_CHUNK_ROWS
    workers: int = 1


def _concat(parts: Iterable[Entries]) -> Entries:
    rows, cols = [], []
    for r, c in parts:
        rows.append(r)
        cols.append(c)
    if not rows:
        return np.zeros(0, dtype=np.int64), np.zeros(0, dtype=np.int64)
    return np.concatenate(rows).astype(np.int64), np.concatenate(cols).astype(np.int64)


def _block_entries(start: int, block: np.ndarray, cut: Any, upper: bool) -> Entries:
    mask = block <= cut
    if upper:
        mask = np.triu(mask)
    r, c = np.nonzero(mask)
    return r + start, c + (start + 1 if upper else 0)


def _apply_diagonal(rows: np.ndarray, cols: np.ndarray, n: int, diagonal: DiagonalPolicy) -> Entries:
    if diagonal is DiagonalPolicy.NATURAL:
        return rows, cols
    off = rows != cols
    rows, cols = rows[off], cols[off]
    if diagonal is DiagonalPolicy.INCLUDE:
        idx = np.arange(n, dtype=np.int64)
        rows, cols = np.concatenate([rows, idx]), np.concatenate([cols, idx])
    return rows, cols


def recurrence_matrix_from_distances(
    distances: DistanceMatrix,
    threshold: Any,
    *,
    diagonal: DiagonalPolicy = DiagonalPolicy.NATURAL,
    kind: Optional[str] = None,
) -> RecurrenceMatrix:
    """Threshold a ``DistanceMatrix`` into a ``RecurrenceMatrix``.

    ``threshold`` is a specification (resolved here) or an already
    ``ResolvedThreshold``. A self distance matrix with a scalar threshold
    yields a symmetric matrix built from the upper triangle only; per-row
    thresholds break symmetry and are built from full rows.
    """
    diagonal = DiagonalPolicy(diagonal)
    self_mode = distances.self_mode
    if kind is None:
        kind = "self" if self_mode else "cross"
    if not self_mode:
        diagonal = DiagonalPolicy.NATURAL

    resolved = threshold if isinstance(threshold, ResolvedThreshold) else resolve_threshold(
        threshold, distances, diagonal=diagonal
    )
    n, m = distances.shape
    upper = self_mode and not resolved.is_local

    def compare(item: Tuple[int, np.ndarray]) -> Entries:
        start, block = item
        cut = resolved.column_vector(start, start + block.shape[0])
        return _block_entries(start, block, cut, upper)

    rows, cols = _concat(ordered_map(compare, distances.iter_row_blocks(upper=upper), workers=distances.workers))

    if upper and diagonal is DiagonalPolicy.NATURAL and float(resolved.value) >= 0.0:
        # Distance to self is zero, recurrent for any non-negative cutoff.
        idx = np.arange(n, dtype=np.int64)
        rows, cols = np.concatenate([rows, idx]), np.concatenate([cols, idx])
    elif self_mode:
        rows, cols = _apply_diagonal(rows, cols, n, diagonal)

    R = RecurrenceMatrix.from_coordinates(
        rows,
        cols,
        (n, m),
        kind=kind,
        symmetric=upper,
        threshold=resolved,
        diagonal=diagonal if self_mode else None,
    )
    logger.debug("Built %r", R)
    return R


def recurrence_matrix(
    x: Any,
    threshold: Any,
    *,
    metric: Any = "euclidean",
    diagonal: DiagonalPolicy = DiagonalPolicy.NATURAL,
    mode: str = "auto",
    chunk_rows: int = DEFAULT_CHUNK_ROWS,
    workers: int = 1,
) -> RecurrenceMatrix:
    """Self-recurrence matrix of one trajectory.

    Symmetric for scalar thresholds (Fixed, FixedScaled, GlobalRate);
    ``LocalRate`` gives each row its own cutoff and the result is in
    general not symmetric.
    """
    dm = DistanceMatrix(x, None, metric, mode=mode, chunk_rows=chunk_rows, workers=workers)
    return recurrence_matrix_from_distances(dm, threshold, diagonal=diagonal, kind="self")


def cross_recurrence_matrix(
    x: Any,
    y: Any,
    threshold: Any,
    *,
    metric: Any = "euclidean",
    mode: str = "auto",
    chunk_rows: int = DEFAULT_CHUNK_ROWS,
    workers: int = 1,
) -> RecurrenceMatrix:
    """Cross-recurrence matrix of shape ``(len(x), len(y))``. No symmetry is assumed."""
    if y is x:
        # The same trajectory twice is still a cross matrix, stored in full.
        y = np.array(y, dtype=float)
    dm = DistanceMatrix(x, y, metric, mode=mode, chunk_rows=chunk_rows, workers=workers)
    return recurrence_matrix_from_distances(dm, threshold, kind="cross")


def joint_recurrence_matrix(a: RecurrenceMatrix, b: RecurrenceMatrix) -> RecurrenceMatrix:
    """Entrywise AND of two recurrence matrices of identical shape."""
    if a.shape != b.shape:
        raise ShapeMismatch(f"Joint recurrence needs identical shapes, got {a.shape} and {b.shape}")
    both = a.to_sparse().multiply(b.to_sparse())
    # The diagonal policy carries over only when both inputs agree on it.
    diagonal = a.diagonal_policy if a.diagonal_policy == b.diagonal_policy else None
    return RecurrenceMatrix(
        both,
        kind="joint",
        symmetric=a.symmetric and b.symmetric,
        threshold=(a.threshold, b.threshold),
        diagonal=diagonal,
    )


def joint_recurrence_from_trajectories(
    x: Any,
    y: Any,
    threshold_x: Any,
    threshold_y: Any = None,
    *,
    metric_x: Any = "euclidean",
    metric_y: Any = None,
    diagonal: DiagonalPolicy = DiagonalPolicy.NATURAL,
    mode: str = "auto",
    chunk_rows: int = DEFAULT_CHUNK_ROWS,
    workers: int = 1,
) -> RecurrenceMatrix:
    """Joint recurrence of two trajectories sharing the same time index.

    Each trajectory gets its own self-recurrence matrix (its own metric and
    threshold, defaulting to those of ``x``); the results are ANDed.
    """
    n_x, n_y = len(x), len(y)
    if n_x != n_y:
        raise ShapeMismatch(f"Joint recurrence needs trajectories of equal length, got {n_x} and {n_y}")
    opts = dict(diagonal=diagonal, mode=mode, chunk_rows=chunk_rows, workers=workers)
    rx = recurrence_matrix(x, threshold_x, metric=metric_x, **opts)
    ry = recurrence_matrix(
        y,
        threshold_x if threshold_y is None else threshold_y,
        metric=metric_x if metric_y is None else metric_y,
        **opts,
    )
    return joint_recurrence_matrix(rx, ry)


def build_recurrence(config: RecurrenceConfig, x: Any, y: Any = None) -> RecurrenceMatrix:
    """Build the recurrence matrix described by ``config``."""
    opts = dict(mode=config.mode, chunk_rows=config.chunk_rows, workers=config.workers)
    if config.kind == "self":
        return recurrence_matrix(x, config.threshold, metric=config.metric, diagonal=config.diagonal, **opts)
    if y is None:
        raise ValueError(f"A {config.kind} recurrence matrix needs a second trajectory")
    if config.kind == "cross":
        return cross_recurrence_matrix(x, y, config.threshold, metric=config.metric, **opts)
    if config.kind == "joint":
        return joint_recurrence_from_trajectories(
            x,
            y,
            config.threshold,
            config.threshold_y,
            metric_x=config.metric,
            metric_y=config.metric_y,
            diagonal=config.diagonal,
            **opts,
        )
    raise ValueError(f"Unknown recurrence kind: {config.kind!r}")
