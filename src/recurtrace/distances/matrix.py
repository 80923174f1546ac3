"""Pairwise distance matrices between two trajectories.

A ``DistanceMatrix`` is either materialized once (``mode="dense"``) or
computed on demand, a block of rows at a time (``mode="rows"``), so that
threshold resolution and matrix construction can run with memory bounded
by ``chunk_rows * M`` instead of ``N * M``.

In self mode (``y`` omitted) only the upper triangle is computed and the
lower triangle is read by symmetry.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Iterator, Optional, Tuple

import numpy as np
import scipy.spatial.distance as ssd

from recurtrace.distances.metrics import Metric, resolve_metric
from recurtrace.errors import DimensionMismatch
from recurtrace.phase.trajectory import as_point_cloud
from recurtrace.utils.parallel import chunk_bounds, ordered_map

logger = logging.getLogger(__name__)

# 2**24 float64 entries is 128 MiB.
DEFAULT_MAX_DENSE_ENTRIES = 1 << 24
DEFAULT_CHUNK_ROWS = 256

Block = Callable[[int, int], np.ndarray]


class DistanceMatrix:
    """Distances ``D[i, j] = metric(X[i], Y[j])`` with dense or row-streamed access.

    Parameters
    ----------
    x : first point cloud (N points)
    y : second point cloud (M points); ``None`` (or ``x`` itself) for self mode
    metric : metric name, distance object or callable
    mode : "dense", "rows" or "auto" (dense when N*M <= max_dense_entries)
    chunk_rows : number of rows computed per block when streaming
    workers : threads used to compute row blocks concurrently
    """

    def __init__(
        self,
        x: Any,
        y: Any = None,
        metric: Any = "euclidean",
        *,
        mode: str = "auto",
        chunk_rows: int = DEFAULT_CHUNK_ROWS,
        workers: int = 1,
        max_dense_entries: int = DEFAULT_MAX_DENSE_ENTRIES,
    ) -> None:
        self.self_mode = y is None or y is x
        self.x = as_point_cloud(x)
        self.y = self.x if self.self_mode else as_point_cloud(y, dim=self.x.shape[1])
        self.metric: Metric = resolve_metric(metric)

        if (
            not self.self_mode
            and self.x.shape[0] > 0
            and self.y.shape[0] > 0
            and self.x.shape[1] != self.y.shape[1]
        ):
            raise DimensionMismatch(
                f"Point dimensions differ: {self.x.shape[1]} (x) vs {self.y.shape[1]} (y)"
            )

        if mode not in ("auto", "dense", "rows"):
            raise ValueError(f"Unknown distance mode: {mode!r}")
        if int(chunk_rows) < 1 or int(workers) < 1:
            raise ValueError("chunk_rows and workers must be >= 1")

        n, m = self.shape
        if mode == "auto":
            mode = "dense" if n * m <= int(max_dense_entries) else "rows"
        self.mode = mode
        self.chunk_rows = int(chunk_rows)
        self.workers = int(workers)

        if self.self_mode:
            self.metric.check_symmetry(self.x)

        self._dense: Optional[np.ndarray] = None
        self._condensed: Optional[np.ndarray] = None
        logger.debug(
            "DistanceMatrix %dx%d metric=%s mode=%s self=%s", n, m, self.metric.name, self.mode, self.self_mode
        )

    @property
    def shape(self) -> Tuple[int, int]:
        return int(self.x.shape[0]), int(self.y.shape[0])

    @property
    def symmetric(self) -> bool:
        return self.self_mode

    @property
    def is_dense(self) -> bool:
        return self.mode == "dense"

    def __len__(self) -> int:
        return self.shape[0]

    def __repr__(self) -> str:
        n, m = self.shape
        return f"DistanceMatrix(shape=({n}, {m}), metric={self.metric.name!r}, mode={self.mode!r})"

    # -- materialized access -------------------------------------------------

    def condensed(self) -> np.ndarray:
        """Upper-triangle distances (``pdist`` order). Self mode only."""
        if not self.self_mode:
            raise ValueError("condensed() requires a self distance matrix")
        if self._condensed is None:
            self._condensed = self.metric.condensed(self.x)
        return self._condensed

    def dense(self) -> np.ndarray:
        """The full ``(N, M)`` matrix, computed once and cached."""
        if self._dense is None:
            n, m = self.shape
            if self.self_mode:
                d = ssd.squareform(self.condensed()) if n >= 2 else np.zeros((n, n), dtype=float)
            else:
                d = np.empty((n, m), dtype=float)
                for start, stop, block in self._iter_blocks(self._cross_block, 0, n):
                    d[start:stop] = block
            d.setflags(write=False)
            self._dense = d
        return self._dense

    def offdiagonal_values(self) -> np.ndarray:
        """Distance values without the trivial self-pairs.

        Self mode returns each unordered pair once; cross mode returns all
        N*M entries.
        """
        if self.self_mode:
            return self.condensed()
        return self.dense().ravel()

    # -- streamed access -----------------------------------------------------

    def row(self, i: int) -> np.ndarray:
        n = self.shape[0]
        if not 0 <= int(i) < n:
            raise IndexError(f"Row {i} out of range for {n} rows")
        if self._dense is not None or self.is_dense:
            return self.dense()[int(i)]
        return self._full_block(int(i), int(i) + 1)[0]

    def iter_rows(self, start: int = 0, stop: Optional[int] = None) -> Iterator[Tuple[int, np.ndarray]]:
        """Yield ``(i, row)`` for every row, in order."""
        n = self.shape[0]
        stop = n if stop is None else min(int(stop), n)
        start = max(0, int(start))
        if self._dense is not None or self.is_dense:
            d = self.dense()
            for i in range(start, stop):
                yield i, d[i]
            return
        for s, _, block in self._iter_blocks(self._full_block, start, stop):
            for k, values in enumerate(block):
                yield s + k, values

    def iter_upper_rows(self) -> Iterator[Tuple[int, np.ndarray]]:
        """Yield ``(i, values)`` with the distances from point i to points i+1..N-1.

        Self mode only; every unordered pair is visited exactly once.
        """
        if not self.self_mode:
            raise ValueError("iter_upper_rows() requires a self distance matrix")
        n = self.shape[0]
        if self.is_dense or self._condensed is not None:
            c = self.condensed()
            for i in range(n):
                offset = n * i - i * (i + 1) // 2
                yield i, c[offset : offset + n - i - 1]
            return
        for s, _, block in self._iter_blocks(self._upper_block, 0, n):
            for k, values in enumerate(block):
                yield s + k, values[k:]

    def iter_row_blocks(self, *, upper: bool = False) -> Iterator[Tuple[int, np.ndarray]]:
        """Yield ``(start, block)`` row blocks covering the whole matrix.

        With ``upper=True`` (self mode only) ``block[k, c]`` is the distance
        between points ``start + k`` and ``start + 1 + c``; entries with
        ``c < k`` lie on or below the diagonal and must be ignored.
        """
        if upper and not self.self_mode:
            raise ValueError("upper row blocks require a self distance matrix")
        n = self.shape[0]
        if self._dense is not None or self.is_dense:
            d = self.dense()
            for s, e in chunk_bounds(0, n, self.chunk_rows):
                yield s, (d[s:e, s + 1 :] if upper else d[s:e])
            return
        compute = self._upper_block if upper else self._full_block
        for s, _, block in self._iter_blocks(compute, 0, n):
            yield s, block

    # -- block computation ---------------------------------------------------

    def _cross_block(self, start: int, stop: int) -> np.ndarray:
        return self.metric.pairwise(self.x[start:stop], self.y)

    def _full_block(self, start: int, stop: int) -> np.ndarray:
        block = self.metric.pairwise(self.x[start:stop], self.y)
        if self.self_mode:
            # Distance to self is zero for any metric.
            idx = np.arange(start, stop)
            block[idx - start, idx] = 0.0
        return block

    def _upper_block(self, start: int, stop: int) -> np.ndarray:
        # Row k of the block holds distances to points start+1..N-1; the
        # first k columns fall below the diagonal and are dropped by the caller.
        return self.metric.pairwise(self.x[start:stop], self.x[start + 1 :])

    def _iter_blocks(self, compute: Block, start: int, stop: int) -> Iterator[Tuple[int, int, np.ndarray]]:
        bounds = chunk_bounds(start, stop, self.chunk_rows)
        blocks = ordered_map(lambda b: compute(b[0], b[1]), bounds, workers=self.workers)
        for (s, e), block in zip(bounds, blocks):
            yield s, e, block
