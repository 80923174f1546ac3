"""Recurrence threshold policies and their resolution into numeric cutoffs.

A threshold specification is one of four frozen dataclasses:

- ``Fixed(epsilon)``: use epsilon directly.
- ``FixedScaled(alpha, scale)``: alpha times a statistic of the distances.
- ``GlobalRate(rate)``: the cutoff that makes ``rate`` of all entries recurrent.
- ``LocalRate(rate)``: one cutoff per row, each making ``rate`` of that row
  recurrent (fixed amount of neighbours).

``resolve_threshold`` is the single dispatch point. Rate-based cutoffs
are order statistics of the distance population:

    k = floor(rate * count + 0.5)    (round half up)
    epsilon = k-th smallest distance

so that at least ``k`` entries satisfy ``D <= epsilon`` (exactly ``k``
without ties). ``k == 0`` gives a cutoff just below the smallest
distance (empty recurrence); ``rate == 1`` gives the largest distance.

Population convention for self matrices: the symmetric duplicate is
counted (the full N x N matrix), the diagonal is counted only under
``DiagonalPolicy.NATURAL``. Cross matrices count all N x M entries.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Optional, Tuple, Union

import numpy as np

from recurtrace.distances.matrix import DistanceMatrix
from recurtrace.errors import InvalidRate
from recurtrace.recurrence.matrix import DiagonalPolicy
from recurtrace.utils.parallel import chunk_bounds, ordered_map

logger = logging.getLogger(__name__)

# Largest number of distance values gathered at once by the streamed selection.
DEFAULT_SELECT_BUDGET = 1 << 20

SCALE_NAMES = ("mean", "median", "max", "min", "std")


def _check_rate(rate: float) -> float:
    r = float(rate)
    if not np.isfinite(r) or r < 0.0 or r > 1.0:
        raise InvalidRate(f"Recurrence rate must lie in [0, 1], got {rate!r}")
    return r


@dataclass(frozen=True)
class Fixed:
    epsilon: float

    def __post_init__(self) -> None:
        eps = float(self.epsilon)
        if not np.isfinite(eps) or eps < 0:
            raise ValueError(f"Fixed threshold must be finite and >= 0, got {self.epsilon!r}")


@dataclass(frozen=True)
class FixedScaled:
    """Threshold ``alpha * scale(distances)``.

    ``scale`` is "mean", "median", "max", "min", "std", a tuple
    ``("quantile", q)`` or a callable mapping a 1D array of distances to a
    float. A callable sees all values at once, so it is refused for
    row-streamed distance matrices. Median and quantiles are nearest-rank
    order statistics. The statistic runs over every unordered pair once
    for self distance matrices (the zero self-distances are left out) and
    over all entries otherwise.
    """

    alpha: float
    scale: Any = "mean"

    def __post_init__(self) -> None:
        a = float(self.alpha)
        if not np.isfinite(a) or a < 0:
            raise ValueError(f"Scale factor must be finite and >= 0, got {self.alpha!r}")
        s = self.scale
        if callable(s):
            return
        if isinstance(s, tuple):
            if len(s) != 2 or s[0] != "quantile" or not 0.0 <= float(s[1]) <= 1.0:
                raise ValueError(f"Invalid quantile scale: {s!r}")
            return
        if s not in SCALE_NAMES:
            raise ValueError(f"Unknown scale statistic: {s!r}")


@dataclass(frozen=True)
class GlobalRate:
    rate: float

    def __post_init__(self) -> None:
        _check_rate(self.rate)


@dataclass(frozen=True)
class LocalRate:
    rate: float

    def __post_init__(self) -> None:
        _check_rate(self.rate)


ThresholdSpec = Union[Fixed, FixedScaled, GlobalRate, LocalRate]


@dataclass(frozen=True)
class ResolvedThreshold:
    """A resolved cutoff: one scalar, or one value per row (``LocalRate``)."""

    value: Optional[float] = None
    per_row: Optional[np.ndarray] = None
    spec: Optional[ThresholdSpec] = None

    @property
    def is_local(self) -> bool:
        return self.per_row is not None

    def for_row(self, i: int) -> float:
        if self.per_row is not None:
            return float(self.per_row[int(i)])
        return float(self.value)

    def column_vector(self, start: int, stop: int) -> Any:
        """Cutoffs for rows ``start:stop`` shaped to broadcast against a row block."""
        if self.per_row is not None:
            return self.per_row[start:stop, None]
        return float(self.value)


def as_threshold_spec(spec: Any) -> ThresholdSpec:
    """Accept a plain number as shorthand for ``Fixed``."""
    if isinstance(spec, (Fixed, FixedScaled, GlobalRate, LocalRate)):
        return spec
    if isinstance(spec, (int, float, np.floating, np.integer)) and not isinstance(spec, bool):
        return Fixed(float(spec))
    raise TypeError(f"Not a recurrence threshold specification: {spec!r}")


def rank_for_rate(rate: float, count: int) -> int:
    """Order-statistic rank (1-based) selected for ``rate`` out of ``count`` entries."""
    k = int(math.floor(float(rate) * int(count) + 0.5))
    return min(max(k, 0), int(count))


# -- distance populations ----------------------------------------------------


class _Population:
    """The multiset of distances a threshold is selected from.

    Values are visited as "unique" chunks: each unordered pair once for
    self distance matrices (every value then stands for ``weight == 2``
    entries), each entry once otherwise. Self matrices under NATURAL also
    hold ``diag_zeros`` zero distances from the diagonal.
    """

    def __init__(self, distances: Any, diagonal: DiagonalPolicy) -> None:
        include_diag = DiagonalPolicy(diagonal) is DiagonalPolicy.NATURAL
        self.dm: Optional[DistanceMatrix] = None
        self.array: Optional[np.ndarray] = None
        if isinstance(distances, DistanceMatrix):
            self.dm = distances
            self.n, self.m = distances.shape
            self.paired = distances.self_mode
            self.workers = distances.workers
            self.chunk_rows = distances.chunk_rows
        else:
            a = np.asarray(distances, dtype=float)
            if a.ndim != 2:
                raise ValueError("A distance matrix must be 2D")
            self.array = a
            self.n, self.m = int(a.shape[0]), int(a.shape[1])
            self.paired = False
            self.workers = 1
            self.chunk_rows = 256
        square = self.n == self.m
        self.drop_diag = square and not include_diag and (self.paired or self.array is not None)
        self.weight = 2 if self.paired else 1
        self.diag_zeros = self.n if (self.paired and include_diag) else 0

    @property
    def dense(self) -> bool:
        return self.array is not None or self.dm.is_dense

    def total(self) -> int:
        count = self.n * self.m
        if self.drop_diag:
            count -= self.n
        return count

    def unique_count(self) -> int:
        if self.paired:
            return self.n * (self.n - 1) // 2
        return self.total()

    def unique_values(self) -> np.ndarray:
        if self.array is not None:
            if self.drop_diag:
                return self.array[~np.eye(self.n, dtype=bool)]
            return self.array.ravel()
        return self.dm.offdiagonal_values()

    def unique_chunks(self) -> Iterator[np.ndarray]:
        if self.dense:
            yield self.unique_values()
            return
        if self.paired:
            for _, values in self.dm.iter_upper_rows():
                yield values
        else:
            for _, values in self.dm.iter_rows():
                yield values

    def rows(self) -> Iterator[Tuple[int, np.ndarray]]:
        source = self.dm.iter_rows() if self.dm is not None else enumerate(self.array)
        for i, values in source:
            if self.drop_diag:
                values = np.delete(values, i)
            yield i, values


def _kth_smallest(values: np.ndarray, k: int) -> float:
    return float(np.partition(values, k - 1)[k - 1])


def _ordinal(value: float) -> int:
    # Non-negative float64 values sort like their bit patterns read as int64.
    return int(np.float64(abs(value)).view(np.int64))


def _from_ordinal(i: int) -> float:
    return float(np.int64(i).view(np.float64))


def _kth_smallest_streamed(
    chunks: Callable[[], Iterator[np.ndarray]],
    k: int,
    *,
    budget: int = DEFAULT_SELECT_BUDGET,
) -> float:
    """Exact k-th smallest value (1-based) of a re-iterable stream of distances.

    Bisects the bit patterns of the (non-negative) values with counting
    passes until the bracket ``(lo, hi]`` holding the answer contains at
    most ``budget`` values, then selects among those. Memory stays bounded
    by one chunk plus ``budget`` values and at most 64 passes are made.
    """
    lo_val, hi_val, total = np.inf, -np.inf, 0
    for c in chunks():
        if c.size:
            lo_val = min(lo_val, float(np.min(c)))
            hi_val = max(hi_val, float(np.max(c)))
            total += int(c.size)
    if total == 0:
        raise ValueError("Cannot select from an empty distance population")
    if k <= 1:
        return lo_val
    if k >= total:
        return hi_val

    # Invariant: count(v <= lo) == below < k <= count_hi == count(v <= hi).
    lo_i, hi_i = _ordinal(lo_val) - 1, _ordinal(hi_val)
    below, count_hi = 0, total
    passes = 0
    while count_hi - below > int(budget):
        if hi_i - lo_i <= 1:
            # Adjacent floats: every value left in the bracket equals hi.
            return _from_ordinal(hi_i)
        mid_i = (lo_i + hi_i) // 2
        mid = _from_ordinal(mid_i)
        c = sum(int(np.count_nonzero(chunk <= mid)) for chunk in chunks())
        passes += 1
        if c >= k:
            hi_i, count_hi = mid_i, c
        else:
            lo_i, below = mid_i, c

    lo = _from_ordinal(lo_i) if lo_i >= 0 else -np.inf
    hi = _from_ordinal(hi_i)
    inside = [chunk[(chunk > lo) & (chunk <= hi)] for chunk in chunks()]
    logger.debug("Streamed selection: k=%d of %d after %d counting passes", k, total, passes)
    return _kth_smallest(np.concatenate(inside), k - below)


# -- resolution ----------------------------------------------------------------


def _below(value: float) -> float:
    return float(np.nextafter(value, -np.inf))


def _population_min(pop: _Population) -> float:
    if pop.diag_zeros:
        return 0.0
    return min(float(np.min(c)) for c in pop.unique_chunks() if c.size)


def _kth_unique(pop: _Population, k: int, budget: int) -> float:
    if pop.dense:
        return _kth_smallest(pop.unique_values(), k)
    return _kth_smallest_streamed(pop.unique_chunks, k, budget=budget)


def _global_rate_threshold(rate: float, pop: _Population, budget: int) -> float:
    total = pop.total()
    if total == 0:
        return 0.0
    k = rank_for_rate(rate, total)
    if k == 0:
        return _below(_population_min(pop))
    # The diagonal zeros are the first order statistics.
    if k <= pop.diag_zeros:
        return 0.0
    k_unique = -(-(k - pop.diag_zeros) // pop.weight)
    return _kth_unique(pop, k_unique, budget)


def _row_threshold(rate: float, values: np.ndarray) -> float:
    if values.size == 0:
        return 0.0
    k = rank_for_rate(rate, values.size)
    if k == 0:
        return _below(float(np.min(values)))
    return _kth_smallest(values, k)


def _local_rate_thresholds(rate: float, pop: _Population) -> np.ndarray:
    out = np.empty(pop.n, dtype=float)
    rows = pop.rows()

    def batches() -> Iterator[list]:
        for s, e in chunk_bounds(0, pop.n, pop.chunk_rows):
            yield [next(rows) for _ in range(s, e)]

    def resolve(batch: list) -> list:
        return [(i, _row_threshold(rate, values)) for i, values in batch]

    for resolved in ordered_map(resolve, batches(), workers=pop.workers):
        for i, t in resolved:
            out[i] = t
    return out


def _scale_statistic(scale: Any, pop: _Population, budget: int) -> float:
    count = pop.unique_count()
    if callable(scale):
        if not pop.dense:
            raise ValueError(
                "A callable scale needs every distance at once; use a named statistic "
                "or a dense distance matrix instead of mode=\"rows\""
            )
        return float(scale(pop.unique_values()))
    if count == 0:
        return 0.0
    if scale == "max":
        return max(float(np.max(c)) for c in pop.unique_chunks() if c.size)
    if scale == "min":
        return min(float(np.min(c)) for c in pop.unique_chunks() if c.size)
    if scale in ("mean", "std"):
        mean = sum(float(np.sum(c)) for c in pop.unique_chunks()) / count
        if scale == "mean":
            return mean
        ss = sum(float(np.sum((c - mean) ** 2)) for c in pop.unique_chunks())
        return math.sqrt(ss / count)
    q = 0.5 if scale == "median" else float(scale[1])
    k = max(1, int(math.ceil(q * count)))
    return _kth_unique(pop, k, budget)


def resolve_threshold(
    spec: Any,
    distances: Any,
    *,
    diagonal: DiagonalPolicy = DiagonalPolicy.NATURAL,
    budget: int = DEFAULT_SELECT_BUDGET,
) -> ResolvedThreshold:
    """Resolve a threshold specification against a distance matrix.

    Parameters
    ----------
    spec : Fixed, FixedScaled, GlobalRate, LocalRate, or a number (Fixed)
    distances : a ``DistanceMatrix`` (dense or streamed) or a 2D array
    diagonal : diagonal policy of the matrix being built; decides whether
        the self-distances take part in rate-based selection
    budget : max values gathered at once by the streamed selection

    Returns
    -------
    ResolvedThreshold with ``value`` set, or ``per_row`` for ``LocalRate``.
    """
    spec = as_threshold_spec(spec)
    if isinstance(spec, Fixed):
        resolved = ResolvedThreshold(value=float(spec.epsilon), spec=spec)
    elif isinstance(spec, FixedScaled):
        pop = _Population(distances, diagonal)
        scale = _scale_statistic(spec.scale, pop, budget)
        resolved = ResolvedThreshold(value=float(spec.alpha) * scale, spec=spec)
    elif isinstance(spec, GlobalRate):
        pop = _Population(distances, diagonal)
        resolved = ResolvedThreshold(value=_global_rate_threshold(_check_rate(spec.rate), pop, budget), spec=spec)
    elif isinstance(spec, LocalRate):
        pop = _Population(distances, diagonal)
        per_row = _local_rate_thresholds(_check_rate(spec.rate), pop)
        per_row.setflags(write=False)
        resolved = ResolvedThreshold(per_row=per_row, spec=spec)
    else:  # pragma: no cover - as_threshold_spec only returns the four tags
        raise TypeError(f"Unsupported threshold specification: {spec!r}")

    if resolved.is_local:
        logger.debug("Resolved %s into %d per-row thresholds", spec, resolved.per_row.size)
    else:
        logger.debug("Resolved %s into epsilon=%r", spec, resolved.value)
    return resolved
