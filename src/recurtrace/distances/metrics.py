"""Distance metrics used to compare trajectory points.

A metric is either one of the named built-ins, backed by
``scipy.spatial.distance``, or a custom capability: any object exposing
``distance(p, q)`` or any plain callable ``f(p, q)``. The engine only
relies on non-negativity and symmetry; custom metrics are checked for
both when their values are computed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

import numpy as np
import scipy.spatial.distance as ssd

from recurtrace.errors import InvalidMetric

logger = logging.getLogger(__name__)

DistanceFunc = Callable[[np.ndarray, np.ndarray], float]

BUILTIN_METRICS: dict[str, str] = {
    "euclidean": "euclidean",
    "manhattan": "cityblock",
    "cityblock": "cityblock",
    "chebyshev": "chebyshev",
    "max": "chebyshev",
}


@dataclass(frozen=True)
class Metric:
    """A resolved distance metric.

    Exactly one of ``scipy_name`` (built-in) or ``func`` (custom) is set.
    """

    name: str
    scipy_name: Optional[str] = None
    func: Optional[DistanceFunc] = None

    @property
    def builtin(self) -> bool:
        return self.scipy_name is not None

    def __call__(self, p: Any, q: Any) -> float:
        u = np.atleast_1d(np.asarray(p, dtype=float))
        v = np.atleast_1d(np.asarray(q, dtype=float))
        if self.builtin:
            return float(ssd.cdist(u[None, :], v[None, :], metric=self.scipy_name)[0, 0])
        d = float(self.func(u, v))
        self._check_values(np.asarray([d]))
        return d

    def pairwise(self, x: np.ndarray, y: np.ndarray) -> np.ndarray:
        """Dense block of distances, shape ``(len(x), len(y))``."""
        if x.shape[0] == 0 or y.shape[0] == 0:
            return np.zeros((x.shape[0], y.shape[0]), dtype=float)
        if self.builtin:
            return ssd.cdist(x, y, metric=self.scipy_name)
        d = ssd.cdist(x, y, metric=self.func)
        self._check_values(d)
        return d

    def condensed(self, x: np.ndarray) -> np.ndarray:
        """Upper-triangle distances of ``x`` against itself (``pdist`` order)."""
        if x.shape[0] < 2:
            return np.zeros(0, dtype=float)
        if self.builtin:
            return ssd.pdist(x, metric=self.scipy_name)
        d = ssd.pdist(x, metric=self.func)
        self._check_values(d)
        return d

    def check_symmetry(self, x: np.ndarray, *, n_pairs: int = 32, rng_seed: int = 7) -> None:
        """Spot-check a custom metric for symmetry on a sample of point pairs.

        Built-in metrics are symmetric and skipped.
        """
        n = int(x.shape[0])
        if self.builtin or n < 2:
            return
        rng = np.random.default_rng(int(rng_seed))
        k = int(min(n_pairs, n * (n - 1) // 2))
        i = rng.integers(0, n, size=k, endpoint=False)
        j = rng.integers(0, n, size=k, endpoint=False)
        for a, b in zip(i, j):
            if a == b:
                continue
            d_ab = float(self.func(x[a], x[b]))
            d_ba = float(self.func(x[b], x[a]))
            if not np.isclose(d_ab, d_ba, rtol=1e-9, atol=1e-12):
                raise InvalidMetric(
                    f"Metric {self.name!r} is asymmetric: d({a},{b})={d_ab!r} but d({b},{a})={d_ba!r}"
                )

    def _check_values(self, d: np.ndarray) -> None:
        if d.size == 0:
            return
        if not np.all(np.isfinite(d)):
            raise InvalidMetric(f"Metric {self.name!r} returned a non-finite distance")
        lowest = float(np.min(d))
        if lowest < 0:
            raise InvalidMetric(f"Metric {self.name!r} returned a negative distance ({lowest!r})")


def resolve_metric(spec: Any = "euclidean") -> Metric:
    """Turn a metric name, a distance object or a callable into a ``Metric``."""
    if isinstance(spec, Metric):
        return spec
    if isinstance(spec, str):
        key = spec.strip().lower()
        if key not in BUILTIN_METRICS:
            known = ", ".join(sorted(BUILTIN_METRICS))
            raise InvalidMetric(f"Unknown metric {spec!r} (known: {known})")
        return Metric(name=key, scipy_name=BUILTIN_METRICS[key])

    distance = getattr(spec, "distance", None)
    if callable(distance):
        name = str(getattr(spec, "name", type(spec).__name__))
        logger.debug("Using custom metric object %s", name)
        return Metric(name=name, func=distance)
    if callable(spec):
        name = str(getattr(spec, "__name__", type(spec).__name__))
        logger.debug("Using custom metric callable %s", name)
        return Metric(name=name, func=spec)

    raise InvalidMetric(f"Cannot use {spec!r} as a distance metric")
