from __future__ import annotations

from typing import Any

import numpy as np


def as_point_cloud(x: Any, *, dim: int | None = None) -> np.ndarray:
    """Coerce a trajectory into a read-only ``(N, D)`` float array.

    A 1D series is treated as N points of dimension 1. Row order is the
    time order and becomes the recurrence matrix index.

    Parameters
    ----------
    x : sequence of points, 1D series or array of shape (N, D)
    dim : expected dimension, only used to shape an empty input
    """
    if isinstance(x, np.ndarray) and x.ndim == 2 and x.dtype == float and not x.flags.writeable:
        return x

    pts = np.array(x, dtype=float)
    if pts.size == 0:
        d = int(dim) if dim is not None else (int(pts.shape[1]) if pts.ndim == 2 else 1)
        pts = np.empty((0, d), dtype=float)
    elif pts.ndim == 1:
        pts = pts[:, None]
    elif pts.ndim != 2:
        raise ValueError(f"A point cloud must be 1D or 2D, got {pts.ndim} dimensions")

    if pts.shape[1] < 1:
        raise ValueError("Points must have dimension >= 1")
    if not np.all(np.isfinite(pts)):
        raise ValueError("Point cloud contains non-finite values")

    pts.setflags(write=False)
    return pts
