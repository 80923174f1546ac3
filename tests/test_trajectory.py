from __future__ import annotations

import numpy as np
import pytest

from recurtrace.phase.trajectory import as_point_cloud
from recurtrace.utils.parallel import chunk_bounds, ordered_map


def test_series_becomes_column_of_points() -> None:
    pts = as_point_cloud([1.0, 2.0, 3.0])
    assert pts.shape == (3, 1)
    assert not pts.flags.writeable


def test_points_are_copied() -> None:
    src = np.zeros((4, 2))
    pts = as_point_cloud(src)
    src[0, 0] = 5.0
    assert pts[0, 0] == 0.0


def test_empty_input_keeps_dimension() -> None:
    assert as_point_cloud([]).shape == (0, 1)
    assert as_point_cloud([], dim=3).shape == (0, 3)
    assert as_point_cloud(np.zeros((0, 4))).shape == (0, 4)


def test_rejects_bad_points() -> None:
    with pytest.raises(ValueError):
        as_point_cloud([[0.0, np.nan]])
    with pytest.raises(ValueError):
        as_point_cloud(np.zeros((2, 2, 2)))


def test_chunk_bounds() -> None:
    assert chunk_bounds(0, 7, 3) == [(0, 3), (3, 6), (6, 7)]
    assert chunk_bounds(0, 0, 3) == []


@pytest.mark.parametrize("workers", [1, 4])
def test_ordered_map_keeps_order(workers: int) -> None:
    out = list(ordered_map(lambda v: v * v, iter(range(50)), workers=workers))
    assert out == [v * v for v in range(50)]
