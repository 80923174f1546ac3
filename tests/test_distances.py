from __future__ import annotations

import numpy as np
import pytest
import scipy.spatial.distance as ssd

from recurtrace.distances.matrix import DistanceMatrix
from recurtrace.distances.metrics import resolve_metric
from recurtrace.errors import DimensionMismatch, InvalidMetric


def _cloud(n: int, d: int = 3, seed: int = 0) -> np.ndarray:
    return np.random.default_rng(seed).normal(size=(n, d))


@pytest.mark.parametrize("metric", ["euclidean", "manhattan", "chebyshev", "max"])
def test_distance_transpose_symmetry(metric: str) -> None:
    x, y = _cloud(6, seed=1), _cloud(4, seed=2)
    d_xy = DistanceMatrix(x, y, metric).dense()
    d_yx = DistanceMatrix(y, x, metric).dense()
    assert d_xy.shape == (6, 4)
    np.testing.assert_allclose(d_xy, d_yx.T)


def test_self_matrix_matches_pairwise_and_is_symmetric() -> None:
    x = _cloud(12)
    d = DistanceMatrix(x).dense()
    np.testing.assert_allclose(d, ssd.cdist(x, x), atol=1e-12)
    np.testing.assert_array_equal(d, d.T)
    assert np.all(np.diag(d) == 0.0)


@pytest.mark.parametrize("workers", [1, 3])
def test_streamed_rows_match_dense(workers: int) -> None:
    x = _cloud(23)
    dense = DistanceMatrix(x, mode="dense").dense()
    dm = DistanceMatrix(x, mode="rows", chunk_rows=4, workers=workers)
    assert not dm.is_dense
    rows = np.vstack([row for _, row in dm.iter_rows()])
    np.testing.assert_allclose(rows, dense, atol=1e-12)
    np.testing.assert_allclose(dm.row(7), dense[7], atol=1e-12)


def test_upper_rows_visit_each_pair_once() -> None:
    x = _cloud(17)
    for mode in ("dense", "rows"):
        dm = DistanceMatrix(x, mode=mode, chunk_rows=5)
        upper = np.concatenate([values for _, values in dm.iter_upper_rows()])
        np.testing.assert_allclose(upper, ssd.pdist(x), atol=1e-12)


def test_upper_row_blocks_cover_upper_triangle() -> None:
    x = _cloud(11)
    dense = ssd.squareform(ssd.pdist(x))
    dm = DistanceMatrix(x, mode="rows", chunk_rows=4)
    for start, block in dm.iter_row_blocks(upper=True):
        for k in range(block.shape[0]):
            i = start + k
            np.testing.assert_allclose(block[k, k:], dense[i, i + 1 :], atol=1e-12)


def test_auto_mode_switches_to_rows() -> None:
    x = _cloud(30)
    assert DistanceMatrix(x).is_dense
    assert not DistanceMatrix(x, max_dense_entries=100).is_dense


def test_dimension_mismatch() -> None:
    with pytest.raises(DimensionMismatch):
        DistanceMatrix(np.zeros((3, 2)), np.zeros((4, 3)))


def test_one_dimensional_series_are_points() -> None:
    dm = DistanceMatrix([0.0, 1.0, 2.0, 10.0], metric=lambda p, q: float(abs(p[0] - q[0])))
    assert dm.shape == (4, 4)
    assert dm.dense()[0, 3] == pytest.approx(10.0)


def test_empty_point_cloud() -> None:
    dm = DistanceMatrix(np.zeros((0, 2)), np.zeros((5, 2)))
    assert dm.dense().shape == (0, 5)
    assert DistanceMatrix(np.zeros((0, 2))).dense().shape == (0, 0)


def test_custom_metric_object() -> None:
    class Absolute:
        name = "absolute"

        def distance(self, p: np.ndarray, q: np.ndarray) -> float:
            return float(np.sum(np.abs(p - q)))

    x, y = _cloud(5, seed=3), _cloud(6, seed=4)
    custom = DistanceMatrix(x, y, Absolute()).dense()
    np.testing.assert_allclose(custom, DistanceMatrix(x, y, "manhattan").dense())
    assert resolve_metric(Absolute()).name == "absolute"


def test_negative_metric_is_rejected() -> None:
    with pytest.raises(InvalidMetric):
        DistanceMatrix(_cloud(3), _cloud(4, seed=5), lambda p, q: -1.0).dense()


def test_asymmetric_metric_is_rejected_in_self_mode() -> None:
    def skewed(p: np.ndarray, q: np.ndarray) -> float:
        return float(abs(p[0] - q[0]) + (1.0 if p[0] < q[0] else 0.0))

    with pytest.raises(InvalidMetric):
        DistanceMatrix(np.arange(10.0), metric=skewed)


def test_unknown_metric_name() -> None:
    with pytest.raises(InvalidMetric):
        resolve_metric("mahalanobis-ish")


def test_metric_call_on_single_points() -> None:
    m = resolve_metric("chebyshev")
    assert m([0.0, 0.0], [3.0, -4.0]) == pytest.approx(4.0)
    assert resolve_metric("euclidean")([0.0, 0.0], [3.0, 4.0]) == pytest.approx(5.0)
