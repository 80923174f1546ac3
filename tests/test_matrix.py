from __future__ import annotations

import numpy as np
import pytest

from recurtrace.recurrence.matrix import RecurrenceMatrix


def _random_bool(n: int, m: int, p: float = 0.3, seed: int = 0) -> np.ndarray:
    return np.random.default_rng(seed).uniform(size=(n, m)) < p


def test_dense_round_trip_and_queries() -> None:
    a = _random_bool(6, 9)
    R = RecurrenceMatrix.from_dense(a)
    assert R.shape == (6, 9)
    assert R.nnz == int(a.sum())
    np.testing.assert_array_equal(R.to_dense(), a)
    for i in range(6):
        np.testing.assert_array_equal(R.row(i), np.flatnonzero(a[i]))
    for j in range(9):
        np.testing.assert_array_equal(R.column(j), np.flatnonzero(a[:, j]))
    for k in (-3, 0, 2, 8):
        np.testing.assert_array_equal(R.diagonal(k), np.diagonal(a, offset=k))
    assert R.diagonal(20).size == 0


def test_coordinates_are_row_major_and_restartable() -> None:
    a = _random_bool(5, 5, seed=1)
    R = RecurrenceMatrix.from_dense(a)
    first = list(R)
    assert first == sorted(first)
    assert list(R) == first
    rows, cols = R.coordinates()
    assert list(zip(rows.tolist(), cols.tolist())) == first


def test_symmetric_storage_reads_both_halves() -> None:
    a = _random_bool(8, 8, seed=2)
    a = a | a.T
    R = RecurrenceMatrix.from_dense(a, kind="self")
    assert R.symmetric
    assert R.nnz == int(a.sum())
    np.testing.assert_array_equal(R.to_dense(), a)
    for i, j in zip(*np.nonzero(a)):
        assert (i, j) in R and (j, i) in R
    np.testing.assert_array_equal(R.column(3), np.flatnonzero(a[:, 3]))


def test_membership_out_of_range() -> None:
    R = RecurrenceMatrix.from_dense(np.ones((2, 3), dtype=bool))
    assert (1, 2) in R
    assert (2, 0) not in R
    assert (-1, 0) not in R
    with pytest.raises(IndexError):
        R.row(5)


def test_to_sparse_is_a_copy() -> None:
    a = _random_bool(4, 4, seed=3)
    R = RecurrenceMatrix.from_dense(a)
    s = R.to_sparse()
    s.data[:] = False
    np.testing.assert_array_equal(R.to_dense(), a)


def test_to_frame() -> None:
    a = np.eye(3, dtype=bool)
    df = RecurrenceMatrix.from_dense(a).to_frame()
    assert list(df.columns) == ["row", "col"]
    assert df.values.tolist() == [[0, 0], [1, 1], [2, 2]]


def test_recurrence_rate() -> None:
    a = np.ones((4, 4), dtype=bool)
    a[0, 1] = a[1, 0] = False
    R = RecurrenceMatrix.from_dense(a, kind="self")
    assert R.recurrence_rate() == pytest.approx(14 / 16)
    assert R.recurrence_rate(exclude_diagonal=True) == pytest.approx(10 / 12)


def test_from_coordinates_merges_duplicates() -> None:
    R = RecurrenceMatrix.from_coordinates([0, 0, 1], [1, 1, 2], (3, 3))
    assert R.nnz == 2
    assert set(R) == {(0, 1), (1, 2)}


def test_unknown_kind() -> None:
    with pytest.raises(ValueError):
        RecurrenceMatrix.from_dense(np.eye(2), kind="mutual")
