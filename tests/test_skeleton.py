from __future__ import annotations

import numpy as np
import pytest

from recurtrace.errors import UnsupportedShape
from recurtrace.recurrence.builder import recurrence_matrix
from recurtrace.recurrence.lines import determinism, diagonal_lines
from recurtrace.recurrence.matrix import RecurrenceMatrix
from recurtrace.recurrence.skeleton import skeletonize
from recurtrace.recurrence.thresholds import GlobalRate


def _band(n: int, offsets: list[int], rows: range) -> np.ndarray:
    a = np.zeros((n, n), dtype=bool)
    for k in offsets:
        for i in rows:
            if 0 <= i + k < n:
                a[i, i + k] = True
    return a


def test_three_wide_band_keeps_central_diagonal() -> None:
    a = _band(20, [4, 5, 6], range(2, 10))
    S = skeletonize(RecurrenceMatrix.from_dense(a))
    expected = _band(20, [5], range(2, 10))
    np.testing.assert_array_equal(S.to_dense(), expected)


def test_band_around_line_of_identity_keeps_identity() -> None:
    a = _band(15, [-1, 0, 1], range(15))
    R = RecurrenceMatrix.from_dense(a, kind="self")
    assert R.symmetric
    S = skeletonize(R)
    np.testing.assert_array_equal(S.to_dense(), np.eye(15, dtype=bool))


def test_longer_line_wins_over_stub() -> None:
    a = _band(20, [3], range(0, 12))
    a |= _band(20, [2], range(4, 6))
    S = skeletonize(RecurrenceMatrix.from_dense(a))
    np.testing.assert_array_equal(S.to_dense(), _band(20, [3], range(0, 12)))


def test_two_wide_band_tie_breaks_to_lower_offset() -> None:
    a = _band(12, [2, 3], range(1, 6))
    S = skeletonize(RecurrenceMatrix.from_dense(a))
    np.testing.assert_array_equal(S.to_dense(), _band(12, [2], range(1, 6)))


def test_line_drifting_to_next_offset_keeps_both_segments() -> None:
    a = _band(40, [3], range(0, 12)) | _band(40, [2], range(11, 31))
    S = skeletonize(RecurrenceMatrix.from_dense(a))
    lines = [(ln.offset, ln.start, ln.length) for ln in diagonal_lines(S)]
    assert lines == [(2, 11, 20), (3, 0, 10)]
    assert skeletonize(S) == S


def test_overlapping_staircase_clears_only_the_shared_span() -> None:
    a = _band(40, [3], range(0, 12)) | _band(40, [2], range(6, 31))
    S = skeletonize(RecurrenceMatrix.from_dense(a))
    lines = [(ln.offset, ln.start, ln.length) for ln in diagonal_lines(S)]
    # Rows 5..11 of offset 3 run alongside offset 2; rows 0..4 lead into it.
    assert lines == [(2, 6, 25), (3, 0, 5)]
    assert skeletonize(S) == S
    assert set(S) <= set(RecurrenceMatrix.from_dense(a))


def test_symmetric_staircase_stays_symmetric() -> None:
    a = _band(40, [3], range(0, 12)) | _band(40, [2], range(6, 31))
    a |= a.T
    R = RecurrenceMatrix.from_dense(a, kind="self")
    assert R.symmetric
    dense = skeletonize(R).to_dense()
    np.testing.assert_array_equal(dense, dense.T)
    expected = _band(40, [2], range(6, 31)) | _band(40, [3], range(0, 5))
    np.testing.assert_array_equal(dense, expected | expected.T)


def test_collinear_lines_are_not_merged() -> None:
    a = _band(30, [5], range(0, 6)) | _band(30, [5], range(9, 16))
    S = skeletonize(RecurrenceMatrix.from_dense(a))
    lines = diagonal_lines(S)
    assert [(ln.offset, ln.start, ln.length) for ln in lines] == [(5, 0, 6), (5, 9, 7)]


def test_separate_bands_are_thinned_independently() -> None:
    a = _band(40, [10, 11, 12], range(0, 8)) | _band(40, [20, 21, 22], range(5, 15))
    S = skeletonize(RecurrenceMatrix.from_dense(a))
    expected = _band(40, [11], range(0, 8)) | _band(40, [21], range(5, 15))
    np.testing.assert_array_equal(S.to_dense(), expected)


def _trajectory_matrix() -> RecurrenceMatrix:
    t = np.linspace(0, 8 * np.pi, 300)
    x = np.column_stack([np.sin(t), np.cos(t)])
    return recurrence_matrix(x, GlobalRate(0.1))


def test_skeleton_properties_on_trajectory() -> None:
    R = _trajectory_matrix()
    S = skeletonize(R)
    assert S.shape == R.shape
    assert S.nnz <= R.nnz
    assert set(S) <= set(R)
    assert S.symmetric
    dense = S.to_dense()
    np.testing.assert_array_equal(dense, dense.T)
    assert skeletonize(S) == S


def test_skeleton_reduces_line_width() -> None:
    R = _trajectory_matrix()
    S = skeletonize(R)
    # Thickened bands become single lines: far fewer lines of length 1-2 per unit width.
    assert S.nnz < R.nnz
    assert len(diagonal_lines(S, min_length=2)) < len(diagonal_lines(R, min_length=2))
    assert 0.0 <= determinism(S) <= 1.0


def test_input_is_not_modified() -> None:
    a = _band(10, [1, 2, 3], range(0, 5))
    R = RecurrenceMatrix.from_dense(a)
    skeletonize(R)
    np.testing.assert_array_equal(R.to_dense(), a)


def test_non_square_is_unsupported() -> None:
    R = RecurrenceMatrix.from_dense(np.ones((3, 4), dtype=bool))
    with pytest.raises(UnsupportedShape):
        skeletonize(R)


@pytest.mark.parametrize("n", [0, 1])
def test_tiny_matrices_are_unchanged(n: int) -> None:
    R = RecurrenceMatrix.from_dense(np.ones((n, n), dtype=bool), kind="self")
    assert skeletonize(R) == R


def test_random_matrix_idempotent() -> None:
    a = np.random.default_rng(3).uniform(size=(50, 50)) < 0.2
    R = RecurrenceMatrix.from_dense(a)
    S = skeletonize(R)
    assert skeletonize(S) == S
    assert set(S) <= set(R)
