"""Diagonal line structures of a recurrence matrix.

A diagonal line is a maximal run of consecutive true entries
``(i, i+k), (i+1, i+k+1), ...`` along a fixed offset ``k = j - i``.
Line lengths are what determinism-type measures count, and what
skeletonization corrects when lines are thickened.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

import numpy as np
import pandas as pd

from recurtrace.recurrence.matrix import RecurrenceMatrix

Runs = Tuple[np.ndarray, np.ndarray, np.ndarray]


@dataclass(frozen=True)
class LineStructure:
    offset: int  # j - i
    start: int  # row of the first cell
    length: int

    @property
    def stop(self) -> int:
        """Row after the last cell."""
        return self.start + self.length

    def cells(self) -> Tuple[np.ndarray, np.ndarray]:
        rows = np.arange(self.start, self.stop, dtype=np.int64)
        return rows, rows + self.offset


def line_runs(R: RecurrenceMatrix) -> Runs:
    """All maximal diagonal runs as ``(offsets, starts, lengths)`` arrays.

    Runs are sorted by offset, then start row.
    """
    return runs_from_coordinates(*R.coordinates())


def runs_from_coordinates(rows: np.ndarray, cols: np.ndarray) -> Runs:
    rows = np.asarray(rows, dtype=np.int64)
    cols = np.asarray(cols, dtype=np.int64)
    if rows.size == 0:
        empty = np.zeros(0, dtype=np.int64)
        return empty, empty.copy(), empty.copy()
    off = cols - rows
    order = np.lexsort((rows, off))
    off, rows = off[order], rows[order]

    new = np.ones(rows.size, dtype=bool)
    new[1:] = (off[1:] != off[:-1]) | (rows[1:] != rows[:-1] + 1)
    first = np.flatnonzero(new)
    lengths = np.diff(np.append(first, rows.size))
    return off[first], rows[first], lengths.astype(np.int64)


def expand_runs(offsets: np.ndarray, starts: np.ndarray, lengths: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Cell coordinates ``(rows, cols)`` covered by a set of runs."""
    lengths = np.asarray(lengths, dtype=np.int64)
    run_id = np.repeat(np.arange(lengths.size), lengths)
    pos = np.arange(int(lengths.sum()), dtype=np.int64) - np.repeat(np.cumsum(lengths) - lengths, lengths)
    rows = np.asarray(starts, dtype=np.int64)[run_id] + pos
    return rows, rows + np.asarray(offsets, dtype=np.int64)[run_id]


def diagonal_lines(R: RecurrenceMatrix, *, min_length: int = 1) -> list[LineStructure]:
    off, start, length = line_runs(R)
    sel = length >= int(min_length)
    return [
        LineStructure(offset=int(k), start=int(s), length=int(n))
        for k, s, n in zip(off[sel], start[sel], length[sel])
    ]


def line_table(R: RecurrenceMatrix) -> pd.DataFrame:
    off, start, length = line_runs(R)
    return pd.DataFrame({"offset": off, "start": start, "length": length})


def diagonal_line_histogram(R: RecurrenceMatrix, *, exclude_main: bool = True) -> np.ndarray:
    """Number of diagonal lines per length; index ``l`` counts lines of length ``l``."""
    off, _, length = line_runs(R)
    if exclude_main:
        length = length[off != 0]
    size = int(length.max()) + 1 if length.size else 1
    return np.bincount(length, minlength=size)


def determinism(R: RecurrenceMatrix, *, l_min: int = 2, exclude_main: bool = True) -> float:
    """Fraction of recurrent points lying on diagonal lines of length >= ``l_min``."""
    hist = diagonal_line_histogram(R, exclude_main=exclude_main)
    lengths = np.arange(hist.size)
    total = float(np.sum(hist * lengths))
    if total <= 0:
        return 0.0
    return float(np.sum((hist * lengths)[int(l_min) :])) / total


def max_line_length(R: RecurrenceMatrix, *, exclude_main: bool = True) -> int:
    hist = diagonal_line_histogram(R, exclude_main=exclude_main)
    nz = np.flatnonzero(hist)
    return int(nz[-1]) if nz.size else 0


def mean_line_length(R: RecurrenceMatrix, *, l_min: int = 2, exclude_main: bool = True) -> float:
    """Average length of the diagonal lines of length >= ``l_min`` (0.0 when there are none)."""
    hist = diagonal_line_histogram(R, exclude_main=exclude_main)[int(l_min) :]
    count = int(np.sum(hist))
    if count == 0:
        return 0.0
    lengths = np.arange(int(l_min), int(l_min) + hist.size)
    return float(np.sum(hist * lengths)) / count
