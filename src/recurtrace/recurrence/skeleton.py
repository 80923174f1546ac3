"""Skeletonization of diagonal lines.

Coarse sampling and rate-based thresholds thicken a single diagonal line
into a band of parallel lines on neighbouring offsets, which biases every
line-length based measure. Skeletonization keeps one line per band.

Two diagonal runs are in contact when their offsets differ by one and
they share an edge: a run on offset ``k + 1`` over rows ``[b0, b1]``
touches a run on offset ``k`` over rows ``[a0, a1]`` iff
``b0 <= a1 and b1 >= a0 - 1``. Runs in contact form a band (a connected
component). Each band keeps its runs on the offset nearest to the
length-weighted centre offset (ties: smaller ``|k|``, then lower ``k``).

Cells on the other offsets of a band are cleared only where they lie
alongside a kept run. Positions along a band are compared on the
anti-diagonal coordinate ``t = i + j``; a kept run covering ``t`` in
``[lo, hi]`` clears the band's other cells with ``lo - 1 <= t <= hi + 1``.
The parts of a drifting line that leave the kept run's span survive.

Every pass detects all runs and bands read-only first, then clears. Passes
repeat until one removes nothing, so the result is a fixed point: a second
skeletonization finds nothing to remove. Kept runs are never shortened,
no entry is created and symmetric input gives symmetric output.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Tuple

import networkx as nx
import numpy as np

from recurtrace.errors import UnsupportedShape
from recurtrace.recurrence.lines import expand_runs, runs_from_coordinates
from recurtrace.recurrence.matrix import RecurrenceMatrix

logger = logging.getLogger(__name__)


def _contact_graph(off: np.ndarray, start: np.ndarray, length: np.ndarray) -> nx.Graph:
    G = nx.Graph()
    G.add_nodes_from(range(off.size))
    if off.size == 0:
        return G

    stop = start + length - 1  # last row, inclusive
    keys, first = np.unique(off, return_index=True)
    groups = {int(k): (int(s), int(e)) for k, s, e in zip(keys, first, np.append(first[1:], off.size))}

    for k, (s, e) in groups.items():
        nb = groups.get(k + 1)
        if nb is None:
            continue
        ns, ne = nb
        # Runs of one offset are disjoint and sorted, so both bounds are monotone.
        b_start = start[ns:ne]
        b_stop = stop[ns:ne]
        for a in range(s, e):
            lo = ns + int(np.searchsorted(b_stop, start[a] - 1, side="left"))
            hi = ns + int(np.searchsorted(b_start, stop[a], side="right"))
            G.add_edges_from((a, b) for b in range(lo, hi))
    return G


def _band_offset(offsets: np.ndarray, lengths: np.ndarray) -> int:
    weight: dict[int, int] = defaultdict(int)
    for k, n in zip(offsets.tolist(), lengths.tolist()):
        weight[k] += n
    total = sum(weight.values())
    moment = sum(k * w for k, w in weight.items())
    # |k - moment/total| scaled by total keeps the comparison exact.
    return min(weight, key=lambda k: (abs(k * total - moment), abs(k), k))


def _thinning_pass(rows: np.ndarray, cols: np.ndarray, n: int) -> Tuple[np.ndarray, np.ndarray]:
    """One detect-then-clear pass over the cells; returns the surviving cells."""
    off, start, length = runs_from_coordinates(rows, cols)
    rows, cols = expand_runs(off, start, length)
    bands = [c for c in nx.connected_components(_contact_graph(off, start, length)) if len(c) > 1]
    if not bands:
        return rows, cols

    band_of = np.full(off.size, -1, dtype=np.int64)
    kept = np.zeros(off.size, dtype=bool)
    for b, band in enumerate(bands):
        idx = np.fromiter(band, dtype=np.int64, count=len(band))
        band_of[idx] = b
        kept[idx[off[idx] == _band_offset(off[idx], length[idx])]] = True

    # Key cells and kept spans by (band, t); t + shift is in [0, span).
    shift, span = n + 1, 4 * n + 4
    k = np.flatnonzero(kept)
    lo = band_of[k] * span + (2 * start[k] + off[k] - 1 + shift)
    hi = band_of[k] * span + (2 * (start[k] + length[k] - 1) + off[k] + 1 + shift)
    order = np.argsort(lo, kind="stable")
    lo, hi = lo[order], hi[order]

    run_id = np.repeat(np.arange(off.size), length)
    key = band_of[run_id] * span + (rows + cols + shift)
    j = np.searchsorted(lo, key, side="right") - 1
    inside = (j >= 0) & (key <= hi[np.maximum(j, 0)])
    clear = inside & (band_of[run_id] >= 0) & ~kept[run_id]
    return rows[~clear], cols[~clear]


def skeletonize(R: RecurrenceMatrix) -> RecurrenceMatrix:
    """Thin every band of parallel diagonal lines down to a single line.

    Returns a new matrix of the same shape and kind; ``R`` is not modified.
    Raises ``UnsupportedShape`` for non-square matrices. Matrices smaller
    than 2x2 have no lines to thin and are returned as an unchanged copy.
    """
    n, m = R.shape
    if n != m:
        raise UnsupportedShape(f"Skeletonization needs a square matrix, got shape {R.shape}")

    rows, cols = R.coordinates()
    if n >= 2:
        before, passes = rows.size, 0
        while True:
            new_rows, new_cols = _thinning_pass(rows, cols, n)
            passes += 1
            removed = rows.size - new_rows.size
            rows, cols = new_rows, new_cols
            if removed == 0:
                break
        logger.debug("Skeletonize: %d passes, %d cells removed", passes, before - rows.size)

    return RecurrenceMatrix.from_coordinates(
        rows,
        cols,
        (n, m),
        kind=R.kind,
        symmetric=R.symmetric,
        threshold=R.threshold,
        diagonal=R.diagonal_policy,
    )
