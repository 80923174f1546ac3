"""Recurrence matrices: thresholds, construction, lines and skeletonization.

The matrices are sparse (SciPy CSR) and immutable from the caller's point
of view. Any transformation returns a new ``RecurrenceMatrix``.
"""

from __future__ import annotations
