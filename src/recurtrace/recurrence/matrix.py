from __future__ import annotations

from enum import Enum
from typing import Any, Iterator, Optional, Tuple

import numpy as np
import pandas as pd
import scipy.sparse as sp

KINDS = ("self", "cross", "joint")


class DiagonalPolicy(str, Enum):
    """How the main diagonal (line of identity) of a self matrix is set.

    NATURAL keeps whatever the threshold comparison gives (distance to self
    is 0, so normally true). INCLUDE forces it true, EXCLUDE forces it false.
    Under INCLUDE and EXCLUDE the diagonal is left out of rate-based
    threshold selection.
    """

    NATURAL = "natural"
    INCLUDE = "include"
    EXCLUDE = "exclude"


def _bool_csr(m: Any, shape: Optional[Tuple[int, int]] = None) -> sp.csr_array:
    a = sp.csr_array(m, shape=shape, dtype=bool) if shape is not None else sp.csr_array(m, dtype=bool, copy=True)
    a.sum_duplicates()
    a.eliminate_zeros()
    a.sort_indices()
    return a


class RecurrenceMatrix:
    """Sparse boolean recurrence matrix.

    A symmetric matrix keeps only its upper triangle (diagonal included)
    and answers every query through a symmetric read. Coordinates are
    always enumerated in row-major order.
    """

    def __init__(
        self,
        data: Any,
        *,
        kind: str = "cross",
        symmetric: bool = False,
        threshold: Any = None,
        diagonal: Optional[DiagonalPolicy] = None,
    ) -> None:
        if kind not in KINDS:
            raise ValueError(f"Unknown recurrence kind: {kind!r}")
        csr = _bool_csr(data)
        if symmetric:
            if csr.shape[0] != csr.shape[1]:
                raise ValueError("A symmetric recurrence matrix must be square")
            csr = _bool_csr(sp.triu(csr, k=0, format="csr"))
        self._store = csr
        self._full: Optional[sp.csr_array] = None if symmetric else csr
        self._csc: Optional[sp.csc_array] = None
        self.kind = kind
        self.symmetric = bool(symmetric)
        self.threshold = threshold
        self.diagonal_policy = diagonal

    # -- constructors --------------------------------------------------------

    @classmethod
    def from_dense(
        cls,
        array: Any,
        *,
        kind: str = "cross",
        symmetric: Optional[bool] = None,
        threshold: Any = None,
    ) -> "RecurrenceMatrix":
        a = np.asarray(array, dtype=bool)
        if a.ndim != 2:
            raise ValueError("A recurrence matrix must be 2D")
        if symmetric is None:
            symmetric = kind != "cross" and a.shape[0] == a.shape[1] and bool(np.array_equal(a, a.T))
        return cls(sp.csr_array(a), kind=kind, symmetric=symmetric, threshold=threshold)

    @classmethod
    def from_coordinates(
        cls,
        rows: Any,
        cols: Any,
        shape: Tuple[int, int],
        *,
        kind: str = "cross",
        symmetric: bool = False,
        threshold: Any = None,
        diagonal: Optional[DiagonalPolicy] = None,
    ) -> "RecurrenceMatrix":
        r = np.asarray(rows, dtype=np.int64)
        c = np.asarray(cols, dtype=np.int64)
        data = (np.ones(r.size, dtype=bool), (r, c))
        return cls(
            _bool_csr(data, shape=(int(shape[0]), int(shape[1]))),
            kind=kind,
            symmetric=symmetric,
            threshold=threshold,
            diagonal=diagonal,
        )

    # -- shape and counts ----------------------------------------------------

    @property
    def shape(self) -> Tuple[int, int]:
        return int(self._store.shape[0]), int(self._store.shape[1])

    @property
    def nnz(self) -> int:
        if not self.symmetric:
            return int(self._store.nnz)
        on_diag = int(np.count_nonzero(self._store.diagonal()))
        return 2 * int(self._store.nnz) - on_diag

    def __len__(self) -> int:
        return self.shape[0]

    def recurrence_rate(self, *, exclude_diagonal: bool = False) -> float:
        n, m = self.shape
        total = n * m
        count = self.nnz
        if exclude_diagonal and n == m:
            total -= n
            count -= int(np.count_nonzero(self.diagonal(0)))
        return float(count) / float(total) if total > 0 else 0.0

    # -- views ---------------------------------------------------------------

    def _csr(self) -> sp.csr_array:
        if self._full is None:
            strict = sp.triu(self._store, k=1, format="csr")
            self._full = _bool_csr(self._store + strict.T)
        return self._full

    def to_sparse(self) -> sp.csr_array:
        """A copy of the full matrix as a boolean CSR array."""
        return self._csr().copy()

    def to_dense(self) -> np.ndarray:
        return self._csr().toarray()

    def coordinates(self) -> Tuple[np.ndarray, np.ndarray]:
        """Row and column indices of all true entries, row-major order."""
        csr = self._csr()
        rows = np.repeat(np.arange(csr.shape[0], dtype=np.int64), np.diff(csr.indptr))
        return rows, csr.indices.astype(np.int64, copy=True)

    def __iter__(self) -> Iterator[Tuple[int, int]]:
        rows, cols = self.coordinates()
        for i, j in zip(rows.tolist(), cols.tolist()):
            yield i, j

    def to_frame(self) -> pd.DataFrame:
        rows, cols = self.coordinates()
        return pd.DataFrame({"row": rows, "col": cols})

    # -- membership ----------------------------------------------------------

    def __contains__(self, ij: Any) -> bool:
        i, j = (int(v) for v in ij)
        n, m = self.shape
        if not (0 <= i < n and 0 <= j < m):
            return False
        if self.symmetric and i > j:
            i, j = j, i
        s = self._store
        cols = s.indices[s.indptr[i] : s.indptr[i + 1]]
        k = int(np.searchsorted(cols, j))
        return k < cols.size and int(cols[k]) == j

    def row(self, i: int) -> np.ndarray:
        """Column indices of the true entries of row ``i``."""
        csr = self._csr()
        i = int(i)
        if not 0 <= i < csr.shape[0]:
            raise IndexError(f"Row {i} out of range for {csr.shape[0]} rows")
        return csr.indices[csr.indptr[i] : csr.indptr[i + 1]].astype(np.int64, copy=True)

    def column(self, j: int) -> np.ndarray:
        """Row indices of the true entries of column ``j``."""
        if self.symmetric:
            return self.row(j)
        if self._csc is None:
            csc = sp.csc_array(self._csr())
            csc.sort_indices()
            self._csc = csc
        j = int(j)
        if not 0 <= j < self._csc.shape[1]:
            raise IndexError(f"Column {j} out of range for {self._csc.shape[1]} columns")
        return self._csc.indices[self._csc.indptr[j] : self._csc.indptr[j + 1]].astype(np.int64, copy=True)

    def diagonal(self, k: int = 0) -> np.ndarray:
        """Boolean values along the diagonal with offset ``k = j - i``."""
        n, m = self.shape
        if not -n < int(k) < m:
            return np.zeros(0, dtype=bool)
        return np.asarray(self._csr().diagonal(int(k)), dtype=bool)

    # -- comparison ----------------------------------------------------------

    def same_entries(self, other: "RecurrenceMatrix") -> bool:
        if self.shape != other.shape or self.nnz != other.nnz:
            return False
        return (self._csr() != other._csr()).nnz == 0

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RecurrenceMatrix):
            return NotImplemented
        return self.same_entries(other)

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        n, m = self.shape
        return f"RecurrenceMatrix(kind={self.kind!r}, shape=({n}, {m}), nnz={self.nnz}, symmetric={self.symmetric})"
