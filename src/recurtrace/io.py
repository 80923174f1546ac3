"""Persistence of recurrence matrices.

A matrix is written as a SciPy ``.npz`` sparse file next to a JSON
sidecar holding its kind, symmetry flag, threshold and the SHA-256 of
the ``.npz`` payload, which is verified on load.
"""

from __future__ import annotations

import dataclasses
import hashlib
import json
import platform
import sys
from functools import partial
from pathlib import Path
from typing import Any, Optional

import numpy as np
import scipy.sparse as sp

from recurtrace.recurrence.matrix import DiagonalPolicy, RecurrenceMatrix
from recurtrace.recurrence.thresholds import Fixed, FixedScaled, GlobalRate, LocalRate, ResolvedThreshold

SCHEMA = "recurtrace_matrix_v1"


def _digest(path: Path, chunk_size: int = 1 << 20) -> str:
    h = hashlib.sha256()
    with path.open("rb") as f:
        for block in iter(partial(f.read, chunk_size), b""):
            h.update(block)
    return h.hexdigest()


def _sidecar(path: Path) -> Path:
    return path.with_suffix(".json")


_SPEC_TYPES = {cls.__name__: cls for cls in (Fixed, FixedScaled, GlobalRate, LocalRate)}


def _spec_payload(spec: Any) -> Optional[dict[str, Any]]:
    # Callable scales have no JSON form; such specs load back as None.
    if not isinstance(spec, tuple(_SPEC_TYPES.values())) or callable(getattr(spec, "scale", None)):
        return None
    fields = dataclasses.asdict(spec)
    if isinstance(fields.get("scale"), tuple):
        fields["scale"] = list(fields["scale"])
    return {"type": type(spec).__name__, **fields}


def _spec_from_payload(payload: Optional[dict[str, Any]]) -> Any:
    if not payload:
        return None
    fields = dict(payload)
    cls = _SPEC_TYPES.get(fields.pop("type", None))
    if cls is None:
        raise ValueError(f"Unknown threshold type in sidecar: {payload.get('type')!r}")
    if isinstance(fields.get("scale"), list):
        fields["scale"] = tuple(fields["scale"])
    return cls(**fields)


def _threshold_payload(threshold: Any) -> Any:
    if isinstance(threshold, ResolvedThreshold):
        return {
            "value": threshold.value,
            "per_row": None if threshold.per_row is None else [float(v) for v in threshold.per_row],
            "spec": _spec_payload(threshold.spec),
        }
    if isinstance(threshold, tuple):
        return [_threshold_payload(t) for t in threshold]
    return None


def _threshold_from_payload(payload: Any) -> Any:
    if isinstance(payload, list):
        return tuple(_threshold_from_payload(p) for p in payload)
    if not payload:
        return None
    per_row = payload.get("per_row")
    return ResolvedThreshold(
        value=payload.get("value"),
        per_row=None if per_row is None else np.asarray(per_row, dtype=float),
        spec=_spec_from_payload(payload.get("spec")),
    )


def save_recurrence_matrix(path: str | Path, R: RecurrenceMatrix) -> Path:
    """Write ``R`` to ``path`` (``.npz``) plus a JSON sidecar; return the sidecar path."""
    p = Path(path)
    if p.suffix != ".npz":
        p = p.with_suffix(".npz")
    p.parent.mkdir(parents=True, exist_ok=True)
    sp.save_npz(p, R.to_sparse(), compressed=True)

    meta = {
        "schema": SCHEMA,
        "python": sys.version,
        "platform": {"system": platform.system(), "release": platform.release()},
        "kind": R.kind,
        "shape": list(R.shape),
        "nnz": int(R.nnz),
        "symmetric": bool(R.symmetric),
        "diagonal": R.diagonal_policy.value if R.diagonal_policy is not None else None,
        "threshold": _threshold_payload(R.threshold),
        "file": p.name,
        "sha256": _digest(p),
    }
    mpath = _sidecar(p)
    mpath.write_text(json.dumps(meta, indent=2, ensure_ascii=False), encoding="utf-8")
    return mpath


def load_recurrence_matrix(path: str | Path) -> RecurrenceMatrix:
    """Read a matrix written by ``save_recurrence_matrix``."""
    p = Path(path)
    if p.suffix != ".npz":
        p = p.with_suffix(".npz")
    if not p.exists():
        raise FileNotFoundError(str(p))

    meta: dict[str, Any] = json.loads(_sidecar(p).read_text(encoding="utf-8"))
    if meta.get("schema") != SCHEMA:
        raise ValueError(f"Unsupported recurrence matrix schema: {meta.get('schema')!r}")
    digest = _digest(p)
    if digest != meta.get("sha256"):
        raise ValueError(f"Checksum mismatch for {p.name}: file was modified after it was written")

    data = sp.csr_array(sp.load_npz(p))
    if list(data.shape) != list(meta["shape"]):
        raise ValueError(f"Stored shape {data.shape} does not match sidecar shape {meta['shape']}")
    diagonal = meta.get("diagonal")
    return RecurrenceMatrix(
        data,
        kind=str(meta["kind"]),
        symmetric=bool(meta["symmetric"]),
        threshold=_threshold_from_payload(meta.get("threshold")),
        diagonal=DiagonalPolicy(diagonal) if diagonal is not None else None,
    )
