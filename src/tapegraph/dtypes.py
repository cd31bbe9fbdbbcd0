"""Element types understood by the engine."""

from __future__ import annotations

from typing import Any, Iterable

import numpy as np

from .errors import DTypeError

FLOAT64 = np.dtype(np.float64)
FLOAT32 = np.dtype(np.float32)
INT64 = np.dtype(np.int64)
INT32 = np.dtype(np.int32)

SUPPORTED = (FLOAT64, FLOAT32, INT64, INT32)


def as_dtype(dtype: Any) -> np.dtype:
    """Normalise ``dtype`` to a supported :class:`numpy.dtype`."""
    try:
        dt = np.dtype(dtype)
    except TypeError as exc:
        raise DTypeError(f"not a dtype: {dtype!r}") from exc
    if dt not in SUPPORTED:
        names = ", ".join(d.name for d in SUPPORTED)
        raise DTypeError(f"unsupported element type {dt.name}; expected one of {names}")
    return dt


def is_float(dtype: np.dtype) -> bool:
    return np.issubdtype(dtype, np.floating)


def common_dtype(dtypes: Iterable[np.dtype], op_name: str = "op") -> np.dtype:
    """Return the shared dtype of ``dtypes`` or raise :class:`DTypeError`.

    Operands are never promoted implicitly; mixing ``float32`` and ``float64``
    is a construction error, as is mixing ints and floats.
    """
    dtypes = list(dtypes)
    if not dtypes:
        raise DTypeError(f"{op_name}: no operands")
    first = dtypes[0]
    for dt in dtypes[1:]:
        if dt != first:
            found = ", ".join(d.name for d in dtypes)
            raise DTypeError(f"{op_name}: operand element types differ ({found})")
    return first


def require_float(dtype: np.dtype, op_name: str) -> np.dtype:
    if not is_float(dtype):
        raise DTypeError(f"{op_name} requires a floating point operand, got {dtype.name}")
    return dtype


__all__ = [
    "FLOAT64",
    "FLOAT32",
    "INT64",
    "INT32",
    "SUPPORTED",
    "as_dtype",
    "is_float",
    "common_dtype",
    "require_float",
]
