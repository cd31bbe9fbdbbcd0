"""Shape arithmetic: broadcasting, reductions and the broadcast adjoint."""

from __future__ import annotations

from typing import Iterable, Optional, Sequence, Tuple, Union

import numpy as np

from .errors import ShapeError

Shape = Tuple[int, ...]
Axes = Union[None, int, Sequence[int]]


def as_shape(shape: Union[int, Iterable[int]]) -> Shape:
    if isinstance(shape, (int, np.integer)):
        shape = (int(shape),)
    out = tuple(int(d) for d in shape)
    if any(d < 0 for d in out):
        raise ShapeError(f"negative dimension in shape {out}")
    return out


def size(shape: Shape) -> int:
    n = 1
    for d in shape:
        n *= d
    return n


def broadcast_shapes(*shapes: Shape, op_name: str = "op") -> Shape:
    """NumPy broadcasting of ``shapes``; :class:`ShapeError` when impossible."""
    try:
        return tuple(np.broadcast_shapes(*shapes))
    except ValueError as exc:
        listed = " and ".join(str(tuple(s)) for s in shapes)
        raise ShapeError(f"{op_name}: cannot broadcast shapes {listed}") from exc


def normalize_axes(axis: Axes, ndim: int, op_name: str = "op") -> Tuple[int, ...]:
    """Return sorted, non-negative, unique reduction axes for ``ndim``."""
    if axis is None:
        return tuple(range(ndim))
    if isinstance(axis, (int, np.integer)):
        axis = (int(axis),)
    out = []
    for ax in axis:
        ax = int(ax)
        if not -ndim <= ax < ndim:
            raise ShapeError(f"{op_name}: axis {ax} out of range for rank {ndim}")
        ax %= ndim
        if ax in out:
            raise ShapeError(f"{op_name}: repeated axis {ax}")
        out.append(ax)
    return tuple(sorted(out))


def reduced_shape(shape: Shape, axes: Tuple[int, ...], keepdims: bool) -> Shape:
    if keepdims:
        return tuple(1 if i in axes else d for i, d in enumerate(shape))
    return tuple(d for i, d in enumerate(shape) if i not in axes)


def check_broadcastable_to(src: Shape, dst: Shape, op_name: str = "broadcast_to") -> None:
    """Require that ``src`` broadcasts to exactly ``dst``."""
    if len(src) > len(dst):
        raise ShapeError(f"{op_name}: cannot broadcast {src} to lower rank {dst}")
    for s, d in zip(reversed(src), reversed(dst)):
        if s != d and s != 1:
            raise ShapeError(f"{op_name}: cannot broadcast {src} to {dst}")


def unbroadcast(g: np.ndarray, shape: Shape) -> np.ndarray:
    """Sum ``g`` over the axes that broadcasting added to reach ``shape``."""
    g = np.asarray(g)
    extra = g.ndim - len(shape)
    if extra > 0:
        g = g.sum(axis=tuple(range(extra)))
    keep = tuple(i for i, (gs, ts) in enumerate(zip(g.shape, shape)) if ts == 1 and gs != 1)
    if keep:
        g = g.sum(axis=keep, keepdims=True)
    return g.reshape(shape)


def permutation(axes: Optional[Sequence[int]], ndim: int) -> Tuple[int, ...]:
    if axes is None:
        return tuple(reversed(range(ndim)))
    perm = tuple(int(a) % ndim if ndim else int(a) for a in axes)
    if sorted(perm) != list(range(ndim)):
        raise ShapeError(f"transpose: {tuple(axes)} is not a permutation of {ndim} axes")
    return perm


__all__ = [
    "Shape",
    "Axes",
    "as_shape",
    "size",
    "broadcast_shapes",
    "normalize_axes",
    "reduced_shape",
    "check_broadcastable_to",
    "unbroadcast",
    "permutation",
]
