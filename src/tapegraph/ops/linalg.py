"""Linear algebra contractions and axis permutation."""

from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar, Optional, Sequence, Tuple

import numpy as np

from ..errors import ShapeError
from ..shapes import Shape, permutation
from .base import Op, UnaryOp


def _require_rank(op: str, shape: Shape, rank: int, which: str) -> None:
    if len(shape) != rank:
        raise ShapeError(f"{op}: {which} operand must be rank {rank}, got shape {tuple(shape)}")


@dataclass(frozen=True)
class MatMul(Op):
    """``(m, k) @ (k, n) -> (m, n)``."""

    name = "matmul"
    arity: ClassVar[Optional[int]] = 2

    def infer_shape(self, shapes: Sequence[Shape]) -> Shape:
        a, b = shapes
        _require_rank(self.name, a, 2, "left")
        _require_rank(self.name, b, 2, "right")
        if a[1] != b[0]:
            raise ShapeError(f"matmul: inner dimensions differ, {tuple(a)} @ {tuple(b)}")
        return (a[0], b[1])

    def compute(self, a, b):
        return np.matmul(a, b)

    def vjp(self, em, index, g, inputs, output):
        a, b = inputs
        if index == 0:
            return em.matmul(g, em.transpose(b))
        return em.matmul(em.transpose(a), g)


@dataclass(frozen=True)
class MatVec(Op):
    """``(m, n) @ (n,) -> (m,)``."""

    name = "matvec"
    arity: ClassVar[Optional[int]] = 2

    def infer_shape(self, shapes: Sequence[Shape]) -> Shape:
        a, v = shapes
        _require_rank(self.name, a, 2, "matrix")
        _require_rank(self.name, v, 1, "vector")
        if a[1] != v[0]:
            raise ShapeError(f"matvec: inner dimensions differ, {tuple(a)} @ {tuple(v)}")
        return (a[0],)

    def compute(self, a, v):
        return np.matmul(a, v)

    def vjp(self, em, index, g, inputs, output):
        a, v = inputs
        if index == 0:
            return em.outer(g, v)
        return em.matvec(em.transpose(a), g)


@dataclass(frozen=True)
class Dot(Op):
    """Inner product of two vectors; scalar result."""

    name = "dot"
    arity: ClassVar[Optional[int]] = 2

    def infer_shape(self, shapes: Sequence[Shape]) -> Shape:
        a, b = shapes
        _require_rank(self.name, a, 1, "left")
        _require_rank(self.name, b, 1, "right")
        if a[0] != b[0]:
            raise ShapeError(f"dot: lengths differ, {tuple(a)} . {tuple(b)}")
        return ()

    def compute(self, a, b):
        return np.dot(a, b)

    def vjp(self, em, index, g, inputs, output):
        return em.mul(g, inputs[1 - index])


@dataclass(frozen=True)
class Outer(Op):
    name = "outer"
    arity: ClassVar[Optional[int]] = 2

    def infer_shape(self, shapes: Sequence[Shape]) -> Shape:
        a, b = shapes
        _require_rank(self.name, a, 1, "left")
        _require_rank(self.name, b, 1, "right")
        return (a[0], b[0])

    def compute(self, a, b):
        return np.outer(a, b)

    def vjp(self, em, index, g, inputs, output):
        a, b = inputs
        if index == 0:
            return em.matvec(g, b)
        return em.matvec(em.transpose(g), a)


@dataclass(frozen=True)
class Transpose(UnaryOp):
    """Permute axes; ``axes=None`` reverses them."""

    name = "transpose"
    axes: Optional[Tuple[int, ...]] = None

    def infer_shape(self, shapes: Sequence[Shape]) -> Shape:
        shape = tuple(shapes[0])
        perm = permutation(self.axes, len(shape))
        return tuple(shape[p] for p in perm)

    def compute(self, x):
        return np.transpose(x, self.axes)

    def vjp(self, em, index, g, inputs, output):
        perm = permutation(self.axes, len(em.shape(inputs[0])))
        inverse = tuple(int(i) for i in np.argsort(perm))
        return em.transpose(g, inverse)


__all__ = ["MatMul", "MatVec", "Dot", "Outer", "Transpose"]
