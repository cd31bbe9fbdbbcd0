"""Shape-changing ops: reshape, broadcast and its adjoint ``sum_to``."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import numpy as np

from ..errors import ShapeError
from ..shapes import Shape, check_broadcastable_to, size, unbroadcast
from .base import UnaryOp


@dataclass(frozen=True)
class Reshape(UnaryOp):
    name = "reshape"
    shape: Shape = ()

    def infer_shape(self, shapes: Sequence[Shape]) -> Shape:
        src = tuple(shapes[0])
        if size(src) != size(self.shape):
            raise ShapeError(f"reshape: cannot reshape {src} into {self.shape}")
        return self.shape

    def compute(self, x):
        return np.reshape(x, self.shape)

    def vjp(self, em, index, g, inputs, output):
        return em.reshape(g, em.shape(inputs[0]))


@dataclass(frozen=True)
class BroadcastTo(UnaryOp):
    name = "broadcast_to"
    shape: Shape = ()

    def infer_shape(self, shapes: Sequence[Shape]) -> Shape:
        check_broadcastable_to(tuple(shapes[0]), self.shape, self.name)
        return self.shape

    def compute(self, x):
        # materialise; np.broadcast_to returns a read-only view
        return np.array(np.broadcast_to(x, self.shape))

    def vjp(self, em, index, g, inputs, output):
        return em.sum_to(g, em.shape(inputs[0]))


@dataclass(frozen=True)
class SumTo(UnaryOp):
    """Sum over the axes broadcasting would add to reach the operand shape."""

    name = "sum_to"
    shape: Shape = ()

    def infer_shape(self, shapes: Sequence[Shape]) -> Shape:
        check_broadcastable_to(self.shape, tuple(shapes[0]), self.name)
        return self.shape

    def compute(self, x):
        return unbroadcast(x, self.shape)

    def vjp(self, em, index, g, inputs, output):
        return em.broadcast_to(g, em.shape(inputs[0]))


__all__ = ["Reshape", "BroadcastTo", "SumTo"]
