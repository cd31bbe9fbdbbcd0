"""Reductions over a set of axes.

Builders in :mod:`tapegraph.functions` resolve ``axis=None`` / negative axes
against the operand rank before constructing the op.  Ops built directly may
carry negative axes; shape inference and gradients normalise them.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence, Tuple

import numpy as np

from ..shapes import Shape, normalize_axes, reduced_shape, size
from .base import UnaryOp


@dataclass(frozen=True)
class _Reduction(UnaryOp):
    axes: Tuple[int, ...] = ()
    keepdims: bool = False

    def infer_shape(self, shapes: Sequence[Shape]) -> Shape:
        shape = tuple(shapes[0])
        return reduced_shape(shape, self._axes(shape), self.keepdims)

    def _axes(self, shape: Shape) -> Tuple[int, ...]:
        return normalize_axes(self.axes, len(shape), self.name)

    def _expand(self, em, g, shape):
        """Broadcast a reduced gradient back over the reduced axes."""
        if not self.keepdims:
            g = em.reshape(g, reduced_shape(shape, self._axes(shape), True))
        return em.broadcast_to(g, shape)


@dataclass(frozen=True)
class Sum(_Reduction):
    name = "sum"

    def compute(self, x):
        return np.sum(x, axis=self.axes, keepdims=self.keepdims)

    def vjp(self, em, index, g, inputs, output):
        return self._expand(em, g, em.shape(inputs[0]))


@dataclass(frozen=True)
class Mean(_Reduction):
    name = "mean"
    float_only = True

    def compute(self, x):
        # empty reductions produce NaN under numpy; surfaced through errstate
        return np.mean(x, axis=self.axes, keepdims=self.keepdims)

    def vjp(self, em, index, g, inputs, output):
        x = inputs[0]
        shape = em.shape(x)
        count = size(tuple(shape[a] for a in self._axes(shape)))
        scale = em.const(1.0 / max(count, 1), like=x)
        return em.mul(self._expand(em, g, shape), scale)


@dataclass(frozen=True)
class Max(_Reduction):
    """Maximum; ties share the gradient equally."""

    name = "max"

    def compute(self, x):
        return np.max(x, axis=self.axes, keepdims=self.keepdims)

    def vjp(self, em, index, g, inputs, output):
        x = inputs[0]
        shape = em.shape(x)
        mask = em.equal(x, self._expand(em, output, shape))
        count = em.broadcast_to(em.apply(Sum(axes=self.axes, keepdims=True), mask), shape)
        return em.div(em.mul(self._expand(em, g, shape), mask), count)


__all__ = ["Sum", "Mean", "Max"]
