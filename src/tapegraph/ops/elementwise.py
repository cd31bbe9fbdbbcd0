"""Elementwise operations.

Binary ops broadcast their operands NumPy style; their gradient rules
``sum_to`` the upstream gradient back onto each operand's shape, mirroring the
``unbroadcast`` convention of the backward rule tables.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import reduce
from typing import ClassVar, Optional, Sequence

import numpy as np

from ..shapes import Shape, broadcast_shapes
from .base import BinaryOp, Op, UnaryOp


# ----------------------------------------------------------------------
# binary
# ----------------------------------------------------------------------
@dataclass(frozen=True)
class Add(BinaryOp):
    name = "add"

    def compute(self, x, y):
        return np.add(x, y)

    def vjp(self, em, index, g, inputs, output):
        return em.sum_to(g, em.shape(inputs[index]))


@dataclass(frozen=True)
class Sub(BinaryOp):
    name = "sub"

    def compute(self, x, y):
        return np.subtract(x, y)

    def vjp(self, em, index, g, inputs, output):
        if index == 1:
            g = em.neg(g)
        return em.sum_to(g, em.shape(inputs[index]))


@dataclass(frozen=True)
class Mul(BinaryOp):
    name = "mul"

    def compute(self, x, y):
        return np.multiply(x, y)

    def vjp(self, em, index, g, inputs, output):
        other = inputs[1 - index]
        return em.sum_to(em.mul(g, other), em.shape(inputs[index]))


@dataclass(frozen=True)
class Div(BinaryOp):
    name = "div"
    float_only = True

    def compute(self, x, y):
        return np.divide(x, y)

    def vjp(self, em, index, g, inputs, output):
        x, y = inputs
        if index == 0:
            return em.sum_to(em.div(g, y), em.shape(x))
        # d(x/y)/dy = -x/y^2 = -out/y
        return em.sum_to(em.neg(em.div(em.mul(g, output), y)), em.shape(y))


@dataclass(frozen=True)
class Pow(BinaryOp):
    name = "pow"
    float_only = True

    def compute(self, x, y):
        return np.power(x, y)

    def vjp(self, em, index, g, inputs, output):
        x, y = inputs
        if index == 0:
            dx = em.mul(y, em.pow(x, em.sub(y, em.const(1.0, like=y))))
            return em.sum_to(em.mul(g, dx), em.shape(x))
        return em.sum_to(em.mul(g, em.mul(output, em.safe_log(x))), em.shape(y))


@dataclass(frozen=True)
class Greater(BinaryOp):
    """``1`` where ``x > y`` else ``0``, in the operands' dtype."""

    name = "greater"
    differentiable = False

    def compute(self, x, y):
        return np.greater(x, y)


@dataclass(frozen=True)
class Equal(BinaryOp):
    name = "equal"
    differentiable = False

    def compute(self, x, y):
        return np.equal(x, y)


# ----------------------------------------------------------------------
# variadic
# ----------------------------------------------------------------------
@dataclass(frozen=True)
class AddN(Op):
    """Elementwise sum of any number of operands.

    Symbolic differentiation inserts one of these whenever a node collects
    gradient contributions from several consumers.
    """

    name = "add_n"
    arity: ClassVar[Optional[int]] = None

    def infer_shape(self, shapes: Sequence[Shape]) -> Shape:
        return broadcast_shapes(*shapes, op_name=self.name)

    def compute(self, *values):
        return reduce(np.add, values)

    def vjp(self, em, index, g, inputs, output):
        return em.sum_to(g, em.shape(inputs[index]))


# ----------------------------------------------------------------------
# unary
# ----------------------------------------------------------------------
@dataclass(frozen=True)
class Neg(UnaryOp):
    name = "neg"

    def compute(self, x):
        return np.negative(x)

    def vjp(self, em, index, g, inputs, output):
        return em.neg(g)


@dataclass(frozen=True)
class Exp(UnaryOp):
    name = "exp"
    float_only = True

    def compute(self, x):
        return np.exp(x)

    def vjp(self, em, index, g, inputs, output):
        return em.mul(g, output)


@dataclass(frozen=True)
class Log(UnaryOp):
    name = "log"
    float_only = True

    def compute(self, x):
        return np.log(x)

    def vjp(self, em, index, g, inputs, output):
        return em.div(g, inputs[0])


@dataclass(frozen=True)
class Sqrt(UnaryOp):
    name = "sqrt"
    float_only = True

    def compute(self, x):
        return np.sqrt(x)

    def vjp(self, em, index, g, inputs, output):
        return em.div(g, em.mul(em.const(2.0, like=output), output))


@dataclass(frozen=True)
class Square(UnaryOp):
    name = "square"

    def compute(self, x):
        return np.square(x)

    def vjp(self, em, index, g, inputs, output):
        x = inputs[0]
        return em.mul(g, em.mul(em.const(2, like=x), x))


@dataclass(frozen=True)
class Abs(UnaryOp):
    """Subgradient 0 at ``x == 0``."""

    name = "abs"

    def compute(self, x):
        return np.abs(x)

    def vjp(self, em, index, g, inputs, output):
        return em.mul(g, em.sign(inputs[0]))


@dataclass(frozen=True)
class Sign(UnaryOp):
    name = "sign"
    differentiable = False

    def compute(self, x):
        return np.sign(x)


@dataclass(frozen=True)
class Sin(UnaryOp):
    name = "sin"
    float_only = True

    def compute(self, x):
        return np.sin(x)

    def vjp(self, em, index, g, inputs, output):
        return em.mul(g, em.cos(inputs[0]))


@dataclass(frozen=True)
class Cos(UnaryOp):
    name = "cos"
    float_only = True

    def compute(self, x):
        return np.cos(x)

    def vjp(self, em, index, g, inputs, output):
        return em.neg(em.mul(g, em.sin(inputs[0])))


@dataclass(frozen=True)
class Tanh(UnaryOp):
    name = "tanh"
    float_only = True

    def compute(self, x):
        return np.tanh(x)

    def vjp(self, em, index, g, inputs, output):
        return em.mul(g, em.sub(em.const(1.0, like=output), em.square(output)))


@dataclass(frozen=True)
class Sigmoid(UnaryOp):
    name = "sigmoid"
    float_only = True

    def compute(self, x):
        # exp(-|x|) never overflows
        z = np.exp(-np.abs(x))
        return np.where(x >= 0, 1.0 / (1.0 + z), z / (1.0 + z))

    def vjp(self, em, index, g, inputs, output):
        one = em.const(1.0, like=output)
        return em.mul(g, em.mul(output, em.sub(one, output)))


@dataclass(frozen=True)
class Relu(UnaryOp):
    """Subgradient 0 at ``x == 0``."""

    name = "relu"

    def compute(self, x):
        return np.maximum(x, 0)

    def vjp(self, em, index, g, inputs, output):
        x = inputs[0]
        return em.mul(g, em.greater(x, em.const(0, like=x)))


__all__ = [
    "Add",
    "Sub",
    "Mul",
    "Div",
    "Pow",
    "Greater",
    "Equal",
    "AddN",
    "Neg",
    "Exp",
    "Log",
    "Sqrt",
    "Square",
    "Abs",
    "Sign",
    "Sin",
    "Cos",
    "Tanh",
    "Sigmoid",
    "Relu",
]
