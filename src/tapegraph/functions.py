"""Expression builders, one per op.

Each builder takes its graph from a :class:`~tapegraph.graph.Node` operand;
Python numbers and arrays mixed into an expression become constant nodes
with that operand's dtype.
"""

from __future__ import annotations

from typing import Any, Optional, Sequence

import numpy as np

from .errors import DTypeError, ShapeError
from .graph import Node
from .ops import (
    Abs,
    Add,
    AddN,
    BroadcastTo,
    Cos,
    Div,
    Dot,
    Equal,
    Exp,
    Greater,
    Log,
    MatMul,
    MatVec,
    Max,
    Mean,
    Mul,
    Neg,
    Outer,
    Pow,
    Relu,
    Reshape,
    Sigmoid,
    Sign,
    Sin,
    Sqrt,
    Square,
    Sub,
    Sum,
    SumTo,
    Tanh,
    Transpose,
)
from .shapes import as_shape, normalize_axes, permutation, size


def _literal(value: Any, like: Node) -> np.ndarray:
    arr = np.asarray(value)
    if not np.can_cast(arr.dtype, like.dtype, casting="same_kind"):
        raise DTypeError(f"cannot mix a {arr.dtype.name} literal into {like!r}")
    return arr


def _like(values: Sequence[Any]) -> Node:
    like = next((v for v in values if isinstance(v, Node)), None)
    if like is None:
        raise TypeError("at least one operand must be a Node")
    return like


def _apply(op, *values: Any, name: Optional[str] = None) -> Node:
    """Validate ``op`` over ``values`` and only then lift literals into constants."""
    like = _like(values)
    graph = like.graph
    op.check_arity(len(values))
    lifted = []
    for value in values:
        if isinstance(value, Node):
            graph._own(value)
            lifted.append(value)
        else:
            lifted.append(_literal(value, like))
    op.infer_dtype([like.dtype if isinstance(v, np.ndarray) else v.dtype for v in lifted])
    op.infer_shape([tuple(v.shape) for v in lifted])
    operands = [
        graph.constant(v, dtype=like.dtype) if isinstance(v, np.ndarray) else v for v in lifted
    ]
    return graph.apply(op, *operands, name=name)


# ----------------------------------------------------------------------
# elementwise
# ----------------------------------------------------------------------
def add(x, y, name: Optional[str] = None) -> Node:
    return _apply(Add(), x, y, name=name)


def sub(x, y, name: Optional[str] = None) -> Node:
    return _apply(Sub(), x, y, name=name)


def mul(x, y, name: Optional[str] = None) -> Node:
    return _apply(Mul(), x, y, name=name)


def div(x, y, name: Optional[str] = None) -> Node:
    return _apply(Div(), x, y, name=name)


def pow(x, y, name: Optional[str] = None) -> Node:
    return _apply(Pow(), x, y, name=name)


def greater(x, y, name: Optional[str] = None) -> Node:
    return _apply(Greater(), x, y, name=name)


def equal(x, y, name: Optional[str] = None) -> Node:
    return _apply(Equal(), x, y, name=name)


def add_n(*xs, name: Optional[str] = None) -> Node:
    return _apply(AddN(), *xs, name=name)


def neg(x, name: Optional[str] = None) -> Node:
    return _apply(Neg(), x, name=name)


def exp(x, name: Optional[str] = None) -> Node:
    return _apply(Exp(), x, name=name)


def log(x, name: Optional[str] = None) -> Node:
    return _apply(Log(), x, name=name)


def sqrt(x, name: Optional[str] = None) -> Node:
    return _apply(Sqrt(), x, name=name)


def square(x, name: Optional[str] = None) -> Node:
    return _apply(Square(), x, name=name)


def abs(x, name: Optional[str] = None) -> Node:
    return _apply(Abs(), x, name=name)


def sign(x, name: Optional[str] = None) -> Node:
    return _apply(Sign(), x, name=name)


def sin(x, name: Optional[str] = None) -> Node:
    return _apply(Sin(), x, name=name)


def cos(x, name: Optional[str] = None) -> Node:
    return _apply(Cos(), x, name=name)


def tanh(x, name: Optional[str] = None) -> Node:
    return _apply(Tanh(), x, name=name)


def sigmoid(x, name: Optional[str] = None) -> Node:
    return _apply(Sigmoid(), x, name=name)


def relu(x, name: Optional[str] = None) -> Node:
    return _apply(Relu(), x, name=name)


# ----------------------------------------------------------------------
# reductions
# ----------------------------------------------------------------------
def _reduce(cls, x: Node, axis, keepdims: bool, name: Optional[str]) -> Node:
    axes = normalize_axes(axis, x.ndim, cls.name)
    return x.graph.apply(cls(axes=axes, keepdims=bool(keepdims)), x, name=name)


def sum(x: Node, axis=None, keepdims: bool = False, name: Optional[str] = None) -> Node:
    return _reduce(Sum, x, axis, keepdims, name)


def mean(x: Node, axis=None, keepdims: bool = False, name: Optional[str] = None) -> Node:
    return _reduce(Mean, x, axis, keepdims, name)


def max(x: Node, axis=None, keepdims: bool = False, name: Optional[str] = None) -> Node:
    return _reduce(Max, x, axis, keepdims, name)


# ----------------------------------------------------------------------
# linear algebra
# ----------------------------------------------------------------------
def matmul(a, b, name: Optional[str] = None) -> Node:
    """``a @ b``; picks matmul, matvec or dot from the operand ranks."""
    ranks = (np.ndim(a), np.ndim(b))
    if ranks == (2, 2):
        op = MatMul()
    elif ranks == (2, 1):
        op = MatVec()
    elif ranks == (1, 1):
        op = Dot()
    else:
        raise ShapeError(f"matmul: unsupported operand ranks {ranks}")
    return _apply(op, a, b, name=name)


def dot(a, b, name: Optional[str] = None) -> Node:
    return _apply(Dot(), a, b, name=name)


def outer(a, b, name: Optional[str] = None) -> Node:
    return _apply(Outer(), a, b, name=name)


def transpose(x: Node, axes: Optional[Sequence[int]] = None, name: Optional[str] = None) -> Node:
    return x.graph.apply(Transpose(axes=permutation(axes, x.ndim)), x, name=name)


# ----------------------------------------------------------------------
# shape
# ----------------------------------------------------------------------
def reshape(x: Node, shape, name: Optional[str] = None) -> Node:
    """Reshape ``x``; one dimension may be ``-1`` and is inferred."""
    if isinstance(shape, (int, np.integer)):
        shape = (int(shape),)
    dims = [int(d) for d in shape]
    if dims.count(-1) > 1:
        raise ShapeError(f"reshape: more than one unknown dimension in {tuple(dims)}")
    if -1 in dims:
        known = size(tuple(d for d in dims if d != -1))
        if known == 0 or size(x.shape) % known:
            raise ShapeError(f"reshape: cannot reshape {x.shape} into {tuple(dims)}")
        dims[dims.index(-1)] = size(x.shape) // known
    return x.graph.apply(Reshape(shape=as_shape(dims)), x, name=name)


def broadcast_to(x: Node, shape, name: Optional[str] = None) -> Node:
    return x.graph.apply(BroadcastTo(shape=as_shape(shape)), x, name=name)


def sum_to(x: Node, shape, name: Optional[str] = None) -> Node:
    return x.graph.apply(SumTo(shape=as_shape(shape)), x, name=name)


__all__ = [
    "add",
    "sub",
    "mul",
    "div",
    "pow",
    "greater",
    "equal",
    "add_n",
    "neg",
    "exp",
    "log",
    "sqrt",
    "square",
    "abs",
    "sign",
    "sin",
    "cos",
    "tanh",
    "sigmoid",
    "relu",
    "sum",
    "mean",
    "max",
    "matmul",
    "dot",
    "outer",
    "transpose",
    "reshape",
    "broadcast_to",
    "sum_to",
]
