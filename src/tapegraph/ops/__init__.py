"""The closed set of graph operations."""

from .base import OP_REGISTRY, BinaryOp, Op, UnaryOp, op_by_name
from .elementwise import (
    Abs,
    Add,
    AddN,
    Cos,
    Div,
    Equal,
    Exp,
    Greater,
    Log,
    Mul,
    Neg,
    Pow,
    Relu,
    Sigmoid,
    Sign,
    Sin,
    Sqrt,
    Square,
    Sub,
    Tanh,
)
from .linalg import Dot, MatMul, MatVec, Outer, Transpose
from .reduction import Max, Mean, Sum
from .shape_ops import BroadcastTo, Reshape, SumTo

__all__ = [
    "OP_REGISTRY",
    "Op",
    "UnaryOp",
    "BinaryOp",
    "op_by_name",
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
    "Sum",
    "Mean",
    "Max",
    "MatMul",
    "MatVec",
    "Dot",
    "Outer",
    "Transpose",
    "Reshape",
    "BroadcastTo",
    "SumTo",
]
