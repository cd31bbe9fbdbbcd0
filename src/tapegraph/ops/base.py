"""Op contract shared by every graph operation.

An :class:`Op` is a value, not a node: a frozen dataclass whose fields are the
static parameters of the operation (reduction axes, target shapes, ...).  Each
variant supplies

* ``arity`` - fixed operand count, or ``None`` for variadic ops,
* :meth:`Op.infer_dtype` / :meth:`Op.infer_shape` - construction time checks,
* :meth:`Op.compute` - the forward computation on ndarrays,
* :meth:`Op.vjp` - the gradient rule for one operand.

Gradient rules are written once against an *emitter* (see
:mod:`tapegraph.differentiation`).  The same rule builds new graph nodes in
symbolic mode and produces ndarrays in automatic mode, so both modes share one
mathematical rule set.

The set of variants is closed: every concrete subclass declares a ``name`` and
is recorded in :data:`OP_REGISTRY`.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Any, ClassVar, Dict, Optional, Sequence, Tuple, Type

import numpy as np

from ..dtypes import common_dtype, require_float
from ..errors import ArityError, NotDifferentiable
from ..shapes import Shape, broadcast_shapes

OP_REGISTRY: Dict[str, Type["Op"]] = {}


@dataclass(frozen=True)
class Op:
    """Base class of all operations."""

    name: ClassVar[str] = ""
    arity: ClassVar[Optional[int]] = None
    differentiable: ClassVar[bool] = True
    float_only: ClassVar[bool] = False

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        name = cls.__dict__.get("name")
        if name:
            if name in OP_REGISTRY:
                raise RuntimeError(f"duplicate op name {name!r}")
            OP_REGISTRY[name] = cls

    # ------------------------------------------------------------------
    # construction time
    # ------------------------------------------------------------------
    def check_arity(self, n: int) -> None:
        if self.arity is None:
            if n < 1:
                raise ArityError(f"{self.name} needs at least one operand")
        elif n != self.arity:
            raise ArityError(f"{self.name} takes {self.arity} operand(s), got {n}")

    def infer_dtype(self, dtypes: Sequence[np.dtype]) -> np.dtype:
        dtype = common_dtype(dtypes, self.name)
        if self.float_only:
            require_float(dtype, self.name)
        return dtype

    def infer_shape(self, shapes: Sequence[Shape]) -> Shape:
        raise NotImplementedError

    # ------------------------------------------------------------------
    # execution
    # ------------------------------------------------------------------
    def compute(self, *values: np.ndarray) -> Any:
        raise NotImplementedError

    def forward(self, values: Sequence[np.ndarray]) -> np.ndarray:
        """Run :meth:`compute` and return an ndarray of the inferred dtype."""
        dtype = self.infer_dtype([v.dtype for v in values])
        return np.asarray(self.compute(*values)).astype(dtype, copy=False)

    # ------------------------------------------------------------------
    # differentiation
    # ------------------------------------------------------------------
    def vjp(self, em: Any, index: int, g: Any, inputs: Tuple[Any, ...], output: Any) -> Any:
        """Gradient of the loss w.r.t. operand ``index`` given upstream ``g``.

        ``inputs`` and ``output`` are nodes in symbolic mode and ndarrays in
        automatic mode; rules only touch them through ``em``.
        """
        raise NotDifferentiable(f"{self.name} has no gradient rule")

    # ------------------------------------------------------------------
    # display
    # ------------------------------------------------------------------
    def params(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    def __str__(self) -> str:
        params = self.params()
        if not params:
            return self.name
        inner = ", ".join(f"{k}={v!r}" for k, v in params.items())
        return f"{self.name}({inner})"


@dataclass(frozen=True)
class UnaryOp(Op):
    arity: ClassVar[Optional[int]] = 1

    def infer_shape(self, shapes: Sequence[Shape]) -> Shape:
        return tuple(shapes[0])


@dataclass(frozen=True)
class BinaryOp(Op):
    """Elementwise binary op with NumPy broadcasting."""

    arity: ClassVar[Optional[int]] = 2

    def infer_shape(self, shapes: Sequence[Shape]) -> Shape:
        return broadcast_shapes(*shapes, op_name=self.name)


def op_by_name(name: str, **params: Any) -> Op:
    """Instantiate a registered op, e.g. ``op_by_name("sum", axes=(0,))``."""
    try:
        cls = OP_REGISTRY[name]
    except KeyError:
        raise KeyError(f"unknown op {name!r}") from None
    return cls(**params)


__all__ = ["Op", "UnaryOp", "BinaryOp", "OP_REGISTRY", "op_by_name"]
