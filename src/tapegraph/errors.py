"""Exception hierarchy for graph construction, differentiation and execution.

Every error raised by the engine derives from :class:`TapeGraphError` and,
where a builtin category fits, from that builtin as well so callers may catch
either ``ShapeError`` or plain ``ValueError``.
"""

from __future__ import annotations

from typing import Any, Optional


class TapeGraphError(Exception):
    """Base class for all engine errors."""


# ----------------------------------------------------------------------
# construction time
# ----------------------------------------------------------------------
class ShapeError(TapeGraphError, ValueError):
    """Operand shapes are incompatible for an operation."""


class ShapeMismatch(ShapeError):
    """A bound value's shape disagrees with the node's declared shape."""


class DTypeError(TapeGraphError, TypeError):
    """Operand element types are incompatible or unsupported."""


class ArityError(TapeGraphError, TypeError):
    """Wrong number of operands for an operation."""


class GraphMismatchError(TapeGraphError, ValueError):
    """Nodes from different graphs were combined."""


class BindError(TapeGraphError, ValueError):
    """A value was bound to a node that is computed rather than fed."""


# ----------------------------------------------------------------------
# differentiation time
# ----------------------------------------------------------------------
class NotDifferentiable(TapeGraphError):
    """The requested derivative does not exist for this output."""


class NoPathError(TapeGraphError, LookupError):
    """A requested node is not an ancestor of the differentiated output."""


class InvariantError(TapeGraphError, AssertionError):
    """An internal invariant was violated (e.g. a mis-shaped gradient)."""


# ----------------------------------------------------------------------
# compile time
# ----------------------------------------------------------------------
class CyclicGraphError(TapeGraphError):
    """The operand relation contains a cycle."""


# ----------------------------------------------------------------------
# run time
# ----------------------------------------------------------------------
class UnboundInputError(TapeGraphError, LookupError):
    """A leaf node has no value at evaluation time."""


class UnknownNodeError(TapeGraphError, LookupError):
    """The node is not known to the program or machine."""


class UnboundError(TapeGraphError, LookupError):
    """A value or gradient was read back before it was produced."""


class ExecutionError(TapeGraphError, RuntimeError):
    """A numeric operation failed while a machine was running.

    Attributes
    ----------
    index:
        Instruction index (TapeMachine) or evaluation step (LispMachine).
    op:
        The :class:`~tapegraph.ops.base.Op` that failed, ``None`` for loads.
    node_id:
        Id of the node whose value was being produced.
    phase:
        ``"forward"`` or ``"backward"``.
    """

    def __init__(
        self,
        message: str,
        *,
        index: Optional[int] = None,
        op: Any = None,
        node_id: Optional[int] = None,
        phase: str = "forward",
    ) -> None:
        super().__init__(message)
        self.index = index
        self.op = op
        self.node_id = node_id
        self.phase = phase


__all__ = [
    "TapeGraphError",
    "ShapeError",
    "ShapeMismatch",
    "DTypeError",
    "ArityError",
    "GraphMismatchError",
    "BindError",
    "NotDifferentiable",
    "NoPathError",
    "InvariantError",
    "CyclicGraphError",
    "UnboundInputError",
    "UnknownNodeError",
    "UnboundError",
    "ExecutionError",
]
