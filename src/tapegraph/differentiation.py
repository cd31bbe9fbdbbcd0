"""Symbolic and automatic reverse-mode differentiation.

Both modes drive the same :meth:`Op.vjp <tapegraph.ops.base.Op.vjp>` rules.
Rules talk to an *emitter*:

* :class:`SymbolicEmitter` inserts a node per helper call, so :func:`grad`
  extends the graph with nodes that compute the gradient;
* :class:`NumericEmitter` evaluates each helper on ndarrays straight away,
  which is what :func:`backpropagate` uses during interpretation.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Mapping, Optional, Sequence, Set

import numpy as np

from .config import EngineConfig
from .dtypes import is_float
from .dual import DualValue
from .errors import (
    ExecutionError,
    GraphMismatchError,
    InvariantError,
    NoPathError,
    NotDifferentiable,
    TapeGraphError,
)
from .graph import Graph, Node
from .ops import (
    Add,
    AddN,
    BroadcastTo,
    Cos,
    Div,
    Equal,
    Greater,
    Log,
    MatMul,
    MatVec,
    Mul,
    Neg,
    Outer,
    Pow,
    Reshape,
    Sign,
    Sin,
    Square,
    Sub,
    SumTo,
    Transpose,
)
from .shapes import Shape, permutation

logger = logging.getLogger(__name__)


class Emitter:
    """Helper vocabulary available to gradient rules."""

    def apply(self, op, *args):
        raise NotImplementedError

    def shape(self, x) -> Shape:
        raise NotImplementedError

    def const(self, value, like):
        """A scalar constant with the dtype of ``like``."""
        raise NotImplementedError

    def add(self, x, y):
        return self.apply(Add(), x, y)

    def sub(self, x, y):
        return self.apply(Sub(), x, y)

    def mul(self, x, y):
        return self.apply(Mul(), x, y)

    def div(self, x, y):
        return self.apply(Div(), x, y)

    def pow(self, x, y):
        return self.apply(Pow(), x, y)

    def neg(self, x):
        return self.apply(Neg(), x)

    def log(self, x):
        return self.apply(Log(), x)

    def safe_log(self, x):
        """``log(x)`` where ``x > 0``, zero elsewhere."""
        positive = self.greater(x, self.const(0.0, like=x))
        one = self.const(1.0, like=x)
        return self.log(self.add(self.mul(x, positive), self.sub(one, positive)))

    def sin(self, x):
        return self.apply(Sin(), x)

    def cos(self, x):
        return self.apply(Cos(), x)

    def sign(self, x):
        return self.apply(Sign(), x)

    def square(self, x):
        return self.apply(Square(), x)

    def greater(self, x, y):
        return self.apply(Greater(), x, y)

    def equal(self, x, y):
        return self.apply(Equal(), x, y)

    def matmul(self, a, b):
        return self.apply(MatMul(), a, b)

    def matvec(self, a, v):
        return self.apply(MatVec(), a, v)

    def outer(self, a, b):
        return self.apply(Outer(), a, b)

    def transpose(self, x, axes=None):
        return self.apply(Transpose(axes=permutation(axes, len(self.shape(x)))), x)

    # shape helpers are no-ops when the shape already matches
    def reshape(self, x, shape):
        shape = tuple(shape)
        if self.shape(x) == shape:
            return x
        return self.apply(Reshape(shape=shape), x)

    def broadcast_to(self, x, shape):
        shape = tuple(shape)
        if self.shape(x) == shape:
            return x
        return self.apply(BroadcastTo(shape=shape), x)

    def sum_to(self, x, shape):
        shape = tuple(shape)
        if self.shape(x) == shape:
            return x
        return self.apply(SumTo(shape=shape), x)


class SymbolicEmitter(Emitter):
    def __init__(self, graph: Graph) -> None:
        self.graph = graph

    def apply(self, op, *args):
        return self.graph.apply(op, *args)

    def shape(self, x) -> Shape:
        return x.shape

    def const(self, value, like):
        return self.graph.constant(np.asarray(value, dtype=like.dtype))


class NumericEmitter(Emitter):
    def __init__(self, config: EngineConfig) -> None:
        self.config = config

    def apply(self, op, *args):
        with self.config.numerics():
            return op.forward(args)

    def shape(self, x) -> Shape:
        return tuple(np.shape(x))

    def const(self, value, like):
        return np.asarray(value, dtype=like.dtype)


# ----------------------------------------------------------------------
# symbolic mode
# ----------------------------------------------------------------------
def _differentiable_ancestors(order: Sequence[Node], output: Node) -> Set[int]:
    """Ids of nodes through which a gradient can flow back from ``output``."""
    live = {output.id}
    for node in reversed(order):
        if node.id not in live or node.is_leaf or not node.op.differentiable:
            continue
        for operand in node.operands:
            if is_float(operand.dtype):
                live.add(operand.id)
    return live


def _descendants(order: Sequence[Node], sources: Set[int]) -> Set[int]:
    reached = set(sources)
    for node in order:
        if any(o in reached for o in node.operand_ids):
            reached.add(node.id)
    return reached


def _check_contribution(node: Node, operand: Node, shape: Shape) -> None:
    if tuple(shape) != operand.shape:
        raise InvariantError(
            f"{node.op.name} gradient for operand {operand.id} has shape {tuple(shape)}, "
            f"expected {operand.shape}"
        )


def grad(output: Node, *wrt: Node) -> List[Node]:
    """Extend ``output``'s graph with nodes computing ``d output / d wrt``.

    Returns one gradient node per requested node, in request order.  All
    validation happens before the graph is modified: a failing call leaves
    it untouched.
    """
    graph = output.graph
    for node in wrt:
        if not isinstance(node, Node) or node.graph is not graph:
            raise GraphMismatchError(f"{node!r} is not a node of {graph!r}")
    if output.shape != ():
        raise NotDifferentiable(f"output {output!r} is not a scalar")
    if not is_float(output.dtype):
        raise NotDifferentiable(f"output {output!r} has non-float dtype {output.dtype.name}")
    for node in wrt:
        if node != output and not graph.has_path(node, output):
            raise NoPathError(f"{node!r} is not an ancestor of {output!r}")

    order = graph.topological_order([output])
    live = _differentiable_ancestors(order, output)
    for node in wrt:
        if node.id not in live:
            raise NotDifferentiable(f"no differentiable path from {node!r} to {output!r}")
    relevant = live & _descendants(order, {n.id for n in wrt})

    start = len(graph)
    em = SymbolicEmitter(graph)
    pending: Dict[int, List[Node]] = {output.id: [em.const(1.0, like=output)]}
    grads: Dict[int, Node] = {}
    for node in reversed(order):
        parts = pending.pop(node.id, None)
        if not parts:
            continue
        g = parts[0] if len(parts) == 1 else graph.apply(AddN(), *parts)
        grads[node.id] = g
        graph._record_gradient(node.id, g.id)
        if node.is_leaf or not node.op.differentiable:
            continue
        inputs = node.operands
        for index, operand in enumerate(inputs):
            if operand.id not in relevant:
                continue
            contribution = node.op.vjp(em, index, g, inputs, node)
            _check_contribution(node, operand, contribution.shape)
            pending.setdefault(operand.id, []).append(contribution)

    logger.debug(
        "grad of node %d w.r.t. %s: %d gradient nodes added",
        output.id,
        [n.id for n in wrt],
        len(graph) - start,
    )
    return [grads[n.id] for n in wrt]


# ----------------------------------------------------------------------
# automatic mode
# ----------------------------------------------------------------------
def backpropagate(
    graph: Graph,
    order: Sequence[Node],
    duals: Mapping[int, DualValue],
    config: Optional[EngineConfig] = None,
) -> None:
    """Accumulate gradients into ``duals`` by walking ``order`` backwards.

    ``order`` must be the evaluation order that filled ``duals`` and the
    losses must already be seeded.  The graph is not modified.
    """
    config = config or EngineConfig.from_env()
    em = NumericEmitter(config)
    for step in range(len(order) - 1, -1, -1):
        node = order[step]
        if node.is_leaf or not node.op.differentiable or not is_float(node.dtype):
            continue
        dual = duals[node.id]
        inputs = tuple(duals[o].value for o in node.operand_ids)
        for index, operand in enumerate(node.operands):
            if operand.is_constant or not is_float(operand.dtype):
                continue
            try:
                contribution = node.op.vjp(em, index, dual.grad, inputs, dual.value)
            except TapeGraphError:
                raise
            except Exception as exc:
                raise ExecutionError(
                    f"backward step {step} ({node.op}) failed for node {node.id}: {exc}",
                    index=step,
                    op=node.op,
                    node_id=node.id,
                    phase="backward",
                ) from exc
            if config.check_gradients:
                _check_contribution(node, operand, np.shape(contribution))
            duals[operand.id].accumulate(contribution)
        if config.trace:
            logger.debug("backward step %d: node %d (%s)", step, node.id, node.op)


__all__ = ["Emitter", "SymbolicEmitter", "NumericEmitter", "grad", "backpropagate"]
