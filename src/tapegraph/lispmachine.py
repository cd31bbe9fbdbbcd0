"""Interpret a live graph directly, with optional reverse-mode gradients."""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional

import numpy as np

from .config import EngineConfig
from .differentiation import backpropagate
from .dtypes import is_float
from .dual import DualValue
from .errors import (
    ExecutionError,
    NotDifferentiable,
    UnboundError,
    UnboundInputError,
    UnknownNodeError,
)
from .graph import Graph, Node
from .tapemachine import check_finite

logger = logging.getLogger(__name__)


class LispMachine:
    """Evaluate ``outputs`` by walking the graph, no compile step.

    :meth:`run_all` does a memoised depth-first forward pass and, when
    ``with_differentiation`` is set, seeds every output with one and
    back-propagates over the same order.  Each output must then be a float
    scalar; the gradients are those of the sum of the outputs.  By default
    the outputs are the graph roots other than symbolic gradient nodes.
    """

    def __init__(
        self,
        graph: Graph,
        outputs: Optional[Iterable[Node]] = None,
        with_differentiation: bool = True,
        config: Optional[EngineConfig] = None,
    ) -> None:
        self.graph = graph
        self.outputs: List[Node] = list(graph.roots(gradients=False) if outputs is None else outputs)
        for node in self.outputs:
            graph._own(node)
        self.with_differentiation = with_differentiation
        self.config = config or EngineConfig.from_env()
        self._bindings: Dict[int, np.ndarray] = {}
        self._duals: Dict[int, DualValue] = {}

    def let(self, node: Node, value: Any) -> None:
        if not isinstance(node, Node) or node.graph is not self.graph or not node.is_input:
            raise UnknownNodeError(f"{node!r} is not an input of this graph")
        self._bindings[node.id] = self.graph.coerce(node, value)

    def _leaf_value(self, node: Node, step: int) -> np.ndarray:
        value = self._bindings.get(node.id)
        if value is None:
            value = node.value
        if value is None:
            raise UnboundInputError(f"step {step}: leaf {node!r} has no value")
        return value

    def _evaluate(self, node: Node, step: int, duals: Dict[int, DualValue]) -> np.ndarray:
        args = [duals[oid].value for oid in node.operand_ids]
        try:
            with self.config.numerics():
                value = node.op.forward(args)
        except Exception as exc:
            raise ExecutionError(
                f"step {step} ({node.op}) failed for node {node.id}: {exc}",
                index=step,
                op=node.op,
                node_id=node.id,
            ) from exc
        check_finite(value, self.config, f"step {step} ({node.op})", index=step, op=node.op, node_id=node.id)
        return value

    def run_all(self) -> None:
        if self.with_differentiation:
            for out in self.outputs:
                if out.shape != () or not is_float(out.dtype):
                    raise NotDifferentiable(f"output {out!r} is not a float scalar")

        self._duals = {}
        order = self.graph.topological_order(self.outputs)
        duals: Dict[int, DualValue] = {}
        for step, node in enumerate(order):
            if node.id in duals:
                continue
            if node.is_leaf:
                value = self._leaf_value(node, step)
            else:
                value = self._evaluate(node, step, duals)
            duals[node.id] = DualValue(value)
            if self.config.trace:
                logger.debug("forward step %d: node %d -> %s%s", step, node.id, value.dtype.name, list(value.shape))

        if self.with_differentiation:
            for out in dict.fromkeys(self.outputs):
                duals[out.id].seed()
            backpropagate(self.graph, order, duals, self.config)

        self._duals = duals
        for node in order:
            dual = duals[node.id]
            if not node.is_leaf:
                node.value = dual.value
            if self.with_differentiation:
                node.grad = dual.grad

    def value(self, node: Node) -> np.ndarray:
        dual = self._duals.get(node.id) if node.graph is self.graph else None
        if dual is None:
            raise UnboundError(f"{node!r} was not evaluated")
        return dual.value

    def grad(self, node: Node) -> np.ndarray:
        if not self.with_differentiation:
            raise UnboundError("differentiation is disabled for this machine")
        dual = self._duals.get(node.id) if node.graph is self.graph else None
        if dual is None:
            raise UnboundError(f"{node!r} was not evaluated")
        return dual.grad

    def reset(self) -> None:
        self._bindings = {}
        self._duals = {}


__all__ = ["LispMachine"]
