"""Execute compiled programs against a register file."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import numpy as np

from .compiler import Instruction, LocationMap, Program
from .config import EngineConfig
from .dtypes import is_float
from .errors import ExecutionError, UnboundError, UnboundInputError, UnknownNodeError
from .graph import Node

logger = logging.getLogger(__name__)


def check_finite(value: np.ndarray, config: EngineConfig, where: str, **context: Any) -> None:
    """Apply the NaN / Inf guards of ``config`` to a freshly computed value."""
    if not is_float(value.dtype):
        return
    if config.nan_guard and np.isnan(value).any():
        raise ExecutionError(f"{where} produced NaN", **context)
    if config.inf_guard and np.isinf(value).any():
        raise ExecutionError(f"{where} produced an infinite value", **context)


class TapeMachine:
    """Runs a :class:`Program` instruction by instruction.

    Inputs are bound with :meth:`let`; :meth:`run_all` re-executes the
    whole program every time.  Results are read back through the
    :class:`LocationMap` with :meth:`value` and :meth:`grad`.
    """

    def __init__(
        self,
        program: Program,
        locations: LocationMap,
        config: Optional[EngineConfig] = None,
    ) -> None:
        self.program = program
        self.locations = locations
        self.config = config or EngineConfig.from_env()
        self.graph = program.graph
        self._bindings: Dict[int, np.ndarray] = {}
        self._registers: List[Optional[np.ndarray]] = [None] * program.register_count
        self._executed = False

    def let(self, node: Node, value: Any) -> None:
        if node.graph is not self.graph or node not in self.locations:
            raise UnknownNodeError(f"{node!r} has no location in this program")
        if not node.is_input:
            raise UnknownNodeError(f"{node!r} is not an input of this program")
        arr = self.graph.coerce(node, value)
        self._bindings[node.id] = arr
        self._registers[self.locations.location(node)] = arr

    def _load(self, instr: Instruction) -> np.ndarray:
        node = self.graph.node(instr.node_id)
        value = self._bindings.get(node.id)
        if value is None:
            value = node.value
        if value is None:
            raise UnboundInputError(f"instruction {instr.index}: input {node!r} has no value")
        return value

    def _execute(self, instr: Instruction, registers: List[Optional[np.ndarray]]) -> np.ndarray:
        args = [registers[r] for r in instr.operands]
        try:
            with self.config.numerics():
                value = instr.op.forward(args)
        except Exception as exc:
            raise ExecutionError(
                f"instruction {instr.index} ({instr.op}) failed for node {instr.node_id}: {exc}",
                index=instr.index,
                op=instr.op,
                node_id=instr.node_id,
            ) from exc
        check_finite(
            value,
            self.config,
            f"instruction {instr.index} ({instr.op})",
            index=instr.index,
            op=instr.op,
            node_id=instr.node_id,
        )
        return value

    def run_all(self) -> None:
        registers: List[Optional[np.ndarray]] = [None] * self.program.register_count
        try:
            for instr in self.program:
                if instr.is_load:
                    value = self._load(instr)
                else:
                    value = self._execute(instr, registers)
                registers[instr.result] = value
                if self.config.trace:
                    logger.debug("%4d  %s  -> %s%s", instr.index, instr, value.dtype.name, list(value.shape))
        except Exception:
            self._registers = [None] * self.program.register_count
            self._executed = False
            raise
        self._registers = registers
        self._executed = True
        self._write_back()

    def _write_back(self) -> None:
        for nid, reg in self.locations.values.items():
            node = self.graph.node(nid)
            if not node.is_leaf:
                node.value = self._registers[reg]
        for nid, reg in self.locations.grads.items():
            self.graph.node(nid).grad = self._registers[reg]

    def value(self, node: Node) -> np.ndarray:
        if node.graph is not self.graph or node not in self.locations:
            raise UnboundError(f"{node!r} is not tracked by this program")
        if not self._executed:
            raise UnboundError(f"{node!r} has not been computed; call run_all() first")
        return self._registers[self.locations.location(node)]

    def grad(self, node: Node) -> np.ndarray:
        if node.graph is not self.graph or node.id not in self.locations.grads:
            raise UnboundError(f"no compiled gradient for {node!r}")
        if not self._executed:
            raise UnboundError(f"gradient of {node!r} has not been computed; call run_all() first")
        return self._registers[self.locations.grad_location(node)]

    def reset(self) -> None:
        self._bindings = {}
        self._registers = [None] * self.program.register_count
        self._executed = False


__all__ = ["TapeMachine", "check_finite"]
