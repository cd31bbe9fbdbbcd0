"""Linearise a graph into a register program.

:func:`compile_graph` sorts the nodes reachable from the requested outputs,
assigns each result a register with last-use liveness (freed registers are
reused lowest first) and emits one :class:`Instruction` per node.  Nodes the
caller will read back are *pinned* and keep their registers for the whole
program; :class:`LocationMap` records where they live.
"""

from __future__ import annotations

import heapq
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

import pandas as pd

from .errors import UnknownNodeError
from .graph import Graph, Node
from .ops.base import Op

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Instruction:
    """One program step; ``op is None`` loads a leaf's bound value."""

    index: int
    node_id: int
    op: Optional[Op]
    operands: Tuple[int, ...]
    result: int

    @property
    def is_load(self) -> bool:
        return self.op is None

    def __str__(self) -> str:
        if self.op is None:
            return f"r{self.result} = load %{self.node_id}"
        args = ", ".join(f"r{r}" for r in self.operands)
        return f"r{self.result} = {self.op} {args}"


@dataclass(frozen=True)
class Program:
    instructions: Tuple[Instruction, ...]
    register_count: int
    outputs: Tuple[int, ...]
    levels: Tuple[int, ...]
    graph: Graph = field(compare=False, repr=False)

    def __len__(self) -> int:
        return len(self.instructions)

    def __iter__(self) -> Iterator[Instruction]:
        return iter(self.instructions)

    @property
    def depth(self) -> int:
        """Number of ASAP levels, i.e. the critical path length."""
        return max(self.levels) + 1 if self.levels else 0

    def __str__(self) -> str:
        lines = [
            f"; {len(self.instructions)} instructions, {self.register_count} registers, "
            f"outputs {list(self.outputs)}"
        ]
        for instr in self.instructions:
            lines.append(f"{instr.index:4d}  {instr}")
        return "\n".join(lines)

    def summary_table(self) -> pd.DataFrame:
        rows = []
        for instr, level in zip(self.instructions, self.levels):
            node = self.graph.node(instr.node_id)
            rows.append(
                {
                    "index": instr.index,
                    "node": instr.node_id,
                    "name": node.name,
                    "op": "load" if instr.op is None else str(instr.op),
                    "operands": list(instr.operands),
                    "result": instr.result,
                    "level": level,
                    "shape": node.shape,
                    "dtype": node.dtype.name,
                }
            )
        return pd.DataFrame(rows, columns=["index", "node", "name", "op", "operands", "result", "level", "shape", "dtype"])


@dataclass
class LocationMap:
    """Register of every readable node value and symbolic gradient."""

    values: Dict[int, int]
    grads: Dict[int, int]

    def location(self, node: Node) -> int:
        try:
            return self.values[node.id]
        except KeyError:
            raise UnknownNodeError(f"{node!r} has no location in this program") from None

    def grad_location(self, node: Node) -> int:
        try:
            return self.grads[node.id]
        except KeyError:
            raise UnknownNodeError(f"{node!r} has no compiled gradient in this program") from None

    def __contains__(self, node: object) -> bool:
        return isinstance(node, Node) and node.id in self.values


def _asap_levels(order: Sequence[Node], position: Dict[int, int]) -> Tuple[int, ...]:
    levels: List[int] = []
    for node in order:
        if node.is_leaf:
            levels.append(0)
        else:
            levels.append(1 + max(levels[position[o]] for o in node.operand_ids))
    return tuple(levels)


def compile_graph(
    graph: Graph,
    outputs: Optional[Iterable[Node]] = None,
    keep: Iterable[Node] = (),
) -> Tuple[Program, LocationMap]:
    """Compile the part of ``graph`` that ``outputs`` depend on.

    ``outputs`` defaults to the graph roots in id order.  ``keep`` pins
    additional intermediate nodes so their values can be read back.
    """
    outputs = list(graph.roots() if outputs is None else outputs)
    keep = list(keep)
    for node in outputs + keep:
        graph._own(node)

    order = graph.topological_order(outputs + keep)
    position = {node.id: i for i, node in enumerate(order)}
    last_use: Dict[int, int] = {}
    for i, node in enumerate(order):
        for oid in node.operand_ids:
            last_use[oid] = i

    gradients = {nid: gid for nid, gid in graph.gradient_map().items() if gid in position}
    pinned = {n.id for n in outputs}
    pinned.update(n.id for n in keep)
    pinned.update(n.id for n in order if n.is_input)
    pinned.update(gradients.values())

    registers: Dict[int, int] = {}
    free: List[int] = []
    next_register = 0
    peak = 0
    instructions: List[Instruction] = []
    for i, node in enumerate(order):
        operand_regs = tuple(registers[oid] for oid in node.operand_ids)
        for oid in dict.fromkeys(node.operand_ids):
            if last_use[oid] == i and oid not in pinned:
                heapq.heappush(free, registers[oid])
        if free:
            reg = heapq.heappop(free)
        else:
            reg = next_register
            next_register += 1
        registers[node.id] = reg
        instructions.append(Instruction(i, node.id, node.op, operand_regs, reg))
        peak = max(peak, next_register - len(free))
        if node.id not in last_use and node.id not in pinned:
            heapq.heappush(free, reg)

    program = Program(
        instructions=tuple(instructions),
        register_count=next_register,
        outputs=tuple(n.id for n in outputs),
        levels=_asap_levels(order, position),
        graph=graph,
    )
    locations = LocationMap(
        values={nid: registers[nid] for nid in sorted(pinned)},
        grads={nid: registers[gid] for nid, gid in sorted(gradients.items())},
    )
    logger.info(
        "compiled %d instructions into %d registers (peak live %d, depth %d)",
        len(instructions),
        next_register,
        peak,
        program.depth,
    )
    logger.debug("register map: %s", registers)
    return program, locations


__all__ = ["Instruction", "Program", "LocationMap", "compile_graph"]
