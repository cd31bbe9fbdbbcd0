"""Graph and node model.

A :class:`Graph` owns its nodes in an arena indexed by id.  Operand edges are
stored as id tuples on each node and mirrored into a :mod:`networkx` DiGraph
(edge ``operand -> consumer``) used for reachability queries and export.  The
symbolic gradient back-reference lives in a separate id map so that it never
takes part in topological sorting.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

import networkx as nx
import numpy as np

from .dtypes import as_dtype
from .errors import (
    BindError,
    CyclicGraphError,
    DTypeError,
    GraphMismatchError,
    ShapeMismatch,
    UnknownNodeError,
)
from .ops.base import Op
from .shapes import Shape, as_shape

logger = logging.getLogger(__name__)

INPUT = "input"
CONSTANT = "constant"
OP = "op"

_VISITING = 1
_DONE = 2


class Node:
    """Handle for one vertex of a :class:`Graph`.

    Structure (op, operands, dtype, shape) is fixed at construction; ``value``
    and ``grad`` are slots that binding and execution fill in.
    """

    __slots__ = ("graph", "id", "name", "op", "operand_ids", "dtype", "shape", "kind", "value", "grad")
    __array_ufunc__ = None  # let numpy defer to the reflected operators

    def __init__(
        self,
        graph: "Graph",
        id: int,
        op: Optional[Op],
        operand_ids: Tuple[int, ...],
        dtype: np.dtype,
        shape: Shape,
        kind: str,
        name: Optional[str] = None,
    ) -> None:
        self.graph = graph
        self.id = id
        self.name = name
        self.op = op
        self.operand_ids = operand_ids
        self.dtype = dtype
        self.shape = shape
        self.kind = kind
        self.value: Optional[np.ndarray] = None
        self.grad: Optional[np.ndarray] = None

    # ------------------------------------------------------------------
    # derived structure
    # ------------------------------------------------------------------
    @property
    def operands(self) -> Tuple["Node", ...]:
        return tuple(self.graph.node(i) for i in self.operand_ids)

    @property
    def ndim(self) -> int:
        return len(self.shape)

    @property
    def is_leaf(self) -> bool:
        return not self.operand_ids

    @property
    def is_input(self) -> bool:
        return self.kind == INPUT

    @property
    def is_constant(self) -> bool:
        return self.kind == CONSTANT

    @property
    def is_root(self) -> bool:
        return not self.graph.consumers(self)

    @property
    def grad_node(self) -> Optional["Node"]:
        return self.graph.grad_node_of(self)

    def bind(self, value: Any) -> np.ndarray:
        return self.graph.bind(self, value)

    # ------------------------------------------------------------------
    # expression sugar
    # ------------------------------------------------------------------
    def __add__(self, other):
        from . import functions as F

        return F.add(self, other)

    def __radd__(self, other):
        from . import functions as F

        return F.add(other, self)

    def __sub__(self, other):
        from . import functions as F

        return F.sub(self, other)

    def __rsub__(self, other):
        from . import functions as F

        return F.sub(other, self)

    def __mul__(self, other):
        from . import functions as F

        return F.mul(self, other)

    def __rmul__(self, other):
        from . import functions as F

        return F.mul(other, self)

    def __truediv__(self, other):
        from . import functions as F

        return F.div(self, other)

    def __rtruediv__(self, other):
        from . import functions as F

        return F.div(other, self)

    def __pow__(self, other):
        from . import functions as F

        return F.pow(self, other)

    def __rpow__(self, other):
        from . import functions as F

        return F.pow(other, self)

    def __matmul__(self, other):
        from . import functions as F

        return F.matmul(self, other)

    def __rmatmul__(self, other):
        from . import functions as F

        return F.matmul(other, self)

    def __neg__(self):
        from . import functions as F

        return F.neg(self)

    def sum(self, axis=None, keepdims: bool = False) -> "Node":
        from . import functions as F

        return F.sum(self, axis=axis, keepdims=keepdims)

    def mean(self, axis=None, keepdims: bool = False) -> "Node":
        from . import functions as F

        return F.mean(self, axis=axis, keepdims=keepdims)

    def max(self, axis=None, keepdims: bool = False) -> "Node":
        from . import functions as F

        return F.max(self, axis=axis, keepdims=keepdims)

    def reshape(self, *shape) -> "Node":
        from . import functions as F

        if len(shape) == 1 and not isinstance(shape[0], (int, np.integer)):
            shape = shape[0]
        return F.reshape(self, shape)

    @property
    def T(self) -> "Node":
        from . import functions as F

        return F.transpose(self)

    # ------------------------------------------------------------------
    # identity
    # ------------------------------------------------------------------
    def __eq__(self, other: object) -> bool:
        return isinstance(other, Node) and other.graph is self.graph and other.id == self.id

    def __hash__(self) -> int:
        return hash((id(self.graph), self.id))

    def __repr__(self) -> str:
        label = f" {self.name!r}" if self.name else ""
        what = str(self.op) if self.op is not None else self.kind
        return f"<Node {self.id}{label} {what} {self.dtype.name}{list(self.shape)}>"


class Graph:
    """Append-only DAG of :class:`Node` objects."""

    def __init__(self, name: Optional[str] = None) -> None:
        self.name = name
        self._nodes: List[Node] = []
        self._consumers: List[List[int]] = []
        self._grad_of: Dict[int, int] = {}
        self.nx = nx.DiGraph()

    def __len__(self) -> int:
        return len(self._nodes)

    def __iter__(self):
        return iter(self._nodes)

    def __repr__(self) -> str:
        label = f" {self.name!r}" if self.name else ""
        return f"<Graph{label} nodes={len(self._nodes)}>"

    # ------------------------------------------------------------------
    # insertion
    # ------------------------------------------------------------------
    def _insert(
        self,
        op: Optional[Op],
        operand_ids: Tuple[int, ...],
        dtype: np.dtype,
        shape: Shape,
        kind: str,
        name: Optional[str],
    ) -> Node:
        nid = len(self._nodes)
        node = Node(self, nid, op, operand_ids, dtype, shape, kind, name)
        self._nodes.append(node)
        self._consumers.append([])
        self.nx.add_node(
            nid,
            op=None if op is None else str(op),
            name=name,
            shape=shape,
            dtype=dtype.name,
            kind=kind,
        )
        for oid in operand_ids:
            self._consumers[oid].append(nid)
            self.nx.add_edge(oid, nid)
        logger.debug("graph %s: inserted %r", self.name or hex(id(self)), node)
        return node

    def input(
        self,
        shape: Union[int, Iterable[int]] = (),
        dtype: Any = "float64",
        name: Optional[str] = None,
        value: Any = None,
    ) -> Node:
        """Create an input leaf; bind ``value`` right away when given."""
        node = self._insert(None, (), as_dtype(dtype), as_shape(shape), INPUT, name)
        if value is not None:
            self.bind(node, value)
        return node

    def constant(self, value: Any, dtype: Any = None, name: Optional[str] = None) -> Node:
        arr = np.asarray(value)
        dt = as_dtype(arr.dtype if dtype is None else dtype)
        arr = np.array(arr, dtype=dt)
        arr.setflags(write=False)
        node = self._insert(None, (), dt, tuple(arr.shape), CONSTANT, name)
        node.value = arr
        return node

    def apply(self, op: Op, *operands: Node, name: Optional[str] = None) -> Node:
        """Insert a node computing ``op(*operands)``.

        Every check (arity, graph membership, dtype, shape) runs before the
        graph is touched, so a failing call leaves the graph unchanged.
        """
        if not isinstance(op, Op):
            raise TypeError(f"expected an Op, got {type(op).__name__}")
        op.check_arity(len(operands))
        for operand in operands:
            self._own(operand)
        dtype = op.infer_dtype([o.dtype for o in operands])
        shape = as_shape(op.infer_shape([o.shape for o in operands]))
        return self._insert(op, tuple(o.id for o in operands), dtype, shape, OP, name)

    # ------------------------------------------------------------------
    # binding
    # ------------------------------------------------------------------
    def coerce(self, node: Node, value: Any) -> np.ndarray:
        """Validate ``value`` for input ``node`` and return it as an owned ndarray."""
        self._own(node)
        if not node.is_input:
            raise BindError(f"cannot bind {node!r}: only input leaves take values")
        arr = np.asarray(value)
        if not np.can_cast(arr.dtype, node.dtype, casting="same_kind"):
            raise DTypeError(f"cannot bind {arr.dtype.name} value to {node!r}")
        if tuple(arr.shape) != node.shape:
            raise ShapeMismatch(f"value of shape {tuple(arr.shape)} does not fit {node!r}")
        return np.array(arr, dtype=node.dtype)

    def bind(self, node: Node, value: Any) -> np.ndarray:
        arr = self.coerce(node, value)
        node.value = arr
        return arr

    # ------------------------------------------------------------------
    # queries
    # ------------------------------------------------------------------
    def node(self, nid: int) -> Node:
        try:
            return self._nodes[nid]
        except (IndexError, TypeError):
            raise UnknownNodeError(f"graph has no node {nid!r}") from None

    def _own(self, node: Any) -> Node:
        if not isinstance(node, Node):
            raise TypeError(f"expected a Node, got {type(node).__name__}")
        if node.graph is not self:
            raise GraphMismatchError(f"{node!r} belongs to a different graph")
        return node

    def consumers(self, node: Node) -> List[Node]:
        return [self._nodes[c] for c in self._consumers[node.id]]

    def roots(self, gradients: bool = True) -> List[Node]:
        """Nodes with no consumers.

        With ``gradients=False`` the symbolic gradient nodes recorded by
        :func:`~tapegraph.differentiation.grad` are left out.
        """
        skip = set(self._grad_of.values()) if not gradients else ()
        return [n for n in self._nodes if not self._consumers[n.id] and n.id not in skip]

    def leaves(self) -> List[Node]:
        return [n for n in self._nodes if n.is_leaf]

    def inputs(self) -> List[Node]:
        return [n for n in self._nodes if n.is_input]

    def has_path(self, src: Node, dst: Node) -> bool:
        """True when ``dst`` depends (transitively) on ``src``."""
        return nx.has_path(self.nx, self._own(src).id, self._own(dst).id)

    def topological_order(self, roots: Optional[Sequence[Union[Node, int]]] = None) -> List[Node]:
        """Depth-first post-order over operand edges from ``roots``.

        Every node appears after all of its operands.  Iterative so deep
        chains do not exhaust the interpreter stack.
        """
        if roots is None:
            roots = self.roots()
        ids = [r if isinstance(r, int) else self._own(r).id for r in roots]
        state: Dict[int, int] = {}
        order: List[Node] = []
        for root in ids:
            if state.get(root) == _DONE:
                continue
            state[root] = _VISITING
            stack = [(root, iter(self.node(root).operand_ids))]
            while stack:
                nid, pending = stack[-1]
                for child in pending:
                    seen = state.get(child)
                    if seen is None:
                        state[child] = _VISITING
                        stack.append((child, iter(self._nodes[child].operand_ids)))
                        break
                    if seen == _VISITING:
                        raise CyclicGraphError(f"cycle through node {child} (reached from {nid})")
                else:
                    stack.pop()
                    state[nid] = _DONE
                    order.append(self._nodes[nid])
        return order

    # ------------------------------------------------------------------
    # symbolic gradient back-references
    # ------------------------------------------------------------------
    def grad_node_of(self, node: Node) -> Optional[Node]:
        gid = self._grad_of.get(self._own(node).id)
        return None if gid is None else self._nodes[gid]

    def gradient_map(self) -> Dict[int, int]:
        """Copy of the ``node id -> gradient node id`` back-references."""
        return dict(self._grad_of)

    def _record_gradient(self, nid: int, gid: int) -> None:
        self._grad_of[nid] = gid

    def export_graph(self) -> nx.DiGraph:
        """Snapshot of the operand DAG with gradient back-references as attributes."""
        snapshot = self.nx.copy()
        for nid in snapshot.nodes:
            snapshot.nodes[nid]["grad_node"] = self._grad_of.get(nid)
        snapshot.graph["name"] = self.name
        return snapshot


__all__ = ["Graph", "Node", "INPUT", "CONSTANT", "OP"]
