"""tapegraph: computation graphs with symbolic and automatic differentiation.

Build a :class:`Graph`, optionally extend it with :func:`grad`, then either
compile it with :func:`compile_graph` and run the program on a
:class:`TapeMachine`, or interpret it directly with a :class:`LispMachine`.
"""

from . import functions
from .compiler import Instruction, LocationMap, Program, compile_graph
from .config import EngineConfig
from .differentiation import backpropagate, grad
from .dual import DualValue
from .errors import (
    ArityError,
    BindError,
    CyclicGraphError,
    DTypeError,
    ExecutionError,
    GraphMismatchError,
    InvariantError,
    NoPathError,
    NotDifferentiable,
    ShapeError,
    ShapeMismatch,
    TapeGraphError,
    UnboundError,
    UnboundInputError,
    UnknownNodeError,
)
from .graph import Graph, Node
from .lispmachine import LispMachine
from .tapemachine import TapeMachine

__version__ = "0.1.0"

__all__ = [
    "functions",
    "Graph",
    "Node",
    "grad",
    "backpropagate",
    "DualValue",
    "compile_graph",
    "Program",
    "Instruction",
    "LocationMap",
    "TapeMachine",
    "LispMachine",
    "EngineConfig",
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
