import numpy as np
import pytest

from tapegraph import (
    GraphMismatchError,
    Graph,
    InvariantError,
    NoPathError,
    NotDifferentiable,
    TapeMachine,
    compile_graph,
    grad,
)
from tapegraph import functions as F
from tapegraph.ops import AddN, Op, UnaryOp


def _run(graph, outputs, feeds):
    program, locations = compile_graph(graph, outputs=outputs)
    machine = TapeMachine(program, locations)
    for node, value in feeds.items():
        machine.let(node, value)
    machine.run_all()
    return machine


def test_grad_returns_nodes_in_request_order(graph):
    x = graph.input(name="x")
    y = graph.input(name="y")
    z = x * y
    gy, gx, gy2 = grad(z, y, x, y)
    assert gy is gy2
    m = _run(graph, [z, gx, gy], {x: 3.0, y: 5.0})
    assert float(m.value(gx)) == 5.0
    assert float(m.value(gy)) == 3.0


def test_shared_consumers_are_summed_with_add_n(graph):
    x = graph.input((3,))
    out = F.sum(x * x)
    (gx,) = grad(out, x)
    assert isinstance(gx.op, AddN)
    assert len(gx.operand_ids) == 2
    m = _run(graph, [out, gx], {x: [1.0, 2.0, 3.0]})
    np.testing.assert_allclose(m.value(gx), [2.0, 4.0, 6.0])


def test_gradient_of_output_is_one(graph):
    x = graph.input()
    y = F.exp(x)
    (gy,) = grad(y, y)
    assert gy.is_constant
    np.testing.assert_array_equal(gy.value, 1.0)


def test_second_derivative(graph):
    x = graph.input(name="x")
    y = x ** 3.0
    (gx,) = grad(y, x)
    (ggx,) = grad(gx, x)
    m = _run(graph, [y, gx, ggx], {x: 2.0})
    assert float(m.value(y)) == pytest.approx(8.0)
    assert float(m.value(gx)) == pytest.approx(12.0)
    assert float(m.value(ggx)) == pytest.approx(12.0)


def test_non_scalar_output_is_not_differentiable(graph):
    x = graph.input((3,))
    y = F.exp(x)
    before = len(graph)
    with pytest.raises(NotDifferentiable):
        grad(y, x)
    assert len(graph) == before


def test_integer_output_is_not_differentiable(graph):
    i = graph.input((), dtype="int64")
    with pytest.raises(NotDifferentiable):
        grad(i * 2, i)


def test_path_only_through_indicator_is_not_differentiable(graph):
    x = graph.input((3,))
    out = F.sum(F.sign(x))
    before = len(graph)
    with pytest.raises(NotDifferentiable):
        grad(out, x)
    assert len(graph) == before


def test_indicator_branch_contributes_nothing(graph):
    x = graph.input((3,))
    out = F.sum(x * F.greater(x, 0.0))
    (gx,) = grad(out, x)
    m = _run(graph, [out, gx], {x: [-1.0, 2.0, 3.0]})
    np.testing.assert_allclose(m.value(gx), [0.0, 1.0, 1.0])


def test_non_ancestor_raises_and_leaves_graph_unchanged(graph):
    x = graph.input()
    y = graph.input()
    z = x * 2.0
    before = len(graph)
    with pytest.raises(NoPathError):
        grad(z, x, y)
    with pytest.raises(LookupError):
        grad(z, y)
    assert len(graph) == before
    assert graph.gradient_map() == {}
    assert x.grad_node is None


def test_foreign_node_is_rejected(graph):
    x = graph.input()
    other = Graph()
    with pytest.raises(GraphMismatchError):
        grad(F.exp(x), other.input())


def test_back_references_do_not_enter_evaluation_order(graph):
    x = graph.input((2,))
    out = F.sum(F.tanh(x))
    order_before = [n.id for n in graph.topological_order([out])]
    (gx,) = grad(out, x)
    assert x.grad_node is gx
    assert out.grad_node is not None
    assert [n.id for n in graph.topological_order([out])] == order_before


@pytest.mark.parametrize("shape", [(), (3,), (2, 2)])
def test_misshaped_rule_is_an_invariant_error(graph, shape):
    class _Broken(UnaryOp):
        name = None

        def __str__(self):
            return "broken"

        def compute(self, x):
            return x

        def vjp(self, em, index, g, inputs, output):
            return em.broadcast_to(g, (5,) + tuple(em.shape(g)))

    x = graph.input(shape)
    out = F.sum(graph.apply(_Broken(), x))
    with pytest.raises(InvariantError):
        grad(out, x)


def test_broken_rule_is_not_registered():
    from tapegraph.ops import OP_REGISTRY

    assert None not in OP_REGISTRY
    assert all(issubclass(cls, Op) for cls in OP_REGISTRY.values())
