import threading

import numpy as np
import pytest

from tapegraph import (
    DualValue,
    EngineConfig,
    ExecutionError,
    Graph,
    LispMachine,
    NotDifferentiable,
    UnboundError,
    UnboundInputError,
    UnknownNodeError,
    grad,
)
from tapegraph import functions as F


def test_forward_and_backward_in_one_run(graph, config):
    x = graph.input((3,), name="x")
    w = graph.input((3,), name="w")
    loss = F.sum(x * w)
    m = LispMachine(graph, config=config)
    m.let(x, [1.0, 2.0, 3.0])
    m.let(w, [4.0, 5.0, 6.0])
    m.run_all()
    assert float(m.value(loss)) == 32.0
    np.testing.assert_array_equal(m.grad(x), [4.0, 5.0, 6.0])
    np.testing.assert_array_equal(m.grad(w), [1.0, 2.0, 3.0])
    assert float(m.grad(loss)) == 1.0
    np.testing.assert_array_equal(x.grad, [4.0, 5.0, 6.0])
    assert float(loss.value) == 32.0


def test_graph_is_not_modified(graph, config):
    x = graph.input((2,), value=[1.0, 2.0])
    F.sum(F.tanh(x))
    before = len(graph)
    m = LispMachine(graph, config=config)
    m.run_all()
    assert len(graph) == before
    assert graph.gradient_map() == {}


def test_constants_receive_no_gradient(graph, config):
    x = graph.input(value=2.0)
    c = graph.constant(3.0)
    y = x * c
    m = LispMachine(graph, outputs=[y], config=config)
    m.run_all()
    assert float(m.grad(x)) == 3.0
    assert float(m.grad(c)) == 0.0


def test_non_scalar_output_requires_differentiation_off(graph, config):
    x = graph.input((2,), value=[0.0, 1.0])
    y = F.exp(x)
    with pytest.raises(NotDifferentiable):
        LispMachine(graph, config=config).run_all()
    m = LispMachine(graph, with_differentiation=False, config=config)
    m.run_all()
    np.testing.assert_allclose(m.value(y), np.exp([0.0, 1.0]))
    with pytest.raises(UnboundError):
        m.grad(x)


def test_integer_graph_forward_only(graph, config):
    i = graph.input((3,), dtype="int64", value=[1, 2, 3])
    out = F.sum(i * i)
    m = LispMachine(graph, with_differentiation=False, config=config)
    m.run_all()
    assert m.value(out).dtype == np.int64
    assert int(m.value(out)) == 14


def test_unbound_leaf(graph, config):
    x = graph.input()
    F.exp(x)
    with pytest.raises(UnboundInputError):
        LispMachine(graph, config=config).run_all()


def test_let_rejects_foreign_and_computed_nodes(graph, config):
    x = graph.input()
    y = F.exp(x)
    m = LispMachine(graph, config=config)
    with pytest.raises(UnknownNodeError):
        m.let(y, 1.0)
    with pytest.raises(UnknownNodeError):
        m.let(Graph().input(), 1.0)


def test_value_before_run(graph, config):
    x = graph.input(value=1.0)
    y = F.exp(x)
    m = LispMachine(graph, config=config)
    with pytest.raises(UnboundError):
        m.value(y)
    m.run_all()
    m.reset()
    with pytest.raises(UnboundError):
        m.grad(y)


def test_forward_failure(graph, config):
    x = graph.input(value=0.0)
    y = F.sum(F.log(x) * 1.0)
    with pytest.raises(ExecutionError) as info:
        LispMachine(graph, config=config).run_all()
    assert info.value.phase == "forward"
    assert info.value.op.name == "log"
    assert info.value.index == 1


def test_backward_failure_is_reported(graph, config):
    x = graph.input(value=0.0)
    y = F.sqrt(x)
    # forward is fine, d sqrt / dx divides by zero
    with pytest.raises(ExecutionError) as info:
        LispMachine(graph, outputs=[y], config=config).run_all()
    assert info.value.phase == "backward"
    assert info.value.node_id == y.id


def test_default_outputs_skip_symbolic_gradient_nodes(graph, config):
    x = graph.input(name="x")
    y = graph.input(name="y")
    z = x * y
    (gx,) = grad(z, x)
    assert gx in graph.roots()
    assert graph.roots(gradients=False) == [z]

    m = LispMachine(graph, config=config)
    assert m.outputs == [z]
    m.let(x, 2.0)
    m.let(y, 3.0)
    m.run_all()
    assert float(m.grad(x)) == 3.0
    assert float(m.grad(y)) == 2.0


def test_multiple_outputs_sum_their_gradients(graph, config):
    x = graph.input(value=2.0)
    a = x * 3.0
    b = F.square(x)
    m = LispMachine(graph, outputs=[a, b], config=config)
    m.run_all()
    assert float(m.grad(x)) == 3.0 + 4.0


def test_trace_logs_forward_and_backward(graph, caplog):
    import logging

    x = graph.input(value=1.0)
    F.exp(x)
    with caplog.at_level(logging.DEBUG, logger="tapegraph"):
        LispMachine(graph, config=EngineConfig(trace=True)).run_all()
    assert "forward step 1" in caplog.text
    assert "backward step 1" in caplog.text


def test_dual_value_accumulates_under_contention():
    dual = DualValue(np.zeros(4))
    np.testing.assert_array_equal(dual.grad, np.zeros(4))

    def work():
        for _ in range(500):
            dual.accumulate(np.ones(4))

    threads = [threading.Thread(target=work) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    np.testing.assert_array_equal(dual.grad, np.full(4, 4000.0))
    dual.seed()
    np.testing.assert_array_equal(dual.grad, np.full(4, 4001.0))
