import os

import numpy as np
import pytest

from tapegraph import EngineConfig, Graph


def pytest_addoption(parser):
    parser.addoption(
        "--trace-tape",
        action="store_true",
        help="Log every executed instruction during tests",
    )


def pytest_configure(config):
    if config.getoption("--trace-tape"):
        os.environ["TAPEGRAPH_TRACE"] = "1"


@pytest.fixture
def graph():
    return Graph("test")


@pytest.fixture
def rng():
    return np.random.default_rng(1234)


@pytest.fixture
def config():
    """Default settings, independent of the TAPEGRAPH_* environment."""
    return EngineConfig()


def _central_difference(f, values, index, eps=1e-6):
    values = [np.array(v, dtype=np.float64) for v in values]
    base = values[index]
    out = np.zeros_like(base)
    for pos in np.ndindex(base.shape):
        orig = base[pos]
        base[pos] = orig + eps
        hi = f(values)
        base[pos] = orig - eps
        lo = f(values)
        base[pos] = orig
        out[pos] = (hi - lo) / (2 * eps)
    return out


@pytest.fixture
def numeric_grad():
    """Central-difference gradient of scalar ``f(values)`` w.r.t. ``values[index]``."""
    return _central_difference
