"""Engine configuration.

Settings are read from ``TAPEGRAPH_*`` environment variables by
:meth:`EngineConfig.from_env`; machines accept an explicit config instead.
"""

from __future__ import annotations

import os
from contextlib import contextmanager
from dataclasses import dataclass, replace
from typing import Generator, Mapping, Optional

import numpy as np

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}
NUMERIC_POLICIES = ("raise", "warn", "ignore")


def _env_flag(environ: Mapping[str, str], key: str, default: bool) -> bool:
    raw = environ.get(key)
    if raw is None:
        return default
    val = raw.strip().lower()
    if val in _TRUE:
        return True
    if val in _FALSE:
        return False
    raise ValueError(f"{key}={raw!r} is not a boolean flag")


@dataclass(frozen=True)
class EngineConfig:
    """Runtime knobs shared by :class:`TapeMachine` and :class:`LispMachine`.

    Parameters
    ----------
    numeric_errors:
        ``numpy.errstate`` policy for divide-by-zero, invalid and overflow
        floating point events. ``"raise"`` turns them into execution errors.
    nan_guard, inf_guard:
        Reject results containing NaN / infinite entries.
    trace:
        Log every executed instruction at DEBUG level.
    check_gradients:
        Verify that gradient rules return operand-shaped values.
    """

    numeric_errors: str = "raise"
    nan_guard: bool = False
    inf_guard: bool = False
    trace: bool = False
    check_gradients: bool = True

    def __post_init__(self) -> None:
        if self.numeric_errors not in NUMERIC_POLICIES:
            raise ValueError(
                f"numeric_errors must be one of {NUMERIC_POLICIES}, got {self.numeric_errors!r}"
            )

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "EngineConfig":
        env = os.environ if environ is None else environ
        policy = env.get("TAPEGRAPH_NUMERIC_ERRORS", "raise").strip().lower()
        return cls(
            numeric_errors=policy,
            nan_guard=_env_flag(env, "TAPEGRAPH_NAN_GUARD", False),
            inf_guard=_env_flag(env, "TAPEGRAPH_INF_GUARD", False),
            trace=_env_flag(env, "TAPEGRAPH_TRACE", False),
            check_gradients=_env_flag(env, "TAPEGRAPH_CHECK_GRADIENTS", True),
        )

    def with_options(self, **changes) -> "EngineConfig":
        return replace(self, **changes)

    @contextmanager
    def numerics(self) -> Generator[None, None, None]:
        """Apply the floating point error policy for the enclosed computation."""
        policy = self.numeric_errors
        with np.errstate(divide=policy, invalid=policy, over=policy, under="ignore"):
            yield


__all__ = ["EngineConfig", "NUMERIC_POLICIES"]
