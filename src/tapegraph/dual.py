"""Paired value/gradient storage for interpreted differentiation."""

from __future__ import annotations

import threading

import numpy as np


class DualValue:
    """A forward value and the gradient accumulated into it.

    The gradient starts at zero and only ever grows by :meth:`accumulate`;
    each instance guards that read-modify-write with its own lock.
    """

    __slots__ = ("value", "grad", "_lock")

    def __init__(self, value: np.ndarray) -> None:
        self.value = value
        self.grad = np.zeros_like(value)
        self._lock = threading.Lock()

    def accumulate(self, contribution) -> None:
        with self._lock:
            self.grad = np.add(self.grad, contribution).astype(self.grad.dtype, copy=False)

    def seed(self) -> None:
        """Add the multiplicative identity, marking this node as a loss."""
        self.accumulate(np.ones_like(self.value))

    def __repr__(self) -> str:
        return f"DualValue(value={self.value!r}, grad={self.grad!r})"


__all__ = ["DualValue"]
