"""
Graph- and device-related exceptions for KeyGraph.

This module defines the error taxonomy used across the expression graph:

- `ShapeMismatchError`: a node's output shape cannot be derived from its
  inputs (reshape element counts differ, axes are incompatible).
- `IndexOutOfRangeError`: a row or timestep index exceeds the source extent.
- `DeviceError`: device selection or synchronization failed.
- `DeviceNotSupportedError`: an operation is not implemented for a backend.
- `UsageOrderViolationError`: forward/backward invoked out of topological
  order, or a released buffer accessed.

All errors derive from `KeyGraphError` so callers can catch the whole family.
None of them is recoverable at this layer: shapes are fixed for a node's
lifetime and compute failures are not assumed to be transient.
"""

from __future__ import annotations

from typing import Optional, Sequence


class KeyGraphError(RuntimeError):
    """Base class for all KeyGraph errors."""


class ShapeMismatchError(KeyGraphError, ValueError):
    """
    Raised when a node's output shape cannot be computed from its inputs.

    Attributes
    ----------
    op : str
        Type tag of the operator being constructed.
    expected : Sequence[int] or None
        The shape (or shape component) the operator required.
    actual : Sequence[int] or None
        The shape that was supplied.
    """

    def __init__(
        self,
        op: str,
        message: str,
        *,
        expected: Optional[Sequence[int]] = None,
        actual: Optional[Sequence[int]] = None,
    ) -> None:
        super().__init__(f"{op}: {message}")
        self.op = op
        self.expected = None if expected is None else tuple(expected)
        self.actual = None if actual is None else tuple(actual)


class IndexOutOfRangeError(KeyGraphError, IndexError):
    """
    Raised when a row or timestep index exceeds the size of its source.

    Attributes
    ----------
    op : str
        Type tag of the operator that received the index.
    index : int
        The offending index.
    limit : int
        Exclusive upper bound for valid indices.
    """

    def __init__(self, op: str, index: int, limit: int) -> None:
        super().__init__(
            f"{op}: index {index} is out of range for extent {limit}."
        )
        self.op = op
        self.index = int(index)
        self.limit = int(limit)


class DeviceError(KeyGraphError):
    """
    Raised when a backend fails to select or synchronize its device.

    Attributes
    ----------
    device : str
        String form of the device the failure refers to.
    status : int or None
        Native status code, when the failure came from a runtime call.
    """

    def __init__(self, device: str, message: str, status: Optional[int] = None):
        suffix = "" if status is None else f" (status {status})"
        super().__init__(f"[{device}] {message}{suffix}")
        self.device = device
        self.status = status


class DeviceNotSupportedError(KeyGraphError):
    """
    Raised when an operation is requested on a backend that does not
    implement it.

    Attributes
    ----------
    op : str
        The name of the operation that was attempted.
    device : str
        String representation of the device on which the operation
        was attempted.
    """

    def __init__(self, op: str, device: str) -> None:
        super().__init__(f"{op} is not implemented for device '{device}'.")
        self.op = op
        self.device = device


class UsageOrderViolationError(KeyGraphError):
    """
    Raised when the node lifecycle contract is broken.

    Typical causes are calling `forward()` on a node whose children have not
    been valued, calling `backward()` before `forward()`, or reading a buffer
    whose storage has already been released.
    """
