from ._errors import (
    KeyGraphError,
    ShapeMismatchError,
    IndexOutOfRangeError,
    DeviceError,
    DeviceNotSupportedError,
    UsageOrderViolationError,
)
from ._shape import Shape
from ._backend import Backend
from ._kernels import KernelLibrary
from ._node import NodeOp, NodeState
from .device import Device, DeviceType, DeviceLike

__all__ = [
    KeyGraphError.__name__,
    ShapeMismatchError.__name__,
    IndexOutOfRangeError.__name__,
    DeviceError.__name__,
    DeviceNotSupportedError.__name__,
    UsageOrderViolationError.__name__,
    Shape.__name__,
    Backend.__name__,
    KernelLibrary.__name__,
    NodeOp.__name__,
    NodeState.__name__,
    Device.__name__,
    DeviceType.__name__,
    "DeviceLike",
]
