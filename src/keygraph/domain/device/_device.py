"""
Device abstraction utilities.

This module defines lightweight abstractions for representing computation
devices (CPU and CUDA GPUs) in a framework-agnostic way. It provides:

- `DeviceType`: an enumeration of supported device categories
- `Device`: a concrete device descriptor that validates and normalizes
  user-facing device strings such as "cpu", "cuda:0" or "gpu:1"

Devices are plain descriptors. They never allocate or manage any backend
resources; that is the job of the backend resolved for them.
"""

from __future__ import annotations

from enum import Enum
import re
from typing import Union


class DeviceType(Enum):
    """
    Enumeration of supported device categories.

    Attributes
    ----------
    CPU : DeviceType
        Central Processing Unit.
    CUDA : DeviceType
        NVIDIA CUDA-enabled Graphics Processing Unit.
    """

    CPU = "cpu"
    CUDA = "cuda"


class Device:
    """
    Concrete computation device descriptor.

    Parameters
    ----------
    device : str or Device
        Device identifier. Must be one of:
        - "cpu"
        - "cuda:<index>" or its alias "gpu:<index>"
        An existing `Device` is copied.

    Raises
    ------
    ValueError
        If the provided device string does not match the supported formats.
    """

    __slots__ = ("type", "index")

    _CUDA_PATTERN = re.compile(r"^(?:cuda|gpu):(\d+)$")

    def __init__(self, device: Union[str, "Device"] = "cpu"):
        if isinstance(device, Device):
            self.type = device.type
            self.index = device.index
            return

        if device == "cpu":
            self.type = DeviceType.CPU
            self.index = None
        else:
            m = self._CUDA_PATTERN.match(str(device))
            if not m:
                raise ValueError(
                    f"Invalid device '{device}'. Expected 'cpu' or 'cuda:<index>'"
                )
            self.type = DeviceType.CUDA
            self.index = int(m.group(1))

    def __str__(self) -> str:
        return "cpu" if self.type is DeviceType.CPU else f"cuda:{self.index}"

    def __repr__(self) -> str:
        return f"Device('{self}')"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Device):
            return NotImplemented
        return (self.type, self.index) == (other.type, other.index)

    def __hash__(self) -> int:
        return hash((self.type, self.index))

    def is_cpu(self) -> bool:
        """Return True if this device represents a CPU."""
        return self.type is DeviceType.CPU

    def is_cuda(self) -> bool:
        """Return True if this device represents a CUDA GPU."""
        return self.type is DeviceType.CUDA
