"""
Backend interface definitions.

A backend owns one compute device, a random seed and the global clipping
value applied to matrix-multiply operands. Every node computation runs
through the backend's kernel library, so the same graph can execute on
different devices without changes at the call sites.

Concrete backends live in the infrastructure layer and are resolved from a
device identifier by `backend_by_device_id`.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from .device._device import Device
from ._kernels import KernelLibrary


class Backend(ABC):
    """
    Abstract compute backend.

    Parameters
    ----------
    device : Device
        Device this backend dispatches to.
    seed : int
        Seed for backend-owned random state.

    Notes
    -----
    The clip value is a numerical-stability knob. When non-zero, both operands
    of every matrix product are clamped to `[-clip, clip]`. It is applied
    uniformly by all matmul-based operators, never per node.
    """

    def __init__(self, device: Device, seed: int) -> None:
        self._device = device
        self._seed = int(seed)
        self._clip_value = 0.0

    def get_device_id(self) -> Device:
        """Return the device handle this backend is bound to."""
        return self._device

    @property
    def seed(self) -> int:
        return self._seed

    @abstractmethod
    def set_device(self) -> None:
        """
        Make this backend's device the active compute target.

        Backends without a device-selection concept implement this as a
        no-op.
        """
        ...

    @abstractmethod
    def synchronize(self) -> None:
        """Block until all outstanding asynchronous device work completes."""
        ...

    def set_clip(self, clip_value: float) -> None:
        clip_value = float(clip_value)
        if clip_value < 0.0:
            raise ValueError("Clip value must be >= 0 (0 disables clipping).")
        self._clip_value = clip_value

    def get_clip(self) -> float:
        return self._clip_value

    @property
    @abstractmethod
    def kernels(self) -> KernelLibrary:
        """Kernel library executing on this backend's device."""
        ...

    def __repr__(self) -> str:
        return f"{type(self).__name__}(device='{self._device}', seed={self._seed})"
