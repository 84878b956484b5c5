"""CPU backend executing kernels with NumPy."""

from __future__ import annotations

from ...domain._backend import Backend
from ...domain.device._device import Device, DeviceType
from ..kernels._cpu_kernels import NumpyKernelLibrary
from ._registry import BackendRegistry

_KERNELS = NumpyKernelLibrary()


@BackendRegistry.register_backend(DeviceType.CPU)
class CpuBackend(Backend):
    """
    Host backend.

    NumPy executes synchronously, so `set_device` and `synchronize` have
    nothing to do.
    """

    def __init__(self, device: Device, seed: int) -> None:
        if not device.is_cpu():
            raise ValueError(f"CpuBackend requires a CPU device, got '{device}'")
        super().__init__(device, seed)

    def set_device(self) -> None:
        return None

    def synchronize(self) -> None:
        return None

    @property
    def kernels(self) -> NumpyKernelLibrary:
        return _KERNELS
