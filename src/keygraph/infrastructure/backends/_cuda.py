"""
CUDA backend.

Device selection and synchronization go through the CUDA runtime loaded by
`load_cudart`. Every failure, whether the runtime cannot be loaded or a call
returns a non-zero status, surfaces as `DeviceError`; nothing is retried.

There is no CUDA kernel library yet. Requesting `kernels` raises
`DeviceNotSupportedError`, so graphs built for a CUDA device fail at the
first forward pass instead of silently computing on the host.
"""

from __future__ import annotations

import ctypes

from ...domain._backend import Backend
from ...domain._errors import DeviceError, DeviceNotSupportedError
from ...domain._kernels import KernelLibrary
from ...domain.device._device import Device, DeviceType
from ._cudart_loader import load_cudart
from ._registry import BackendRegistry


@BackendRegistry.register_backend(DeviceType.CUDA)
class CudaBackend(Backend):
    """
    Backend bound to one CUDA device.

    The runtime is loaded lazily on the first device call, so constructing a
    `CudaBackend` never touches the GPU.
    """

    def __init__(self, device: Device, seed: int) -> None:
        if not device.is_cuda():
            raise ValueError(f"CudaBackend requires a CUDA device, got '{device}'")
        super().__init__(device, seed)

    def _runtime(self) -> ctypes.CDLL:
        try:
            return load_cudart()
        except OSError as e:
            raise DeviceError(str(self._device), str(e)) from e

    def _check(self, status: int, what: str) -> None:
        if status != 0:
            raise DeviceError(str(self._device), f"{what} failed", status=status)

    def device_count(self) -> int:
        n = ctypes.c_int(0)
        self._check(self._runtime().cudaGetDeviceCount(ctypes.byref(n)), "cudaGetDeviceCount")
        return int(n.value)

    def set_device(self) -> None:
        self._check(self._runtime().cudaSetDevice(int(self._device.index)), "cudaSetDevice")

    def synchronize(self) -> None:
        self._check(self._runtime().cudaDeviceSynchronize(), "cudaDeviceSynchronize")

    @property
    def kernels(self) -> KernelLibrary:
        raise DeviceNotSupportedError("kernels", str(self._device))
