from ._registry import BackendRegistry, backend_by_device_id
from ._cpu import CpuBackend
from ._cuda import CudaBackend

__all__ = [
    BackendRegistry.__name__,
    backend_by_device_id.__name__,
    CpuBackend.__name__,
    CudaBackend.__name__,
]
