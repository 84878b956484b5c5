from ._cpu_kernels import NumpyKernelLibrary

__all__ = [NumpyKernelLibrary.__name__]
