"""
Cached loader for the CUDA runtime shared library.

The CUDA backend only needs a handful of runtime entry points (device
selection, synchronization, device count), so it talks to `cudart` directly
through `ctypes` instead of going through a compiled extension.

Environment variables
---------------------
KEYGRAPH_CUDART : str, optional
    Explicit path to the CUDA runtime library. Takes precedence.
CUDA_PATH : str, optional
    If set, `<CUDA_PATH>/bin` (Windows) or `<CUDA_PATH>/lib64` (Linux) is
    searched for the runtime.

Key behaviors
-------------
- Cached singleton: `load_cudart()` is decorated with `lru_cache` so the
  library is loaded at most once per process.
- Explicit failure: raises `OSError` listing every candidate that was tried.
"""

from __future__ import annotations

import ctypes
import ctypes.util
import glob
import os
import sys
from functools import lru_cache
from pathlib import Path


def _candidates() -> list[str]:
    found: list[str] = []

    explicit = os.environ.get("KEYGRAPH_CUDART")
    if explicit:
        found.append(explicit)

    cuda_path = os.environ.get("CUDA_PATH")
    if cuda_path:
        if sys.platform == "win32":
            pattern = str(Path(cuda_path) / "bin" / "cudart64_*.dll")
        else:
            pattern = str(Path(cuda_path) / "lib64" / "libcudart.so*")
        found.extend(sorted(glob.glob(pattern), reverse=True))

    name = ctypes.util.find_library("cudart")
    if name:
        found.append(name)

    if sys.platform != "win32":
        found.append("libcudart.so")
    return found


@lru_cache(maxsize=1)
def load_cudart() -> ctypes.CDLL:
    """
    Load and cache the CUDA runtime library.

    Returns
    -------
    ctypes.CDLL
        Loaded runtime handle with argtypes configured for the entry points
        used by the CUDA backend.

    Raises
    ------
    OSError
        If no candidate library could be loaded.
    """
    errors: list[str] = []
    for path in _candidates():
        try:
            lib = ctypes.CDLL(path)
        except OSError as e:
            errors.append(f"{path}: {e}")
            continue

        lib.cudaSetDevice.argtypes = [ctypes.c_int]
        lib.cudaSetDevice.restype = ctypes.c_int
        lib.cudaDeviceSynchronize.argtypes = []
        lib.cudaDeviceSynchronize.restype = ctypes.c_int
        lib.cudaGetDeviceCount.argtypes = [ctypes.POINTER(ctypes.c_int)]
        lib.cudaGetDeviceCount.restype = ctypes.c_int
        return lib

    detail = "; ".join(errors) if errors else "no candidates found"
    raise OSError(f"CUDA runtime library could not be loaded ({detail}).")
