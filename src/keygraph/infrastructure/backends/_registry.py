"""
Backend registry and factory.

Backends are registered by device type via a decorator, and resolved from a
device identifier by `backend_by_device_id`. Adding a compute target means
registering one more class; existing call sites never change.

Usage example
-------------
Registering a backend:

    @BackendRegistry.register_backend(DeviceType.CPU)
    class CpuBackend(Backend):
        ...

Resolving one:

    backend = backend_by_device_id("cpu", seed=1234)
"""

from __future__ import annotations

import logging
from typing import Callable, ClassVar, Dict, Type, TypeVar, Union

from ...domain._backend import Backend
from ...domain._errors import DeviceNotSupportedError
from ...domain.device._device import Device, DeviceType

logger = logging.getLogger(__name__)

B = TypeVar("B", bound=Type[Backend])


class BackendRegistry:
    """
    Class-level registry mapping device types to backend classes.

    Notes
    -----
    - Registration keys must be unique unless explicitly overwritten.
    - Registered classes are constructed as `cls(device, seed)`.
    """

    BACKENDS: ClassVar[Dict[DeviceType, Type[Backend]]] = {}

    @classmethod
    def register_backend(
        cls, device_type: DeviceType, *, overwrite: bool = False
    ) -> Callable[[B], B]:
        """
        Decorator registering a backend class for `device_type`.

        Parameters
        ----------
        device_type:
            Device category the backend serves.
        overwrite:
            If False (default), raises if `device_type` is already registered.
        """
        if not isinstance(device_type, DeviceType):
            raise ValueError("Backend key must be a DeviceType")

        def decorator(backend_cls: B) -> B:
            if not overwrite and device_type in cls.BACKENDS:
                raise ValueError(f"Backend already registered: {device_type.value!r}")
            cls.BACKENDS[device_type] = backend_cls
            return backend_cls

        return decorator

    @classmethod
    def available(cls) -> tuple[str, ...]:
        """Return registered device type names (sorted)."""
        return tuple(sorted(t.value for t in cls.BACKENDS))

    @classmethod
    def get(cls, device_type: DeviceType) -> Type[Backend]:
        try:
            return cls.BACKENDS[device_type]
        except KeyError as e:
            raise DeviceNotSupportedError("backend", device_type.value) from e


def backend_by_device_id(device: Union[str, Device], seed: int = 0) -> Backend:
    """
    Resolve a device identifier and seed to a concrete backend.

    Parameters
    ----------
    device : str or Device
        "cpu", "cuda:<index>" or "gpu:<index>".
    seed : int
        Seed forwarded to the backend.

    Returns
    -------
    Backend
        A freshly constructed backend bound to `device`.

    Raises
    ------
    ValueError
        If the identifier is malformed.
    DeviceNotSupportedError
        If no backend is registered for the device type.
    """
    dev = Device(device)
    backend_cls = BackendRegistry.get(dev.type)
    logger.debug("backend_by_device_id: %s -> %s (seed=%d)", dev, backend_cls.__name__, seed)
    return backend_cls(dev, seed)
