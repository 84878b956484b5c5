from ._device import Device, DeviceType
from ._device_protocol import DeviceLike

__all__ = [Device.__name__, DeviceType.__name__, "DeviceLike"]
