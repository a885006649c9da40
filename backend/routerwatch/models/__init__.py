# Pydantic models
from .device import Device, DeviceCreate, DiscoveredDevice
from .metric import MetricSample
from .interface import ControllerAPRecord, InterfaceRecord, WirelessInterfaceRecord
from .alert import Alert, AlertSeverity

__all__ = [
    "Device",
    "DeviceCreate",
    "DiscoveredDevice",
    "MetricSample",
    "InterfaceRecord",
    "WirelessInterfaceRecord",
    "ControllerAPRecord",
    "Alert",
    "AlertSeverity",
]
