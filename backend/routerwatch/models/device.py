"""Device models for RouterWatch."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class DeviceCreate(BaseModel):
    """Schema for registering a device."""

    name: str
    ip_address: str
    username: str = "admin"
    password: str = ""

    is_online: bool = False
    last_seen: Optional[datetime] = None

    # Hardware / software descriptors, refreshed by every collection cycle
    model: Optional[str] = None
    serial_number: Optional[str] = None
    os_version: Optional[str] = None
    firmware: Optional[str] = None
    cpu: Optional[str] = None
    total_memory: Optional[int] = None  # bytes
    uptime: Optional[str] = None  # RouterOS duration, e.g. "3d04:12:55"

    has_controller_role: bool = False  # CAPsMAN manager enabled


class Device(DeviceCreate):
    """Managed RouterOS device."""

    id: int


class DiscoveredDevice(BaseModel):
    """Candidate descriptor produced by a successful discovery probe."""

    ip_address: str
    name: str
    username: str
    password: str
    port: int
    model: Optional[str] = None
    serial_number: Optional[str] = None
    os_version: Optional[str] = None
    firmware: Optional[str] = None
    cpu: Optional[str] = None
    total_memory: Optional[int] = None
