"""Last-observed interface and access point state."""

from typing import Optional

from pydantic import BaseModel


class InterfaceRecord(BaseModel):
    """Physical or logical interface, keyed by (device_id, name)."""

    device_id: int
    name: str
    type: str = "ether"
    mac_address: str = "00:00:00:00:00:00"
    mtu: int = 1500
    running: bool = False
    disabled: bool = False
    comment: Optional[str] = None
    rx_bytes: int = 0
    tx_bytes: int = 0
    link_downs: int = 0


class WirelessInterfaceRecord(BaseModel):
    """Wireless interface, keyed by (device_id, name)."""

    device_id: int
    name: str
    mac_address: str = "00:00:00:00:00:00"
    ssid: Optional[str] = None
    band: Optional[str] = None
    frequency: Optional[int] = None  # MHz
    channel_width: Optional[str] = None
    mode: Optional[str] = None
    tx_power: Optional[str] = None
    noise_floor: Optional[int] = None
    running: bool = False
    disabled: bool = False
    clients: Optional[int] = None  # registration table entries, None if unknown


class ControllerAPRecord(BaseModel):
    """Remote CAP managed by a CAPsMAN controller, keyed by (device_id, mac_address)."""

    device_id: int
    mac_address: str
    name: str = "unknown"
    identity: Optional[str] = None
    model: Optional[str] = None
    serial_number: Optional[str] = None
    version: Optional[str] = None
    radio_name: Optional[str] = None
    radio_mac: Optional[str] = None
    state: Optional[str] = None
    ip_address: Optional[str] = None
    uptime: Optional[str] = None
    # RouterOS does not report a per-CAP client count on remote-cap; left unset.
    clients: Optional[int] = None
