"""
Metrics Collector

One collection cycle per device:

1. ensure a session (reuse or connect)
2. system resources: device descriptors + a MetricSample (mandatory)
3. interfaces, wireless, CAPsMAN controller (best effort, independent)

Failures in steps 1 and 2 mark the device offline and raise a WARNING alert.
Failures in step 3 are logged and never change the cycle result. Alerts are
transition based: they fire when the observed state differs from the stored
one, never on first sight of an interface.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Any

from routerwatch.config import ConnectionConfig
from routerwatch.models import (
    Alert,
    AlertSeverity,
    ControllerAPRecord,
    Device,
    InterfaceRecord,
    MetricSample,
    WirelessInterfaceRecord,
)
from routerwatch.polling.connection import ConnectionManager
from routerwatch.polling.exceptions import RouterOSCommandError, RouterOSProtocolError
from routerwatch.polling.normalize import NULL_MAC, record_with_defaults
from routerwatch.storage import Storage

logger = logging.getLogger(__name__)

CMD_RESOURCES = "/system/resource/print"
CMD_HEALTH = "/system/health/print"
CMD_INTERFACES = "/interface/print"
CMD_WIRELESS = "/interface/wireless/print"
CMD_WIRELESS_CLIENTS = "/interface/wireless/registration-table/print"
CMD_CAPSMAN_INTERFACES = "/caps-man/interface/print"
CMD_CAPSMAN_REMOTE_CAPS = "/caps-man/remote-cap/print"

INTERFACE_FIELDS = (
    "name", "type", "mac-address", "mtu", "running", "disabled",
    "comment", "rx-byte", "tx-byte", "link-downs",
)
WIRELESS_FIELDS = ("name", "mac-address", "running", "disabled")

AP_CONNECTED_STATES = {"run", "running"}
AP_DISCONNECTED_STATES = {"disassociated", "disconnected"}

_LEADING_INT = re.compile(r"\s*(-?\d+)")


def _as_int(value: Any, default: int | None = 0) -> int | None:
    if value is None or isinstance(value, bool):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        match = _LEADING_INT.match(str(value))
        return int(match.group(1)) if match else default


def _as_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _as_text(value: Any) -> str | None:
    return None if value is None else str(value)


class MetricsCollector:
    """Runs collection cycles and writes inventory, samples and alerts."""

    def __init__(
        self,
        storage: Storage,
        connections: ConnectionManager,
        config: ConnectionConfig | None = None,
    ):
        self._storage = storage
        self._connections = connections
        self._config = config or ConnectionConfig()

    async def create_alert(
        self,
        device_id: int,
        severity: AlertSeverity,
        source: str,
        message: str,
    ) -> Alert:
        alert = Alert(device_id=device_id, severity=severity, message=message, source=source)
        logger.info("Alert [%s] device %s: %s", severity.value, device_id, message)
        return await self._storage.create_alert(alert)

    # ─────────────────────────────────────────────────────────────
    # Cycle
    # ─────────────────────────────────────────────────────────────

    async def collect(self, device_id: int) -> bool:
        """Run one collection cycle. Returns True when resources were collected."""
        device = await self._storage.get_device(device_id)
        if device is None:
            logger.error("Device with ID %s not found", device_id)
            return False

        if not await self._ensure_session(device):
            await self.create_alert(
                device_id,
                AlertSeverity.WARNING,
                "Device Connection Failure",
                f"Failed to connect to {device.name} at {device.ip_address}",
            )
            await self._storage.update_device(
                device_id, is_online=False, last_seen=datetime.utcnow()
            )
            return False

        try:
            await self._collect_resources(device_id)
        except Exception as e:
            logger.error("Failed to collect metrics for device %s: %s", device_id, e)
            await self._storage.update_device(device_id, is_online=False)
            await self.create_alert(
                device_id,
                AlertSeverity.WARNING,
                "Metrics Collection Failure",
                f"Failed to read system resources from {device.name}: {e}",
            )
            return False

        for step in (self._collect_interfaces, self._collect_wireless, self._collect_controller):
            try:
                await step(device_id)
            except Exception as e:
                logger.warning(
                    "Non-critical error in %s for device %s: %s",
                    step.__name__.lstrip("_"), device_id, e,
                )

        return True

    async def _ensure_session(self, device: Device) -> bool:
        if self._connections.is_connected(device.id):
            return True
        return await self._connections.connect(device, timeout=self._config.connect_timeout)

    # ─────────────────────────────────────────────────────────────
    # System resources
    # ─────────────────────────────────────────────────────────────

    async def _collect_resources(self, device_id: int) -> None:
        records = await self._connections.execute(device_id, CMD_RESOURCES)
        if not records:
            raise RouterOSProtocolError(f"Empty reply to {CMD_RESOURCES}")
        resources = records[0]

        total_memory = _as_int(resources.get("total-memory"))
        free_memory = _as_int(resources.get("free-memory"), default=None)
        memory_used = max(total_memory - free_memory, 0) if free_memory is not None else 0
        uptime = _as_text(resources.get("uptime"))

        temperature = _as_float(resources.get("temperature"))
        if temperature is None:
            temperature = await self._read_temperature(device_id)

        now = datetime.utcnow()
        await self._storage.update_device(
            device_id,
            uptime=uptime,
            model=_as_text(resources.get("board-name")),
            os_version=_as_text(resources.get("version")),
            firmware=_as_text(resources.get("factory-software")),
            cpu=_as_text(resources.get("cpu") or resources.get("cpu-model")),
            total_memory=total_memory,
            is_online=True,
            last_seen=now,
        )

        metric = MetricSample(
            device_id=device_id,
            timestamp=now,
            cpu_load=_as_int(resources.get("cpu-load")),
            memory_used=memory_used,
            total_memory=total_memory,
            uptime=uptime,
            temperature=temperature or 0.0,
        )
        await self._storage.create_metric(metric)
        logger.debug(
            "Stored metrics for device %s: CPU %s%%, memory %d MB, temp %s",
            device_id, metric.cpu_load, memory_used // (1024 * 1024), temperature or "N/A",
        )

    async def _read_temperature(self, device_id: int) -> float | None:
        """Temperature from /system/health; None when the board has no sensor."""
        try:
            rows = await self._connections.execute(device_id, CMD_HEALTH)
        except RouterOSCommandError:
            return None

        for row in rows:
            # RouterOS 6: one record with a temperature field
            if row.get("temperature") is not None:
                return _as_float(row["temperature"])
            # RouterOS 7: one record per sensor
            if row.get("name") in ("temperature", "cpu-temperature", "board-temperature1"):
                return _as_float(row.get("value"))
        return None

    # ─────────────────────────────────────────────────────────────
    # Interfaces
    # ─────────────────────────────────────────────────────────────

    async def _running_transition(
        self,
        device_id: int,
        previous_running: bool,
        running: bool,
        label: str,
        description: str,
    ) -> None:
        if previous_running == running:
            return
        if running:
            await self.create_alert(
                device_id, AlertSeverity.INFO, f"{label} Up", f"{description} is now up"
            )
        else:
            await self.create_alert(
                device_id, AlertSeverity.WARNING, f"{label} Down", f"{description} is down"
            )

    async def _collect_interfaces(self, device_id: int) -> None:
        rows = await self._connections.execute(device_id, CMD_INTERFACES)
        existing = {r.name: r for r in await self._storage.get_interfaces(device_id)}

        for row in rows:
            iface = record_with_defaults(row, *INTERFACE_FIELDS)
            record = InterfaceRecord(
                device_id=device_id,
                name=iface["name"],
                type=iface["type"],
                mac_address=iface["mac-address"],
                mtu=iface["mtu"],
                running=iface["running"],
                disabled=iface["disabled"],
                comment=iface["comment"] or None,
                rx_bytes=iface["rx-byte"],
                tx_bytes=iface["tx-byte"],
                link_downs=iface["link-downs"],
            )
            previous = existing.get(record.name)
            await self._storage.upsert_interface(record)
            existing[record.name] = record

            if previous is not None:
                await self._running_transition(
                    device_id, previous.running, record.running,
                    "Interface", f"Interface {record.name}",
                )

    # ─────────────────────────────────────────────────────────────
    # Wireless
    # ─────────────────────────────────────────────────────────────

    async def _wireless_client_counts(self, device_id: int) -> dict[str, int] | None:
        try:
            rows = await self._connections.execute(device_id, CMD_WIRELESS_CLIENTS)
        except RouterOSCommandError:
            return None

        counts: dict[str, int] = {}
        for row in rows:
            interface = row.get("interface")
            if interface:
                counts[interface] = counts.get(interface, 0) + 1
        return counts

    async def _collect_wireless(self, device_id: int) -> None:
        try:
            rows = await self._connections.execute(device_id, CMD_WIRELESS)
        except RouterOSCommandError as e:
            logger.debug("Device %s has no wireless capability: %s", device_id, e)
            return
        if not rows:
            return

        clients = await self._wireless_client_counts(device_id)
        existing = {r.name: r for r in await self._storage.get_wireless_interfaces(device_id)}

        for row in rows:
            wifi = record_with_defaults(row, *WIRELESS_FIELDS)
            record = WirelessInterfaceRecord(
                device_id=device_id,
                name=wifi["name"],
                mac_address=wifi["mac-address"],
                ssid=_as_text(wifi.get("ssid")),
                band=_as_text(wifi.get("band")),
                frequency=_as_int(wifi.get("frequency"), default=None),
                channel_width=_as_text(wifi.get("channel-width")),
                mode=_as_text(wifi.get("mode")),
                tx_power=_as_text(wifi.get("tx-power")),
                noise_floor=_as_int(wifi.get("noise-floor"), default=None),
                running=wifi["running"],
                disabled=wifi["disabled"],
                clients=clients.get(wifi["name"], 0) if clients is not None else None,
            )
            previous = existing.get(record.name)
            await self._storage.upsert_wireless_interface(record)
            existing[record.name] = record

            if previous is not None:
                await self._running_transition(
                    device_id, previous.running, record.running,
                    "Wireless Interface", f"Wireless interface {record.name} ({record.ssid})",
                )

    # ─────────────────────────────────────────────────────────────
    # CAPsMAN controller
    # ─────────────────────────────────────────────────────────────

    async def _collect_controller(self, device_id: int) -> None:
        try:
            capsman_interfaces = await self._connections.execute(device_id, CMD_CAPSMAN_INTERFACES)
        except RouterOSCommandError as e:
            logger.debug("Device %s has no CAPsMAN: %s", device_id, e)
            capsman_interfaces = []

        has_role = len(capsman_interfaces) > 0
        await self._storage.update_device(device_id, has_controller_role=has_role)
        if not has_role:
            return

        remote_caps = await self._connections.execute(device_id, CMD_CAPSMAN_REMOTE_CAPS)
        logger.debug("Device %s manages %d remote CAPs", device_id, len(remote_caps))
        existing = {ap.mac_address: ap for ap in await self._storage.get_controller_aps(device_id)}

        for row in remote_caps:
            cap = record_with_defaults(row, "state")
            mac = next(
                (m for m in (cap.get("mac-address"), cap.get("base-mac")) if m and m != NULL_MAC),
                None,
            )
            if mac is None:
                logger.debug("Skipping remote CAP without a MAC on device %s: %s", device_id, row)
                continue

            identity = _as_text(cap.get("identity")) or cap.get("name") or mac
            state = _as_text(cap["state"])
            record = ControllerAPRecord(
                device_id=device_id,
                mac_address=mac,
                name=identity,
                identity=identity,
                model=_as_text(cap.get("board")),
                serial_number=_as_text(cap.get("serial")),
                version=_as_text(cap.get("version")),
                radio_name=_as_text(cap.get("radio-name")),
                radio_mac=_as_text(cap.get("radio-mac")),
                state=state,
                ip_address=_as_text(cap.get("address")),
                uptime=_as_text(cap.get("uptime")),
            )
            previous = existing.get(mac)
            await self._storage.upsert_controller_ap(record)
            existing[mac] = record

            if previous is None:
                await self.create_alert(
                    device_id, AlertSeverity.INFO,
                    "New CAPsMAN AP Detected", f"New CAPsMAN AP {identity} has been detected",
                )
            elif previous.state != state:
                await self._ap_transition(device_id, identity, state)

    async def _ap_transition(self, device_id: int, identity: str, state: str | None) -> None:
        normalized = (state or "").lower()
        if normalized in AP_CONNECTED_STATES:
            await self.create_alert(
                device_id, AlertSeverity.INFO,
                "CAPsMAN AP Connected", f"CAPsMAN AP {identity} is now running",
            )
        elif normalized in AP_DISCONNECTED_STATES:
            await self.create_alert(
                device_id, AlertSeverity.WARNING,
                "CAPsMAN AP Disconnected", f"CAPsMAN AP {identity} is disconnected",
            )
