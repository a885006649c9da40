"""
Device, metric, interface and alert storage.

Every call is atomic on its own; collectors never rely on a transaction
spanning several calls. Interface, wireless and AP records are upserted by
key, so a store never holds two records for the same (device_id, key).
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

from routerwatch.cache import RedisCache
from routerwatch.config import RetentionConfig
from routerwatch.models import (
    Alert,
    ControllerAPRecord,
    Device,
    DeviceCreate,
    InterfaceRecord,
    MetricSample,
    WirelessInterfaceRecord,
)

logger = logging.getLogger(__name__)


class Storage(Protocol):
    async def connect(self) -> None: ...

    async def disconnect(self) -> None: ...

    async def get_device(self, device_id: int) -> Device | None: ...

    async def get_device_by_ip(self, ip_address: str) -> Device | None: ...

    async def list_devices(self) -> list[Device]: ...

    async def create_device(self, device: DeviceCreate) -> Device: ...

    async def update_device(self, device_id: int, **changes: Any) -> Device | None: ...

    async def create_metric(self, metric: MetricSample) -> MetricSample: ...

    async def get_metrics(self, device_id: int, limit: int | None = None) -> list[MetricSample]: ...

    async def get_interfaces(self, device_id: int) -> list[InterfaceRecord]: ...

    async def upsert_interface(self, record: InterfaceRecord) -> InterfaceRecord: ...

    async def get_wireless_interfaces(self, device_id: int) -> list[WirelessInterfaceRecord]: ...

    async def upsert_wireless_interface(
        self, record: WirelessInterfaceRecord
    ) -> WirelessInterfaceRecord: ...

    async def get_controller_aps(self, device_id: int) -> list[ControllerAPRecord]: ...

    async def upsert_controller_ap(self, record: ControllerAPRecord) -> ControllerAPRecord: ...

    async def create_alert(self, alert: Alert) -> Alert: ...

    async def get_alerts(self, device_id: int | None = None, limit: int | None = None) -> list[Alert]: ...


def _apply(device: Device, changes: dict[str, Any]) -> Device:
    """Return a validated copy of a device with changes applied."""
    return Device(**{**device.model_dump(), **changes})


# ─────────────────────────────────────────────────────────────────────────────
# In-memory
# ─────────────────────────────────────────────────────────────────────────────


class MemoryStorage:
    """Process-local storage for dev mode and tests."""

    def __init__(self):
        self._devices: dict[int, Device] = {}
        self._next_id = 1
        self._metrics: dict[int, list[MetricSample]] = {}
        self._interfaces: dict[tuple[int, str], InterfaceRecord] = {}
        self._wireless: dict[tuple[int, str], WirelessInterfaceRecord] = {}
        self._aps: dict[tuple[int, str], ControllerAPRecord] = {}
        self._alerts: list[Alert] = []

    async def connect(self) -> None:
        pass

    async def disconnect(self) -> None:
        pass

    async def get_device(self, device_id: int) -> Device | None:
        return self._devices.get(device_id)

    async def get_device_by_ip(self, ip_address: str) -> Device | None:
        for device in self._devices.values():
            if device.ip_address == ip_address:
                return device
        return None

    async def list_devices(self) -> list[Device]:
        return list(self._devices.values())

    async def create_device(self, device: DeviceCreate) -> Device:
        created = Device(id=self._next_id, **device.model_dump())
        self._devices[created.id] = created
        self._next_id += 1
        return created

    async def update_device(self, device_id: int, **changes: Any) -> Device | None:
        device = self._devices.get(device_id)
        if device is None:
            return None
        updated = _apply(device, changes)
        self._devices[device_id] = updated
        return updated

    async def create_metric(self, metric: MetricSample) -> MetricSample:
        self._metrics.setdefault(metric.device_id, []).append(metric)
        return metric

    async def get_metrics(self, device_id: int, limit: int | None = None) -> list[MetricSample]:
        newest_first = list(reversed(self._metrics.get(device_id, [])))
        return newest_first[:limit] if limit else newest_first

    async def get_interfaces(self, device_id: int) -> list[InterfaceRecord]:
        return [r for (dev, _), r in self._interfaces.items() if dev == device_id]

    async def upsert_interface(self, record: InterfaceRecord) -> InterfaceRecord:
        self._interfaces[(record.device_id, record.name)] = record
        return record

    async def get_wireless_interfaces(self, device_id: int) -> list[WirelessInterfaceRecord]:
        return [r for (dev, _), r in self._wireless.items() if dev == device_id]

    async def upsert_wireless_interface(
        self, record: WirelessInterfaceRecord
    ) -> WirelessInterfaceRecord:
        self._wireless[(record.device_id, record.name)] = record
        return record

    async def get_controller_aps(self, device_id: int) -> list[ControllerAPRecord]:
        return [r for (dev, _), r in self._aps.items() if dev == device_id]

    async def upsert_controller_ap(self, record: ControllerAPRecord) -> ControllerAPRecord:
        self._aps[(record.device_id, record.mac_address)] = record
        return record

    async def create_alert(self, alert: Alert) -> Alert:
        self._alerts.append(alert)
        return alert

    async def get_alerts(self, device_id: int | None = None, limit: int | None = None) -> list[Alert]:
        alerts = [
            a for a in reversed(self._alerts)
            if device_id is None or a.device_id == device_id
        ]
        return alerts[:limit] if limit else alerts


# ─────────────────────────────────────────────────────────────────────────────
# Redis
# ─────────────────────────────────────────────────────────────────────────────

KEY_PREFIX = "routerwatch"
KEY_DEVICE_SEQ = f"{KEY_PREFIX}:device_seq"
KEY_DEVICES = f"{KEY_PREFIX}:devices"
KEY_ALERTS = f"{KEY_PREFIX}:alerts"


def _device_key(device_id: int) -> str:
    return f"{KEY_PREFIX}:device:{device_id}"


def _ip_key(ip_address: str) -> str:
    return f"{KEY_PREFIX}:device_ip:{ip_address}"


def _metrics_key(device_id: int) -> str:
    return f"{KEY_PREFIX}:metrics:{device_id}"


def _interfaces_key(device_id: int) -> str:
    return f"{KEY_PREFIX}:interfaces:{device_id}"


def _wireless_key(device_id: int) -> str:
    return f"{KEY_PREFIX}:wireless:{device_id}"


def _aps_key(device_id: int) -> str:
    return f"{KEY_PREFIX}:controller_aps:{device_id}"


def _device_alerts_key(device_id: int) -> str:
    return f"{KEY_PREFIX}:alerts:{device_id}"


class RedisStorage:
    """
    Redis-backed storage.

    Devices are JSON documents with an IP index; interface, wireless and AP
    records live in one hash per device (field = record key); metrics and
    alerts are capped lists, newest first.
    """

    def __init__(self, cache: RedisCache, retention: RetentionConfig | None = None):
        self._cache = cache
        self._retention = retention or RetentionConfig()

    async def connect(self) -> None:
        await self._cache.connect()

    async def disconnect(self) -> None:
        await self._cache.disconnect()

    # ─────────────────────────────────────────────────────────────
    # Devices
    # ─────────────────────────────────────────────────────────────

    async def get_device(self, device_id: int) -> Device | None:
        data = await self._cache.get_json(_device_key(device_id))
        return Device.model_validate(data) if data else None

    async def get_device_by_ip(self, ip_address: str) -> Device | None:
        device_id = await self._cache.get(_ip_key(ip_address))
        if device_id is None:
            return None
        return await self.get_device(int(device_id))

    async def list_devices(self) -> list[Device]:
        ids = sorted(int(i) for i in await self._cache.smembers(KEY_DEVICES))
        devices = []
        for device_id in ids:
            device = await self.get_device(device_id)
            if device is not None:
                devices.append(device)
        return devices

    async def create_device(self, device: DeviceCreate) -> Device:
        device_id = await self._cache.incr(KEY_DEVICE_SEQ)
        created = Device(id=device_id, **device.model_dump())
        await self._cache.set(_device_key(device_id), created.model_dump(mode="json"))
        await self._cache.set(_ip_key(created.ip_address), str(device_id))
        await self._cache.sadd(KEY_DEVICES, str(device_id))
        return created

    async def update_device(self, device_id: int, **changes: Any) -> Device | None:
        device = await self.get_device(device_id)
        if device is None:
            return None
        updated = _apply(device, changes)
        await self._cache.set(_device_key(device_id), updated.model_dump(mode="json"))
        if updated.ip_address != device.ip_address:
            await self._cache.delete(_ip_key(device.ip_address))
            await self._cache.set(_ip_key(updated.ip_address), str(device_id))
        return updated

    # ─────────────────────────────────────────────────────────────
    # Metrics and alerts
    # ─────────────────────────────────────────────────────────────

    async def create_metric(self, metric: MetricSample) -> MetricSample:
        await self._cache.push_capped(
            _metrics_key(metric.device_id),
            metric.model_dump(mode="json"),
            self._retention.metrics_per_device,
        )
        return metric

    async def get_metrics(self, device_id: int, limit: int | None = None) -> list[MetricSample]:
        end = limit - 1 if limit else -1
        rows = await self._cache.lrange_json(_metrics_key(device_id), 0, end)
        return [MetricSample.model_validate(r) for r in rows]

    async def create_alert(self, alert: Alert) -> Alert:
        data = alert.model_dump(mode="json")
        await self._cache.push_capped(KEY_ALERTS, data, self._retention.alerts)
        await self._cache.push_capped(
            _device_alerts_key(alert.device_id), data, self._retention.alerts
        )
        return alert

    async def get_alerts(self, device_id: int | None = None, limit: int | None = None) -> list[Alert]:
        key = KEY_ALERTS if device_id is None else _device_alerts_key(device_id)
        end = limit - 1 if limit else -1
        return [Alert.model_validate(r) for r in await self._cache.lrange_json(key, 0, end)]

    # ─────────────────────────────────────────────────────────────
    # Keyed records
    # ─────────────────────────────────────────────────────────────

    async def get_interfaces(self, device_id: int) -> list[InterfaceRecord]:
        rows = await self._cache.hgetall_json(_interfaces_key(device_id))
        return [InterfaceRecord.model_validate(r) for r in rows.values()]

    async def upsert_interface(self, record: InterfaceRecord) -> InterfaceRecord:
        await self._cache.hset_json(
            _interfaces_key(record.device_id), record.name, record.model_dump(mode="json")
        )
        return record

    async def get_wireless_interfaces(self, device_id: int) -> list[WirelessInterfaceRecord]:
        rows = await self._cache.hgetall_json(_wireless_key(device_id))
        return [WirelessInterfaceRecord.model_validate(r) for r in rows.values()]

    async def upsert_wireless_interface(
        self, record: WirelessInterfaceRecord
    ) -> WirelessInterfaceRecord:
        await self._cache.hset_json(
            _wireless_key(record.device_id), record.name, record.model_dump(mode="json")
        )
        return record

    async def get_controller_aps(self, device_id: int) -> list[ControllerAPRecord]:
        rows = await self._cache.hgetall_json(_aps_key(device_id))
        return [ControllerAPRecord.model_validate(r) for r in rows.values()]

    async def upsert_controller_ap(self, record: ControllerAPRecord) -> ControllerAPRecord:
        await self._cache.hset_json(
            _aps_key(record.device_id), record.mac_address, record.model_dump(mode="json")
        )
        return record


def create_storage(backend: str, redis_url: str, retention: RetentionConfig) -> Storage:
    """Build the configured storage backend."""
    if backend == "memory":
        logger.info("Using in-memory storage")
        return MemoryStorage()
    if backend == "redis":
        return RedisStorage(RedisCache(redis_url), retention)
    raise ValueError(f"Unknown storage backend: {backend}")
