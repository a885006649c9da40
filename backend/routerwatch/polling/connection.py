"""
Connection Manager

Owns the mapping from device id to live RouterOS session.

A device exposes its API on different ports depending on configuration
(plain API, api-ssl, or a service port forwarded to the API), so connect walks
the configured ports in order. Each attempt is raced against a deadline so a
filtered port cannot stall a cycle; a session that arrives after the deadline
is closed, never leaked.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from enum import Enum
from typing import Any

from routerwatch.config import ConnectionConfig
from routerwatch.models.device import Device
from routerwatch.polling.exceptions import (
    NotConnectedError,
    RouterOSCommandError,
    RouterOSTimeoutError,
)
from routerwatch.polling.normalize import normalize_records
from routerwatch.polling.routeros import RouterOSClient, RouterOSSession

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class ConnectionManager:
    """
    Session registry with per-device locking.

    At most one live session exists per device id: connect and disconnect for
    the same device are serialized by a per-device asyncio.Lock, and a connect
    for a device that already has a session reuses it.
    """

    def __init__(self, client: RouterOSClient, config: ConnectionConfig | None = None):
        self._client = client
        self._config = config or ConnectionConfig()
        self._sessions: dict[int, RouterOSSession] = {}
        self._states: dict[int, SessionState] = {}
        self._ports: dict[int, int] = {}
        self._locks: defaultdict[int, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._pending_closes: set[asyncio.Task] = set()

    @property
    def ports(self) -> list[int]:
        return list(self._config.ports)

    @property
    def session_count(self) -> int:
        return len(self._sessions)

    def state(self, device_id: int) -> SessionState:
        return self._states.get(device_id, SessionState.DISCONNECTED)

    def is_connected(self, device_id: int) -> bool:
        return self.state(device_id) == SessionState.CONNECTED

    def port(self, device_id: int) -> int | None:
        """Port of the live session, if any."""
        return self._ports.get(device_id)

    # ─────────────────────────────────────────────────────────────
    # Session lifecycle
    # ─────────────────────────────────────────────────────────────

    async def connect(self, device: Device, timeout: float | None = None) -> bool:
        """
        Open a session to a device, trying each API port in order.

        Returns True on the first port that yields a session. On failure the
        device is left disconnected with no session.
        """
        timeout = timeout if timeout is not None else self._config.connect_timeout

        async with self._locks[device.id]:
            if device.id in self._sessions:
                return True

            self._states[device.id] = SessionState.CONNECTING
            try:
                for port in self._config.ports:
                    try:
                        session = await self.open_session(
                            device.ip_address, port, device.username, device.password, timeout
                        )
                    except Exception as e:
                        logger.debug(
                            "Connect to %s:%d failed: %s", device.ip_address, port, e
                        )
                        continue

                    self._sessions[device.id] = session
                    self._ports[device.id] = port
                    self._states[device.id] = SessionState.CONNECTED
                    logger.info(
                        "Connected to device %s (%s) on port %d",
                        device.id, device.ip_address, port,
                    )
                    return True
            finally:
                if device.id not in self._sessions:
                    self._states[device.id] = SessionState.DISCONNECTED

            logger.warning(
                "Failed to connect to device %s (%s) on any of ports %s",
                device.id, device.ip_address, self._config.ports,
            )
            return False

    async def open_session(
        self,
        host: str,
        port: int,
        username: str,
        password: str,
        timeout: float,
    ) -> RouterOSSession:
        """
        Open one session, bounded by a deadline.

        The deadline is the client timeout plus a grace period. When it fires
        the open is cancelled, and any session it still produces is closed.
        """
        task = asyncio.ensure_future(
            self._client.open(host, port, username, password, timeout)
        )
        try:
            done, _ = await asyncio.wait(
                {task}, timeout=timeout + self._config.timeout_grace
            )
        except asyncio.CancelledError:
            task.add_done_callback(self._discard_late_session)
            task.cancel()
            raise

        if task in done:
            return task.result()

        task.add_done_callback(self._discard_late_session)
        task.cancel()
        raise RouterOSTimeoutError(
            f"Connection to {host}:{port} timed out after {timeout}s", host, port
        )

    def _discard_late_session(self, task: asyncio.Task) -> None:
        if task.cancelled() or task.exception() is not None:
            return
        closer = asyncio.ensure_future(self._close_quietly(task.result()))
        self._pending_closes.add(closer)
        closer.add_done_callback(self._pending_closes.discard)

    async def _close_quietly(self, session: RouterOSSession) -> None:
        try:
            await session.close()
        except Exception as e:
            logger.debug("Error closing session: %s", e)

    async def disconnect(self, device_id: int) -> None:
        """Release the device's session. Safe to call in any state."""
        async with self._locks[device_id]:
            await self._drop(device_id)

    async def _drop(self, device_id: int) -> None:
        session = self._sessions.pop(device_id, None)
        self._ports.pop(device_id, None)
        self._states[device_id] = SessionState.DISCONNECTED
        if session is not None:
            await self._close_quietly(session)

    async def close_all(self) -> None:
        """Disconnect every device."""
        for device_id in list(self._sessions):
            await self.disconnect(device_id)
        if self._pending_closes:
            await asyncio.gather(*self._pending_closes, return_exceptions=True)

    # ─────────────────────────────────────────────────────────────
    # Commands
    # ─────────────────────────────────────────────────────────────

    async def execute(self, device_id: int, command: str) -> list[dict[str, Any]]:
        """
        Run a print command on the device's session and return normalized records.

        Transport and protocol failures close the session and leave the device
        disconnected. A command the device rejected leaves the session open.
        Either way the error propagates; retrying is the caller's decision.
        """
        session = self._sessions.get(device_id)
        if session is None or not self.is_connected(device_id):
            raise NotConnectedError(f"Device {device_id} is not connected")

        try:
            records = await session.query(command)
        except RouterOSCommandError:
            raise
        except Exception as e:
            logger.warning("Command %s failed on device %s: %s", command, device_id, e)
            async with self._locks[device_id]:
                if self._sessions.get(device_id) is session:
                    await self._drop(device_id)
            raise

        return normalize_records(records)
