"""Shared fixtures: in-memory storage and scripted RouterOS clients."""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable

import pytest

from routerwatch.config import ConnectionConfig, DiscoveryConfig
from routerwatch.models import DeviceCreate
from routerwatch.polling.connection import ConnectionManager
from routerwatch.polling.exceptions import RouterOSConnectionError
from routerwatch.storage import MemoryStorage

RESOURCES = {
    "cpu-load": 42,
    "free-memory": 168435456,
    "total-memory": 268435456,
    "uptime": "1d02:03:04",
    "board-name": "RB4011iGS+",
    "version": "6.49.7 (long-term)",
    "factory-software": "6.44.6",
    "cpu": "ARMv7",
    "serial-number": "D4E30C1A2B3C",
}


class FakeSession:
    """Session that answers from a path -> rows table."""

    def __init__(
        self,
        replies: dict[str, list[dict[str, Any]]] | None = None,
        failures: dict[str, Exception] | None = None,
    ):
        self.replies = replies or {}
        self.failures = failures or {}
        self.queries: list[str] = []
        self.closed = False

    async def query(self, path: str) -> list[dict[str, Any]]:
        self.queries.append(path)
        if self.closed:
            raise RouterOSConnectionError("session closed")
        if path in self.failures:
            raise self.failures[path]
        return [dict(row) for row in self.replies.get(path, [])]

    async def close(self) -> None:
        self.closed = True


OpenHandler = Callable[[str, int, str, str, float], Awaitable[Any]]


async def refuse(host: str, port: int, username: str, password: str, timeout: float):
    raise RouterOSConnectionError(f"Connection to {host}:{port} refused", host, port)


class FakeClient:
    """RouterOSClient whose open() delegates to a swappable handler."""

    def __init__(self, handler: OpenHandler = refuse):
        self.handler = handler
        self.attempts: list[tuple[str, int, str, str]] = []

    async def open(self, host: str, port: int, username: str, password: str, timeout: float):
        self.attempts.append((host, port, username, password))
        return await self.handler(host, port, username, password, timeout)

    def serve(self, session: FakeSession, port: int | None = None) -> None:
        """Answer every open (or only those on `port`) with the given session."""

        async def handler(host, p, username, password, timeout):
            if port is not None and p != port:
                raise RouterOSConnectionError(f"Connection to {host}:{p} refused", host, p)
            return session

        self.handler = handler


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def client() -> FakeClient:
    return FakeClient()


@pytest.fixture
def connection_config() -> ConnectionConfig:
    return ConnectionConfig(connect_timeout=0.05, timeout_grace=0.0)


@pytest.fixture
def connections(client: FakeClient, connection_config: ConnectionConfig) -> ConnectionManager:
    return ConnectionManager(client, connection_config)


@pytest.fixture
def discovery_config() -> DiscoveryConfig:
    return DiscoveryConfig(probe_timeout=0.05)


async def add_device(storage: MemoryStorage, **overrides: Any):
    fields = {"name": "core-router", "ip_address": "192.168.88.1", "password": "secret"}
    fields.update(overrides)
    return await storage.create_device(DeviceCreate(**fields))


async def settle() -> None:
    """Let scheduled callbacks and the tasks they spawn run."""
    for _ in range(5):
        await asyncio.sleep(0)
