"""
RouterOS API Client

Session-level access to the RouterOS API protocol (ports 8728/8729).
The wire protocol is provided by librouteros, which is blocking; every call
runs in the default executor so the event loop never stalls on a socket.

Usage:
    client = LibrouterosClient()
    session = await client.open("192.168.88.1", 8728, "admin", "", timeout=10)
    try:
        resources = await session.query("/system/resource/print")
    finally:
        await session.close()
"""

from __future__ import annotations

import asyncio
import functools
import logging
import socket
import ssl
from typing import Any, Protocol

import librouteros
from librouteros.exceptions import (
    ConnectionClosed,
    FatalError,
    LibRouterosError,
    MultiTrapError,
    TrapError,
)

from routerwatch.polling.exceptions import (
    RouterOSCommandError,
    RouterOSConnectionError,
    RouterOSProtocolError,
    RouterOSTimeoutError,
)

logger = logging.getLogger(__name__)


class RouterOSSession(Protocol):
    """An authenticated session with one device."""

    async def query(self, path: str) -> list[dict[str, Any]]: ...

    async def close(self) -> None: ...


class RouterOSClient(Protocol):
    """Opens sessions. Implementations raise RouterOSError subclasses."""

    async def open(
        self,
        host: str,
        port: int,
        username: str,
        password: str,
        timeout: float,
    ) -> RouterOSSession: ...


class LibrouterosSession:
    """RouterOSSession backed by a librouteros Api object."""

    def __init__(self, api: Any, host: str, port: int):
        self._api = api
        self.host = host
        self.port = port
        # librouteros sockets are not safe for interleaved sentences
        self._lock = asyncio.Lock()

    async def query(self, path: str) -> list[dict[str, Any]]:
        loop = asyncio.get_running_loop()
        async with self._lock:
            try:
                return await loop.run_in_executor(None, self._run, path)
            except (TrapError, MultiTrapError) as e:
                raise RouterOSCommandError(
                    f"{path} rejected: {e}", self.host, self.port
                ) from e
            except (FatalError, ConnectionClosed) as e:
                raise RouterOSProtocolError(
                    f"{path} failed: {e}", self.host, self.port
                ) from e
            except LibRouterosError as e:
                raise RouterOSProtocolError(str(e), self.host, self.port) from e
            except socket.timeout as e:
                raise RouterOSTimeoutError(
                    f"{path} timed out", self.host, self.port
                ) from e
            except OSError as e:
                raise RouterOSConnectionError(str(e), self.host, self.port) from e
            except Exception as e:
                # undecodable or malformed sentences surface as ValueError and friends
                raise RouterOSProtocolError(
                    f"{path} failed: {e!r}", self.host, self.port
                ) from e

    def _run(self, path: str) -> list[dict[str, Any]]:
        return [dict(sentence) for sentence in self._api(path)]

    async def close(self) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._api.close)


def _close_abandoned(future: asyncio.Future) -> None:
    """Close an Api whose handshake finished after the caller gave up."""
    if future.cancelled() or future.exception() is not None:
        return
    api = future.result()
    try:
        api.close()
    except Exception as e:
        logger.debug("Error closing abandoned session: %s", e)


class LibrouterosClient:
    """RouterOSClient backed by librouteros."""

    def __init__(self, tls_ports: list[int] | None = None, verify_tls: bool = False):
        self.tls_ports = set(tls_ports or [])
        self.verify_tls = verify_tls

    def _ssl_context(self) -> ssl.SSLContext:
        ctx = ssl.create_default_context()
        if not self.verify_tls:
            # RouterOS ships self-signed certificates on api-ssl
            ctx.check_hostname = False
            ctx.verify_mode = ssl.CERT_NONE
        return ctx

    def _connect(
        self, host: str, port: int, username: str, password: str, timeout: float
    ) -> Any:
        kwargs: dict[str, Any] = {"port": port, "timeout": timeout}
        if port in self.tls_ports:
            kwargs["ssl_wrapper"] = functools.partial(
                self._ssl_context().wrap_socket, server_hostname=host
            )
        return librouteros.connect(host=host, username=username, password=password, **kwargs)

    async def open(
        self,
        host: str,
        port: int,
        username: str,
        password: str,
        timeout: float,
    ) -> LibrouterosSession:
        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(
            None, self._connect, host, port, username, password, timeout
        )
        try:
            api = await asyncio.shield(future)
        except asyncio.CancelledError:
            # The executor thread cannot be interrupted; close whatever it opens.
            future.add_done_callback(_close_abandoned)
            raise
        except socket.timeout as e:
            raise RouterOSTimeoutError(
                f"Connection to {host}:{port} timed out", host, port
            ) from e
        except (TrapError, MultiTrapError) as e:
            raise RouterOSConnectionError(
                f"Login to {host}:{port} rejected: {e}", host, port
            ) from e
        except LibRouterosError as e:
            raise RouterOSProtocolError(str(e), host, port) from e
        except OSError as e:
            raise RouterOSConnectionError(
                f"Connection to {host}:{port} failed: {e}", host, port
            ) from e
        except Exception as e:
            # a non-API service on the port, or credentials the protocol cannot encode
            raise RouterOSProtocolError(
                f"Handshake with {host}:{port} failed: {e!r}", host, port
            ) from e
        return LibrouterosSession(api, host, port)
