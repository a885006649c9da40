"""RouterOS error taxonomy."""

from __future__ import annotations


class RouterOSError(Exception):
    """Base class for every RouterOS session failure."""

    def __init__(self, message: str, host: str | None = None, port: int | None = None):
        super().__init__(message)
        self.host = host
        self.port = port


class RouterOSConnectionError(RouterOSError):
    """Transport failure: refused, unreachable, DNS, reset, login rejected."""


class RouterOSTimeoutError(RouterOSConnectionError):
    """The connect deadline elapsed before a session was opened."""


class RouterOSProtocolError(RouterOSError):
    """Malformed reply or fatal protocol error; the session is unusable."""


class RouterOSCommandError(RouterOSError):
    """The device rejected a command (RouterOS trap). The session stays usable."""


class NotConnectedError(RouterOSError):
    """A command was issued for a device with no live session."""


class InvalidSubnetError(ValueError):
    """A subnet was not a valid IPv4 CIDR."""
