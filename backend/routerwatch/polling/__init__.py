"""RouterOS sessions, reply normalization and metrics collection."""

from routerwatch.polling.exceptions import (
    InvalidSubnetError,
    NotConnectedError,
    RouterOSCommandError,
    RouterOSConnectionError,
    RouterOSError,
    RouterOSProtocolError,
    RouterOSTimeoutError,
)
from routerwatch.polling.normalize import normalize_record, normalize_records
from routerwatch.polling.routeros import LibrouterosClient, RouterOSClient, RouterOSSession
from routerwatch.polling.connection import ConnectionManager, SessionState
from routerwatch.polling.collector import MetricsCollector

__all__ = [
    # Client
    "RouterOSClient",
    "RouterOSSession",
    "LibrouterosClient",
    # Sessions
    "ConnectionManager",
    "SessionState",
    # Collection
    "MetricsCollector",
    "normalize_record",
    "normalize_records",
    # Exceptions
    "RouterOSError",
    "RouterOSConnectionError",
    "RouterOSTimeoutError",
    "RouterOSProtocolError",
    "RouterOSCommandError",
    "NotConnectedError",
    "InvalidSubnetError",
]
