"""
Subnet Discovery

Finds RouterOS devices on a subnet by walking a port/credential cascade
against every host, then registers what it finds.

Hosts are probed in fixed-size batches: probes within a batch run
concurrently, batches run one after another. A host that refuses, times out
or rejects every credential is simply not a device we can manage, so probe
failures never surface as errors. Only a malformed subnet raises.
"""

from __future__ import annotations

import asyncio
import ipaddress
import itertools
import logging
from datetime import datetime
from typing import Iterator, NamedTuple

from routerwatch.config import DiscoveryConfig
from routerwatch.models import DeviceCreate, DiscoveredDevice
from routerwatch.polling.connection import ConnectionManager
from routerwatch.polling.exceptions import InvalidSubnetError, RouterOSCommandError
from routerwatch.polling.normalize import normalize_records
from routerwatch.polling.routeros import RouterOSSession
from routerwatch.storage import Storage

logger = logging.getLogger(__name__)

CMD_RESOURCES = "/system/resource/print"
CMD_IDENTITY = "/system/identity/print"


class Candidate(NamedTuple):
    port: int
    username: str
    password: str


def iter_candidates(
    ports: list[int], usernames: list[str], passwords: list[str]
) -> Iterator[Candidate]:
    """
    Yield login attempts in cascade order: port outer, username middle,
    password inner.

    Port availability is the property least likely to vary between attempts,
    so it is fixed first.
    """
    for port, username, password in itertools.product(ports, usernames, passwords):
        yield Candidate(port, username, password)


def parse_subnet(cidr: str) -> tuple[ipaddress.IPv4Address, int]:
    """Split "a.b.c.d/n" into its network address and mask bits."""
    base, sep, mask = cidr.strip().partition("/")
    if not sep:
        raise InvalidSubnetError(f"Missing mask in subnet: {cidr}")
    try:
        mask_bits = int(mask)
    except ValueError:
        raise InvalidSubnetError(f"Invalid subnet mask: {mask}") from None
    if not 0 <= mask_bits <= 32:
        raise InvalidSubnetError(f"Invalid subnet mask: {mask}")

    try:
        network = ipaddress.IPv4Network(f"{base}/{mask_bits}", strict=False)
    except ValueError as e:
        raise InvalidSubnetError(f"Invalid subnet {cidr}: {e}") from None
    return network.network_address, mask_bits


def enumerate_hosts(cidr: str, max_hosts: int = 254) -> list[str]:
    """Host addresses network+1 .. network+N, N = usable hosts capped at max_hosts."""
    network_address, mask_bits = parse_subnet(cidr)
    usable = 2 ** (32 - mask_bits) - 2
    count = max(min(usable, max_hosts), 0)
    return [str(network_address + i) for i in range(1, count + 1)]


def _text(value: object) -> str | None:
    return None if value is None else str(value)


def _batched(items: list[str], size: int) -> Iterator[list[str]]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


class DiscoveryEngine:
    """Scans subnets and upserts the RouterOS devices it can log in to."""

    def __init__(
        self,
        storage: Storage,
        connections: ConnectionManager,
        config: DiscoveryConfig | None = None,
    ):
        self._storage = storage
        self._connections = connections
        self._config = config or DiscoveryConfig()

    def candidates(self) -> Iterator[Candidate]:
        return iter_candidates(self._config.ports, self._config.usernames, self._config.passwords)

    async def discover(self, subnet: str) -> int:
        """
        Scan a subnet and register every device found.

        Returns the number of devices created or updated. Raises
        InvalidSubnetError before any network activity for malformed input.
        """
        hosts = enumerate_hosts(subnet, self._config.max_hosts)
        batch_size = max(self._config.batch_size, 1)
        total_batches = (len(hosts) + batch_size - 1) // batch_size
        logger.info("Scanning %d hosts on subnet %s", len(hosts), subnet)

        discovered_count = 0
        for number, batch in enumerate(_batched(hosts, batch_size), start=1):
            logger.debug(
                "Scanning batch %d/%d: %s to %s", number, total_batches, batch[0], batch[-1]
            )
            results = await asyncio.gather(*(self.probe(host) for host in batch))

            for found in results:
                if found is None:
                    continue
                try:
                    await self._register(found)
                    discovered_count += 1
                except Exception as e:
                    logger.error("Error saving device at %s: %s", found.ip_address, e)

        logger.info(
            "Discovery complete. Found %d RouterOS devices on subnet %s",
            discovered_count, subnet,
        )
        return discovered_count

    async def probe(self, host: str) -> DiscoveredDevice | None:
        """Walk the cascade against one host; first working login wins."""
        for candidate in self.candidates():
            try:
                session = await self._connections.open_session(
                    host,
                    candidate.port,
                    candidate.username,
                    candidate.password,
                    self._config.probe_timeout,
                )
            except Exception as e:
                logger.debug(
                    "Probe %s:%d as %s failed: %s", host, candidate.port, candidate.username, e
                )
                continue

            logger.info(
                "Logged in to %s:%d as %s", host, candidate.port, candidate.username
            )
            try:
                return await self._describe(session, host, candidate)
            except Exception as e:
                logger.debug("Connected to %s but failed to read device info: %s", host, e)
            finally:
                try:
                    await session.close()
                except Exception as e:
                    logger.debug("Error closing probe session to %s: %s", host, e)

        return None

    async def _describe(
        self, session: RouterOSSession, host: str, candidate: Candidate
    ) -> DiscoveredDevice:
        resources = normalize_records(await session.query(CMD_RESOURCES))
        resource = resources[0] if resources else {}

        identity = None
        try:
            rows = normalize_records(await session.query(CMD_IDENTITY))
            if rows and rows[0].get("name") not in (None, "unknown"):
                identity = str(rows[0]["name"])
        except RouterOSCommandError as e:
            logger.debug("Could not read identity of %s: %s", host, e)

        board = resource.get("board-name")
        total_memory = resource.get("total-memory")
        return DiscoveredDevice(
            ip_address=host,
            name=identity or f"{self._config.product_name} {board or 'Router'}",
            username=candidate.username,
            password=candidate.password,
            port=candidate.port,
            model=_text(board),
            serial_number=_text(resource.get("serial-number")),
            os_version=_text(resource.get("version")),
            firmware=_text(resource.get("factory-software")),
            cpu=_text(resource.get("cpu") or resource.get("cpu-model")),
            total_memory=int(total_memory) if total_memory is not None else None,
        )

    async def _register(self, found: DiscoveredDevice) -> None:
        descriptors = {
            "name": found.name,
            "model": found.model,
            "serial_number": found.serial_number,
            "os_version": found.os_version,
            "firmware": found.firmware,
            "cpu": found.cpu,
            "total_memory": found.total_memory,
            "last_seen": datetime.utcnow(),
        }

        existing = await self._storage.get_device_by_ip(found.ip_address)
        if existing is not None:
            # Working credentials of an online device are never replaced
            if not existing.is_online:
                descriptors["username"] = found.username
                descriptors["password"] = found.password
            await self._storage.update_device(existing.id, **descriptors)
            logger.info("Updated existing device %s at %s", found.name, found.ip_address)
            return

        await self._storage.create_device(
            DeviceCreate(
                ip_address=found.ip_address,
                username=found.username or "admin",
                password=found.password or "",
                is_online=False,
                **descriptors,
            )
        )
        logger.info("Added new device %s at %s", found.name, found.ip_address)
