"""Tests for subnet enumeration, the credential cascade and device registration."""

import asyncio

import pytest

from conftest import RESOURCES, FakeSession, add_device
from routerwatch.config import DiscoveryConfig
from routerwatch.discovery import (
    Candidate,
    DiscoveryEngine,
    enumerate_hosts,
    iter_candidates,
    parse_subnet,
)
from routerwatch.polling.exceptions import (
    InvalidSubnetError,
    RouterOSCommandError,
    RouterOSConnectionError,
)


@pytest.fixture
def engine(storage, connections, discovery_config):
    return DiscoveryEngine(storage, connections, discovery_config)


def accept_only(host, port, username, password, session_factory=None):
    """Open handler accepting exactly one host/port/credential combination."""

    async def handler(h, p, u, pw, timeout):
        if (h, p, u, pw) == (host, port, username, password):
            return session_factory() if session_factory else device_session()
        raise RouterOSConnectionError(f"Connection to {h}:{p} refused", h, p)

    return handler


def device_session(identity="edge-gw") -> FakeSession:
    replies = {"/system/resource/print": [RESOURCES]}
    if identity is not None:
        replies["/system/identity/print"] = [{"name": identity}]
    return FakeSession(replies)


# ─────────────────────────────────────────────────────────────────────────────
# Subnets
# ─────────────────────────────────────────────────────────────────────────────


def test_slash_30_has_two_hosts():
    assert enumerate_hosts("192.168.1.0/30") == ["192.168.1.1", "192.168.1.2"]


def test_slash_24_enumerates_254_hosts():
    hosts = enumerate_hosts("10.1.2.0/24")
    assert len(hosts) == 254
    assert hosts[0] == "10.1.2.1"
    assert hosts[-1] == "10.1.2.254"


def test_large_subnets_are_capped():
    hosts = enumerate_hosts("10.0.0.0/16")
    assert len(hosts) == 254
    assert hosts[-1] == "10.0.0.254"


def test_point_to_point_and_host_masks_have_no_usable_hosts():
    assert enumerate_hosts("10.0.0.0/31") == []
    assert enumerate_hosts("10.0.0.7/32") == []


@pytest.mark.parametrize("cidr", ["10.0.0.0/33", "10.0.0.0/-1", "10.0.0.0/abc", "10.0.0.0", "10.0.0/24"])
def test_invalid_subnets_are_rejected(cidr):
    with pytest.raises(InvalidSubnetError):
        parse_subnet(cidr)


def test_parse_subnet_returns_network_address():
    address, bits = parse_subnet("192.168.88.0/24")
    assert str(address) == "192.168.88.0"
    assert bits == 24


@pytest.mark.asyncio
async def test_invalid_mask_fails_before_any_probe(client, engine):
    with pytest.raises(InvalidSubnetError):
        await engine.discover("10.0.0.0/33")
    assert client.attempts == []


# ─────────────────────────────────────────────────────────────────────────────
# Cascade
# ─────────────────────────────────────────────────────────────────────────────


def test_candidate_order_is_port_then_user_then_password():
    candidates = list(iter_candidates([8728, 8729], ["admin", "user"], ["", "admin"]))
    assert candidates == [
        Candidate(8728, "admin", ""),
        Candidate(8728, "admin", "admin"),
        Candidate(8728, "user", ""),
        Candidate(8728, "user", "admin"),
        Candidate(8729, "admin", ""),
        Candidate(8729, "admin", "admin"),
        Candidate(8729, "user", ""),
        Candidate(8729, "user", "admin"),
    ]


def test_default_cascade():
    config = DiscoveryConfig()
    candidates = list(iter_candidates(config.ports, config.usernames, config.passwords))
    assert len(candidates) == 4 * 3 * 5
    assert candidates[0] == Candidate(8728, "admin", "")
    assert candidates[-1] == Candidate(443, "mikrotik", "routeros")


@pytest.mark.asyncio
async def test_probe_short_circuits_on_first_login(client, engine):
    client.handler = accept_only("10.0.0.5", 8729, "admin", "admin")

    found = await engine.probe("10.0.0.5")

    assert found is not None
    assert found.port == 8729
    assert (found.username, found.password) == ("admin", "admin")
    # 15 combinations on 8728, then "" and "admin" on 8729
    assert len(client.attempts) == 17
    assert client.attempts[-1] == ("10.0.0.5", 8729, "admin", "admin")


@pytest.mark.asyncio
async def test_probe_builds_descriptor_and_closes_session(client, engine):
    session = device_session()
    client.handler = accept_only("10.0.0.5", 8728, "admin", "", lambda: session)

    found = await engine.probe("10.0.0.5")

    assert found.name == "edge-gw"
    assert found.model == "RB4011iGS+"
    assert found.serial_number == "D4E30C1A2B3C"
    assert found.os_version == "6.49.7 (long-term)"
    assert found.total_memory == 268435456
    assert session.closed is True


@pytest.mark.asyncio
async def test_probe_name_falls_back_to_product_and_board(client, engine):
    session = device_session(identity=None)
    session.failures["/system/identity/print"] = RouterOSCommandError("not permitted")
    client.handler = accept_only("10.0.0.5", 8728, "admin", "", lambda: session)

    found = await engine.probe("10.0.0.5")

    assert found.name == "MikroTik RB4011iGS+"


@pytest.mark.asyncio
async def test_probe_continues_when_device_info_fails(client, engine):
    broken = FakeSession(failures={"/system/resource/print": RouterOSConnectionError("reset")})
    working = device_session()

    async def handler(host, port, username, password, timeout):
        if (port, username, password) == (8728, "admin", ""):
            return broken
        if (port, username, password) == (8728, "admin", "admin"):
            return working
        raise RouterOSConnectionError("refused")

    client.handler = handler

    found = await engine.probe("10.0.0.5")

    assert found.password == "admin"
    assert broken.closed is True
    assert working.closed is True


@pytest.mark.asyncio
async def test_unreachable_host_returns_none(client, engine):
    assert await engine.probe("10.0.0.9") is None
    assert len(client.attempts) == 60


# ─────────────────────────────────────────────────────────────────────────────
# Discovery
# ─────────────────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_discover_registers_new_device(storage, client, engine):
    client.handler = accept_only("192.168.1.2", 8728, "admin", "")

    assert await engine.discover("192.168.1.0/30") == 1

    device = await storage.get_device_by_ip("192.168.1.2")
    assert device.name == "edge-gw"
    assert device.username == "admin"
    assert device.password == ""
    assert device.is_online is False
    assert device.last_seen is not None
    assert device.model == "RB4011iGS+"


@pytest.mark.asyncio
async def test_rediscovery_keeps_credentials_of_online_device(storage, client, engine):
    existing = await add_device(
        storage, ip_address="192.168.1.1", username="noc", password="working", is_online=True
    )
    client.handler = accept_only("192.168.1.1", 8728, "admin", "")

    assert await engine.discover("192.168.1.0/30") == 1

    device = await storage.get_device(existing.id)
    assert (device.username, device.password) == ("noc", "working")
    assert device.name == "edge-gw"
    assert len(await storage.list_devices()) == 1


@pytest.mark.asyncio
async def test_rediscovery_replaces_credentials_of_offline_device(storage, client, engine):
    existing = await add_device(
        storage, ip_address="192.168.1.1", username="noc", password="stale", is_online=False
    )
    client.handler = accept_only("192.168.1.1", 8728, "admin", "admin")

    await engine.discover("192.168.1.0/30")

    device = await storage.get_device(existing.id)
    assert (device.username, device.password) == ("admin", "admin")


@pytest.mark.asyncio
async def test_failed_probe_leaves_stored_device_untouched(storage, engine):
    existing = await add_device(
        storage, ip_address="192.168.1.1", username="noc", password="working", is_online=True
    )

    assert await engine.discover("192.168.1.0/30") == 0

    assert await storage.get_device(existing.id) == existing


@pytest.mark.asyncio
async def test_batches_run_sequentially(storage, client, connections):
    config = DiscoveryConfig(
        batch_size=2, ports=[8728], usernames=["admin"], passwords=[""], probe_timeout=0.05
    )
    engine = DiscoveryEngine(storage, connections, config)
    events = []
    in_flight = 0
    peak = 0

    async def handler(host, port, username, password, timeout):
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        events.append(("start", host))
        await asyncio.sleep(0.001)
        events.append(("end", host))
        in_flight -= 1
        raise RouterOSConnectionError("refused")

    client.handler = handler

    assert await engine.discover("10.0.0.0/29") == 0

    assert peak == 2
    for later, earlier in [("10.0.0.3", "10.0.0.1"), ("10.0.0.3", "10.0.0.2"), ("10.0.0.5", "10.0.0.4")]:
        assert events.index(("start", later)) > events.index(("end", earlier))
    assert len([e for e in events if e[0] == "start"]) == 6


@pytest.mark.asyncio
async def test_storage_error_does_not_count(storage, client, engine, monkeypatch):
    client.handler = accept_only("192.168.1.1", 8728, "admin", "")

    async def broken_create(device):
        raise RuntimeError("storage unavailable")

    monkeypatch.setattr(storage, "create_device", broken_create)

    assert await engine.discover("192.168.1.0/30") == 0
