"""Tests for the connection manager: port cascade, reuse, deadlines, failures."""

import asyncio

import pytest

from conftest import FakeSession, add_device, settle
from routerwatch.polling.connection import SessionState
from routerwatch.polling.exceptions import (
    NotConnectedError,
    RouterOSCommandError,
    RouterOSConnectionError,
    RouterOSTimeoutError,
)


@pytest.mark.asyncio
async def test_connect_cascades_ports_in_order(storage, client, connections):
    device = await add_device(storage)
    session = FakeSession()
    client.serve(session, port=80)

    assert await connections.connect(device) is True

    assert [port for _, port, _, _ in client.attempts] == [8728, 8729, 80]
    assert connections.state(device.id) == SessionState.CONNECTED
    assert connections.port(device.id) == 80
    assert connections.session_count == 1


@pytest.mark.asyncio
async def test_connect_uses_device_credentials(storage, client, connections):
    device = await add_device(storage, username="monitor", password="s3cret")
    client.serve(FakeSession())

    await connections.connect(device)

    assert client.attempts == [("192.168.88.1", 8728, "monitor", "s3cret")]


@pytest.mark.asyncio
async def test_connect_failure_on_every_port(storage, client, connections):
    device = await add_device(storage)

    assert await connections.connect(device) is False

    assert [port for _, port, _, _ in client.attempts] == [8728, 8729, 80, 443]
    assert connections.state(device.id) == SessionState.DISCONNECTED
    assert connections.session_count == 0


@pytest.mark.asyncio
async def test_connect_reuses_existing_session(storage, client, connections):
    device = await add_device(storage)
    client.serve(FakeSession())

    assert await connections.connect(device)
    assert await connections.connect(device)

    assert len(client.attempts) == 1
    assert connections.session_count == 1


@pytest.mark.asyncio
async def test_concurrent_connects_open_one_session(storage, client, connections):
    device = await add_device(storage)
    opened = []

    async def slow_open(host, port, username, password, timeout):
        await asyncio.sleep(0.01)
        session = FakeSession()
        opened.append(session)
        return session

    client.handler = slow_open

    results = await asyncio.gather(*(connections.connect(device) for _ in range(5)))

    assert results == [True] * 5
    assert len(opened) == 1
    assert connections.session_count == 1


@pytest.mark.asyncio
async def test_filtered_ports_time_out_and_leave_device_disconnected(storage, client, connections):
    device = await add_device(storage)

    async def hang(host, port, username, password, timeout):
        await asyncio.sleep(10)

    client.handler = hang

    assert await connections.connect(device, timeout=0.01) is False
    assert len(client.attempts) == 4
    assert connections.state(device.id) == SessionState.DISCONNECTED
    assert connections.session_count == 0


@pytest.mark.asyncio
async def test_open_session_deadline_raises_timeout(client, connections):
    async def hang(host, port, username, password, timeout):
        await asyncio.sleep(10)

    client.handler = hang

    with pytest.raises(RouterOSTimeoutError):
        await connections.open_session("10.0.0.1", 8728, "admin", "", 0.01)


@pytest.mark.asyncio
async def test_session_arriving_after_deadline_is_closed(client, connections):
    late_sessions = []

    async def stubborn(host, port, username, password, timeout):
        session = FakeSession()
        late_sessions.append(session)
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            pass  # handshake finishes regardless of the cancel
        return session

    client.handler = stubborn

    with pytest.raises(RouterOSTimeoutError):
        await connections.open_session("10.0.0.1", 8728, "admin", "", 0.01)
    await settle()

    assert len(late_sessions) == 1
    assert late_sessions[0].closed is True


@pytest.mark.asyncio
async def test_execute_requires_connection(storage, connections):
    device = await add_device(storage)

    with pytest.raises(NotConnectedError):
        await connections.execute(device.id, "/system/resource/print")


@pytest.mark.asyncio
async def test_execute_returns_normalized_records(storage, client, connections):
    device = await add_device(storage)
    client.serve(FakeSession({"/interface/print": [{"name": "ether1", "running": None}]}))
    await connections.connect(device)

    rows = await connections.execute(device.id, "/interface/print")

    assert rows == [{"name": "ether1", "running": False}]


@pytest.mark.asyncio
async def test_execute_transport_failure_disconnects(storage, client, connections):
    device = await add_device(storage)
    session = FakeSession(failures={"/interface/print": RouterOSConnectionError("reset")})
    client.serve(session)
    await connections.connect(device)

    with pytest.raises(RouterOSConnectionError):
        await connections.execute(device.id, "/interface/print")

    assert connections.state(device.id) == SessionState.DISCONNECTED
    assert connections.session_count == 0
    assert session.closed is True


@pytest.mark.asyncio
async def test_execute_rejected_command_keeps_session(storage, client, connections):
    device = await add_device(storage)
    session = FakeSession(
        failures={"/caps-man/interface/print": RouterOSCommandError("no such command prefix")}
    )
    client.serve(session)
    await connections.connect(device)

    with pytest.raises(RouterOSCommandError):
        await connections.execute(device.id, "/caps-man/interface/print")

    assert connections.is_connected(device.id)
    assert session.closed is False


@pytest.mark.asyncio
async def test_disconnect_is_idempotent(storage, client, connections):
    device = await add_device(storage)
    session = FakeSession()
    client.serve(session)
    await connections.connect(device)

    await connections.disconnect(device.id)
    await connections.disconnect(device.id)
    await connections.disconnect(999)

    assert session.closed is True
    assert connections.state(device.id) == SessionState.DISCONNECTED
    assert connections.session_count == 0


@pytest.mark.asyncio
async def test_reconnect_after_failure_opens_new_session(storage, client, connections):
    device = await add_device(storage)
    first = FakeSession(failures={"/system/resource/print": RouterOSConnectionError("reset")})
    client.serve(first)
    await connections.connect(device)
    with pytest.raises(RouterOSConnectionError):
        await connections.execute(device.id, "/system/resource/print")

    second = FakeSession()
    client.serve(second)
    assert await connections.connect(device)

    assert len(client.attempts) == 2
    assert await connections.execute(device.id, "/system/resource/print") == []


@pytest.mark.asyncio
async def test_close_all(storage, client, connections):
    sessions = []

    async def open_new(host, port, username, password, timeout):
        session = FakeSession()
        sessions.append(session)
        return session

    client.handler = open_new
    first = await add_device(storage, ip_address="10.0.0.1")
    second = await add_device(storage, ip_address="10.0.0.2")
    await connections.connect(first)
    await connections.connect(second)

    await connections.close_all()

    assert connections.session_count == 0
    assert all(s.closed for s in sessions)


@pytest.mark.asyncio
async def test_unexpected_open_error_moves_on_to_next_port(storage, client, connections):
    device = await add_device(storage)
    session = FakeSession()

    async def webfig_on_api_port(host, port, username, password, timeout):
        if port == 8728:
            raise ValueError("not enough values to unpack (expected 2, got 1)")
        return session

    client.handler = webfig_on_api_port

    assert await connections.connect(device) is True

    assert [port for _, port, _, _ in client.attempts] == [8728, 8729]
    assert connections.port(device.id) == 8729


@pytest.mark.asyncio
async def test_unexpected_open_error_on_every_port_returns_false(storage, client, connections):
    device = await add_device(storage, password="pässwort")

    async def cannot_encode(host, port, username, password, timeout):
        password.encode("ascii")

    client.handler = cannot_encode

    assert await connections.connect(device) is False
    assert len(client.attempts) == 4
    assert connections.state(device.id) == SessionState.DISCONNECTED
