#!/usr/bin/env python3
"""Tests for senders: payloads, idle expiry, teardown and error reporting."""

import sys
sys.path.insert(0, "src")

import asyncio
import logging

import pytest

from sendtcp import (
    create_sender, build_payload, Credentials, ConnectionState,
    ConnectionPool, ManualClock, MonotonicClock, Sender,
)
from sendtcp.teardown import ensure_shutdown_hook

from conftest import Collector, FlakyConnector, refusing_connector, settle


# ============================================================================
# Payload Tests
# ============================================================================

def test_payload_prefixed_with_secret_and_default_delimiter():
    creds = Credentials(password="abc")
    assert build_payload("msg", creds) == "abc::msg"


def test_payload_without_credentials_is_unchanged():
    assert build_payload("msg") == "msg"
    assert build_payload("msg", None) == "msg"


def test_payload_with_empty_secret_is_unchanged():
    assert build_payload("msg", Credentials(password="")) == "msg"
    assert build_payload("msg", Credentials.coerce({"password": None})) == "msg"


def test_payload_custom_delimiter():
    creds = Credentials.coerce({"password": "abc", "delimiter": "|"})
    assert build_payload("msg", creds) == "abc|msg"


def test_payload_delimiter_inside_data_is_not_escaped():
    creds = Credentials(password="abc")
    assert build_payload("a::b", creds) == "abc::a::b"


def test_credentials_mapping_with_none_delimiter_uses_default():
    creds = Credentials.coerce({"password": "abc", "delimiter": None})
    assert creds.delimiter == "::"


def test_credentials_secret_not_in_repr():
    creds = Credentials(password="hunter2")
    assert "hunter2" not in repr(creds)
    assert "hunter2" not in str(creds)


def test_sender_payload_bytes_ascii_replaces_unencodable():
    send = create_sender("127.0.0.1", 9999, credentials={"password": "abc"})
    assert send.payload("héllo") == b"abc::h?llo"


def test_sender_payload_bytes_latin1():
    send = create_sender("127.0.0.1", 9999, encoding="latin-1")
    assert send.payload("héllo") == b"h\xe9llo"


def test_create_sender_returns_callable_sender():
    send = create_sender("localhost", "9999")
    assert isinstance(send, Sender)
    assert callable(send)
    assert send.destination.port == 9999
    assert send.manager.state is ConnectionState.IDLE


# ============================================================================
# Delivery Tests
# ============================================================================

@pytest.mark.asyncio
async def test_send_writes_to_destination(collector):
    """A first send opens the connection and writes the payload."""
    send = create_sender(collector.host, collector.port)

    send("hello")
    await send.flush()

    assert send.manager.state is ConnectionState.OPEN
    await collector.wait_for(lambda: collector.received == b"hello")
    assert len(collector.connections) == 1

    await send.aclose()


@pytest.mark.asyncio
async def test_send_with_credentials_on_the_wire(collector):
    send = create_sender(collector.host, collector.port, credentials={"password": "abc"})

    send("msg")
    await send.flush()

    await collector.wait_for(lambda: collector.received == b"abc::msg")
    await send.aclose()


@pytest.mark.asyncio
async def test_send_returns_false_while_connecting_then_true_when_flushed(collector):
    send = create_sender(collector.host, collector.port)

    # Nothing is connected yet, the bytes wait behind the connect
    assert send("first") is False
    await send.flush()

    assert send("second") is True
    await send.flush()

    await collector.wait_for(lambda: collector.received == b"firstsecond")
    await send.aclose()


@pytest.mark.asyncio
async def test_sends_issued_while_connecting_keep_their_order(collector):
    send = create_sender(collector.host, collector.port)

    for part in ("a", "b", "c", "d"):
        send(part)
    await send.flush()

    await collector.wait_for(lambda: collector.received == b"abcd")
    assert send.manager.connections_opened == 1
    await send.aclose()


@pytest.mark.asyncio
async def test_submit_resolves_true_on_success(collector):
    send = create_sender(collector.host, collector.port)

    assert await send.submit("ok") is True
    assert send.pending == 0

    await send.aclose()


# ============================================================================
# Idle Expiry Tests
# ============================================================================

@pytest.mark.asyncio
async def test_sends_closer_than_idle_threshold_reuse_connection(collector):
    clock = ManualClock()
    send = create_sender(collector.host, collector.port, timebase=clock)

    for i in range(5):
        send(f"m{i};")
        await send.flush()
        clock.advance(2.9)
        await settle()
        assert send.manager.state is ConnectionState.OPEN

    assert send.manager.connections_opened == 1
    await collector.wait_for(lambda: collector.received == b"m0;m1;m2;m3;m4;")
    assert len(collector.connections) == 1
    assert collector.closed == 0

    await send.aclose()


@pytest.mark.asyncio
async def test_idle_gap_closes_connection_and_next_send_reconnects(collector):
    """send("hello"), idle past the threshold, send("world") on a new connection."""
    clock = ManualClock()
    send = create_sender(collector.host, collector.port, timebase=clock)

    send("hello")
    await send.flush()
    first = send.manager.connection

    clock.advance(3.0)
    await settle()
    await send.manager.wait_closed()

    assert send.manager.state is ConnectionState.IDLE
    assert send.manager.connection is None
    await collector.wait_for(lambda: collector.closed == 1)

    send("world")
    await send.flush()

    assert send.manager.connection is not first
    assert send.manager.connections_opened == 2
    await collector.wait_for(lambda: len(collector.connections) == 2)
    await collector.wait_for(lambda: bytes(collector.connections[1]) == b"world")
    assert bytes(collector.connections[0]) == b"hello"

    await send.aclose()


@pytest.mark.asyncio
async def test_idle_expiry_on_the_real_clock(collector):
    send = create_sender(collector.host, collector.port, idle_timeout=0.05)
    assert isinstance(send.manager.timebase, MonotonicClock)

    send("tick")
    await send.flush()
    await collector.wait_for(lambda: collector.closed == 1)

    assert send.manager.state is ConnectionState.IDLE


# ============================================================================
# Teardown Tests
# ============================================================================

@pytest.mark.asyncio
async def test_destroy_twice_runs_one_close(collector):
    send = create_sender(collector.host, collector.port)
    send("x")
    await send.flush()

    first = send.destroy()
    second = send.destroy()

    assert first is not None
    assert second is first
    assert send.manager.state is ConnectionState.CLOSING

    await first
    assert send.manager.state is ConnectionState.IDLE
    await collector.wait_for(lambda: collector.closed == 1)
    assert len(collector.connections) == 1


@pytest.mark.asyncio
async def test_destroy_without_connection_is_noop():
    send = create_sender("127.0.0.1", 9)
    assert send.destroy() is None
    assert send.manager.state is ConnectionState.IDLE


@pytest.mark.asyncio
async def test_destroy_flushes_pending_writes_first(collector):
    send = create_sender(collector.host, collector.port)

    send("last words")
    await send.aclose()

    await collector.wait_for(lambda: collector.closed == 1)
    assert collector.received == b"last words"


# ============================================================================
# Error Handling Tests
# ============================================================================

@pytest.mark.asyncio
async def test_failed_write_reports_original_payload_once():
    errors = []
    send = create_sender(
        "collector.invalid", 5140,
        lambda error, data: errors.append((error, data)),
        {"password": "abc"},
        connector=refusing_connector,
    )

    assert await send.submit("payload") is False

    assert len(errors) == 1
    error, data = errors[0]
    assert isinstance(error, ConnectionRefusedError)
    assert data == "payload"

    await send.manager.wait_closed()
    assert send.manager.state is ConnectionState.IDLE


@pytest.mark.asyncio
async def test_failure_without_handler_is_absorbed():
    send = create_sender("collector.invalid", 5140, connector=refusing_connector)

    assert send("dropped") is False
    await send.flush()
    await send.manager.wait_closed()

    assert send.manager.state is ConnectionState.IDLE


@pytest.mark.asyncio
async def test_each_failed_write_reports_once():
    errors = []
    send = create_sender(
        "collector.invalid", 5140,
        lambda error, data: errors.append(data),
        connector=refusing_connector,
    )

    send("one")
    send("two")
    await send.flush()

    assert sorted(errors) == ["one", "two"]


@pytest.mark.asyncio
async def test_next_send_reconnects_after_failure(collector):
    errors = []
    connector = FlakyConnector(failures=1)
    send = create_sender(
        collector.host, collector.port,
        lambda error, data: errors.append(data),
        connector=connector,
    )

    assert await send.submit("lost") is False
    await send.manager.wait_closed()
    assert send.manager.state is ConnectionState.IDLE

    assert await send.submit("found") is True
    assert errors == ["lost"]
    assert connector.calls == 2
    await collector.wait_for(lambda: collector.received == b"found")

    await send.aclose()


@pytest.mark.asyncio
async def test_async_error_handler_is_awaited():
    seen = []

    async def on_error(error, data):
        await asyncio.sleep(0)
        seen.append(data)

    send = create_sender("collector.invalid", 5140, on_error, connector=refusing_connector)

    assert await send.submit("async") is False
    assert seen == ["async"]


@pytest.mark.asyncio
async def test_error_handler_exception_is_logged_not_raised(caplog):
    def on_error(error, data):
        raise ValueError("handler broke")

    send = create_sender("collector.invalid", 5140, on_error, connector=refusing_connector)

    with caplog.at_level(logging.ERROR, logger="sendtcp.sender"):
        assert await send.submit("x") is False

    assert "handler broke" in caplog.text


@pytest.mark.asyncio
async def test_unencodable_payload_reported_without_connecting():
    errors = []
    send = create_sender(
        "127.0.0.1", 9,
        lambda error, data: errors.append((error, data)),
        errors="strict",
    )

    assert await send.submit("naïve") is False

    assert len(errors) == 1
    assert isinstance(errors[0][0], UnicodeEncodeError)
    assert errors[0][1] == "naïve"
    assert send.manager.connections_opened == 0


# ============================================================================
# Sharing Tests
# ============================================================================

@pytest.mark.asyncio
async def test_senders_for_one_destination_share_connection(collector):
    first = create_sender(collector.host, collector.port)
    second = create_sender(collector.host, collector.port, credentials={"password": "k"})

    assert first.manager is second.manager

    first("a;")
    await first.flush()
    second("b;")
    await second.flush()

    await collector.wait_for(lambda: collector.received == b"a;k::b;")
    assert len(collector.connections) == 1

    await first.aclose()


@pytest.mark.asyncio
async def test_senders_for_different_destinations_are_isolated():
    async with Collector() as one, Collector() as two:
        first = create_sender(one.host, one.port)
        second = create_sender(two.host, two.port)
        assert first.manager is not second.manager

        first("to one")
        second("to two")
        await first.flush()
        await second.flush()

        await first.aclose()
        assert first.manager.state is ConnectionState.IDLE
        assert second.manager.state is ConnectionState.OPEN

        await one.wait_for(lambda: one.received == b"to one")
        await two.wait_for(lambda: two.received == b"to two")
        await second.aclose()


@pytest.mark.asyncio
async def test_private_pool_keeps_senders_apart(collector):
    shared = create_sender(collector.host, collector.port)
    private = create_sender(collector.host, collector.port, pool=ConnectionPool())

    assert shared.manager is not private.manager


# ============================================================================
# Exit Hook Tests
# ============================================================================

@pytest.mark.asyncio
async def test_first_send_registers_exit_hook(collector):
    send = create_sender(collector.host, collector.port)

    send("x")
    await send.flush()

    # Already registered by the send above
    assert ensure_shutdown_hook() is False
    await send.aclose()
