"""Pytest configuration for sendtcp tests"""

import sys
sys.path.insert(0, "src")

import asyncio
from typing import Callable, List, Optional

import pytest
import pytest_asyncio

from sendtcp.config import _reset_config
from sendtcp.connection import open_tcp_connection
from sendtcp.manager import _clear_connection_pool
from sendtcp.models import Destination
from sendtcp.teardown import _reset_shutdown_hook


@pytest.fixture(autouse=True)
def clear_global_state():
    """Reset the global pool, configured defaults and exit hook after each test.

    Pooled managers bind to the event loop of the test that created them,
    so they must not leak into the next test.
    """
    yield
    _clear_connection_pool()
    _reset_config()
    _reset_shutdown_hook()


async def settle(rounds: int = 5) -> None:
    """Let pending callbacks and freshly woken tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class Collector:
    """In-process TCP server recording the bytes each accepted connection sent."""

    def __init__(self, host: str = "127.0.0.1"):
        self.host = host
        self.port: Optional[int] = None
        self.connections: List[bytearray] = []
        self.closed = 0
        self._server: Optional[asyncio.AbstractServer] = None
        self._writers: List[asyncio.StreamWriter] = []

    @property
    def received(self) -> bytes:
        return b"".join(bytes(c) for c in self.connections)

    @property
    def destination(self) -> Destination:
        return Destination(self.host, self.port)

    async def start(self) -> "Collector":
        self._server = await asyncio.start_server(self._handle, self.host, 0)
        self.port = self._server.sockets[0].getsockname()[1]
        return self

    async def stop(self) -> None:
        self._server.close()
        for writer in self._writers:
            writer.close()
        await asyncio.wait_for(self._server.wait_closed(), timeout=2.0)

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        buf = bytearray()
        self.connections.append(buf)
        self._writers.append(writer)
        try:
            while True:
                chunk = await reader.read(4096)
                if not chunk:
                    break
                buf.extend(chunk)
        except ConnectionResetError:
            pass
        finally:
            self.closed += 1
            writer.close()

    async def wait_for(self, predicate: Callable[[], bool], timeout: float = 2.0) -> None:
        async def poll():
            while not predicate():
                await asyncio.sleep(0.01)

        await asyncio.wait_for(poll(), timeout)

    async def __aenter__(self):
        return await self.start()

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()


@pytest_asyncio.fixture
async def collector():
    """A running collector server on 127.0.0.1."""
    async with Collector() as server:
        yield server


async def refusing_connector(destination: Destination, *, keepalive: bool = True):
    raise ConnectionRefusedError(f"Connection refused by {destination}")


class FlakyConnector:
    """Refuses the first ``failures`` connects, then opens real connections."""

    def __init__(self, failures: int = 1):
        self.failures = failures
        self.calls = 0

    async def __call__(self, destination: Destination, *, keepalive: bool = True):
        self.calls += 1
        if self.calls <= self.failures:
            raise ConnectionRefusedError(f"Connection refused by {destination}")
        return await open_tcp_connection(destination, keepalive=keepalive)


class GatedConnector:
    """Holds every connect until ``gate`` is set."""

    def __init__(self):
        self.gate = asyncio.Event()
        self.calls = 0

    async def __call__(self, destination: Destination, *, keepalive: bool = True):
        self.calls += 1
        await self.gate.wait()
        return await open_tcp_connection(destination, keepalive=keepalive)
