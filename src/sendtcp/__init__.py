#!/usr/bin/env python3
"""
sendtcp - Fire-and-Forget Text over Persistent TCP Connections

A factory for lightweight senders that ship log lines or metrics to a
collector. The connection is opened on first use, reused by later sends,
closed after a quiet period, and dropped on write failure or process exit.
No acknowledgments, retries or backpressure.

Usage:
    import asyncio
    from sendtcp import create_sender

    def on_error(error, data):
        print(f"could not send {data!r}: {error}")

    async def main():
        send = create_sender("localhost", 9999, on_error)
        send("hello")
        await asyncio.sleep(5)    # idle for longer than 3s: connection closed
        send("world")             # reconnects transparently
        await send.flush()
        await send.aclose()

    asyncio.run(main())

Key Classes:
    Sender - Callable returned by create_sender; send(), submit(), destroy()
    ConnectionManager - Creates, reuses, idles out and tears down one connection
    ConnectionPool - One ConnectionManager per destination
    SenderConfig - Validated options; process defaults via configure()

Adapters:
    TCPTransport - Async record transport (send(data, content_type) / close())
    TCPLineHandler - logging.Handler shipping formatted records as lines
"""

from .config import configure, get_config, SenderConfig
from .models import ConnectionState, Credentials, Destination, DEFAULT_DELIMITER
from .exceptions import SendTCPError, ConnectionClosedError, ConnectionAbortedByShutdown
from .timebase import Timebase, MonotonicClock, ManualClock
from .connection import Connection, Connector, open_tcp_connection
from .manager import ConnectionManager, ConnectionPool, get_pool
from .teardown import ensure_shutdown_hook, run_exit_hook, shutdown
from .sender import Sender, build_payload, create_sender
from .transport import AsyncTransport, TCPTransport
from .handlers import TCPLineHandler


from importlib.metadata import PackageNotFoundError, version as _dist_version

try:
    __version__ = _dist_version("send-tcp")
except PackageNotFoundError:
    __version__ = "0.0.0+dev"


__all__ = [
    # Factory
    'create_sender',
    'Sender',
    'build_payload',

    # Core
    'ConnectionManager',
    'ConnectionPool',
    'get_pool',
    'Connection',
    'Connector',
    'open_tcp_connection',

    # Models
    'ConnectionState',
    'Credentials',
    'Destination',
    'DEFAULT_DELIMITER',

    # Configuration
    'configure',
    'get_config',
    'SenderConfig',

    # Clocks
    'Timebase',
    'MonotonicClock',
    'ManualClock',

    # Shutdown
    'ensure_shutdown_hook',
    'run_exit_hook',
    'shutdown',

    # Exceptions
    'SendTCPError',
    'ConnectionClosedError',
    'ConnectionAbortedByShutdown',

    # Adapters
    'AsyncTransport',
    'TCPTransport',
    'TCPLineHandler',
]
