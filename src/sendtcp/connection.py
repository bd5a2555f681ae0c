#!/usr/bin/env python3
"""
sendtcp Connections

A Connection is the handle the manager hands out. It is usable as soon as it
exists: the TCP connect runs in the background and writes issued before it
finishes are queued behind it, in order. Failures of either the connect or
the write surface on the future returned by ``write``.
"""

from __future__ import annotations

import asyncio
import logging
import socket
from typing import Awaitable, Optional, Protocol, Tuple

from .exceptions import ConnectionAbortedByShutdown, ConnectionClosedError
from .models import Destination


logger = logging.getLogger(__name__)


def failed_future(exc: BaseException) -> asyncio.Future:
    """A future that already holds the given exception."""
    future = asyncio.get_running_loop().create_future()
    future.set_exception(exc)
    return future


class Connector(Protocol):
    """
    Protocol for opening the underlying stream.

    Returns the writer half of an asyncio stream pair. Raising ``OSError``
    reports a failed connect.
    """

    async def __call__(
        self, destination: Destination, *, keepalive: bool = True
    ) -> asyncio.StreamWriter:
        ...


async def open_tcp_connection(
    destination: Destination, *, keepalive: bool = True
) -> asyncio.StreamWriter:
    """
    Default connector: an asyncio TCP stream with SO_KEEPALIVE set.

    Nothing is ever read back; the reader half is dropped.
    """
    _, writer = await asyncio.open_connection(destination.host, destination.port)
    if keepalive:
        sock = writer.get_extra_info("socket")
        if sock is not None:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1)
    return writer


class Connection:
    """
    One outbound stream to a fixed destination.

    ``close()`` ends the stream gracefully: writes already issued are flushed
    before the socket is closed. ``abort()`` drops it immediately.
    """

    def __init__(
        self,
        destination: Destination,
        connector: Connector = open_tcp_connection,
        *,
        keepalive: bool = True,
    ):
        self.destination = destination
        self.closing = False
        self._writer: Optional[asyncio.StreamWriter] = None
        self._backlog = 0
        self._shutdown_task: Optional[asyncio.Task] = None
        self._loop = asyncio.get_running_loop()
        self._ready: asyncio.Task = self._loop.create_task(
            connector(destination, keepalive=keepalive)
        )
        self._ready.add_done_callback(self._on_ready)

    def __repr__(self) -> str:
        if self.closing:
            status = "closing"
        elif self._writer is not None:
            status = "connected"
        else:
            status = "connecting"
        return f"<Connection {self.destination} {status}>"

    @property
    def connected(self) -> bool:
        return self._writer is not None and not self._writer.is_closing()

    def _on_ready(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.debug(f"Connect to {self.destination} failed: {exc!r}")
            return
        self._writer = task.result()
        logger.debug(f"Connected to {self.destination}")

    def write(self, payload: bytes) -> Tuple[bool, Awaitable[None]]:
        """
        Issue a non-blocking write.

        Returns:
            (flushed, completion): ``flushed`` is True when the transport
            buffer was empty right after the write; ``completion`` resolves
            when the write has been handed to the kernel, or raises the
            transport error.
        """
        if self.closing:
            return False, failed_future(
                ConnectionClosedError(f"Connection to {self.destination} is closing")
            )

        writer = self._writer
        if writer is None or self._backlog:
            # Still connecting, or earlier writes are waiting on the connect
            self._backlog += 1
            return False, asyncio.ensure_future(self._write_when_ready(payload))

        try:
            writer.write(payload)
        except RuntimeError as exc:
            # write() after the transport was shut down
            return False, failed_future(ConnectionClosedError(str(exc)))
        except OSError as exc:
            return False, failed_future(exc)
        flushed = writer.transport.get_write_buffer_size() == 0
        return flushed, asyncio.ensure_future(writer.drain())

    async def _write_when_ready(self, payload: bytes) -> None:
        try:
            try:
                writer = await self._ready
            except asyncio.CancelledError:
                if self._ready.cancelled():
                    raise ConnectionAbortedByShutdown(
                        f"Connection to {self.destination} was aborted"
                    )
                raise
            writer.write(payload)
            await writer.drain()
        finally:
            self._backlog -= 1

    def close(self) -> asyncio.Task:
        """Start a graceful close. Repeated calls return the same task."""
        if self._shutdown_task is None:
            self.closing = True
            self._shutdown_task = self._loop.create_task(self._shutdown())
        return self._shutdown_task

    async def wait_closed(self) -> None:
        await self.close()

    async def _shutdown(self) -> None:
        try:
            writer = await self._ready
        except asyncio.CancelledError:
            if self._ready.cancelled():
                return
            raise
        except OSError:
            # Never connected, nothing to close
            return

        try:
            await writer.drain()
        except OSError as exc:
            logger.debug(f"Flush before closing {self.destination} failed: {exc!r}")
        writer.close()
        try:
            await writer.wait_closed()
        except OSError as exc:
            logger.debug(f"Closing {self.destination} reported: {exc!r}")
        logger.debug(f"Closed connection to {self.destination}")

    def abort(self) -> None:
        """Drop the connection immediately, discarding buffered data."""
        self.closing = True
        if not self._ready.done():
            self._ready.cancel()
        elif self._writer is not None:
            self._writer.transport.abort()
