#!/usr/bin/env python3
"""
sendtcp Senders

``create_sender`` returns a callable Sender bound to one destination. Calling
it writes a text payload over the destination's pooled connection and returns
immediately; failures are reported later to the optional error handler, never
raised to the caller.

Usage:
    import asyncio
    from sendtcp import create_sender

    def on_error(error, data):
        print(f"dropped {data!r}: {error}")

    async def main():
        send = create_sender("localhost", 9999, on_error, {"password": "abc"})
        send("hello")          # wire payload: b"abc::hello"
        await send.flush()
        await send.aclose()

    asyncio.run(main())
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Mapping, Optional, Set, Tuple, Union

from .config import SenderConfig, get_config
from .connection import Connection, Connector, failed_future
from .manager import ConnectionManager, ConnectionPool, get_pool
from .models import Credentials, Destination
from .teardown import ensure_shutdown_hook
from .timebase import Timebase


logger = logging.getLogger(__name__)

ErrorHandler = Callable[[BaseException, str], Union[None, Awaitable[None]]]


def build_payload(data: str, credentials: Optional[Credentials] = None) -> str:
    """
    Prefix ``data`` with the shared secret and delimiter, if one is configured.

    No escaping is done: a receiver cannot tell a delimiter inside ``data``
    from the credential boundary.
    """
    if credentials is None:
        return data
    return credentials.prefix(data)


class Sender:
    """
    Fire-and-forget text sender for one destination.

    Instances are callable; ``sender(data)`` is ``sender.send(data)``.

    Args:
        destination: Where payloads go
        manager: Connection manager for ``destination``
        error_handler: Called as ``error_handler(error, data)`` once per failed
            write, with the original unprefixed data. May be a coroutine
            function.
        credentials: Optional shared secret prefix
        config: Encoding options (process defaults if omitted)
    """

    def __init__(
        self,
        destination: Destination,
        manager: ConnectionManager,
        *,
        error_handler: Optional[ErrorHandler] = None,
        credentials: Optional[Credentials] = None,
        config: Optional[SenderConfig] = None,
    ):
        self.destination = destination
        self.manager = manager
        self.error_handler = error_handler
        self.credentials = credentials
        self.config = config or get_config()
        self._pending: Set[asyncio.Task] = set()

    def __repr__(self) -> str:
        return f"<Sender {self.destination}>"

    def __call__(self, data: str) -> bool:
        return self.send(data)

    def payload(self, data: str) -> bytes:
        """The exact bytes ``send(data)`` puts on the wire."""
        return build_payload(data, self.credentials).encode(
            self.config.encoding, self.config.errors
        )

    def send(self, data: str) -> bool:
        """
        Write ``data`` without waiting for the outcome.

        Returns:
            True if the bytes went straight to the socket, False if they were
            buffered or are waiting for the connection to open. This is not a
            delivery acknowledgment.
        """
        flushed, _ = self._dispatch(data)
        return flushed

    def submit(self, data: str) -> "asyncio.Task[bool]":
        """
        Write ``data`` and return its outcome as a task.

        The task resolves to True once the write is handed to the kernel, or
        to False after a failure has been handled (connection released, error
        handler called). It never raises for transport errors.
        """
        _, outcome = self._dispatch(data)
        return outcome

    def _dispatch(self, data: str) -> Tuple[bool, "asyncio.Task[bool]"]:
        ensure_shutdown_hook()

        connection: Optional[Connection] = None
        try:
            payload = self.payload(data)
        except UnicodeError as exc:
            flushed = False
            completion: Awaitable[None] = failed_future(exc)
        else:
            connection = self.manager.acquire()
            flushed, completion = connection.write(payload)

        outcome = asyncio.ensure_future(self._settle(connection, completion, data))
        self._pending.add(outcome)
        outcome.add_done_callback(self._pending.discard)
        return flushed, outcome

    async def _settle(
        self,
        connection: Optional[Connection],
        completion: Awaitable[None],
        data: str,
    ) -> bool:
        try:
            await completion
        except (OSError, UnicodeError) as exc:
            logger.warning(f"Write to {self.destination} failed: {exc!r}")
            if connection is not None:
                self.manager.release(connection)
            await self._report(exc, data)
            return False
        return True

    async def _report(self, error: BaseException, data: str) -> None:
        if self.error_handler is None:
            return
        try:
            result = self.error_handler(error, data)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"Error handler for {self.destination} raised: {e!r}")

    @property
    def pending(self) -> int:
        """Writes whose outcome is not known yet."""
        return len(self._pending)

    async def flush(self) -> None:
        """Wait for the outcome of every write issued so far."""
        while self._pending:
            await asyncio.gather(*list(self._pending))

    def destroy(self) -> Optional[asyncio.Task]:
        """Close the connection now, whatever its idle state. Idempotent."""
        return self.manager.release()

    async def aclose(self) -> None:
        """Close the connection and wait for the close to finish."""
        await self.manager.aclose()


def create_sender(
    host: str,
    port: int,
    error_handler: Optional[ErrorHandler] = None,
    credentials: Union[Credentials, Mapping[str, Any], None] = None,
    *,
    idle_timeout: Optional[float] = None,
    encoding: Optional[str] = None,
    errors: Optional[str] = None,
    keepalive: Optional[bool] = None,
    timebase: Optional[Timebase] = None,
    connector: Optional[Connector] = None,
    pool: Optional[ConnectionPool] = None,
) -> Sender:
    """
    Create a Sender for ``host:port``.

    Options left as None fall back to the process defaults set with
    ``sendtcp.configure``. Senders for the same destination in the same pool
    share one connection; the first one to reach the pool decides the
    connection options (idle timeout, keep-alive, connector, clock).

    Args:
        host: Destination host
        port: Destination port
        error_handler: ``(error, data)`` callback for failed writes
        credentials: ``Credentials`` or a ``{"password", "delimiter"}`` mapping
        idle_timeout: Seconds of inactivity before the connection closes
        encoding: Single-byte codec for the payload
        errors: Codec error policy
        keepalive: Set SO_KEEPALIVE on new connections
        timebase: Clock driving the idle timer
        connector: Replacement for the default asyncio TCP connector
        pool: Connection pool to use (the global pool by default)

    Returns:
        A callable Sender
    """
    destination = Destination(host=host, port=int(port))
    config = get_config().merged(
        idle_timeout=idle_timeout,
        encoding=encoding,
        errors=errors,
        keepalive=keepalive,
    )
    if pool is None:
        pool = get_pool()
    manager = pool.manager_for(
        destination, config, connector=connector, timebase=timebase
    )
    return Sender(
        destination,
        manager,
        error_handler=error_handler,
        credentials=Credentials.coerce(credentials),
        config=config,
    )
