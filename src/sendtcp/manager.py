#!/usr/bin/env python3
"""
sendtcp Connection Manager

Owns at most one live connection per destination, the idle-expiry timer that
closes it after a quiet period, and the guard that keeps teardowns from
overlapping.

State machine:
    IDLE    --acquire-->                          OPEN
    OPEN    --idle expiry / release / abort-->    CLOSING --close done--> IDLE

Everything here runs on a single event loop thread, so the ``closing`` flag
is a plain boolean.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, Iterator, List, Optional

from .config import SenderConfig, get_config
from .connection import Connection, Connector, open_tcp_connection
from .models import ConnectionState, Destination
from .timebase import MonotonicClock, Timebase


logger = logging.getLogger(__name__)


class ConnectionManager:
    """
    Get-or-create access to one destination's connection.

    Example:
        ```python
        manager = ConnectionManager(Destination("localhost", 9999))
        connection = manager.acquire()
        flushed, done = connection.write(b"hello")
        await done
        await manager.aclose()
        ```

    Args:
        destination: Where connections are opened
        idle_timeout: Seconds without ``acquire`` before the connection closes
        keepalive: Set SO_KEEPALIVE on new connections
        connector: Opens the underlying stream (defaults to asyncio TCP)
        timebase: Clock the idle timer sleeps on
    """

    def __init__(
        self,
        destination: Destination,
        *,
        idle_timeout: float = 3.0,
        keepalive: bool = True,
        connector: Connector = open_tcp_connection,
        timebase: Optional[Timebase] = None,
    ):
        self.destination = destination
        self.idle_timeout = idle_timeout
        self.keepalive = keepalive
        self.connector = connector
        self.timebase = timebase or MonotonicClock()
        self.connections_opened = 0

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._connection: Optional[Connection] = None
        self._idle_task: Optional[asyncio.Task] = None
        self._teardown_task: Optional[asyncio.Task] = None
        self._retiring: Optional[Connection] = None
        self._closing = False
        self._last_acquire: Optional[float] = None

    @classmethod
    def from_config(
        cls,
        destination: Destination,
        config: Optional[SenderConfig] = None,
        *,
        connector: Optional[Connector] = None,
        timebase: Optional[Timebase] = None,
    ) -> "ConnectionManager":
        config = config or get_config()
        return cls(
            destination,
            idle_timeout=config.idle_timeout,
            keepalive=config.keepalive,
            connector=connector or open_tcp_connection,
            timebase=timebase,
        )

    def __repr__(self) -> str:
        return f"<ConnectionManager {self.destination} {self.state.name}>"

    @property
    def state(self) -> ConnectionState:
        if self._closing:
            return ConnectionState.CLOSING
        if self._connection is not None:
            return ConnectionState.OPEN
        return ConnectionState.IDLE

    @property
    def connection(self) -> Optional[Connection]:
        return self._connection

    @property
    def closing(self) -> bool:
        return self._closing

    @property
    def idle_for(self) -> Optional[float]:
        """Time since the last acquire on the manager's clock, or None if never acquired."""
        if self._last_acquire is None:
            return None
        return self.timebase.now() - self._last_acquire

    # ------------------------------------------------------------------
    # Acquire / release
    # ------------------------------------------------------------------

    def acquire(self) -> Connection:
        """
        Return the open connection, creating it if needed, and re-arm the idle timer.

        Never raises for transport problems: a connection that cannot be
        established fails the writes issued on it.
        """
        self._bind_loop()

        connection = self._connection
        if connection is None or connection.closing:
            connection = Connection(
                self.destination, self.connector, keepalive=self.keepalive
            )
            self._connection = connection
            self.connections_opened += 1
            logger.debug(f"Opening connection to {self.destination}")

        self._last_acquire = self.timebase.now()
        self._rearm_idle_timer()
        return connection

    def release(self, connection: Optional[Connection] = None) -> Optional[asyncio.Task]:
        """
        Close the current connection and return to IDLE.

        A no-op while a teardown is already running (the running teardown is
        returned), when there is no connection, or when ``connection`` is
        given and is no longer the current one. A ``connection`` opened
        while a teardown runs is aborted so the next acquire reconnects.

        Returns:
            The teardown task, or None if there was nothing to close
        """
        if self._closing:
            if (
                connection is not None
                and connection is self._connection
                and connection is not self._retiring
            ):
                # Opened during the running teardown and already failed
                logger.debug(f"Dropping failed connection to {self.destination}")
                self._connection = None
                connection.abort()
            return self._teardown_task

        current = self._connection
        if current is None:
            return None
        if connection is not None and connection is not current:
            return None
        if not self.usable:
            # Its event loop closed underneath it; nothing left to drive a close
            self._connection = None
            self._idle_task = None
            return None

        self._closing = True
        self._cancel_idle_timer()
        self._retiring = current
        logger.debug(f"Releasing connection to {self.destination}")
        current.close()
        self._teardown_task = self._loop.create_task(self._teardown(current))
        return self._teardown_task

    async def _teardown(self, connection: Connection) -> None:
        try:
            await connection.wait_closed()
        finally:
            if self._connection is connection:
                self._connection = None
            self._closing = False
            self._teardown_task = None
            self._retiring = None

    def abort(self) -> None:
        """Synchronously drop the connection. Used on process exit."""
        self._cancel_idle_timer()
        connection = self._connection
        self._connection = None
        if connection is not None:
            logger.debug(f"Aborting connection to {self.destination}")
            connection.abort()
        if self._teardown_task is not None:
            self._teardown_task.cancel()
            self._teardown_task = None
        self._closing = False
        self._retiring = None

    async def wait_closed(self) -> None:
        """Wait for a running teardown, if any."""
        task = self._teardown_task
        if task is not None:
            await asyncio.shield(task)

    async def aclose(self) -> None:
        """Release the connection and wait until it is closed."""
        await self.wait_closed()
        self.release()
        await self.wait_closed()

    @property
    def usable(self) -> bool:
        """False once the event loop this manager is bound to has closed."""
        return self._loop is None or not self._loop.is_closed()

    @property
    def running(self) -> bool:
        """True while the event loop this manager is bound to is running."""
        return self._loop is not None and self._loop.is_running()

    # ------------------------------------------------------------------
    # Idle timer
    # ------------------------------------------------------------------

    def _rearm_idle_timer(self) -> None:
        self._cancel_idle_timer()
        self._idle_task = self._loop.create_task(self._expire_when_idle())

    def _cancel_idle_timer(self) -> None:
        task = self._idle_task
        self._idle_task = None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _expire_when_idle(self) -> None:
        try:
            await self.timebase.sleep(self.idle_timeout)
        except asyncio.CancelledError:
            if self._idle_task is asyncio.current_task():
                # Cancelled by the event loop shutting down, not by a re-arm
                self._idle_task = None
                self.abort()
            raise

        self._idle_task = None
        if self._closing:
            # A fresh connection was opened while the previous one closed
            self._rearm_idle_timer()
            return
        logger.debug(f"Connection to {self.destination} idle for {self.idle_timeout}s")
        self.release()

    # ------------------------------------------------------------------
    # Event loop binding
    # ------------------------------------------------------------------

    def _bind_loop(self) -> None:
        loop = asyncio.get_running_loop()
        if self._loop is loop:
            return
        if self._loop is not None:
            # The previous loop is gone along with its tasks and transports
            logger.debug(f"Rebinding {self.destination} manager to a new event loop")
            self._connection = None
            self._idle_task = None
            self._teardown_task = None
            self._retiring = None
            self._closing = False
        self._loop = loop


class ConnectionPool:
    """
    Registry of connection managers keyed by destination.

    Senders for the same destination share one manager and so one
    connection. Different destinations never share state. The first caller
    to create a destination's manager fixes its options.
    """

    def __init__(self):
        self._managers: Dict[Destination, ConnectionManager] = {}

    def __len__(self) -> int:
        return len(self._managers)

    def __contains__(self, destination: Destination) -> bool:
        return destination in self._managers

    def __iter__(self) -> Iterator[ConnectionManager]:
        return iter(list(self._managers.values()))

    def managers(self) -> List[ConnectionManager]:
        return list(self._managers.values())

    def get(self, destination: Destination) -> Optional[ConnectionManager]:
        return self._managers.get(destination)

    def manager_for(
        self,
        destination: Destination,
        config: Optional[SenderConfig] = None,
        *,
        connector: Optional[Connector] = None,
        timebase: Optional[Timebase] = None,
    ) -> ConnectionManager:
        """Get the destination's manager, creating it from ``config`` if missing."""
        manager = self._managers.get(destination)
        if manager is None:
            manager = ConnectionManager.from_config(
                destination, config, connector=connector, timebase=timebase
            )
            self._managers[destination] = manager
        return manager

    def acquire(self, destination: Destination) -> Connection:
        return self.manager_for(destination).acquire()

    def release(self, destination: Destination) -> Optional[asyncio.Task]:
        manager = self._managers.get(destination)
        if manager is None:
            return None
        return manager.release()

    def abort_all(self) -> None:
        for manager in self:
            if manager.usable:
                manager.abort()
            else:
                logger.debug(f"Skipping {manager.destination}: its event loop is closed")

    async def aclose(self) -> None:
        await asyncio.gather(*(manager.aclose() for manager in self))

    def clear(self) -> None:
        self._managers.clear()


# Global state
_pool: Optional[ConnectionPool] = None


def get_pool() -> ConnectionPool:
    """Get the process-wide connection pool."""
    global _pool
    if _pool is None:
        _pool = ConnectionPool()
    return _pool


def _clear_connection_pool() -> None:
    """Drop every pooled manager. Used by the test suite."""
    global _pool
    _pool = None
