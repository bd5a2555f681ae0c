#!/usr/bin/env python3
"""
sendtcp Transport

An async record transport on top of a Sender, for shippers that hand over
already-encoded records (``send(data: bytes, content_type)`` / ``close()``).
Each record goes out as one terminated text line.
"""

from __future__ import annotations

from typing import Any, Optional, Protocol

from .sender import Sender, create_sender


class AsyncTransport(Protocol):
    """
    Protocol for asynchronous record transports.

    ``send`` must not block the event loop; ``close`` releases resources.
    """

    async def send(self, data: bytes, content_type: str) -> None:
        """
        Send encoded data to the transport destination.

        Args:
            data: The encoded record
            content_type: MIME content type (e.g., "application/json")
        """
        ...

    async def close(self) -> None:
        """Close the transport and release resources."""
        ...


class TCPTransport:
    """
    Ship encoded records to a TCP collector, one line per record.

    Records are fire-and-forget: ``send`` returns as soon as the line is
    queued on the connection. Failures go to the sender's error handler.

    Example:
        ```python
        transport = TCPTransport("collector.local", 5170)
        await transport.send(b'{"event": "started"}', "application/json")
        await transport.close()
        ```

    Args:
        host: Collector host
        port: Collector port
        terminator: Appended to every record
        sender: Use an existing Sender instead of creating one
        **options: Passed to ``create_sender`` (error_handler, credentials, ...)
    """

    def __init__(
        self,
        host: Optional[str] = None,
        port: Optional[int] = None,
        *,
        terminator: str = "\n",
        sender: Optional[Sender] = None,
        **options: Any,
    ):
        if sender is None:
            if host is None or port is None:
                raise TypeError("TCPTransport needs host and port, or a sender")
            sender = create_sender(host, port, **options)
        self.sender = sender
        self.terminator = terminator
        self.records_sent = 0

    async def send(self, data: bytes, content_type: str) -> None:
        """Queue one record on the connection."""
        self.sender.send(data.decode("utf-8") + self.terminator)
        self.records_sent += 1

    async def flush(self) -> None:
        await self.sender.flush()

    async def close(self) -> None:
        """Wait for queued records, then close the connection."""
        await self.sender.flush()
        await self.sender.aclose()

    async def __aenter__(self):
        """Async context manager support."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager support."""
        await self.close()
