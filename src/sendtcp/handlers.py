#!/usr/bin/env python3
"""
sendtcp Logging Handler

Ship formatted log lines to a TCP collector from inside an asyncio
application.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from .sender import Sender, create_sender


class TCPLineHandler(logging.Handler):
    """
    logging.Handler that sends each formatted record as one line.

    ``emit`` must run on the event loop thread. Emitting anywhere else, or
    any other failure while emitting, is reported through
    ``Handler.handleError`` like every other standard handler.
    Records from the ``sendtcp`` loggers are never shipped, so a handler on
    the root logger does not feed its own failure warnings back to itself.

    Example:
        ```python
        handler = TCPLineHandler("collector.local", 5140)
        handler.setFormatter(logging.Formatter("%(levelname)s %(name)s %(message)s"))
        logging.getLogger("app").addHandler(handler)
        ```
    """

    terminator = "\n"

    def __init__(
        self,
        host: Optional[str] = None,
        port: Optional[int] = None,
        *,
        level: int = logging.NOTSET,
        sender: Optional[Sender] = None,
        **options: Any,
    ):
        super().__init__(level)
        if sender is None:
            if host is None or port is None:
                raise TypeError("TCPLineHandler needs host and port, or a sender")
            sender = create_sender(host, port, **options)
        self.sender = sender

    def emit(self, record: logging.LogRecord) -> None:
        if record.name == "sendtcp" or record.name.startswith("sendtcp."):
            # Our own failure warnings would trigger another send
            return
        try:
            self.sender.send(self.format(record) + self.terminator)
        except Exception:
            self.handleError(record)

    def close(self) -> None:
        manager = self.sender.manager
        if manager.running:
            self.sender.destroy()
        elif manager.usable:
            # Loop stopped but not closed: nothing will drive a graceful close
            manager.abort()
        super().close()
