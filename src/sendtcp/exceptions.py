#!/usr/bin/env python3
"""
sendtcp-specific exceptions.

All sendtcp exceptions inherit from SendTCPError for easy catching.
"""


class SendTCPError(Exception):
    """Base exception for all sendtcp errors."""


class ConnectionClosedError(SendTCPError, ConnectionError):
    """A write was attempted on a connection that is closing or closed."""


class ConnectionAbortedByShutdown(ConnectionClosedError):
    """The connection was forcibly aborted before the write could complete."""
