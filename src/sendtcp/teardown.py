#!/usr/bin/env python3
"""
sendtcp Teardown

Two ways to make sure pooled connections do not outlive the program:

- ``ensure_shutdown_hook()`` registers, once per process, an exit handler
  that aborts every connection whose event loop can still act on it. The
  handler itself runs at most once.
- ``shutdown()`` is the explicit, graceful routine for an application's
  top-level teardown: it releases every pooled connection and waits for the
  closes to finish.
"""

from __future__ import annotations

import atexit
import logging
from typing import Optional

from .manager import ConnectionPool, get_pool


logger = logging.getLogger(__name__)

# Global state
_hook_registered = False
_hook_ran = False


def ensure_shutdown_hook() -> bool:
    """
    Register the process exit handler if it is not registered yet.

    Returns:
        True if this call registered it
    """
    global _hook_registered
    if _hook_registered:
        return False
    atexit.register(run_exit_hook)
    _hook_registered = True
    logger.debug("Registered sendtcp exit hook")
    return True


def run_exit_hook() -> None:
    """Abort every pooled connection. Only the first call does anything."""
    global _hook_ran
    if _hook_ran:
        return
    _hook_ran = True
    logger.debug("Process exiting, aborting pooled connections")
    get_pool().abort_all()


async def shutdown(pool: Optional[ConnectionPool] = None) -> None:
    """Gracefully close every connection in ``pool`` (the global pool by default)."""
    if pool is None:
        pool = get_pool()
    logger.debug(f"Shutting down {len(pool)} connection manager(s)")
    await pool.aclose()


def _reset_shutdown_hook() -> None:
    """Unregister the exit handler and clear its flags. Used by the test suite."""
    global _hook_registered, _hook_ran
    if _hook_registered:
        atexit.unregister(run_exit_hook)
    _hook_registered = False
    _hook_ran = False
