#!/usr/bin/env python3
"""
sendtcp Configuration

Validated sender options plus the process-wide defaults that
``create_sender`` falls back on.
"""

from __future__ import annotations

import codecs
import logging
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


logger = logging.getLogger(__name__)

DEFAULT_IDLE_TIMEOUT = 3.0
DEFAULT_ENCODING = "ascii"
DEFAULT_ERRORS = "replace"


class SenderConfig(BaseModel):
    """
    Options shared by a sender and its connection manager.

    Attributes:
        idle_timeout: Seconds of inactivity before the connection is closed
        encoding: Single-byte text codec used for the wire payload
        errors: Codec error policy for characters the encoding cannot represent
        keepalive: Whether SO_KEEPALIVE is set on new connections
    """
    model_config = ConfigDict(frozen=True)

    idle_timeout: float = Field(default=DEFAULT_IDLE_TIMEOUT, gt=0)
    encoding: str = DEFAULT_ENCODING
    errors: str = DEFAULT_ERRORS
    keepalive: bool = True

    @field_validator("encoding")
    @classmethod
    def _check_encoding(cls, value: str) -> str:
        try:
            codecs.lookup(value)
        except LookupError:
            raise ValueError(f"Unknown encoding: {value!r}")
        # One byte per character, no BOM
        if len("é".encode(value, "replace")) != 1:
            raise ValueError(f"Encoding {value!r} is not a single-byte encoding")
        return value

    @field_validator("errors")
    @classmethod
    def _check_errors(cls, value: str) -> str:
        try:
            codecs.lookup_error(value)
        except LookupError:
            raise ValueError(f"Unknown codec error handler: {value!r}")
        return value

    def merged(self, **overrides: Any) -> "SenderConfig":
        """Return a validated copy with every non-None override applied."""
        updates = {k: v for k, v in overrides.items() if v is not None}
        if not updates:
            return self
        return SenderConfig.model_validate({**self.model_dump(), **updates})


# Global state
_config: Optional[SenderConfig] = None


def configure(
    idle_timeout: float = DEFAULT_IDLE_TIMEOUT,
    encoding: str = DEFAULT_ENCODING,
    errors: str = DEFAULT_ERRORS,
    keepalive: bool = True,
) -> SenderConfig:
    """
    Set the process-wide sender defaults.

    Senders created afterwards use these values for every option they are
    not given explicitly. Existing senders keep their configuration.

    Example:
        ```python
        import sendtcp

        sendtcp.configure(idle_timeout=10.0, encoding="latin-1")
        send = sendtcp.create_sender("collector.local", 5140)
        ```
    """
    global _config

    _config = SenderConfig(
        idle_timeout=idle_timeout,
        encoding=encoding,
        errors=errors,
        keepalive=keepalive,
    )

    logger.info(
        f"sendtcp configured: idle_timeout={idle_timeout}, "
        f"encoding={encoding}, keepalive={keepalive}"
    )
    return _config


def get_config() -> SenderConfig:
    """Get the current process-wide defaults."""
    global _config
    if _config is None:
        _config = SenderConfig()
    return _config


def _reset_config() -> None:
    """Forget configured defaults. Used by the test suite."""
    global _config
    _config = None
