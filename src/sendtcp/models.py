#!/usr/bin/env python3
"""
sendtcp Data Models

Destinations, credentials and connection states shared by the manager and
the senders.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, SecretStr


DEFAULT_DELIMITER = "::"


@dataclass(frozen=True)
class Destination:
    """
    Where a sender's connection goes.

    Hashable so it can key the connection pool.

    Attributes:
        host: Hostname or IP address
        port: TCP port
    """
    host: str
    port: int

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"


class Credentials(BaseModel):
    """
    Shared secret prepended to every outgoing payload.

    The password is kept as a ``SecretStr`` so it never shows up in reprs or
    log messages. Nothing is encrypted or escaped.

    Attributes:
        password: The shared secret (empty disables prefixing)
        delimiter: Separator written between the secret and the data
    """
    model_config = ConfigDict(frozen=True)

    password: SecretStr = SecretStr("")
    delimiter: str = DEFAULT_DELIMITER

    @property
    def enabled(self) -> bool:
        return bool(self.password.get_secret_value())

    def prefix(self, data: str) -> str:
        if not self.enabled:
            return data
        return self.password.get_secret_value() + self.delimiter + data

    @classmethod
    def coerce(
        cls, value: Union["Credentials", Mapping[str, Any], None]
    ) -> Optional["Credentials"]:
        """Accept a Credentials instance, a ``{"password", "delimiter"}`` mapping or None."""
        if value is None or isinstance(value, Credentials):
            return value
        data = dict(value)
        # An explicit None delimiter falls back to the default
        if data.get("delimiter") is None:
            data.pop("delimiter", None)
        if data.get("password") is None:
            data.pop("password", None)
        return cls.model_validate(data)


class ConnectionState(Enum):
    """Lifecycle states of a ConnectionManager."""
    IDLE = auto()
    OPEN = auto()
    CLOSING = auto()
