"""Server settings read from the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from .transport.serial_connection import DEFAULT_BAUDRATE, DEFAULT_TIMEOUT


@dataclass
class Settings:
    serial_port: Optional[str] = None
    baudrate: int = DEFAULT_BAUDRATE
    timeout: float = DEFAULT_TIMEOUT
    subsystem: Optional[str] = None
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ=None) -> Settings:
        env = os.environ if environ is None else environ
        return cls(
            serial_port=env.get("RSR_SERIAL_PORT") or None,
            baudrate=int(env.get("RSR_BAUDRATE", DEFAULT_BAUDRATE)),
            timeout=float(env.get("RSR_TIMEOUT", DEFAULT_TIMEOUT)),
            subsystem=env.get("RSR_SUBSYSTEM") or None,
            log_level=env.get("RSR_LOG_LEVEL", "INFO").upper(),
        )
