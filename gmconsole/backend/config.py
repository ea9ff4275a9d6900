"""Configuration helpers for backend runtime."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@dataclass(frozen=True)
class BackendSettings:
    server_salt: str
    database_url: str | None
    host: str
    port: int
    gm_token: str | None
    notes_debounce_ms: int
    log_level: str


def load_settings() -> BackendSettings:
    port_raw = os.getenv("GMCONSOLE_PORT", "8000")
    debounce_raw = os.getenv("GMCONSOLE_NOTES_DEBOUNCE_MS", "500")
    return BackendSettings(
        server_salt=os.getenv("GMCONSOLE_SERVER_SALT", "dev-salt"),
        database_url=os.getenv("GMCONSOLE_DATABASE_URL") or None,
        host=os.getenv("GMCONSOLE_HOST", "127.0.0.1"),
        port=int(port_raw),
        gm_token=os.getenv("GMCONSOLE_GM_TOKEN") or None,
        notes_debounce_ms=int(debounce_raw),
        log_level=os.getenv("GMCONSOLE_LOG_LEVEL", "INFO").upper(),
    )


def configure_logging(level: str = "INFO") -> None:
    """Install the console log format once; later calls only adjust the level."""
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=level, format=LOG_FORMAT)
    root.setLevel(level)
