# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Configuration loader for the mailbox verifier service.

Settings are read from an INI file with environment variables as fallbacks.
The verification timing policy (timeouts, poll interval, lookback window,
eviction delay) is fixed and is not read from the configuration.

Environment variables (all prefixed with GMV_):
    GMV_CONFIG - Path to config.ini file (default: config.ini)
    GMV_LOG_LEVEL - Logging level (default: INFO)
    GMV_DB_PATH - Database path (default: /data/mailbox_verifier.db)
    GMV_HOST - Server host (default: 0.0.0.0)
    GMV_PORT - Server port (default: 8000)
    GMV_API_TOKEN - API authentication token

Example:
    Configuration file format (config.ini)::

        [storage]
        db_path = ~/.mailbox-verifier/accounts.db

        [server]
        host = 127.0.0.1
        port = 8080
        api_token = my-secret-token

        [logging]
        level = DEBUG
"""

from __future__ import annotations

import configparser
import os
from dataclasses import dataclass
from pathlib import Path

from .logger import get_logger

DEFAULT_DB_PATH = "/data/mailbox_verifier.db"

logger = get_logger("ConfigLoader")


@dataclass
class VerifierSettings:
    """Runtime settings of the service.

    Attributes:
        db_path: SQLite database holding the email accounts.
        http_host: Address the API binds to.
        http_port: Port the API listens on.
        api_token: Optional token required in the X-API-Token header.
        log_level: Root logging level name.
    """

    db_path: str = DEFAULT_DB_PATH
    http_host: str = "0.0.0.0"
    http_port: int = 8000
    api_token: str | None = None
    log_level: str = "INFO"


def load_settings(config_path: str | None = None) -> VerifierSettings:
    """Load settings from an INI file, falling back to GMV_* variables.

    A missing file is not an error; every value then comes from the
    environment or the defaults.

    Args:
        config_path: Path of the INI file. Defaults to ``GMV_CONFIG`` or
            ``config.ini``.

    Returns:
        VerifierSettings with resolved values.

    Raises:
        ValueError: If the configured port is not an integer.
    """
    path = Path(config_path or os.getenv("GMV_CONFIG", "config.ini"))
    parser = configparser.ConfigParser()
    if path.exists():
        parser.read(path)
    else:
        logger.debug(f"Config file {path} not found, using environment and defaults")

    def get(section: str, option: str, fallback: str | None = None) -> str | None:
        if parser.has_option(section, option):
            return parser.get(section, option)
        return fallback

    port_value = get("server", "port", os.getenv("GMV_PORT", "8000"))
    try:
        port = int(port_value)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Invalid server port: {port_value!r}") from e

    token = get("server", "api_token", os.getenv("GMV_API_TOKEN"))
    if isinstance(token, str):
        token = token.strip() or None

    return VerifierSettings(
        db_path=os.path.expanduser(get("storage", "db_path", os.getenv("GMV_DB_PATH", DEFAULT_DB_PATH))),
        http_host=get("server", "host", os.getenv("GMV_HOST", "0.0.0.0")),
        http_port=port,
        api_token=token,
        log_level=(get("logging", "level", os.getenv("GMV_LOG_LEVEL", "INFO")) or "INFO").upper(),
    )


__all__ = ["DEFAULT_DB_PATH", "VerifierSettings", "load_settings"]
