"""Logging utilities for the mailbox verifier.

This module provides a centralized logging helper. The actual logging setup
(level, handlers, format) is configured via ``logging.basicConfig()`` in the
entry points (``main.py``, ``server.py``, the CLI) to avoid duplicate handlers.

Example:
    Typical usage in a module::

        from mailbox_verifier.logger import get_logger

        logger = get_logger("ReceivePoller")
        logger.info("[%s] attempt %d", test_id, attempt)
"""

import logging

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def get_logger(name: str = "MailboxVerifier") -> logging.Logger:
    """Retrieve a logger instance.

    Handlers and formatters are not configured here; that responsibility lies
    with the application entry point.

    Args:
        name: The logger name. Defaults to "MailboxVerifier".

    Returns:
        A ``logging.Logger`` instance bound to the given name.
    """
    return logging.getLogger(name)


def configure_logging(level: str = "INFO") -> None:
    """Configure the root logger once for an entry point.

    Args:
        level: Level name such as ``"DEBUG"`` or ``"INFO"``. Unknown names
            fall back to INFO.
    """
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
        force=True,  # Force reconfiguration to avoid duplicate handlers
    )
