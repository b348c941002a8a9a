# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""ASGI application entry point for uvicorn.

This module provides a pre-configured FastAPI application that reads its
settings from ``config.ini`` / ``GMV_*`` environment variables and runs the
MailboxVerifierCore for the lifetime of the server.

Usage:
    uvicorn mailbox_verifier.server:app --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .api import create_app
from .config_loader import load_settings
from .core import MailboxVerifierCore
from .logger import configure_logging

_settings = load_settings()
configure_logging(_settings.log_level)

_core = MailboxVerifierCore(db_path=_settings.db_path)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler - starts and stops the core service."""
    await _core.start()
    yield
    await _core.stop()


app = create_app(_core, api_token=_settings.api_token, lifespan=lifespan)
