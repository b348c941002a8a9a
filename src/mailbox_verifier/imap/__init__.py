# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""IMAP client module for receive verification."""

from .client import FetchedMessage, IMAPClient

__all__ = ["FetchedMessage", "IMAPClient"]
