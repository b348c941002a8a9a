# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Async IMAP client wrapper for receive verification."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from email import message_from_bytes
from email.header import decode_header, make_header
from email.utils import parsedate_to_datetime
from typing import TYPE_CHECKING

import aioimaplib

from ..composer import relaxed_tls_context

if TYPE_CHECKING:
    from logging import Logger

_FETCH_LINE = re.compile(rb"^\d+ FETCH ")
SEARCH_SLACK = timedelta(days=1)


@dataclass
class FetchedMessage:
    """A message fetched from the mailbox with its envelope fields decoded."""

    uid: int
    subject: str
    date: datetime | None
    source: bytes

    @property
    def source_text(self) -> str:
        return self.source.decode("utf-8", errors="replace")

    @classmethod
    def from_raw(cls, uid: int, raw: bytes) -> FetchedMessage:
        """Parse subject and date out of an RFC822 message source."""
        parsed = message_from_bytes(raw)
        subject = ""
        raw_subject = parsed.get("Subject")
        if raw_subject is not None:
            try:
                subject = str(make_header(decode_header(raw_subject)))
            except (LookupError, ValueError, UnicodeDecodeError):
                subject = str(raw_subject)
        date = None
        raw_date = parsed.get("Date")
        if raw_date:
            try:
                date = parsedate_to_datetime(raw_date)
            except (TypeError, ValueError):
                date = None
            if date is not None and date.tzinfo is None:
                date = date.replace(tzinfo=timezone.utc)
        return cls(uid=uid, subject=subject, date=date, source=raw)


def imap_date(value: datetime) -> str:
    """Format a date for IMAP SEARCH criteria (``17-Oct-2026``)."""
    months = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")
    return f"{value.day:02d}-{months[value.month - 1]}-{value.year}"


class IMAPClient:
    """Async IMAP client wrapper using aioimaplib.

    ``close()`` is idempotent: the connection is logged out at most once.
    """

    def __init__(self, logger: Logger | None = None, timeout: float = 30.0):
        self._client: aioimaplib.IMAP4_SSL | aioimaplib.IMAP4 | None = None
        self._logger = logger
        self._timeout = timeout

    @property
    def connected(self) -> bool:
        return self._client is not None

    async def connect(
        self,
        host: str,
        port: int,
        user: str,
        password: str,
        use_ssl: bool = True,
    ) -> None:
        """Connect and authenticate to IMAP server.

        TLS connections accept self-signed certificates.
        """
        if use_ssl:
            self._client = aioimaplib.IMAP4_SSL(
                host=host, port=port, ssl_context=relaxed_tls_context(), timeout=self._timeout
            )
        else:
            self._client = aioimaplib.IMAP4(host=host, port=port, timeout=self._timeout)

        await self._client.wait_hello_from_server()
        response = await self._client.login(user, password)
        if response.result != "OK":
            raise ConnectionError(f"IMAP login failed: {response.lines}")

        if self._logger:
            self._logger.debug("IMAP connected to %s:%d as %s", host, port, user)

    async def select_folder(self, folder: str = "INBOX") -> None:
        """Select mailbox folder."""
        if not self._client:
            raise RuntimeError("Not connected")

        response = await self._client.select(folder)
        if response.result != "OK":
            raise RuntimeError(f"Failed to select folder {folder}: {response.lines}")

    async def fetch_since(self, since: datetime) -> list[FetchedMessage]:
        """Fetch the messages dated on or after ``since``.

        IMAP ``SEARCH SINCE`` only has day granularity, so the server result
        is narrowed client-side on the ``Date`` header. Messages without a
        parseable date are kept. The server search starts one day early because
        servers compare dates in their own timezone.
        """
        if not self._client:
            raise RuntimeError("Not connected")

        search_day = imap_date(since - SEARCH_SLACK)
        response = await self._client.uid_search(f"SINCE {search_day}")
        if response.result != "OK":
            raise RuntimeError(f"IMAP search failed: {response.lines}")

        uids: list[int] = []
        for line in response.lines:
            if isinstance(line, (bytes, bytearray)):
                line = bytes(line).decode("utf-8", errors="replace")
            for uid_str in line.split():
                if uid_str.isdigit():
                    uids.append(int(uid_str))

        if self._logger:
            self._logger.debug("SEARCH SINCE %s returned %d messages", search_day, len(uids))

        messages: list[FetchedMessage] = []
        for uid in uids:
            response = await self._client.uid("fetch", str(uid), "(RFC822)")
            if response.result != "OK":
                if self._logger:
                    self._logger.debug("FETCH of UID %d failed: %s", uid, response.lines)
                continue
            raw = self._extract_literal(response.lines)
            if raw is None:
                continue
            message = FetchedMessage.from_raw(uid, raw)
            if message.date is not None and message.date < since:
                continue
            messages.append(message)
        return messages

    @staticmethod
    def _extract_literal(lines: list) -> bytes | None:
        # aioimaplib returns the RFC822 literal as bytearray, protocol lines as bytes
        for item in lines:
            if isinstance(item, bytearray) and item:
                return bytes(item)
        for item in lines:
            if isinstance(item, bytes) and item and not _FETCH_LINE.match(item) and b"\n" in item:
                return item
        return None

    async def close(self) -> None:
        """Close IMAP connection."""
        client, self._client = self._client, None
        if client is None:
            return
        try:
            await client.logout()
        except Exception as exc:
            if self._logger:
                self._logger.debug("IMAP logout failed: %s", exc)
        if self._logger:
            self._logger.debug("IMAP connection closed")


__all__ = ["SEARCH_SLACK", "FetchedMessage", "IMAPClient", "imap_date"]
