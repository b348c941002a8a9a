# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""IMAP phase of the verification pipeline.

The poller repeatedly opens a fresh IMAP connection to the candidate mailbox,
fetches the messages of the recent lookback window and looks for the tagged
test email. It gives up once the overall timeout has elapsed.

Per-attempt failures (connect, login, select, search, fetch, logout) never
escape: they are logged, remembered as the last error and the loop moves on
to the next attempt. A single attempt never outlives the remaining time
budget, so a hanging server cannot stretch the overall timeout.

Example:
    Waiting for the round trip::

        poller = ReceivePoller()
        found = await poller.verify_received(config, "test-1699999999000-42")
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from .imap.client import IMAPClient
from .logger import get_logger
from .matcher import find_match
from .models import MailboxConfig

RECEIVE_TIMEOUT = 60.0
POLL_INTERVAL = 5.0
LOOKBACK_WINDOW = timedelta(minutes=15)
ATTEMPT_TIMEOUT_FLOOR = 0.1


@dataclass
class ReceiveReport:
    """Summary of one receive verification.

    Attributes:
        found: Whether the test email was found.
        attempts: Number of IMAP attempts made.
        last_error: Text of the last per-attempt error, if any.
        uid: UID of the matching message when found.
    """

    found: bool
    attempts: int
    last_error: str | None = None
    uid: int | None = None


class ReceivePoller:
    """Bounded polling loop over fresh IMAP connections.

    Attributes:
        timeout: Overall wall-clock budget in seconds.
        interval: Sleep between attempts in seconds.
        lookback: Age of the oldest message considered.
        folder: Mailbox folder to scan.
    """

    def __init__(
        self,
        *,
        timeout: float = RECEIVE_TIMEOUT,
        interval: float = POLL_INTERVAL,
        lookback: timedelta = LOOKBACK_WINDOW,
        folder: str = "INBOX",
        client_factory: Callable[..., IMAPClient] = IMAPClient,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        metrics=None,
        logger=None,
    ):
        self.timeout = timeout
        self.interval = interval
        self.lookback = lookback
        self.folder = folder
        self._client_factory = client_factory
        self._clock = clock
        self._sleep = sleep
        self.metrics = metrics
        self.logger = logger or get_logger("ReceivePoller")

    async def verify_received(self, config: MailboxConfig, test_id: str) -> bool:
        """Return True if the test email showed up within the time budget."""
        report = await self.poll(config, test_id)
        return report.found

    async def poll(self, config: MailboxConfig, test_id: str) -> ReceiveReport:
        """Run the polling loop and return its summary. Never raises."""
        start = self._clock()
        attempts = 0
        last_error: str | None = None

        while self._clock() - start < self.timeout:
            attempts += 1
            elapsed = self._clock() - start
            self.logger.info(
                "[%s] Receive check #%d (elapsed %.0fs of %.0fs)", test_id, attempts, elapsed, self.timeout
            )
            if self.metrics is not None:
                self.metrics.record_receive_attempt()
            attempt_timeout = max(self.timeout - elapsed, ATTEMPT_TIMEOUT_FLOOR)
            try:
                uid = await asyncio.wait_for(self._attempt(config, test_id), timeout=attempt_timeout)
            except asyncio.TimeoutError:
                last_error = f"IMAP attempt timed out after {attempt_timeout:.1f}s"
                self.logger.warning("[%s] Receive check #%d failed: %s", test_id, attempts, last_error)
                uid = None
            except Exception as exc:
                last_error = str(exc) or exc.__class__.__name__
                self.logger.warning("[%s] Receive check #%d failed: %s", test_id, attempts, last_error)
                uid = None

            if uid is not None:
                self.logger.info(
                    "[%s] Test email received (uid=%d) after %.0fs", test_id, uid, self._clock() - start
                )
                return ReceiveReport(found=True, attempts=attempts, last_error=last_error, uid=uid)

            if self._clock() - start < self.timeout:
                self.logger.info("[%s] Test email not found yet, retrying in %.0fs", test_id, self.interval)
                await self._sleep(self.interval)

        self.logger.info(
            "[%s] Receive timeout after %.0fs and %d attempts, test email not found", test_id, self.timeout, attempts
        )
        return ReceiveReport(found=False, attempts=attempts, last_error=last_error)

    async def _attempt(self, config: MailboxConfig, test_id: str) -> int | None:
        """One connect, scan and logout cycle. Returns the matching UID."""
        client = self._client_factory(logger=self.logger)
        try:
            self.logger.debug("[%s] Connecting to IMAP %s:%d", test_id, config.imap_host, config.imap_port)
            await client.connect(
                host=config.imap_host,
                port=config.imap_port,
                user=config.address,
                password=config.password,
                use_ssl=config.imap_secure,
            )
            await client.select_folder(self.folder)

            since = datetime.now(timezone.utc) - self.lookback
            messages = await client.fetch_since(since)
            self.logger.debug("[%s] %d messages in the lookback window", test_id, len(messages))

            match = find_match(messages, test_id, logger=self.logger)
            return match.uid if match is not None else None
        finally:
            await client.close()


__all__ = ["ATTEMPT_TIMEOUT_FLOOR", "LOOKBACK_WINDOW", "POLL_INTERVAL", "RECEIVE_TIMEOUT", "ReceivePoller", "ReceiveReport"]
