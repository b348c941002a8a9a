# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""In-process, time-limited store of verification outcomes.

The store maps a test identifier to its :class:`TestOutcome`. It has no
persistence: entries live until they are evicted, either by a deletion
scheduled after a client has observed the terminal state, or by the periodic
retention sweep for results nobody ever read.

Every access goes through an asyncio lock and works on deep copies, so a
caller can never mutate the stored record behind the owner's back.

Example:
    Typical lifecycle of one entry::

        store = ResultStore()
        await store.put(test_id, TestOutcome.in_progress(test_id))
        ...
        outcome = await store.get(test_id)
        if outcome is not None and outcome.is_terminal:
            store.schedule_cleanup(test_id, delay=60)
"""

from __future__ import annotations

import asyncio
import time

from .logger import get_logger
from .models import TestOutcome

DEFAULT_CLEANUP_DELAY = 60.0
DEFAULT_RETENTION_SECONDS = 600.0

logger = get_logger("ResultStore")


class ResultStore:
    """Asyncio-compatible key/value map from test id to outcome.

    Attributes:
        retention_seconds: Age after which terminal outcomes are dropped by
            :meth:`sweep` even if no client read them.
        lock: Asyncio lock guarding the entries.
    """

    def __init__(self, retention_seconds: float = DEFAULT_RETENTION_SECONDS):
        self.retention_seconds = retention_seconds
        self.lock = asyncio.Lock()
        self._entries: dict[str, tuple[TestOutcome, float | None]] = {}
        self._pending: dict[str, asyncio.TimerHandle] = {}

    async def put(self, test_id: str, outcome: TestOutcome) -> None:
        """Publish the current state of a test.

        A terminal outcome is timestamped so the retention sweep can age it.
        """
        snapshot = outcome.model_copy(deep=True)
        finished_at = time.monotonic() if snapshot.is_terminal else None
        async with self.lock:
            self._entries[test_id] = (snapshot, finished_at)

    async def get(self, test_id: str) -> TestOutcome | None:
        """Return a copy of the outcome, or None if unknown or evicted."""
        async with self.lock:
            entry = self._entries.get(test_id)
        if entry is None:
            return None
        return entry[0].model_copy(deep=True)

    async def contains(self, test_id: str) -> bool:
        async with self.lock:
            return test_id in self._entries

    async def delete(self, test_id: str) -> bool:
        """Remove an entry unconditionally. Returns True if it existed."""
        async with self.lock:
            removed = self._entries.pop(test_id, None)
        handle = self._pending.pop(test_id, None)
        if handle is not None:
            handle.cancel()
        return removed is not None

    def schedule_cleanup(self, test_id: str, delay: float = DEFAULT_CLEANUP_DELAY) -> bool:
        """Evict a terminal entry after ``delay`` seconds.

        Scheduling is idempotent: while a deletion is pending for the key
        further calls are ignored. The deletion re-checks the entry and never
        drops an outcome that is still in progress.

        Returns:
            True if a new deletion was scheduled.
        """
        if test_id in self._pending:
            return False
        loop = asyncio.get_running_loop()
        self._pending[test_id] = loop.call_later(delay, self._evict_if_terminal, test_id)
        logger.debug("[%s] eviction scheduled in %.1fs", test_id, delay)
        return True

    def _evict_if_terminal(self, test_id: str) -> None:
        self._pending.pop(test_id, None)
        # lock holders never await while holding it, so a loop callback can
        # touch the entries directly
        entry = self._entries.get(test_id)
        if entry is None:
            return
        if not entry[0].is_terminal:
            logger.warning("[%s] eviction skipped, test still in progress", test_id)
            return
        del self._entries[test_id]
        logger.debug("[%s] result evicted", test_id)

    async def sweep(self, now: float | None = None) -> int:
        """Drop terminal outcomes older than the retention period.

        Returns:
            Number of evicted entries.
        """
        now = time.monotonic() if now is None else now
        threshold = now - self.retention_seconds
        async with self.lock:
            expired = [
                test_id
                for test_id, (_outcome, finished_at) in self._entries.items()
                if finished_at is not None and finished_at <= threshold
            ]
            for test_id in expired:
                del self._entries[test_id]
        for test_id in expired:
            handle = self._pending.pop(test_id, None)
            if handle is not None:
                handle.cancel()
        if expired:
            logger.info("Retention sweep evicted %d unread results", len(expired))
        return len(expired)

    def close(self) -> None:
        """Cancel every pending deletion."""
        for handle in self._pending.values():
            handle.cancel()
        self._pending.clear()

    def __len__(self) -> int:
        return len(self._entries)


__all__ = ["DEFAULT_CLEANUP_DELAY", "DEFAULT_RETENTION_SECONDS", "ResultStore"]
