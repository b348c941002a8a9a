# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Matching of fetched mailbox messages against a test identifier.

Mail providers rewrite subjects and re-encode bodies on the way back, so a
message counts as the round-tripped test email if any of three heuristics
holds:

- the decoded subject contains the raw test id,
- the raw message source contains the raw test id,
- the subject contains the marker phrase and the bracketed test id.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timezone

from .composer import SUBJECT_MARKER
from .imap.client import FetchedMessage

_EPOCH = datetime.fromtimestamp(0, tz=timezone.utc)


@dataclass(frozen=True)
class MatchResult:
    subject_match: bool
    content_match: bool
    combined_match: bool

    @property
    def matched(self) -> bool:
        return self.subject_match or self.content_match or self.combined_match


def evaluate(message: FetchedMessage, test_id: str, marker: str = SUBJECT_MARKER) -> MatchResult:
    """Evaluate every heuristic for one message."""
    subject = message.subject or ""
    return MatchResult(
        subject_match=test_id in subject,
        content_match=test_id in message.source_text,
        combined_match=marker in subject and f"[{test_id}]" in subject,
    )


def most_recent_first(messages: Iterable[FetchedMessage]) -> list[FetchedMessage]:
    """Sort by envelope date, newest first. Undated messages go last."""
    return sorted(messages, key=lambda m: m.date or _EPOCH, reverse=True)


def find_match(
    messages: Iterable[FetchedMessage],
    test_id: str,
    marker: str = SUBJECT_MARKER,
    logger=None,
) -> FetchedMessage | None:
    """Return the first matching message in most-recent-first order."""
    for message in most_recent_first(messages):
        result = evaluate(message, test_id, marker)
        if logger:
            logger.debug(
                "[%s] uid=%s subject=%r subject=%s content=%s combined=%s",
                test_id, message.uid, message.subject,
                result.subject_match, result.content_match, result.combined_match,
            )
        if result.matched:
            return message
    return None


__all__ = ["MatchResult", "evaluate", "find_match", "most_recent_first"]
