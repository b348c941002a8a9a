# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Pydantic models for the mailbox verification pipeline.

This module defines the data models shared by the pipeline components and
the HTTP layer.

Models:
    - AccountStatus: Lifecycle status of a stored mailbox account
    - MailboxConfig: Immutable SMTP/IMAP settings of the mailbox under test
    - TestDetails: Per-phase diagnostics of a verification run
    - TestOutcome: Mutable progress record of a verification run

Outcomes are serialized with camelCase aliases (``sendSuccess``,
``timeTakenMs``...) because polling clients consume them as JSON.
"""

from __future__ import annotations

import secrets
import time
from datetime import datetime
from enum import Enum
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

IN_PROGRESS_MESSAGE = "Email test in progress..."


class AccountStatus(str, Enum):
    """Status values stored in the ``email_accounts.status`` column.

    Attributes:
        ACTIVE: The mailbox passed a verification run.
        PENDING: The mailbox has not been verified yet (default).
        DISABLED: The mailbox was switched off by an operator.
    """

    ACTIVE = "active"
    PENDING = "pending"
    DISABLED = "disabled"


class MailboxConfig(BaseModel):
    """SMTP and IMAP settings of the mailbox under test.

    Treated as an immutable value for the duration of one test. The same
    credential is used for both protocols, and the address is both the
    sender and the recipient of the test email. Values are not range
    checked here; a bad host or port fails in the SMTP phase as a send error.
    """

    model_config = ConfigDict(frozen=True)

    address: Annotated[str, Field(description="Mailbox address, also the login user")]
    password: Annotated[str, Field(description="Password or app token")]
    smtp_host: Annotated[str, Field(description="SMTP server hostname")]
    smtp_port: Annotated[int, Field(description="SMTP server port")]
    smtp_secure: Annotated[bool, Field(default=True, description="Implicit TLS for SMTP")]
    imap_host: Annotated[str, Field(description="IMAP server hostname")]
    imap_port: Annotated[int, Field(description="IMAP server port")]
    imap_secure: Annotated[bool, Field(default=True, description="Implicit TLS for IMAP")]

    @classmethod
    def from_account(cls, account: dict[str, Any]) -> MailboxConfig:
        """Build the candidate configuration from a stored account row."""
        return cls(
            address=account["email"],
            password=account["password"],
            smtp_host=account["smtp_host"],
            smtp_port=int(account["smtp_port"]),
            smtp_secure=bool(account.get("smtp_secure", True)),
            imap_host=account["imap_host"],
            imap_port=int(account["imap_port"]),
            imap_secure=bool(account.get("imap_secure", True)),
        )


class TestDetails(BaseModel):
    """Per-phase diagnostics of a verification run."""

    __test__ = False  # not a pytest test class

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    send_success: bool = False
    receive_success: bool = False
    send_error: str | None = None
    send_error_trace: str | None = None
    receive_error: str | None = None
    receive_attempts: int = 0
    message_id: str | None = None
    sent_at: datetime | None = None
    time_taken_ms: int | None = None


class TestOutcome(BaseModel):
    """Progress record of one verification run, keyed by its test id.

    While the run is in progress ``success`` stays ``False``. The record is
    terminal once ``details.time_taken_ms`` is populated, after which it is
    never mutated again.
    """

    __test__ = False  # not a pytest test class

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    test_id: str
    success: bool = False
    message: str = IN_PROGRESS_MESSAGE
    details: TestDetails = Field(default_factory=TestDetails)

    @classmethod
    def in_progress(cls, test_id: str) -> TestOutcome:
        """Return the initial record published when a test starts."""
        return cls(test_id=test_id)

    @property
    def is_terminal(self) -> bool:
        """True once the run has reached its final state."""
        return self.details.time_taken_ms is not None

    def to_public(self) -> dict[str, Any]:
        """Serialize with camelCase keys for polling clients."""
        return self.model_dump(mode="json", by_alias=True)


def generate_test_id(now: float | None = None) -> str:
    """Create a test identifier such as ``test-1699999999000-42``.

    The identifier embeds the current time in milliseconds and a random
    suffix; callers that keep a registry of live ids re-roll on collision.
    """
    millis = int((time.time() if now is None else now) * 1000)
    return f"test-{millis}-{secrets.randbelow(1_000_000)}"


__all__ = [
    "AccountStatus",
    "IN_PROGRESS_MESSAGE",
    "MailboxConfig",
    "TestDetails",
    "TestOutcome",
    "generate_test_id",
]
