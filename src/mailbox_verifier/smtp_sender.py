# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""SMTP phase of the verification pipeline.

The sender connects to the candidate SMTP endpoint, authenticates with the
mailbox credential and submits the composed test email to the mailbox's own
address. Any connection, TLS, authentication or protocol failure is raised as
:class:`SendError`, which ends the test as failed.

Example:
    Sending a test email::

        sender = SMTPSender()
        try:
            message_id = await sender.send(config, "test-1699999999000-42")
        except SendError as exc:
            print(exc.reason)
"""

from __future__ import annotations

import asyncio

import aiosmtplib

from .composer import TestMessageComposer
from .logger import get_logger
from .models import MailboxConfig

CONNECT_TIMEOUT = 45.0


class SendError(RuntimeError):
    """Raised when the test email cannot be submitted.

    Attributes:
        reason: Text of the underlying transport error, recorded verbatim in
            the test outcome.
        code: ``send_failed`` for every SMTP-phase failure.
    """

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason
        self.code = "send_failed"


class SMTPSender:
    """Submits the self-addressed test email with aiosmtplib.

    Attributes:
        composer: Builds the message and the client settings.
        connect_timeout: Upper bound in seconds for connect plus login, on
            top of aiosmtplib's own socket timeout.
    """

    def __init__(
        self,
        composer: TestMessageComposer | None = None,
        *,
        connect_timeout: float = CONNECT_TIMEOUT,
        logger=None,
    ):
        self.composer = composer or TestMessageComposer()
        self.connect_timeout = connect_timeout
        self.logger = logger or get_logger("SMTPSender")

    async def send(self, config: MailboxConfig, test_id: str) -> str:
        """Send the test email and return its message id.

        Args:
            config: Candidate mailbox settings.
            test_id: Identifier embedded in subject and body.

        Returns:
            The ``Message-ID`` of the submitted email. May be an empty string.

        Raises:
            ValueError: If ``test_id`` is empty.
            SendError: On any transport, TLS or authentication failure.
        """
        if not test_id:
            raise ValueError("test_id must not be empty")

        self.logger.info(
            "[%s] Sending test email via %s:%d (secure=%s) as %s",
            test_id, config.smtp_host, config.smtp_port, config.smtp_secure, config.address,
        )
        message = self.composer.build_message(config, test_id)
        smtp = aiosmtplib.SMTP(**self.composer.smtp_settings(config))

        async def _do_connect():
            await smtp.connect()
            await smtp.login(config.address, config.password)

        try:
            await asyncio.wait_for(_do_connect(), timeout=self.connect_timeout)
            await smtp.send_message(message, sender=config.address, recipients=[config.address])
        except (aiosmtplib.SMTPException, OSError, asyncio.TimeoutError) as exc:
            reason = str(exc) or exc.__class__.__name__
            self.logger.error("[%s] SMTP send failed: %s", test_id, reason)
            raise SendError(reason) from exc
        finally:
            if smtp.is_connected:
                try:
                    await smtp.quit()
                except (aiosmtplib.SMTPException, OSError):
                    smtp.close()

        message_id = message.get("Message-ID", "") or ""
        self.logger.info("[%s] Test email sent, messageId: %s", test_id, message_id)
        return message_id


__all__ = ["SMTPSender", "SendError"]
