# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Test message composition and SMTP transport settings.

The composer embeds the test identifier in both the subject and the HTML body
of a self-addressed email, and derives the aiosmtplib client settings from
the candidate mailbox configuration. Composition is pure: no I/O happens
here.

Mail servers under test frequently run with self-signed certificates, so the
TLS context built here accepts any certificate.
"""

from __future__ import annotations

import ssl
from datetime import datetime
from email.message import EmailMessage
from email.utils import format_datetime, make_msgid
from typing import Any

from .models import MailboxConfig

SUBJECT_MARKER = "测试邮件"
SMTP_TIMEOUT = 30.0


def relaxed_tls_context() -> ssl.SSLContext:
    """Return a client TLS context that accepts self-signed certificates."""
    context = ssl.create_default_context()
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE
    return context


class TestMessageComposer:
    """Builds the tagged test email and the SMTP client settings."""

    __test__ = False  # not a pytest test class

    def __init__(self, marker: str = SUBJECT_MARKER, timeout: float = SMTP_TIMEOUT):
        self.marker = marker
        self.timeout = timeout

    def subject(self, test_id: str) -> str:
        return f"{self.marker} [{test_id}]"

    def html_body(self, test_id: str, now: datetime | None = None) -> str:
        now = now or datetime.now().astimezone()
        return (
            "<div>\n"
            "  <h2>This is a test email</h2>\n"
            f"  <p>Test ID: {test_id}</p>\n"
            f"  <p>Time: {now.strftime('%Y-%m-%d %H:%M:%S')}</p>\n"
            "  <p>This message verifies that your mailbox configuration is correct.</p>\n"
            "</div>\n"
        )

    def build_message(self, config: MailboxConfig, test_id: str, now: datetime | None = None) -> EmailMessage:
        """Build the self-addressed test email.

        The ``Message-ID`` header is generated here so the sender can report
        it as the transport message id.
        """
        now = now or datetime.now().astimezone()
        domain = config.address.rpartition("@")[2] or None
        msg = EmailMessage()
        msg["From"] = config.address
        msg["To"] = config.address
        msg["Subject"] = self.subject(test_id)
        msg["Date"] = format_datetime(now)
        msg["Message-ID"] = make_msgid(idstring=test_id, domain=domain)
        msg.set_content(f"Test ID: {test_id}\n")
        msg.add_alternative(self.html_body(test_id, now), subtype="html")
        return msg

    def smtp_settings(self, config: MailboxConfig) -> dict[str, Any]:
        """Keyword arguments for ``aiosmtplib.SMTP`` bound to the candidate.

        Secure mailboxes use implicit TLS. Otherwise the client connects in
        plain text and upgrades with STARTTLS when the server offers it.
        """
        return {
            "hostname": config.smtp_host,
            "port": config.smtp_port,
            "use_tls": config.smtp_secure,
            "start_tls": False if config.smtp_secure else None,
            "validate_certs": False,
            "tls_context": relaxed_tls_context(),
            "timeout": self.timeout,
        }


__all__ = ["SUBJECT_MARKER", "TestMessageComposer", "relaxed_tls_context"]
