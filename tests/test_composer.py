"""Tests for test message composition and SMTP settings."""

import ssl
from datetime import datetime, timezone

from mailbox_verifier.composer import SUBJECT_MARKER, TestMessageComposer, relaxed_tls_context
from mailbox_verifier.models import MailboxConfig


def _config(**overrides):
    values = dict(
        address="support@example.com",
        password="secret",
        smtp_host="smtp.example.com",
        smtp_port=465,
        smtp_secure=True,
        imap_host="imap.example.com",
        imap_port=993,
        imap_secure=True,
    )
    values.update(overrides)
    return MailboxConfig(**values)


def test_subject_contains_marker_and_bracketed_id():
    composer = TestMessageComposer()
    assert composer.subject("test-1-2") == f"{SUBJECT_MARKER} [test-1-2]"
    assert SUBJECT_MARKER == "测试邮件"


def test_build_message_is_self_addressed():
    composer = TestMessageComposer()
    now = datetime(2026, 10, 17, 9, 30, tzinfo=timezone.utc)
    msg = composer.build_message(_config(), "test-1-2", now=now)

    assert msg["From"] == "support@example.com"
    assert msg["To"] == "support@example.com"
    assert msg["Subject"] == "测试邮件 [test-1-2]"
    assert msg["Message-ID"].endswith("@example.com>")
    assert "test-1-2" in msg["Message-ID"]


def test_html_body_embeds_test_id_and_time():
    composer = TestMessageComposer()
    now = datetime(2026, 10, 17, 9, 30, 5)
    msg = composer.build_message(_config(), "test-1-2", now=now.replace(tzinfo=timezone.utc))

    html = msg.get_body(preferencelist=("html",)).get_content()
    assert "Test ID: test-1-2" in html
    assert "2026-10-17 09:30:05" in html
    plain = msg.get_body(preferencelist=("plain",)).get_content()
    assert "test-1-2" in plain


def test_smtp_settings_for_implicit_tls():
    settings = TestMessageComposer(timeout=12).smtp_settings(_config())
    assert settings["hostname"] == "smtp.example.com"
    assert settings["port"] == 465
    assert settings["use_tls"] is True
    assert settings["start_tls"] is False
    assert settings["validate_certs"] is False
    assert settings["timeout"] == 12
    assert "password" not in settings


def test_smtp_settings_for_plain_connection_allow_opportunistic_starttls():
    settings = TestMessageComposer().smtp_settings(_config(smtp_port=587, smtp_secure=False))
    assert settings["use_tls"] is False
    assert settings["start_tls"] is None


def test_relaxed_tls_context_accepts_any_certificate():
    context = relaxed_tls_context()
    assert context.check_hostname is False
    assert context.verify_mode == ssl.CERT_NONE
