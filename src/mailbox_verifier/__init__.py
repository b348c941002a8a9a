"""Mailbox configuration verification service.

This package proves that a candidate mailbox can both send and receive mail
by running an unattended round trip:

- Composes a uniquely tagged test email and submits it over SMTP to the
  mailbox's own address
- Polls the mailbox over IMAP until the tagged message shows up or the time
  budget runs out
- Publishes live progress into an in-memory result store that clients poll
- Marks the account active in the account store when the test passes
- FastAPI REST API and a command-line interface on top of the same core

Example:
    Basic usage with the FastAPI application::

        from mailbox_verifier.core import MailboxVerifierCore
        from mailbox_verifier.api import create_app

        core = MailboxVerifierCore(db_path="/data/mailbox_verifier.db")
        app = create_app(core, api_token="secret")
"""
