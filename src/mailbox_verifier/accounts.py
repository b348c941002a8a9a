# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""SQLite-backed account store for mailbox accounts.

The verification pipeline only reads the connection settings of an account
and, when a test passes, flips its ``status`` to ``active``. This module
provides that minimal slice of the account table using aiosqlite, supporting
both file-based databases and in-memory databases for testing.

Example:
    Basic usage::

        accounts = AccountStore("/data/mailbox_verifier.db")
        await accounts.init_db()
        account_id = await accounts.add_account({
            "name": "Support",
            "email": "support@example.com",
            "password": "secret",
            "smtp_host": "smtp.example.com", "smtp_port": 465,
            "imap_host": "imap.example.com", "imap_port": 993,
        })
        await accounts.set_status(account_id, AccountStatus.ACTIVE)
"""

from __future__ import annotations

from typing import Any, Dict, List

import aiosqlite

from .models import AccountStatus

_BOOL_COLUMNS = ("smtp_secure", "imap_secure")


class AccountNotFoundError(LookupError):
    """Raised when an account id is not present in the store."""

    def __init__(self, account_id: int | str):
        super().__init__(f"Email account '{account_id}' not found")
        self.account_id = account_id
        self.code = "account_not_found"


class AccountStore:
    """Async SQLite persistence for ``email_accounts`` rows.

    Each operation opens and closes its own connection, making it safe for
    concurrent use by several running tests.

    Attributes:
        db_path: Path to the SQLite database file, or ":memory:".
    """

    def __init__(self, db_path: str = "/data/mailbox_verifier.db"):
        self.db_path = db_path or ":memory:"

    async def init_db(self) -> None:
        """Create the ``email_accounts`` table if missing."""
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                """
                CREATE TABLE IF NOT EXISTS email_accounts (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    email TEXT NOT NULL UNIQUE,
                    password TEXT NOT NULL,
                    imap_host TEXT NOT NULL,
                    imap_port INTEGER NOT NULL,
                    imap_secure INTEGER DEFAULT 1,
                    smtp_host TEXT NOT NULL,
                    smtp_port INTEGER NOT NULL,
                    smtp_secure INTEGER DEFAULT 1,
                    status TEXT DEFAULT 'pending',
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
                """
            )
            await db.commit()

    @staticmethod
    def _decode_row(row: tuple[Any, ...], columns: list[str]) -> Dict[str, Any]:
        account = dict(zip(columns, row))
        for field in _BOOL_COLUMNS:
            if field in account and account[field] is not None:
                account[field] = bool(account[field])
        return account

    async def add_account(self, acc: Dict[str, Any]) -> int:
        """Insert an account and return its id."""
        status = acc.get("status") or AccountStatus.PENDING.value
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                """
                INSERT INTO email_accounts
                (name, email, password, imap_host, imap_port, imap_secure, smtp_host, smtp_port, smtp_secure, status)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    acc.get("name") or acc["email"],
                    acc["email"],
                    acc["password"],
                    acc["imap_host"],
                    int(acc["imap_port"]),
                    1 if acc.get("imap_secure", True) else 0,
                    acc["smtp_host"],
                    int(acc["smtp_port"]),
                    1 if acc.get("smtp_secure", True) else 0,
                    AccountStatus(status).value,
                ),
            )
            await db.commit()
            return int(cursor.lastrowid)

    async def get_account(self, account_id: int) -> Dict[str, Any]:
        """Fetch a single account or raise :class:`AccountNotFoundError`."""
        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute("SELECT * FROM email_accounts WHERE id=?", (account_id,)) as cur:
                row = await cur.fetchone()
                if not row:
                    raise AccountNotFoundError(account_id)
                cols = [c[0] for c in cur.description]
        return self._decode_row(row, cols)

    async def list_accounts(self) -> List[Dict[str, Any]]:
        """Return all accounts without their password."""
        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute(
                """
                SELECT id, name, email, imap_host, imap_port, imap_secure, smtp_host, smtp_port,
                       smtp_secure, status, created_at, updated_at
                FROM email_accounts ORDER BY id
                """
            ) as cur:
                rows = await cur.fetchall()
                cols = [c[0] for c in cur.description]
        return [self._decode_row(row, cols) for row in rows]

    async def delete_account(self, account_id: int) -> bool:
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute("DELETE FROM email_accounts WHERE id=?", (account_id,))
            await db.commit()
            return cursor.rowcount > 0

    async def set_status(self, account_id: int, status: AccountStatus | str) -> bool:
        """Update the status field. Returns False if the account is missing."""
        value = AccountStatus(status).value
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                "UPDATE email_accounts SET status=?, updated_at=CURRENT_TIMESTAMP WHERE id=?",
                (value, account_id),
            )
            await db.commit()
            return cursor.rowcount > 0


__all__ = ["AccountNotFoundError", "AccountStore"]
