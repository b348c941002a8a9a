# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Core service object for the mailbox verifier.

This module provides :class:`MailboxVerifierCore`, which owns every
collaborator of the verification pipeline (result store, account store,
orchestrator, metrics) and exposes a command-based API used by the HTTP
layer and the CLI:

- ``startTest``: create a test id and launch the pipeline in the background
- ``getTestResult``: read the current outcome, scheduling eviction once the
  outcome is terminal
- ``addAccount``, ``getAccount``, ``listAccounts``, ``deleteAccount``:
  minimal account management

Example:
    Running the service::

        core = MailboxVerifierCore(db_path="/data/mailbox_verifier.db")
        await core.start()
        result = await core.handle_command("startTest", {"account_id": 1})
        ...
        await core.stop()
"""

from __future__ import annotations

import asyncio
from typing import Any

from .accounts import AccountNotFoundError, AccountStore
from .logger import get_logger
from .models import MailboxConfig, TestOutcome, generate_test_id
from .orchestrator import TestOrchestrator
from .poller import ReceivePoller
from .prometheus import VerifierMetrics
from .result_store import DEFAULT_CLEANUP_DELAY, DEFAULT_RETENTION_SECONDS, ResultStore
from .smtp_sender import SMTPSender

SWEEP_INTERVAL = 60.0


class MailboxVerifierCore:
    """Entry point wiring the verification pipeline together.

    Attributes:
        accounts: Account store backed by SQLite.
        results: In-memory result store shared by runs and readers.
        metrics: Prometheus metrics collector.
        orchestrator: Launches and supervises verification runs.
        cleanup_delay: Seconds a terminal outcome stays readable after a
            client first observed it.
    """

    def __init__(
        self,
        *,
        db_path: str | None = "/data/mailbox_verifier.db",
        sender: SMTPSender | None = None,
        poller: ReceivePoller | None = None,
        metrics: VerifierMetrics | None = None,
        results: ResultStore | None = None,
        cleanup_delay: float = DEFAULT_CLEANUP_DELAY,
        retention_seconds: float = DEFAULT_RETENTION_SECONDS,
        sweep_interval: float = SWEEP_INTERVAL,
        grace_period: float | None = None,
        logger=None,
    ):
        """Initialize the core with its collaborators.

        Args:
            db_path: SQLite database path for the account store.
            sender: SMTP phase implementation. Defaults to :class:`SMTPSender`.
            poller: IMAP phase implementation. Defaults to :class:`ReceivePoller`.
            metrics: Prometheus collector. A new one is created if omitted.
            results: Result store. A new one is created if omitted.
            cleanup_delay: Eviction delay after a terminal outcome is read.
            retention_seconds: Age after which unread terminal outcomes are
                swept.
            sweep_interval: Seconds between retention sweeps.
            grace_period: Override of the wait between send and receive.
            logger: Custom logger instance.
        """
        self.logger = logger or get_logger()
        self.accounts = AccountStore(db_path or ":memory:")
        self.results = results if results is not None else ResultStore(retention_seconds=retention_seconds)
        self.metrics = metrics if metrics is not None else VerifierMetrics()
        orchestrator_kwargs: dict[str, Any] = {}
        if grace_period is not None:
            orchestrator_kwargs["grace_period"] = grace_period
        self.orchestrator = TestOrchestrator(
            self.results,
            sender if sender is not None else SMTPSender(),
            poller if poller is not None else ReceivePoller(metrics=self.metrics),
            accounts=self.accounts,
            metrics=self.metrics,
            **orchestrator_kwargs,
        )
        self.cleanup_delay = cleanup_delay
        self._sweep_interval = sweep_interval
        self._stop = asyncio.Event()
        self._task_sweep: asyncio.Task | None = None

    async def init(self) -> None:
        """Initialize the account store schema."""
        await self.accounts.init_db()

    async def start(self) -> None:
        """Initialize storage and start the retention sweep loop."""
        await self.init()
        self._stop.clear()
        self._task_sweep = asyncio.create_task(self._sweep_loop(), name="result-sweep-loop")
        self.logger.debug("Mailbox verifier started")

    async def stop(self) -> None:
        """Cancel in-flight tests and stop background tasks."""
        self._stop.set()
        await self.orchestrator.shutdown()
        if self._task_sweep:
            await asyncio.gather(self._task_sweep, return_exceptions=True)
            self._task_sweep = None
        self.results.close()
        self.logger.debug("Mailbox verifier stopped")

    async def _sweep_loop(self) -> None:
        while not self._stop.is_set():
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self._sweep_interval)
            except asyncio.TimeoutError:
                pass
            if self._stop.is_set():
                break
            try:
                await self.results.sweep()
            except Exception as exc:  # pragma: no cover
                self.logger.exception("Unhandled error in result sweep loop: %s", exc)

    # ---------------------------------------------------------------- commands
    async def handle_command(self, cmd: str, payload: dict[str, Any] | None = None) -> dict[str, Any]:
        """Execute an external command.

        Args:
            cmd: Command name to execute.
            payload: Command-specific parameters.

        Returns:
            dict: Command result with ``ok`` status and command-specific data.
        """
        payload = payload or {}
        match cmd:
            case "startTest":
                return await self.start_test(payload.get("account_id"))
            case "getTestResult":
                return await self.get_test_result(payload.get("test_id"))
            case "addAccount":
                account_id = await self.accounts.add_account(payload)
                return {"ok": True, "id": account_id}
            case "getAccount":
                try:
                    account = await self.accounts.get_account(payload.get("id"))
                except AccountNotFoundError as exc:
                    return {"ok": False, "error": str(exc)}
                account.pop("password", None)
                return {"ok": True, "account": account}
            case "listAccounts":
                accounts = await self.accounts.list_accounts()
                return {"ok": True, "accounts": accounts}
            case "deleteAccount":
                deleted = await self.accounts.delete_account(payload.get("id"))
                if deleted:
                    return {"ok": True}
                return {"ok": False, "error": "account not found"}
            case _:
                return {"ok": False, "error": "unknown command"}

    async def new_test_id(self) -> str:
        """Generate a test id that no live outcome uses."""
        test_id = generate_test_id()
        while await self.results.contains(test_id):
            test_id = generate_test_id()
        return test_id

    async def start_test(self, account_id: int | None) -> dict[str, Any]:
        """Create a test id and launch the pipeline without waiting for it.

        The in-progress outcome is published before returning, so a client
        polling right away never sees "not found" for a fresh id.
        """
        try:
            account = await self.accounts.get_account(account_id)
        except AccountNotFoundError as exc:
            return {"ok": False, "error": str(exc)}
        config = MailboxConfig.from_account(account)
        test_id = await self.new_test_id()
        initial = TestOutcome.in_progress(test_id)
        await self.results.put(test_id, initial)
        self.orchestrator.launch(account["id"], config, test_id)
        self.logger.info("[%s] Email test started for account %s", test_id, account["id"])
        return {"ok": True, "testId": test_id, "result": initial}

    async def get_test_result(self, test_id: str | None) -> dict[str, Any]:
        """Return the current outcome of a test.

        Observing a terminal outcome schedules its eviction after
        ``cleanup_delay`` seconds.
        """
        if not test_id:
            return {"ok": False, "error": "test id required"}
        outcome = await self.results.get(test_id)
        if outcome is None:
            return {"ok": False, "error": "test result not found or expired"}
        if outcome.is_terminal:
            self.results.schedule_cleanup(test_id, self.cleanup_delay)
        return {"ok": True, "result": outcome}

    async def run_test_now(self, account_id: int) -> TestOutcome:
        """Run the pipeline in the foreground and return the final outcome.

        Used by the CLI, where there is no polling client.
        """
        account = await self.accounts.get_account(account_id)
        config = MailboxConfig.from_account(account)
        test_id = await self.new_test_id()
        await self.orchestrator.run_test(account["id"], config, test_id)
        outcome = await self.results.get(test_id)
        await self.results.delete(test_id)
        return outcome
