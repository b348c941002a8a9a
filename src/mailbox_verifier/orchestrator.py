# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Orchestration of one mailbox verification run.

The orchestrator runs the SMTP phase, waits a short grace period, runs the
IMAP phase and publishes the outcome into the result store after each
phase. Only a failed send fails the test: when the email is sent but its
receipt cannot be confirmed the run still passes, with a message saying so.
A passed run marks the account active in the account store.

Runs are launched as supervised asyncio tasks so the HTTP layer can return
the test id immediately. Unexpected errors are logged from the task's done
callback, and :meth:`TestOrchestrator.shutdown` cancels in-flight runs.

Example:
    Launching a run in the background::

        orchestrator = TestOrchestrator(store, SMTPSender(), ReceivePoller(), accounts=accounts)
        orchestrator.launch(account_id, config, test_id)
"""

from __future__ import annotations

import asyncio
import time
import traceback
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone

from .accounts import AccountStore
from .logger import get_logger
from .models import AccountStatus, MailboxConfig, TestOutcome
from .poller import RECEIVE_TIMEOUT, ReceivePoller, ReceiveReport
from .prometheus import VerifierMetrics
from .result_store import ResultStore
from .smtp_sender import SMTPSender

GRACE_PERIOD = 5.0

PASSED_MESSAGE = "Email configuration test passed! (SMTP send and IMAP receive both verified)"
PARTIAL_MESSAGE = (
    "Email configuration basic test passed! (SMTP send succeeded, but IMAP receipt could not be confirmed)"
)
FAILED_MESSAGE = "Email test failed: {reason}"
CANCELLED_MESSAGE = "Email test cancelled"


class TestOrchestrator:
    """Coordinates sender and poller for each verification run.

    Attributes:
        store: Result store receiving every published state.
        sender: SMTP phase implementation.
        poller: IMAP phase implementation.
        accounts: Account store updated on success, or None.
        metrics: Prometheus collector.
        grace_period: Seconds to wait between send and the first poll.
    """

    __test__ = False  # not a pytest test class

    def __init__(
        self,
        store: ResultStore,
        sender: SMTPSender,
        poller: ReceivePoller,
        *,
        accounts: AccountStore | None = None,
        metrics: VerifierMetrics | None = None,
        grace_period: float = GRACE_PERIOD,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        logger=None,
    ):
        self.store = store
        self.sender = sender
        self.poller = poller
        self.accounts = accounts
        self.metrics = metrics if metrics is not None else VerifierMetrics()
        self.grace_period = grace_period
        self._clock = clock
        self._sleep = sleep
        self.logger = logger or get_logger("TestOrchestrator")
        self._tasks: set[asyncio.Task] = set()

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    # ------------------------------------------------------------ supervision
    def launch(self, account_id: int, config: MailboxConfig, test_id: str) -> asyncio.Task:
        """Start :meth:`run_test` in a supervised background task."""
        task = asyncio.create_task(self.run_test(account_id, config, test_id), name=f"email-test-{test_id}")
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            self.logger.info("Task %s cancelled", task.get_name())
            return
        exc = task.exception()
        if exc is not None:
            self.logger.error("Email test task %s failed: %s", task.get_name(), exc, exc_info=exc)

    async def shutdown(self) -> None:
        """Cancel every in-flight run and wait for it to finish."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # --------------------------------------------------------------- pipeline
    async def run_test(self, account_id: int, config: MailboxConfig, test_id: str) -> None:
        """Run the full send then receive verification for one account.

        All results are published through the result store; nothing is
        returned.
        """
        outcome = TestOutcome.in_progress(test_id)
        await self.store.put(test_id, outcome)
        self.metrics.record_started()
        self.logger.info("[%s] Starting email test for account %s (SMTP + IMAP)", test_id, account_id)
        start = self._clock()

        try:
            try:
                message_id = await self.sender.send(config, test_id)
            except Exception as exc:
                await self._finish_send_failure(outcome, exc, start)
                return

            outcome.details.send_success = True
            outcome.details.message_id = message_id
            outcome.details.sent_at = datetime.now(timezone.utc)
            await self.store.put(test_id, outcome)

            self.logger.info("[%s] Waiting %.0fs for the mail system to process the message", test_id, self.grace_period)
            await self._sleep(self.grace_period)

            report = await self._receive(config, test_id)
            await self._finish_sent(account_id, outcome, report, start)
        except asyncio.CancelledError:
            outcome.success = False
            outcome.message = CANCELLED_MESSAGE
            outcome.details.time_taken_ms = self._elapsed_ms(start)
            await self.store.put(test_id, outcome)
            self.metrics.record_finished("cancelled")
            self.logger.warning("[%s] Email test cancelled", test_id)
            raise

    async def _receive(self, config: MailboxConfig, test_id: str) -> ReceiveReport:
        try:
            return await self.poller.poll(config, test_id)
        except Exception as exc:
            self.logger.exception("[%s] Receive verification crashed: %s", test_id, exc)
            return ReceiveReport(found=False, attempts=0, last_error=str(exc) or exc.__class__.__name__)

    async def _finish_send_failure(self, outcome: TestOutcome, exc: Exception, start: float) -> None:
        reason = getattr(exc, "reason", None) or str(exc) or exc.__class__.__name__
        cause = exc.__cause__ or exc
        outcome.success = False
        outcome.message = FAILED_MESSAGE.format(reason=reason)
        outcome.details.send_error = reason
        outcome.details.send_error_trace = "".join(traceback.format_exception(cause))
        outcome.details.time_taken_ms = self._elapsed_ms(start)
        await self.store.put(outcome.test_id, outcome)
        self.metrics.record_finished("failed")
        self.logger.error("[%s] Email test failed during send: %s", outcome.test_id, reason)

    async def _finish_sent(self, account_id: int, outcome: TestOutcome, report: ReceiveReport, start: float) -> None:
        test_id = outcome.test_id
        outcome.details.receive_success = report.found
        outcome.details.receive_attempts = report.attempts
        outcome.success = True
        if report.found:
            outcome.message = PASSED_MESSAGE
            self.logger.info("[%s] Test passed, send and receive both verified", test_id)
        else:
            outcome.message = PARTIAL_MESSAGE
            outcome.details.receive_error = report.last_error or (
                f"Test email not found within {getattr(self.poller, 'timeout', RECEIVE_TIMEOUT):.0f}s"
            )
            self.logger.info("[%s] Email sent but receipt not confirmed, treating as basic pass", test_id)
        outcome.details.time_taken_ms = self._elapsed_ms(start)

        if self.accounts is not None:
            try:
                await self.accounts.set_status(account_id, AccountStatus.ACTIVE)
            except Exception as exc:
                self.logger.error("[%s] Failed to mark account %s active: %s", test_id, account_id, exc)

        await self.store.put(test_id, outcome)
        self.metrics.record_finished("passed" if report.found else "partial")

    def _elapsed_ms(self, start: float) -> int:
        return int((self._clock() - start) * 1000)


__all__ = [
    "CANCELLED_MESSAGE",
    "GRACE_PERIOD",
    "PARTIAL_MESSAGE",
    "PASSED_MESSAGE",
    "TestOrchestrator",
]
