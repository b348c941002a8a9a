import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from prometheus_client import CollectorRegistry

from mailbox_verifier.core import MailboxVerifierCore
from mailbox_verifier.models import TestOutcome
from mailbox_verifier.orchestrator import PASSED_MESSAGE
from mailbox_verifier.poller import ReceiveReport
from mailbox_verifier.prometheus import VerifierMetrics
from mailbox_verifier.result_store import ResultStore
from mailbox_verifier.smtp_sender import SMTPSender


class DummySender:
    def __init__(self):
        self.calls = []

    async def send(self, config, test_id):
        self.calls.append(test_id)
        return f"<{test_id}@example.com>"


class DummyPoller:
    timeout = 60.0

    def __init__(self, delay=0.0):
        self.delay = delay

    async def poll(self, config, test_id):
        if self.delay:
            await asyncio.sleep(self.delay)
        return ReceiveReport(found=True, attempts=1, uid=1)


ACCOUNT = {
    "name": "Support",
    "email": "support@example.com",
    "password": "secret",
    "smtp_host": "smtp.example.com",
    "smtp_port": 465,
    "imap_host": "imap.example.com",
    "imap_port": 993,
}


def make_core(tmp_path, poller=None, **kwargs):
    return MailboxVerifierCore(
        db_path=str(tmp_path / "verifier.db"),
        sender=DummySender(),
        poller=poller or DummyPoller(),
        metrics=VerifierMetrics(CollectorRegistry()),
        grace_period=0,
        **kwargs,
    )


async def _wait_terminal(core, test_id, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        result = await core.handle_command("getTestResult", {"test_id": test_id})
        if result["ok"] and result["result"].is_terminal:
            return result["result"]
        await asyncio.sleep(0.01)
    raise AssertionError("test did not finish")


@pytest.mark.asyncio
async def test_account_commands(tmp_path):
    core = make_core(tmp_path)
    await core.init()

    added = await core.handle_command("addAccount", ACCOUNT)
    assert added["ok"] is True

    fetched = await core.handle_command("getAccount", {"id": added["id"]})
    assert fetched["account"]["email"] == "support@example.com"
    assert "password" not in fetched["account"]

    listed = await core.handle_command("listAccounts")
    assert [a["id"] for a in listed["accounts"]] == [added["id"]]

    assert (await core.handle_command("deleteAccount", {"id": added["id"]}))["ok"] is True
    assert (await core.handle_command("deleteAccount", {"id": added["id"]}))["ok"] is False
    assert (await core.handle_command("getAccount", {"id": added["id"]}))["ok"] is False


@pytest.mark.asyncio
async def test_unknown_command(tmp_path):
    core = make_core(tmp_path)
    assert await core.handle_command("frobnicate", {}) == {"ok": False, "error": "unknown command"}


@pytest.mark.asyncio
async def test_start_test_returns_immediately_with_in_progress_outcome(tmp_path):
    core = make_core(tmp_path, poller=DummyPoller(delay=0.05))
    await core.start()
    try:
        account_id = (await core.handle_command("addAccount", ACCOUNT))["id"]
        started = await core.handle_command("startTest", {"account_id": account_id})

        assert started["ok"] is True
        test_id = started["testId"]
        assert test_id.startswith("test-")
        assert started["result"].success is False
        assert not started["result"].is_terminal

        # readable right away, before the background run publishes anything
        first = await core.handle_command("getTestResult", {"test_id": test_id})
        assert first["ok"] is True

        outcome = await _wait_terminal(core, test_id)
        assert outcome.success is True
        assert outcome.message == PASSED_MESSAGE

        account = await core.accounts.get_account(account_id)
        assert account["status"] == "active"
    finally:
        await core.stop()


@pytest.mark.asyncio
async def test_start_test_for_unknown_account(tmp_path):
    core = make_core(tmp_path)
    await core.init()
    result = await core.handle_command("startTest", {"account_id": 999})
    assert result["ok"] is False
    assert "not found" in result["error"]
    assert len(core.results) == 0


@pytest.mark.asyncio
async def test_get_test_result_unknown_and_missing_id(tmp_path):
    core = make_core(tmp_path)
    assert (await core.handle_command("getTestResult", {"test_id": "test-0-0"}))["ok"] is False
    assert (await core.handle_command("getTestResult", {}))["error"] == "test id required"


@pytest.mark.asyncio
async def test_terminal_result_is_evicted_after_first_read(tmp_path):
    core = make_core(tmp_path, cleanup_delay=0.05)
    outcome = TestOutcome.in_progress("test-1-2")
    outcome.details.time_taken_ms = 5
    await core.results.put("test-1-2", outcome)

    first = await core.handle_command("getTestResult", {"test_id": "test-1-2"})
    assert first["ok"] is True
    # further reads within the delay do not extend it
    await asyncio.sleep(0.03)
    assert (await core.handle_command("getTestResult", {"test_id": "test-1-2"}))["ok"] is True
    await asyncio.sleep(0.04)
    assert (await core.handle_command("getTestResult", {"test_id": "test-1-2"}))["ok"] is False
    core.results.close()


@pytest.mark.asyncio
async def test_in_progress_result_is_never_evicted_by_reads(tmp_path):
    core = make_core(tmp_path, cleanup_delay=0.01)
    await core.results.put("test-1-2", TestOutcome.in_progress("test-1-2"))

    await core.handle_command("getTestResult", {"test_id": "test-1-2"})
    await asyncio.sleep(0.03)
    assert (await core.handle_command("getTestResult", {"test_id": "test-1-2"}))["ok"] is True


@pytest.mark.asyncio
async def test_new_test_id_rerolls_on_collision(tmp_path, monkeypatch):
    core = make_core(tmp_path)
    await core.results.put("test-1-1", TestOutcome.in_progress("test-1-1"))
    ids = iter(["test-1-1", "test-1-1", "test-1-2"])
    monkeypatch.setattr("mailbox_verifier.core.generate_test_id", lambda: next(ids))

    assert await core.new_test_id() == "test-1-2"


@pytest.mark.asyncio
async def test_run_test_now_returns_final_outcome(tmp_path):
    core = make_core(tmp_path)
    await core.init()
    account_id = (await core.handle_command("addAccount", ACCOUNT))["id"]

    outcome = await core.run_test_now(account_id)

    assert outcome.success is True
    assert outcome.is_terminal
    assert len(core.results) == 0


@pytest.mark.asyncio
async def test_stop_cancels_running_tests(tmp_path):
    core = make_core(tmp_path, poller=DummyPoller(delay=10))
    await core.start()
    account_id = (await core.handle_command("addAccount", ACCOUNT))["id"]
    test_id = (await core.handle_command("startTest", {"account_id": account_id}))["testId"]
    await asyncio.sleep(0.02)

    await core.stop()

    outcome = await core.results.get(test_id)
    assert outcome.is_terminal
    assert outcome.success is False
    assert core.orchestrator.in_flight == 0


@pytest.mark.asyncio
async def test_sweep_loop_drops_unread_results(tmp_path):
    core = make_core(tmp_path, retention_seconds=0, sweep_interval=0.01)
    await core.start()
    try:
        outcome = TestOutcome.in_progress("test-1-2")
        outcome.details.time_taken_ms = 5
        await core.results.put("test-1-2", outcome)
        await asyncio.sleep(0.05)
        assert await core.results.get("test-1-2") is None
    finally:
        await core.stop()


def test_injected_empty_result_store_is_kept(tmp_path):
    store = ResultStore()
    assert len(store) == 0

    core = make_core(tmp_path, results=store)

    assert core.results is store
    assert core.orchestrator.store is store


@pytest.mark.asyncio
async def test_account_with_unusable_port_fails_as_send_error(tmp_path):
    smtp = MagicMock()
    smtp.connect = AsyncMock(side_effect=OSError("Connection refused"))
    smtp.quit = AsyncMock()
    smtp.close = MagicMock()
    smtp.is_connected = False
    core = MailboxVerifierCore(
        db_path=str(tmp_path / "verifier.db"),
        sender=SMTPSender(),
        poller=DummyPoller(),
        metrics=VerifierMetrics(CollectorRegistry()),
        grace_period=0,
    )
    await core.start()
    try:
        account_id = (await core.handle_command("addAccount", {**ACCOUNT, "smtp_port": 0}))["id"]
        with patch("mailbox_verifier.smtp_sender.aiosmtplib.SMTP", return_value=smtp):
            started = await core.handle_command("startTest", {"account_id": account_id})
            assert started["ok"] is True
            outcome = await _wait_terminal(core, started["testId"])

        assert outcome.success is False
        assert outcome.details.send_success is False
        assert "Connection refused" in outcome.details.send_error
    finally:
        await core.stop()
