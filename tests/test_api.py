import types

import pytest
from fastapi.testclient import TestClient

from mailbox_verifier.api import API_TOKEN_HEADER_NAME, create_app
from mailbox_verifier.models import TestOutcome


API_TOKEN = "secret-token"


def _terminal_outcome(test_id):
    outcome = TestOutcome.in_progress(test_id)
    outcome.success = True
    outcome.message = "Email configuration test passed! (SMTP send and IMAP receive both verified)"
    outcome.details.send_success = True
    outcome.details.receive_success = True
    outcome.details.receive_attempts = 2
    outcome.details.message_id = "<abc@example.com>"
    outcome.details.time_taken_ms = 9000
    return outcome


class DummyService:
    def __init__(self):
        self.calls = []
        self.metrics = types.SimpleNamespace(generate_latest=lambda: b"metrics-data")
        self.results = {"test-1-2": _terminal_outcome("test-1-2")}

    async def handle_command(self, cmd, payload):
        self.calls.append((cmd, payload))
        if cmd == "startTest":
            if payload["account_id"] != 1:
                return {"ok": False, "error": f"Email account '{payload['account_id']}' not found"}
            return {"ok": True, "testId": "test-9-9", "result": TestOutcome.in_progress("test-9-9")}
        if cmd == "getTestResult":
            outcome = self.results.get(payload["test_id"])
            if outcome is None:
                return {"ok": False, "error": "test result not found or expired"}
            return {"ok": True, "result": outcome}
        return {"ok": False, "error": "unknown command"}


@pytest.fixture
def client_and_service():
    svc = DummyService()
    client = TestClient(create_app(svc, api_token=API_TOKEN))
    client.headers.update({API_TOKEN_HEADER_NAME: API_TOKEN})
    return client, svc


def test_returns_500_when_service_missing():
    app = create_app(DummyService(), api_token=API_TOKEN)
    app.state.service = None
    client = TestClient(app)
    response = client.get("/email-accounts/test-results/test-1-2", headers={API_TOKEN_HEADER_NAME: API_TOKEN})
    assert response.status_code == 500
    assert response.json()["detail"] == "Service not initialized"


def test_rejects_missing_token():
    client = TestClient(create_app(DummyService(), api_token=API_TOKEN))
    response = client.post("/email-accounts/1/test")
    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid or missing API token"


def test_rejects_wrong_token():
    client = TestClient(create_app(DummyService(), api_token=API_TOKEN))
    response = client.post("/email-accounts/1/test", headers={API_TOKEN_HEADER_NAME: "nope"})
    assert response.status_code == 401


def test_no_token_configured_allows_requests():
    client = TestClient(create_app(DummyService()))
    assert client.post("/email-accounts/1/test").status_code == 200


def test_health_does_not_require_token():
    client = TestClient(create_app(DummyService(), api_token=API_TOKEN))
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_metrics_endpoint(client_and_service):
    client, _ = client_and_service
    response = client.get("/metrics")
    assert response.status_code == 200
    assert response.content == b"metrics-data"


def test_start_test_returns_test_id_immediately(client_and_service):
    client, svc = client_and_service
    response = client.post("/email-accounts/1/test")

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["data"]["testId"] == "test-9-9"
    assert body["data"]["success"] is False
    assert body["data"]["message"] == "Email test in progress..."
    assert body["data"]["details"]["sendSuccess"] is False
    assert svc.calls == [("startTest", {"account_id": 1})]


def test_start_test_unknown_account_returns_404(client_and_service):
    client, _ = client_and_service
    response = client.post("/email-accounts/42/test")
    assert response.status_code == 404
    assert "not found" in response.json()["detail"]


def test_start_test_rejects_non_numeric_account(client_and_service):
    client, _ = client_and_service
    response = client.post("/email-accounts/abc/test")
    assert response.status_code == 422


def test_get_test_result_uses_camel_case(client_and_service):
    client, _ = client_and_service
    response = client.get("/email-accounts/test-results/test-1-2")

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["testId"] == "test-1-2"
    assert data["success"] is True
    details = data["details"]
    assert details["sendSuccess"] is True
    assert details["receiveSuccess"] is True
    assert details["receiveAttempts"] == 2
    assert details["messageId"] == "<abc@example.com>"
    assert details["timeTakenMs"] == 9000


def test_get_unknown_test_result_returns_404(client_and_service):
    client, _ = client_and_service
    response = client.get("/email-accounts/test-results/test-0-0")
    assert response.status_code == 404
    assert response.json()["detail"] == "Test result not found or expired"
