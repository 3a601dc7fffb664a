import json
import logging

from fastapi.testclient import TestClient

from circulation.core.config import settings
from circulation.core.logging import JsonFormatter, request_id_ctx


# funciones auxiliares para logs
def _logs_messages(caplog) -> list[str]:
    return [record.getMessage() for record in caplog.records]


def _records(caplog, message: str) -> list[logging.LogRecord]:
    return [r for r in caplog.records if r.getMessage() == message]


def test_request_id_is_echoed(client: TestClient):
    resp = client.get("/", headers={"X-Request-ID": "req-123"})
    assert resp.headers["X-Request-ID"] == "req-123"

    resp = client.get("/")
    assert resp.headers["X-Request-ID"]


def test_request_completed_is_logged(client: TestClient, caplog):
    caplog.set_level(logging.INFO)

    client.get("/health/db", headers={"X-Request-ID": "req-health"})

    records = _records(caplog, "request_completed")
    assert records
    assert records[-1].request_id == "req-health"
    assert records[-1].path == "/health/db"
    assert records[-1].status_code == 200


def test_slow_request_logged_as_warning(client: TestClient, caplog, monkeypatch):
    caplog.set_level(logging.INFO)
    monkeypatch.setattr(settings, "SLOW_REQUEST_THRESHOLD_MS", -1)

    client.get("/")

    records = _records(caplog, "request_completed")
    assert records[-1].levelno == logging.WARNING


def test_checkout_logs_operation(client: TestClient, caplog, make_book, make_member):
    """
    Un préstamo debe dejar un log "Loan created" con operation y los ids.
    """
    caplog.set_level(logging.INFO)
    _, (copy_id,) = make_book(copies=1)
    member_id = make_member()

    resp = client.post("/api/v1/loans/", json={"copy_id": copy_id, "member_id": member_id})
    assert resp.status_code == 201, resp.text

    records = _records(caplog, "Loan created")
    assert len(records) == 1
    assert records[0].operation == "loan_checkout"
    assert records[0].copy_id == copy_id
    assert records[0].member_id == member_id
    assert records[0].new_status == "borrowed"


def test_engine_errors_are_logged(client: TestClient, caplog):
    caplog.set_level(logging.INFO)

    resp = client.post("/api/v1/loans/9999/renew")
    assert resp.status_code == 404

    records = _records(caplog, "circulation_error")
    assert records[-1].error == "not_found"
    assert records[-1].retryable is False


def test_json_formatter_output():
    formatter = JsonFormatter()
    record = logging.LogRecord(
        name="circulation.loans",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg="Loan returned",
        args=(),
        exc_info=None,
    )
    record.operation = "loan_return"
    record.loan_id = 7

    token = request_id_ctx.set("req-json")
    try:
        payload = json.loads(formatter.format(record))
    finally:
        request_id_ctx.reset(token)

    assert payload["message"] == "Loan returned"
    assert payload["level"] == "INFO"
    assert payload["logger"] == "circulation.loans"
    assert payload["operation"] == "loan_return"
    assert payload["loan_id"] == 7
    assert payload["request_id"] == "req-json"
