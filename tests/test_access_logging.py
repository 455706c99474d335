import json
import logging

import pytest
from fastapi import FastAPI, Request
from starlette.testclient import TestClient

from quoteflow.app_logging import _install_access_logging


def _webhook_app() -> FastAPI:
    app = FastAPI()

    @app.post("/api/webhooks/email")
    async def webhook(request: Request):
        payload = await request.body()
        return {"rid": request.state.request_id, "size": len(payload)}

    _install_access_logging(app)
    return app


def _access_entry(caplog) -> dict:
    (record,) = [r for r in caplog.records if r.name == "uvicorn.access"]
    return json.loads(record.getMessage())


@pytest.fixture
def capture_bodies(monkeypatch):
    monkeypatch.setenv("LOG_REQUEST_BODIES", "true")


def test_webhook_addresses_and_body_are_masked(caplog, capture_bodies):
    email = {"from": "buyer@acme.com", "to": "sales@fish.dk", "subject": "Salmon", "body": "5 kg"}

    with TestClient(_webhook_app()) as client, caplog.at_level(logging.INFO, "uvicorn.access"):
        resp = client.post(
            "/api/webhooks/email",
            json=email,
            headers={"X-Request-Id": "req-1", "X-Forwarded-For": "198.51.100.7, 10.0.0.1"},
        )

    assert resp.headers["X-Request-Id"] == "req-1"
    assert resp.json()["rid"] == "req-1"
    assert resp.json()["size"] > 0
    entry = _access_entry(caplog)
    assert entry["client_ip"] == "198.51.100.7"
    assert entry["status"] == 200
    assert entry["body"] == {"from": "***", "to": "***", "subject": "Salmon", "body": "***"}


def test_non_json_body_is_logged_as_text(caplog, capture_bodies):
    with TestClient(_webhook_app()) as client, caplog.at_level(logging.INFO, "uvicorn.access"):
        client.post("/api/webhooks/email", content=b"not json")

    assert _access_entry(caplog)["body"] == "not json"


def test_bodies_are_skipped_by_default(caplog):
    with TestClient(_webhook_app()) as client, caplog.at_level(logging.INFO, "uvicorn.access"):
        resp = client.post("/api/webhooks/email", json={"from": "a@b.c"})

    entry = _access_entry(caplog)
    assert len(resp.headers["X-Request-Id"]) == 32
    assert entry["request_id"] == resp.headers["X-Request-Id"]
    assert "body" not in entry
