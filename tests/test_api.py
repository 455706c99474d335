import importlib
from contextlib import contextmanager

import pytest
from fastapi import HTTPException
from fastapi.testclient import TestClient

from quoteflow.conversations.models import InboundEmail
from quoteflow.conversations.service import ConversationService
from quoteflow.core.settings import reset_settings_cache
from quoteflow.errors import ConcurrentUpdateConflict, NotFoundError
from quoteflow.extraction import default_extractor
from quoteflow.models.session import reset_session_cache


@pytest.fixture
def client(monkeypatch, tmp_path):
    monkeypatch.setenv("DATABASE_URL", f"sqlite+pysqlite:///{tmp_path / 'api.db'}")
    monkeypatch.setenv("LOG_DIR", str(tmp_path / "logs"))
    reset_settings_cache()
    reset_session_cache()
    default_extractor.cache_clear()

    import quoteflow.main as main

    importlib.reload(main)
    with TestClient(main.app) as test_client:
        yield test_client
    reset_session_cache()
    default_extractor.cache_clear()


def _email(**overrides):
    payload = {
        "from": "Buyer@Acme.com",
        "subject": "Salmon enquiry",
        "body": "We need 5000 kg salmon fillets, fresh. Price please?\n\nRegards,\nOle Hansen",
        "messageId": "<m1@acme.com>",
        "threadId": "thread-1",
    }
    payload.update(overrides)
    return payload


def test_health_and_version(client):
    assert client.get("/api/health").json() == {"status": "ok"}
    version = client.get("/api/version").json()
    assert set(version) == {"version", "build_date", "commit_sha"}
    assert client.get("/api/metrics").status_code == 200


def test_webhook_creates_then_converts(client):
    created = client.post("/api/webhooks/email", json=_email())
    assert created.status_code == 200
    body = created.json()
    assert body["success"] is True
    assert body["outcome"] == "CREATED"
    assert body["stage"] == "INITIAL_ENQUIRY"
    assert body["thread_key"] == "THREAD_thread-1"
    assert body["suggested_action"] == "EXTRACT_INFO_AND_GENERATE_QUOTE"
    assert body["status"] == "RECEIVED"
    conversation_id = body["conversation_id"]
    assert conversation_id.startswith("ENQ-")

    order = client.post(
        "/api/webhooks/email",
        json=_email(
            subject="Re: Salmon enquiry",
            body="Please proceed with the order",
            messageId="<m2@acme.com>",
        ),
    )
    assert order.json()["outcome"] == "UPDATED"
    assert order.json()["conversation_id"] == conversation_id
    assert order.json()["status"] == "CONVERTED"

    detail = client.get(f"/api/conversations/{conversation_id}").json()
    assert detail["from_email"] == "buyer@acme.com"
    assert detail["status"] == "CONVERTED"
    assert "ENQUIRY RECEIVED: Salmon enquiry" in detail["processing_notes"]
    assert "ORDER CONFIRMED" in detail["processing_notes"]


def test_webhook_replay_is_reported_as_duplicate(client):
    client.post("/api/webhooks/email", json=_email())
    replay = client.post("/api/webhooks/email", json=_email())

    assert replay.json()["outcome"] == "DUPLICATE"
    assert len(client.get("/api/conversations").json()) == 1


def test_webhook_rejects_missing_sender(client):
    payload = _email()
    del payload["from"]
    assert client.post("/api/webhooks/email", json=payload).status_code == 422

    blank = client.post("/api/webhooks/email", json=_email(**{"from": "   "}))
    assert blank.status_code == 400


def test_orphaned_email_is_listed_for_review(client):
    response = client.post(
        "/api/webhooks/email",
        json=_email(threadId="unknown", body="Please proceed with the order", messageId="<o@x>"),
    )

    assert response.json()["outcome"] == "ORPHANED"
    assert response.json()["conversation_id"] is None
    orphans = client.get("/api/conversations/orphans").json()
    assert [row["thread_key"] for row in orphans] == ["THREAD_unknown"]
    stats = client.get("/api/conversations/dashboard/stats").json()
    assert stats["orphaned_emails"] == 1
    assert stats["total_conversations"] == 0


def test_conversation_queries(client):
    created = client.post("/api/webhooks/email", json=_email()).json()
    conversation_id = created["conversation_id"]

    by_status = client.get("/api/conversations/status/received").json()
    assert [row["external_id"] for row in by_status] == [conversation_id]
    assert client.get("/api/conversations/status/QUOTED").json() == []
    assert client.get("/api/conversations/status/LOST").status_code == 400
    assert [row["external_id"] for row in client.get("/api/conversations/recent").json()] == [
        conversation_id
    ]
    assert client.get("/api/conversations/ENQ-404").status_code == 404

    stats = client.get("/api/conversations/dashboard/stats").json()
    assert stats["total_conversations"] == 1
    assert stats["total_customers"] == 1
    assert stats["by_status"]["RECEIVED"] == 1
    assert stats["recent"][0]["external_id"] == conversation_id


def test_manual_status_update(client):
    conversation_id = client.post("/api/webhooks/email", json=_email()).json()["conversation_id"]

    quoted = client.put(
        f"/api/conversations/{conversation_id}/status", json={"status": "QUOTED"}
    )
    assert quoted.status_code == 200
    assert quoted.json()["status"] == "QUOTED"

    backwards = client.put(
        f"/api/conversations/{conversation_id}/status", json={"status": "RECEIVED"}
    )
    assert backwards.status_code == 400
    unknown = client.put(f"/api/conversations/{conversation_id}/status", json={"status": "??"})
    assert unknown.status_code == 400


def test_quote_generation_and_lifecycle(client):
    conversation_id = client.post("/api/webhooks/email", json=_email()).json()["conversation_id"]

    generated = client.post(
        "/api/quotes/generate",
        json={
            "conversationId": conversation_id,
            "overrides": [{"quantity": 10, "totalCost": 250.0, "description": "Manual line"}],
        },
    )
    assert generated.status_code == 200
    quote = generated.json()
    assert quote["status"] == "DRAFT"
    assert quote["currency"] == "DKK"
    assert quote["conversation_external_id"] == conversation_id
    assert quote["quote_number"].startswith("QUO-")
    number = quote["quote_number"]

    detail = client.get(f"/api/conversations/{conversation_id}").json()
    assert detail["status"] == "QUOTED"
    assert f"QUOTE GENERATED: {number}" in detail["processing_notes"]

    assert client.put(f"/api/quotes/{number}/accept").status_code == 400
    assert client.put(f"/api/quotes/{number}/send").json()["status"] == "SENT"
    accepted = client.put(f"/api/quotes/{number}/accept").json()
    assert accepted["status"] == "ACCEPTED"
    assert accepted["accepted_at"] is not None

    assert client.get(f"/api/quotes/{number}").json()["status"] == "ACCEPTED"
    listed = client.get("/api/quotes", params={"conversation_id": conversation_id}).json()
    assert [row["quote_number"] for row in listed] == [number]
    assert client.get("/api/quotes", params={"status": "DRAFT"}).json() == []


def test_quote_errors(client):
    missing = client.post("/api/quotes/generate", json={"conversationId": "ENQ-404"})
    assert missing.status_code == 404
    assert client.get("/api/quotes/QUO-0000-0000").status_code == 404
    assert client.get("/api/quotes", params={"status": "LOST"}).status_code == 400
    assert client.post("/api/quotes/generate", json={}).status_code == 422


def test_lost_race_maps_to_service_unavailable(client, monkeypatch):
    def _always_conflict(self, email):
        raise ConcurrentUpdateConflict("Gave up updating thread THREAD_thread-1 after 3 attempts")

    monkeypatch.setattr(ConversationService, "process_inbound_email", _always_conflict)

    response = client.post("/api/webhooks/email", json=_email())

    assert response.status_code == 503


def test_unexpected_failure_maps_to_server_error(client, monkeypatch):
    def _broken(self, email):
        raise RuntimeError("boom")

    monkeypatch.setattr(ConversationService, "process_inbound_email", _broken)

    response = client.post("/api/webhooks/email", json=_email())

    assert response.status_code == 500
    assert response.json()["detail"] == "Failed to process email"


def test_dashboard_with_in_memory_service(client, monkeypatch, bundle):
    import quoteflow.routers.conversations as conversations_router

    @contextmanager
    def fake_context():
        try:
            yield bundle.service
        except NotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc

    monkeypatch.setattr(conversations_router, "_service_context", fake_context)
    bundle.service.process_inbound_email(
        _inbound(sender="a@one.com", provider_thread_id="t-a", message_id="<a@x>")
    )
    bundle.service.process_inbound_email(
        _inbound(sender="b@two.com", provider_thread_id="t-b", message_id="<b@x>")
    )

    stats = client.get("/api/conversations/dashboard/stats").json()

    assert stats["total_conversations"] == 2
    assert stats["total_customers"] == 2
    assert [row["thread_key"] for row in stats["recent"]] == ["THREAD_t-b", "THREAD_t-a"]
    assert client.get("/api/conversations/ENQ-missing").status_code == 404


def _inbound(**values):
    values.setdefault("subject", "Enquiry")
    values.setdefault("body", "We need 200 kg cod")
    return InboundEmail(**values)


def test_rate_limit_key_prefers_forwarded_for():
    from starlette.requests import Request

    from quoteflow.core.rate_limit import get_client_ip

    forwarded = Request(
        {
            "type": "http",
            "headers": [(b"x-forwarded-for", b"203.0.113.9, 10.0.0.1")],
            "client": ("10.0.0.1", 1234),
        }
    )
    direct = Request({"type": "http", "headers": [], "client": ("10.0.0.2", 1234)})

    assert get_client_ip(forwarded) == "203.0.113.9"
    assert get_client_ip(direct) == "10.0.0.2"
