import asyncio
import json

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from lark_relay.config import Settings
from lark_relay.main import create_app


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        queue_db_path=str(tmp_path / "queue.db"),
        media_dir=str(tmp_path / "media"),
        lark_verification_token="verify-me",
        lark_encrypt_key="test-encrypt-key",
        outbound_token="secret-token",
        consumers_enabled=False,
    )


@pytest.fixture
def client(settings):
    with TestClient(create_app(settings)) as test_client:
        yield test_client


def _message_event(message_id="om_1", text="hello", token="verify-me"):
    return {
        "schema": "2.0",
        "header": {"event_id": "ev_1", "event_type": "im.message.receive_v1", "token": token},
        "event": {
            "sender": {"sender_id": {"open_id": "ou_user"}},
            "message": {
                "message_id": message_id,
                "chat_id": "oc_dm",
                "chat_type": "p2p",
                "message_type": "text",
                "content": json.dumps({"text": text}),
            },
        },
    }


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_queue_stats(self, client, settings):
        response = client.get("/queue/stats")

        assert response.status_code == 200
        body = response.json()
        assert body["inbound"]["pending"] == 0
        assert body["outbound"]["failed"] == 0
        assert body["db_path"] == str(settings.resolved_queue_db_path)


class TestLarkWebhook:
    def test_url_verification(self, client):
        response = client.post(
            "/lark/events",
            json={"type": "url_verification", "challenge": "abc123", "token": "verify-me"},
        )
        assert response.status_code == 200
        assert response.json() == {"challenge": "abc123"}

    def test_url_verification_bad_token(self, client):
        response = client.post(
            "/lark/events",
            json={"type": "url_verification", "challenge": "abc123", "token": "wrong"},
        )
        assert response.status_code == 401

    def test_message_is_queued(self, client):
        response = client.post("/lark/events", json=_message_event())

        assert response.status_code == 200
        assert response.json()["enqueued"] is True
        stats = client.get("/queue/stats").json()
        assert stats["inbound"]["pending"] == 1

    def test_duplicate_is_acknowledged(self, client):
        client.post("/lark/events", json=_message_event())
        response = client.post("/lark/events", json=_message_event())

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["enqueued"] is False
        assert client.get("/queue/stats").json()["inbound"]["pending"] == 1

    def test_wrong_token_not_queued(self, client):
        response = client.post("/lark/events", json=_message_event(token="wrong"))

        assert response.status_code == 200
        assert response.json()["success"] is False
        assert client.get("/queue/stats").json()["inbound"]["pending"] == 0

    def test_invalid_body(self, client):
        response = client.post("/lark/events", content=b"\xff\xfenot json")

        assert response.status_code == 400
        assert response.json()["success"] is False

    def test_store_failure_asks_for_redelivery(self, client):
        queue = client.app.state.queue

        def locked(*args, **kwargs):
            raise OperationalError("INSERT INTO inbound_queue", {}, Exception("database is locked"))

        queue.enqueue_inbound = locked
        response = client.post("/lark/events", json=_message_event())

        assert response.status_code == 500
        body = response.json()
        assert body["success"] is False
        assert "INSERT" not in body["message"]
        assert "locked" not in body["message"]

    def test_redelivery_after_store_failure_is_queued_once(self, client):
        queue = client.app.state.queue
        enqueue_inbound = queue.enqueue_inbound
        calls = []

        def locked_once(*args, **kwargs):
            calls.append(args)
            if len(calls) == 1:
                raise OperationalError("INSERT INTO inbound_queue", {}, Exception("database is locked"))
            return enqueue_inbound(*args, **kwargs)

        queue.enqueue_inbound = locked_once

        assert client.post("/lark/events", json=_message_event()).status_code == 500
        assert client.post("/lark/events", json=_message_event()).json()["enqueued"] is True
        assert client.post("/lark/events", json=_message_event()).json()["enqueued"] is False
        assert client.get("/queue/stats").json()["inbound"]["pending"] == 1

    def test_other_event_types_are_acknowledged(self, client):
        payload = {"schema": "2.0", "header": {"event_type": "im.chat.member.bot.added_v1", "token": "verify-me"}}

        response = client.post("/lark/events", json=payload)

        assert response.status_code == 200
        assert response.json()["message"] == "No actionable content"


class TestOutboundEndpoint:
    def _payload(self, content="answer"):
        return {"queue_type": "reply", "session_key": "agent:main:lark:oc_1", "chat_id": "oc_1", "content": content}

    def test_requires_token(self, client):
        response = client.post("/lark/outbound", json=self._payload())
        assert response.status_code == 401

    def test_enqueue(self, client):
        headers = {"Authorization": "Bearer secret-token"}

        first = client.post("/lark/outbound", json=self._payload(), headers=headers)
        second = client.post("/lark/outbound", json=self._payload(), headers=headers)

        assert first.status_code == 200
        assert first.json()["enqueued"] is True
        assert second.json() == {"enqueued": False, "reason": "duplicate_pending", "id": None, "existing": None}

    def test_invalid_queue_type(self, client):
        payload = {**self._payload(), "queue_type": "broadcast"}

        response = client.post("/lark/outbound", json=payload, headers={"Authorization": "Bearer secret-token"})

        assert response.status_code == 422


class TestEncryptedEvents:
    def test_encrypted_challenge(self, client, encrypt_event):
        body = {"encrypt": encrypt_event({"type": "url_verification", "challenge": "xyz", "token": "verify-me"})}

        response = client.post("/lark/events", json=body)

        assert response.status_code == 200
        assert response.json() == {"challenge": "xyz"}

    def test_encrypted_message_is_queued(self, client, encrypt_event):
        response = client.post("/lark/events", json={"encrypt": encrypt_event(_message_event())})

        assert response.status_code == 200
        assert response.json()["enqueued"] is True
        assert client.get("/queue/stats").json()["inbound"]["pending"] == 1

    def test_undecryptable_body(self, client, encrypt_event):
        body = {"encrypt": encrypt_event(_message_event(), encrypt_key="someone-else")}

        response = client.post("/lark/events", json=body)

        assert response.status_code == 400
        assert response.json()["message"] == "Decrypt failed"
        assert client.get("/queue/stats").json()["inbound"]["pending"] == 0

    def test_encrypted_without_configured_key(self, settings, encrypt_event):
        settings.lark_encrypt_key = ""
        with TestClient(create_app(settings)) as test_client:
            response = test_client.post("/lark/events", json={"encrypt": encrypt_event(_message_event())})

        assert response.status_code == 400


class TestOutboundNotify:
    def test_sender_is_notified_on_the_event_loop(self, client):
        sender = client.app.state.outbound_sender
        notify = sender.notify
        seen = []

        def recording_notify():
            try:
                seen.append(asyncio.get_running_loop() is not None)
            except RuntimeError:
                seen.append(False)
            notify()

        sender.notify = recording_notify
        response = client.post(
            "/lark/outbound",
            json={"queue_type": "reply", "session_key": "agent:main:lark:oc_1", "chat_id": "oc_1", "content": "hi"},
            headers={"Authorization": "Bearer secret-token"},
        )

        assert response.json()["enqueued"] is True
        assert seen == [True]
