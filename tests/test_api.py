import json

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from main import create_app
from practice_messaging.services.realtime_registry import ChannelRegistry

from tests.conftest import CLIENT_ID, CLIENT_PHONE, LAWYER_ID, TEST_VERIFY_TOKEN, make_token
from tests.test_webhook_payload import envelope
from tests.test_whatsapp_service import sign


@pytest.fixture
def conversation(seeded):
    seeded.seed("conversations", {
        "id": "conv-1", "law_firm_id": "firm-1", "client_id": CLIENT_ID, "title": "Contrato de locação",
        "status": "active", "priority": "normal",
    })
    seeded.seed("conversation_participants",
                {"conversation_id": "conv-1", "client_id": CLIENT_ID, "participant_type": "client", "role": "participant"},
                {"conversation_id": "conv-1", "user_id": LAWYER_ID, "participant_type": "lawyer", "role": "owner"})
    return seeded


@pytest.fixture
def client(conversation, whatsapp, auth_settings):
    app = create_app(supabase=conversation, whatsapp=whatsapp, registry=ChannelRegistry())
    with TestClient(app) as test_client:
        yield test_client


def auth(user_id=LAWYER_ID, user_type="lawyer"):
    return {"Authorization": f"Bearer {make_token(user_id, user_type)}"}


CLIENT_AUTH = {"user_id": CLIENT_ID, "user_type": "client"}


def test_health(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.json()["realtime_available"] is True


class TestWebhookVerification:
    def test_challenge_is_echoed(self, client):
        response = client.get("/whatsapp/webhook", params={
            "hub.mode": "subscribe", "hub.verify_token": TEST_VERIFY_TOKEN, "hub.challenge": "1158201444",
        })
        assert response.status_code == 200
        assert response.text == "1158201444"

    def test_wrong_token(self, client):
        response = client.get("/whatsapp/webhook", params={
            "hub.mode": "subscribe", "hub.verify_token": "guess", "hub.challenge": "1158201444",
        })
        assert response.status_code == 403
        assert response.text == "Verification failed"

    def test_unset_token_never_verifies(self, client, monkeypatch, auth_settings):
        monkeypatch.setattr(auth_settings, "WHATSAPP_WEBHOOK_VERIFY_TOKEN", "")
        response = client.get("/whatsapp/webhook", params={
            "hub.mode": "subscribe", "hub.verify_token": "", "hub.challenge": "x",
        })
        assert response.status_code == 403


class TestWebhookDelivery:
    def body(self, text="Olá, bom dia"):
        return json.dumps(envelope(messages=[{
            "from": CLIENT_PHONE, "id": "wamid.api1", "timestamp": "1717506000", "type": "text", "text": {"body": text},
        }])).encode()

    def test_missing_signature(self, client, conversation):
        response = client.post("/whatsapp/webhook", content=self.body())
        assert response.status_code == 401
        assert response.json() == {"detail": "Invalid signature"}
        assert conversation.rows("messages") == []

    def test_tampered_body(self, client, conversation):
        signature = sign(self.body())
        response = client.post("/whatsapp/webhook", content=self.body("outro texto"),
                               headers={"X-Hub-Signature-256": signature})
        assert response.status_code == 401
        assert conversation.rows("messages") == []

    def test_signed_delivery_is_processed(self, client, conversation):
        body = self.body()
        response = client.post("/whatsapp/webhook", content=body, headers={"X-Hub-Signature-256": sign(body)})

        assert response.status_code == 200
        assert response.text == "OK"
        saved = conversation.rows("messages")[0]
        assert saved["content"] == "Olá, bom dia"
        assert saved["whatsapp_message_id"] == "wamid.api1"

    def test_unreadable_envelope(self, client):
        body = b"not json"
        response = client.post("/whatsapp/webhook", content=body, headers={"X-Hub-Signature-256": sign(body)})
        assert response.status_code == 500
        assert response.text == "Internal server error"


class TestWhatsAppSend:
    def test_text_is_sent_and_recorded(self, client, conversation, provider):
        response = client.post("/whatsapp/send", headers=auth(), json={
            "to": "+55 (11) 99999-8888", "text": "Audiência confirmada", "conversation_id": "conv-1",
        })

        assert response.status_code == 200
        assert response.json()["success"] is True
        assert provider.sent_payloads[0]["to"] == CLIENT_PHONE

        recorded = conversation.rows("messages")[0]
        assert recorded["sender_user_id"] == LAWYER_ID
        assert recorded["whatsapp_status"] == "sent"
        assert recorded["message_type"] == "whatsapp"

    def test_invalid_phone(self, client, provider):
        response = client.post("/whatsapp/send", headers=auth(), json={"to": "123", "text": "oi"})
        assert response.status_code == 400
        assert provider.requests == []

    def test_provider_failure(self, client, provider):
        provider.fail_sends = True
        response = client.post("/whatsapp/send", headers=auth(), json={"to": CLIENT_PHONE, "text": "oi"})
        assert response.status_code == 502

    def test_clients_cannot_send(self, client):
        response = client.post("/whatsapp/send", headers=auth(**CLIENT_AUTH), json={"to": CLIENT_PHONE, "text": "oi"})
        assert response.status_code == 403


class TestConversations:
    def test_create(self, client, conversation):
        response = client.post("/conversations", headers=auth(), json={
            "client_id": CLIENT_ID, "title": "Inventário", "priority": "high",
        })

        assert response.status_code == 201
        created = response.json()
        assert created["law_firm_id"] == "firm-1"
        assert created["priority"] == "high"

        participants = [p for p in conversation.rows("conversation_participants") if p["conversation_id"] == created["id"]]
        assert {(p["user_id"], p["client_id"], p["role"]) for p in participants} == {
            (LAWYER_ID, None, "owner"),
            (None, CLIENT_ID, "participant"),
        }

    def test_send_and_list(self, client):
        sent = client.post("/conversations/conv-1/messages", headers=auth(**CLIENT_AUTH), json={"content": "Recebi a minuta"})
        assert sent.status_code == 201
        assert sent.json()["sender_client_id"] == CLIENT_ID

        listed = client.get("/conversations/conv-1/messages", headers=auth())
        assert listed.status_code == 200
        assert [m["content"] for m in listed.json()] == ["Recebi a minuta"]

    def test_server_only_message_types_are_rejected(self, client, conversation):
        response = client.post("/conversations/conv-1/messages", headers=auth(**CLIENT_AUTH), json={
            "content": "Mensagem automática falsa", "message_type": "system",
        })
        assert response.status_code == 422
        assert conversation.rows("messages") == []

    def test_non_participant_is_rejected(self, client):
        response = client.get("/conversations/conv-1/messages", headers=auth("lawyer-2"))
        assert response.status_code == 403

    def test_missing_token(self, client):
        response = client.get("/conversations/conv-1/messages")
        assert response.status_code in (401, 403)

    def test_update_status(self, client):
        response = client.patch("/conversations/conv-1/status", headers=auth(), json={"status": "archived"})
        assert response.status_code == 200
        assert response.json()["status"] == "archived"

        missing = client.patch("/conversations/nope/status", headers=auth(), json={"status": "closed"})
        assert missing.status_code == 404

    def test_mark_read(self, client, conversation):
        client.post("/conversations/conv-1/messages", headers=auth(**CLIENT_AUTH), json={"content": "Oi"})

        response = client.post("/conversations/conv-1/read", headers=auth())

        assert response.status_code == 200
        assert response.json()["messages_marked"] == 1
        receipt = conversation.rows("message_status")[0]
        assert receipt["user_id"] == LAWYER_ID
        assert receipt["status"] == "read"


class TestNotifications:
    def test_preferences_round_trip(self, client):
        defaults = client.get("/notifications/preferences", headers=auth(**CLIENT_AUTH))
        assert defaults.status_code == 200
        assert defaults.json()["business_hours_only"] is True

        updated = client.put("/notifications/preferences", headers=auth(**CLIENT_AUTH), json={"urgent_only": True})
        assert updated.status_code == 200
        assert updated.json()["urgent_only"] is True
        assert updated.json()["business_hours_only"] is True

    def test_unread_and_read_all(self, client, conversation):
        conversation.seed("chat_notifications", {
            "recipient_user_id": LAWYER_ID, "conversation_id": "conv-1", "message_id": "msg-1",
            "notification_type": "new_message",
            "title": "💬 Nova Mensagem - Contrato de locação", "content": "Oi", "is_read": False, "is_sent": True,
        })

        unread = client.get("/notifications/unread", headers=auth())
        assert unread.status_code == 200
        assert len(unread.json()) == 1

        missing = client.post("/notifications/nope/read", headers=auth())
        assert missing.status_code == 404

        read_all = client.post("/notifications/read-all", headers=auth())
        assert read_all.json()["marked"] == 1


def test_missing_database_is_503(whatsapp, auth_settings):
    app = create_app(supabase=None, whatsapp=whatsapp, registry=ChannelRegistry())
    with TestClient(app) as test_client:
        response = test_client.get("/conversations/conv-1/messages", headers=auth())
    assert response.status_code == 503


class TestWebSockets:
    def test_conversation_channel(self, client):
        with client.websocket_connect(f"/ws/conversations/conv-1?token={make_token(LAWYER_ID)}") as ws:
            established = ws.receive_json()
            assert established["type"] == "connection_established"
            assert established["realtime_available"] is True

            ws.send_json({"type": "ping"})
            assert ws.receive_json()["type"] == "pong"

            ws.send_json({"type": "message", "content": "Bom dia, Maria"})
            frame = ws.receive_json()
            assert frame["type"] == "message"
            assert frame["data"]["content"] == "Bom dia, Maria"
            assert frame["data"]["sender_user_id"] == LAWYER_ID

            ws.send_text("not json")
            assert ws.receive_json()["type"] == "error"

    def test_server_only_message_types_are_refused(self, client, conversation):
        with client.websocket_connect(f"/ws/conversations/conv-1?token={make_token(CLIENT_ID, 'client')}") as ws:
            ws.receive_json()

            ws.send_json({"type": "message", "content": "Mensagem automática falsa", "message_type": "system"})
            refused = ws.receive_json()
            assert refused["type"] == "error"
            assert "message_type" in refused["message"]

            ws.send_json({"type": "ping"})
            assert ws.receive_json()["type"] == "pong"

        assert conversation.rows("messages") == []

    def test_rest_messages_reach_the_socket(self, client):
        with client.websocket_connect(f"/ws/conversations/conv-1?token={make_token(LAWYER_ID)}") as ws:
            ws.receive_json()
            client.post("/conversations/conv-1/messages", headers=auth(**CLIENT_AUTH), json={"content": "Chegou?"})
            frame = ws.receive_json()
            assert frame["data"]["content"] == "Chegou?"

    def test_non_participant_is_closed(self, client):
        with pytest.raises(WebSocketDisconnect) as exc:
            with client.websocket_connect(f"/ws/conversations/conv-1?token={make_token('lawyer-2')}") as ws:
                ws.receive_json()
        assert exc.value.code == 1008

    def test_missing_token_is_closed(self, client):
        with pytest.raises(WebSocketDisconnect) as exc:
            with client.websocket_connect("/ws/conversations/conv-1") as ws:
                ws.receive_json()
        assert exc.value.code == 1008

    def test_presence(self, client):
        with client.websocket_connect(f"/ws/presence?token={make_token(LAWYER_ID)}") as ws:
            sync = ws.receive_json()
            assert sync["type"] == "presence_sync"
            assert list(sync["data"]["members"]) == [f"user:{LAWYER_ID}"]

            join = ws.receive_json()
            assert join["type"] == "presence_join"

            ws.send_json({"type": "status", "status": "away"})
            assert ws.receive_json()["data"]["state"]["status"] == "away"

        stats = client.get("/ws/stats").json()
        assert stats["total_channels"] == 0
