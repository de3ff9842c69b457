"""End-to-end tests for the /ws endpoint.

All sockets in one test share a single TestClient so they run on the same
event loop as the app.
"""
import pytest
from starlette.websockets import WebSocketDisconnect


def receive_until(ws, event_type):
    """Skip presence chatter until a frame of ``event_type`` arrives."""
    while True:
        frame = ws.receive_json()
        if frame["type"] == event_type:
            return frame


def test_connect_without_token_is_rejected(api_client):
    with api_client.websocket_connect("/ws") as ws:
        assert ws.receive_json() == {"type": "error", "message": "Authentication error"}
        with pytest.raises(WebSocketDisconnect) as exc:
            ws.receive_json()
        assert exc.value.code == 1008


def test_connect_with_forged_token_is_rejected(api_client):
    with api_client.websocket_connect("/ws?token=forged.token.value") as ws:
        assert ws.receive_json()["type"] == "error"
        with pytest.raises(WebSocketDisconnect):
            ws.receive_json()


def test_token_in_authorization_header(api_client, create_user, token_for):
    alice = create_user("Alice")
    headers = {"Authorization": f"Bearer {token_for(alice)}"}
    with api_client.websocket_connect("/ws", headers=headers) as ws:
        online = ws.receive_json()
        assert online["type"] == "online_users"
        assert [u["id"] for u in online["users"]] == [alice.id]


def test_two_members_exchange_messages(api_client, create_user, token_for, storage, run):
    alice = create_user("Alice")
    bob = create_user("Bob")
    chat = run(storage.chats.find_or_create_private_chat(alice.id, bob.id))

    with api_client.websocket_connect(f"/ws?token={token_for(alice)}") as ws_a:
        receive_until(ws_a, "online_users")
        with api_client.websocket_connect(f"/ws?token={token_for(bob)}") as ws_b:
            receive_until(ws_b, "online_users")
            assert receive_until(ws_a, "user_online")["userId"] == bob.id

            ws_a.send_json({"type": "send_message", "chatId": chat.id, "content": "hi"})

            to_a = receive_until(ws_a, "new_message")
            to_b = receive_until(ws_b, "new_message")
            assert to_a["message"]["content"] == "hi"
            assert to_b["message"]["id"] == to_a["message"]["id"]
            assert to_b["message"]["senderId"] == alice.id

            stored = run(storage.chats.get(chat.id))
            assert stored.lastMessageId == to_a["message"]["id"]

        left = receive_until(ws_a, "user_offline")
        assert left["userId"] == bob.id

    assert run(storage.users.get(bob.id)).isOnline is False


def test_typing_is_not_echoed(api_client, create_user, token_for, storage, run):
    alice = create_user("Alice")
    bob = create_user("Bob")
    chat = run(storage.chats.find_or_create_private_chat(alice.id, bob.id))

    with api_client.websocket_connect(f"/ws?token={token_for(alice)}") as ws_a:
        receive_until(ws_a, "online_users")
        with api_client.websocket_connect(f"/ws?token={token_for(bob)}") as ws_b:
            receive_until(ws_b, "online_users")
            receive_until(ws_a, "user_online")

            ws_a.send_json({"type": "typing_start", "chatId": chat.id})
            typing = ws_b.receive_json()
            assert typing == {
                "type": "user_typing", "userId": alice.id, "userName": "Alice", "chatId": chat.id,
            }

            # alice's next frame is her own message, not her typing indicator
            ws_a.send_json({"type": "send_message", "chatId": chat.id, "content": "done"})
            assert ws_a.receive_json()["type"] == "new_message"


def test_outsider_cannot_post(api_client, create_user, token_for, storage, run):
    alice = create_user("Alice")
    bob = create_user("Bob")
    mallory = create_user("Mallory")
    chat = run(storage.chats.find_or_create_private_chat(alice.id, bob.id))

    with api_client.websocket_connect(f"/ws?token={token_for(mallory)}") as ws_m:
        receive_until(ws_m, "online_users")
        ws_m.send_json({"type": "send_message", "chatId": chat.id, "content": "spam"})
        assert ws_m.receive_json() == {
            "type": "error", "message": "Chat not found or access denied",
        }

    assert run(storage.messages.count_for_chat(chat.id, include_deleted=True)) == 0


def test_malformed_frames_get_errors_and_keep_connection(api_client, create_user, token_for):
    alice = create_user("Alice")
    with api_client.websocket_connect(f"/ws?token={token_for(alice)}") as ws:
        receive_until(ws, "online_users")

        ws.send_text("{not json")
        assert ws.receive_json()["type"] == "error"

        ws.send_json(["a", "list"])
        assert ws.receive_json()["message"] == "Invalid message format: expected a JSON object"

        ws.send_json({"type": "nope"})
        assert ws.receive_json()["message"] == "Unknown event type: nope"


def test_reconnect_replaces_previous_session(api_client, create_user, token_for, hub):
    alice = create_user("Alice")
    token = token_for(alice)

    with api_client.websocket_connect(f"/ws?token={token}") as first:
        receive_until(first, "online_users")
        with api_client.websocket_connect(f"/ws?token={token}") as second:
            receive_until(second, "online_users")

            assert receive_until(first, "session_replaced")["type"] == "session_replaced"
            with pytest.raises(WebSocketDisconnect) as exc:
                first.receive_json()
            assert exc.value.code == 1008
            assert len(hub.presence) == 1
            assert hub.presence.connection_for(alice.id).is_active
