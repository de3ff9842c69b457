"""Tests for connection lifecycle and presence reconciliation."""
import pytest

from app.chat import events
from app.chat.connection import ClientConnection, ConnectionState
from app.chat.lifecycle import PresenceReconciler


async def _users(storage, *names):
    return [
        await storage.users.create(email=f"{n.lower()}@example.com", name=n)
        for n in names
    ]


class TestAuthenticate:

    @pytest.mark.asyncio
    async def test_bad_token_gets_error_and_close(self, hub, fake_websocket):
        ws = fake_websocket()
        conn = ClientConnection(ws)

        assert await hub.lifecycle.authenticate(conn, "not-a-jwt") is False

        assert ws.sent == [events.error("Authentication error")]
        assert ws.closed_with == 1008
        assert conn.state == ConnectionState.DISCONNECTED
        assert len(hub.presence) == 0

    @pytest.mark.asyncio
    async def test_missing_token(self, hub, fake_websocket):
        conn = ClientConnection(fake_websocket())
        assert await hub.lifecycle.authenticate(conn, None) is False

    @pytest.mark.asyncio
    async def test_valid_token_authenticates(self, storage, hub, fake_websocket, token_for):
        (alice,) = await _users(storage, "Alice")
        conn = ClientConnection(fake_websocket())

        assert await hub.lifecycle.authenticate(conn, token_for(alice)) is True
        assert conn.state == ConnectionState.AUTHENTICATED
        assert conn.user_id == alice.id


class TestActivateAndDisconnect:

    @pytest.mark.asyncio
    async def test_connect_then_disconnect_round_trip(self, storage, hub, connect):
        alice, bob = await _users(storage, "Alice", "Bob")
        chat = await storage.chats.find_or_create_private_chat(alice.id, bob.id)
        assert (await storage.users.get(alice.id)).isOnline is False

        conn_a, ws_a = await connect(alice)

        assert conn_a.is_active
        assert hub.presence.is_online(alice.id)
        assert hub.rooms.rooms_of(conn_a) == {f"user:{alice.id}", f"chat:{chat.id}"}
        stored = await storage.users.get(alice.id)
        assert stored.isOnline is True
        assert stored.socketId == conn_a.sid
        (online,) = ws_a.of_type("online_users")
        assert [u["id"] for u in online["users"]] == [alice.id]

        await hub.lifecycle.disconnect(conn_a)

        assert not hub.presence.is_online(alice.id)
        assert hub.rooms.rooms_of(conn_a) == set()
        assert hub.rooms.broadcast_targets(chat.id) == set()
        stored = await storage.users.get(alice.id)
        assert stored.isOnline is False
        assert stored.socketId == ""

    @pytest.mark.asyncio
    async def test_others_see_online_and_offline(self, storage, hub, connect):
        alice, bob = await _users(storage, "Alice", "Bob")
        _, ws_a = await connect(alice)
        ws_a.clear()

        conn_b, ws_b = await connect(bob)

        (joined,) = ws_a.of_type("user_online")
        assert joined["userId"] == bob.id
        assert joined["user"]["isOnline"] is True
        assert ws_b.of_type("user_online") == []
        assert {u["id"] for u in ws_b.of_type("online_users")[0]["users"]} == {alice.id, bob.id}

        await hub.lifecycle.disconnect(conn_b)

        (left,) = ws_a.of_type("user_offline")
        assert left["userId"] == bob.id
        assert left["lastSeen"] is not None

    @pytest.mark.asyncio
    async def test_disconnect_is_idempotent(self, storage, hub, connect):
        alice, bob = await _users(storage, "Alice", "Bob")
        _, ws_a = await connect(alice)
        conn_b, _ = await connect(bob)
        ws_a.clear()

        await hub.lifecycle.disconnect(conn_b)
        await hub.lifecycle.disconnect(conn_b)

        assert len(ws_a.of_type("user_offline")) == 1

    @pytest.mark.asyncio
    async def test_second_connection_evicts_first(self, storage, hub, connect):
        alice, bob = await _users(storage, "Alice", "Bob")
        chat = await storage.chats.find_or_create_private_chat(alice.id, bob.id)
        old, old_ws = await connect(alice)
        _, ws_b = await connect(bob)
        ws_b.clear()

        new, _ = await connect(alice)

        assert old_ws.of_type("session_replaced")
        assert old_ws.closed_with == 1008
        assert old.state == ConnectionState.DISCONNECTED
        assert hub.presence.connection_for(alice.id) is new
        assert hub.rooms.broadcast_targets(chat.id) == {new, hub.presence.connection_for(bob.id)}
        assert (await storage.users.get(alice.id)).socketId == new.sid

        # the replaced connection closing later must not take the user offline
        await hub.lifecycle.disconnect(old)
        assert hub.presence.is_online(alice.id)
        assert (await storage.users.get(alice.id)).isOnline is True
        assert ws_b.of_type("user_offline") == []

    @pytest.mark.asyncio
    async def test_disconnect_before_activation_is_quiet(self, storage, hub, fake_websocket, token_for):
        alice, bob = await _users(storage, "Alice", "Bob")
        conn = ClientConnection(fake_websocket())
        await hub.lifecycle.authenticate(conn, token_for(alice))

        await hub.lifecycle.disconnect(conn)

        assert conn.state == ConnectionState.DISCONNECTED
        assert not hub.presence.is_online(alice.id)


class TestPresenceReconciler:

    @pytest.mark.asyncio
    async def test_sweep_clears_missed_disconnect(self, storage, hub):
        (alice,) = await _users(storage, "Alice")
        # abrupt crash: flag persisted, no presence entry
        await storage.users.mark_online(alice.id, "dead-sid")

        cleared, restored = await hub.reconciler.sweep_once()

        assert cleared == [alice.id]
        assert restored == []
        stored = await storage.users.get(alice.id)
        assert stored.isOnline is False
        assert stored.socketId == ""

    @pytest.mark.asyncio
    async def test_sweep_restores_flag_for_live_connection(self, storage, hub, connect):
        (alice,) = await _users(storage, "Alice")
        await connect(alice)
        await storage.users.mark_offline(alice.id)

        cleared, restored = await hub.reconciler.sweep_once()

        assert cleared == []
        assert restored == [alice.id]
        assert (await storage.users.get(alice.id)).isOnline is True

    @pytest.mark.asyncio
    async def test_connect_during_stale_clear_survives_disconnect(self, storage, hub, connect):
        (alice,) = await _users(storage, "Alice")
        snapshot = hub.presence.user_ids()
        conn, _ = await connect(alice)
        # a clear working from the pre-connect snapshot wipes the new row
        await storage.users.clear_stale_online(snapshot)

        cleared, restored = await hub.reconciler.sweep_once()

        assert cleared == []
        assert restored == [alice.id]
        stored = await storage.users.get(alice.id)
        assert stored.isOnline is True
        assert stored.socketId == conn.sid

        await hub.lifecycle.disconnect(conn)

        assert hub.presence.is_online(alice.id) is False
        assert (await storage.users.get(alice.id)).isOnline is False

    @pytest.mark.asyncio
    async def test_sweep_keeps_connection_missing_from_snapshot(self, storage, hub, connect):
        (alice,) = await _users(storage, "Alice")
        conn, _ = await connect(alice)

        cleared = await storage.users.clear_stale_online(
            [], is_live=hub.presence.owns_socket
        )

        assert cleared == []
        assert (await storage.users.get(alice.id)).socketId == conn.sid

    @pytest.mark.asyncio
    async def test_start_and_stop(self, storage, hub):
        reconciler = PresenceReconciler(storage.users, hub.presence, interval_seconds=3600)
        await reconciler.start()
        await reconciler.stop()
        await reconciler.stop()
