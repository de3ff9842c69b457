"""Tests for wire frame parsing and building."""
from datetime import datetime

import pytest

from app.chat import events
from app.errors import ValidationError
from app.storage.schemas import MessageType, PublicProfile


class TestParseCommand:

    def test_send_message_defaults(self):
        command = events.parse_command({"type": "send_message", "chatId": "c1", "content": "hi"})
        assert isinstance(command, events.SendMessage)
        assert command.messageType == MessageType.TEXT
        assert command.fileUrl == ""
        assert command.replyTo is None

    def test_each_client_event_parses(self):
        frames = [
            {"type": "join_chat", "chatId": "c1"},
            {"type": "leave_chat", "chatId": "c1"},
            {"type": "edit_message", "messageId": "m1", "content": "x"},
            {"type": "delete_message", "messageId": "m1"},
            {"type": "typing_start", "chatId": "c1"},
            {"type": "typing_stop", "chatId": "c1"},
            {"type": "add_reaction", "messageId": "m1", "emoji": "👍"},
            {"type": "remove_reaction", "messageId": "m1"},
        ]
        assert [events.parse_command(f).type for f in frames] == [f["type"] for f in frames]
        assert {f["type"] for f in frames} | {"send_message"} == events.CLIENT_EVENT_TYPES

    def test_not_an_object(self):
        with pytest.raises(ValidationError, match="expected a JSON object"):
            events.parse_command("hello")

    def test_unknown_type(self):
        with pytest.raises(ValidationError, match="Unknown event type: dance"):
            events.parse_command({"type": "dance"})

    def test_bad_message_type(self):
        with pytest.raises(ValidationError, match="Invalid send_message: messageType"):
            events.parse_command({"type": "send_message", "chatId": "c1", "messageType": "gif"})

    def test_empty_chat_id(self):
        with pytest.raises(ValidationError, match="chatId"):
            events.parse_command({"type": "typing_start", "chatId": ""})


class TestBuilders:

    def test_presence_frames(self):
        profile = PublicProfile(id="u1", name="Alice", isOnline=True)
        seen = datetime(2024, 1, 2, 3, 4, 5)

        assert events.online_users([profile])["users"][0]["id"] == "u1"
        assert events.user_online(profile)["userId"] == "u1"
        assert events.user_offline("u1", seen) == {
            "type": "user_offline", "userId": "u1", "lastSeen": "2024-01-02T03:04:05",
        }

    def test_error_frame(self):
        assert events.error("nope") == {"type": "error", "message": "nope"}
