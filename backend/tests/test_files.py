"""Tests for attachment storage."""
import pytest

from app.errors import ValidationError
from app.files.schemas import get_message_type
from app.files.service import FileStorageService
from app.storage.schemas import MessageType


@pytest.fixture
def service(tmp_path):
    return FileStorageService(
        upload_dir=str(tmp_path / "uploads"),
        max_file_size_bytes=16,
        allowed_extensions=["png", "pdf", "mp3"],
    )


class TestGetMessageType:

    @pytest.mark.parametrize("mime,expected", [
        ("image/jpeg", MessageType.IMAGE),
        ("audio/mpeg", MessageType.AUDIO),
        ("video/mp4", MessageType.VIDEO),
        ("application/pdf", MessageType.FILE),
        ("", MessageType.FILE),
    ])
    def test_mapping(self, mime, expected):
        assert get_message_type(mime) == expected


class TestFileStorageService:

    def test_save_writes_file_under_chat_dir(self, service, tmp_path):
        stored = service.save_file("chat1", "Song.MP3", b"abc", "audio/mpeg")

        assert stored.stored_filename.endswith(".mp3")
        assert stored.url == f"/uploads/chat1/{stored.stored_filename}"
        assert stored.message_type == MessageType.AUDIO
        path = service.get_file_path("chat1", stored.stored_filename)
        assert path.read_bytes() == b"abc"

    def test_rejects_disallowed_extension(self, service):
        with pytest.raises(ValidationError, match="Invalid file type"):
            service.save_file("chat1", "script.sh", b"echo", "text/x-sh")

    def test_rejects_oversized_file(self, service):
        with pytest.raises(ValidationError, match="exceeds limit"):
            service.save_file("chat1", "big.png", b"x" * 17, "image/png")

    def test_missing_file_path(self, service):
        assert service.get_file_path("chat1", "nope.png") is None

    def test_instance_uses_upload_settings(self, test_settings):
        instance = FileStorageService.get_instance()
        assert instance.upload_dir == test_settings.uploads.upload_dir
        assert FileStorageService.get_instance() is instance
