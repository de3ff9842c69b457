"""Attachment storage for chat uploads.

Files are stored in: {upload_dir}/{chat_id}/{uuid}.{ext} and served by the
``/uploads`` static mount.
"""
import logging
import uuid
from pathlib import Path
from typing import Iterable, Optional

from app.config import get_config
from app.errors import ValidationError

from .schemas import StoredFile, get_message_type

logger = logging.getLogger(__name__)


class FileStorageService:
    """Validates uploads against the size/extension policy and writes them to disk."""

    _instance: Optional["FileStorageService"] = None

    def __init__(
        self,
        upload_dir: str = "uploads",
        max_file_size_bytes: int = 10 * 1024 * 1024,
        allowed_extensions: Iterable[str] = (),
    ):
        self._upload_dir = upload_dir
        self._max_file_size_bytes = max_file_size_bytes
        self._allowed_extensions = {e.lower().lstrip(".") for e in allowed_extensions}
        self._ensure_upload_dir()

    @classmethod
    def get_instance(cls) -> "FileStorageService":
        """Get or create the singleton instance from the upload settings."""
        if cls._instance is None:
            uploads = get_config().uploads
            cls._instance = cls(
                upload_dir=uploads.upload_dir,
                max_file_size_bytes=uploads.max_file_size_bytes,
                allowed_extensions=uploads.allowed_extensions,
            )
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Reset the singleton instance (for testing)."""
        cls._instance = None

    @property
    def upload_dir(self) -> str:
        return self._upload_dir

    def _ensure_upload_dir(self) -> None:
        Path(self._upload_dir).mkdir(parents=True, exist_ok=True)

    def _get_chat_dir(self, chat_id: str) -> Path:
        return Path(self._upload_dir) / chat_id

    def validate(self, filename: str, size_bytes: int) -> str:
        """Check an upload against the policy.

        Returns:
            The lower-cased extension without the dot.

        Raises:
            ValidationError: Disallowed extension or too large.
        """
        ext = Path(filename or "").suffix.lower().lstrip(".")
        if self._allowed_extensions and ext not in self._allowed_extensions:
            raise ValidationError(
                "Invalid file type. Only images, documents, and audio files are allowed."
            )
        if size_bytes > self._max_file_size_bytes:
            raise ValidationError(
                f"File size ({size_bytes} bytes) exceeds limit "
                f"({self._max_file_size_bytes} bytes)"
            )
        return ext

    def save_file(
        self,
        chat_id: str,
        filename: str,
        content: bytes,
        mime_type: str,
    ) -> StoredFile:
        """Validate and write an uploaded file.

        Args:
            chat_id: Chat the attachment belongs to
            filename: Original filename
            content: File content as bytes
            mime_type: MIME type reported by the client

        Raises:
            ValidationError: If the file breaks the upload policy
        """
        ext = self.validate(filename, len(content))
        stored_filename = f"{uuid.uuid4()}.{ext}" if ext else str(uuid.uuid4())

        chat_dir = self._get_chat_dir(chat_id)
        chat_dir.mkdir(parents=True, exist_ok=True)
        file_path = chat_dir / stored_filename
        file_path.write_bytes(content)

        logger.info(f"Saved file: {file_path} ({len(content)} bytes)")

        return StoredFile(
            original_filename=filename,
            stored_filename=stored_filename,
            mime_type=mime_type,
            size_bytes=len(content),
            url=f"/uploads/{chat_id}/{stored_filename}",
            message_type=get_message_type(mime_type),
        )

    def get_file_path(self, chat_id: str, stored_filename: str) -> Optional[Path]:
        file_path = self._get_chat_dir(chat_id) / stored_filename
        return file_path if file_path.exists() else None
