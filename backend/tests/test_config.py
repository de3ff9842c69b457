"""Tests for settings loading.

Covers:
* defaults when no YAML is present
* YAML settings + secrets merge
* environment overrides for the JWT secret and database path
"""
import pytest

from app import config
from app.config import AppSettings, UploadSettings, load_settings


@pytest.fixture
def yaml_files(tmp_path, monkeypatch):
    settings_file = tmp_path / "chat.settings.yaml"
    secrets_file = tmp_path / "chat.secrets.yaml"
    monkeypatch.setattr(config, "SETTINGS_FILE", settings_file)
    monkeypatch.setattr(config, "SECRETS_FILE", secrets_file)
    monkeypatch.delenv("CHAT_JWT_SECRET", raising=False)
    monkeypatch.delenv("CHAT_DB_PATH", raising=False)
    return settings_file, secrets_file


class TestDefaults:

    def test_defaults_without_files(self, yaml_files):
        settings = load_settings()
        assert settings.server.port == 3000
        assert settings.auth.token_expire_minutes == 60 * 24
        assert settings.presence.reconcile_interval_seconds == 60
        assert settings.storage.db_path == "chat.duckdb"
        assert settings.secrets.jwt.algorithm == "HS256"

    def test_upload_limits(self):
        uploads = UploadSettings()
        assert uploads.max_file_size_bytes == 10 * 1024 * 1024
        assert "png" in uploads.allowed_extensions
        assert "exe" not in uploads.allowed_extensions

    def test_google_callback_defaults_to_backend_url(self):
        settings = AppSettings()
        assert settings.google.resolve_callback_url("http://api.example.com/") == \
            "http://api.example.com/auth/google/callback"
        settings.google.callback_url = "https://x.example.com/cb"
        assert settings.google.resolve_callback_url("ignored") == "https://x.example.com/cb"


class TestYamlLoading:

    def test_settings_and_secrets_are_merged(self, yaml_files):
        settings_file, secrets_file = yaml_files
        settings_file.write_text(
            "server:\n"
            "  port: 4000\n"
            "  frontend_url: http://app.example.com\n"
            "presence:\n"
            "  reconcile_interval_seconds: 15\n"
        )
        secrets_file.write_text(
            "jwt:\n"
            "  secret_key: from-yaml\n"
            "google:\n"
            "  client_id: cid\n"
        )

        settings = load_settings()

        assert settings.server.port == 4000
        assert settings.server.frontend_url == "http://app.example.com"
        assert settings.presence.reconcile_interval_seconds == 15
        assert settings.secrets.jwt.secret_key == "from-yaml"
        assert settings.secrets.google.client_id == "cid"

    def test_env_overrides_win(self, yaml_files, monkeypatch):
        _, secrets_file = yaml_files
        secrets_file.write_text("jwt:\n  secret_key: from-yaml\n")
        monkeypatch.setenv("CHAT_JWT_SECRET", "from-env")
        monkeypatch.setenv("CHAT_DB_PATH", "/data/chat.duckdb")

        settings = load_settings()

        assert settings.secrets.jwt.secret_key == "from-env"
        assert settings.storage.db_path == "/data/chat.duckdb"


class TestCaching:

    def test_set_and_reset_config(self, yaml_files):
        custom = AppSettings()
        custom.server.port = 9999
        config.set_config(custom)
        assert config.get_config() is custom

        config.reset_config()
        assert config.get_config().server.port == 3000
