"""Tests for settings, credential loading and identity providers."""

import json
import logging

import pytest

from spendsync.config import SyncSettings, get_spendsync_home, load_settings, validate_backend_url
from spendsync.identity import CredentialsIdentity, StaticIdentity

ENV_VARS = [
    "SPENDSYNC_HOME",
    "SPENDSYNC_DB_PATH",
    "SPENDSYNC_BACKEND_URL",
    "SPENDSYNC_AUTH_TOKEN",
    "SPENDSYNC_USER_ID",
    "SPENDSYNC_REQUEST_TIMEOUT",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("SPENDSYNC_HOME", str(tmp_path))
    monkeypatch.chdir(tmp_path)  # no stray .env


def write_credentials(home, **values):
    (home / "credentials.json").write_text(json.dumps(values))


# =============================================================================
# validate_backend_url
# =============================================================================


class TestValidateBackendUrl:
    @pytest.mark.parametrize(
        "url",
        ["https://sync.example.com", "http://localhost:8000", "http://127.0.0.1:9000/api"],
    )
    def test_accepts_safe_urls(self, url):
        assert validate_backend_url(url) == url

    @pytest.mark.parametrize(
        "url", ["http://sync.example.com", "ftp://sync.example.com", "https://", "", None]
    )
    def test_rejects_unsafe_urls(self, url):
        assert validate_backend_url(url) is None

    def test_rejection_is_logged(self, caplog):
        with caplog.at_level(logging.WARNING):
            validate_backend_url("http://sync.example.com")
        assert "Refusing non-local http backend_url" in caplog.text

    def test_localhost_http_can_be_disallowed(self):
        assert validate_backend_url("http://localhost", allow_localhost_http=False) is None


# =============================================================================
# SyncSettings / load_settings
# =============================================================================


class TestSettings:
    def test_defaults(self, tmp_path):
        settings = SyncSettings()
        assert settings.home == tmp_path
        assert settings.database_path == tmp_path / "spendsync.db"
        assert settings.request_timeout == 10.0
        assert settings.health_timeout == 3.0
        assert settings.foreground_min_interval == 900
        assert settings.auto_sync_interval == 300
        assert settings.allow_expensive_sync is True
        assert settings.allow_constrained_sync is False
        assert settings.has_cloud_credentials is False

    def test_environment_prefix(self, monkeypatch):
        monkeypatch.setenv("SPENDSYNC_REQUEST_TIMEOUT", "5")
        monkeypatch.setenv("SPENDSYNC_BACKEND_URL", "https://sync.example.com/")
        settings = SyncSettings()
        assert settings.request_timeout == 5.0
        assert settings.backend_url == "https://sync.example.com"

    def test_unsafe_backend_url_is_dropped(self):
        assert SyncSettings(backend_url="http://sync.example.com").backend_url is None

    def test_home_override(self, tmp_path, monkeypatch):
        monkeypatch.setenv("SPENDSYNC_HOME", str(tmp_path / "elsewhere"))
        assert get_spendsync_home() == tmp_path / "elsewhere"

    def test_credentials_file_is_read(self, tmp_path):
        write_credentials(
            tmp_path,
            backend_url="https://creds.example.com",
            auth_token="creds-token",
            user_id="user-1",
        )
        settings = load_settings()
        assert settings.backend_url == "https://creds.example.com"
        assert settings.auth_token == "creds-token"
        assert settings.user_id == "user-1"
        assert settings.has_cloud_credentials is True

    def test_environment_beats_credentials_file(self, tmp_path, monkeypatch):
        write_credentials(
            tmp_path, backend_url="https://creds.example.com", auth_token="creds-token"
        )
        monkeypatch.setenv("SPENDSYNC_AUTH_TOKEN", "env-token")

        settings = load_settings()

        assert settings.auth_token == "env-token"
        assert settings.backend_url == "https://creds.example.com"

    def test_legacy_token_key(self, tmp_path):
        write_credentials(tmp_path, backend_url="https://creds.example.com", token="legacy")
        assert load_settings().auth_token == "legacy"

    def test_unreadable_credentials_are_ignored(self, tmp_path, caplog):
        (tmp_path / "credentials.json").write_text("{not json")
        with caplog.at_level(logging.WARNING):
            settings = load_settings()
        assert settings.auth_token is None
        assert "Ignoring unreadable" in caplog.text

    def test_explicit_home(self, tmp_path):
        other = tmp_path / "other"
        other.mkdir()
        write_credentials(other, user_id="from-other-home")
        settings = load_settings(home=other)
        assert settings.home == other
        assert settings.user_id == "from-other-home"


# =============================================================================
# Identity
# =============================================================================


class TestIdentity:
    def test_static_identity_sign_in_and_out(self):
        identity = StaticIdentity()
        assert identity.current_user_id() is None
        identity.sign_in("user-1")
        assert identity.current_user_id() == "user-1"
        identity.sign_out()
        assert identity.current_user_id() is None

    def test_credentials_identity_needs_token(self):
        assert CredentialsIdentity(SyncSettings(user_id="user-1")).current_user_id() is None
        settings = SyncSettings(user_id="user-1", auth_token="t")
        assert CredentialsIdentity(settings).current_user_id() == "user-1"
