"""Tests for environment-driven settings."""

import pytest
from pydantic import ValidationError

from finledger.config import RemoteSettings, SyncSettings, get_settings, validate_all_settings


@pytest.fixture(autouse=True)
def fresh_settings():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


class TestRemoteSettings:
    """Tests for the web app settings."""

    def test_loaded_from_environment(self, monkeypatch):
        """Test the LEDGER_REMOTE_ prefix."""
        monkeypatch.setenv("LEDGER_REMOTE_SCRIPT_URL", "https://script.google.com/macros/s/abc/exec")
        monkeypatch.setenv("LEDGER_REMOTE_PIN", "0000")
        settings = get_settings().remote
        assert settings.pin == "0000"
        assert settings.request_timeout_seconds == 30.0
        assert settings.max_fetch_attempts == 3

    def test_rejects_non_http_url(self):
        """Test that the script URL must be http(s)."""
        with pytest.raises(ValidationError):
            RemoteSettings(script_url="ftp://example.com", pin="1")


class TestSyncSettings:
    """Tests for sync behaviour settings."""

    def test_defaults(self):
        """Test the default delay and policy."""
        settings = SyncSettings()
        assert settings.resync_delay_seconds == 1.5
        assert settings.reconcile_policy == "defer_when_in_flight"
        assert settings.history_size == 200

    def test_unknown_policy(self):
        """Test that only the two named policies are accepted."""
        with pytest.raises(ValidationError):
            SyncSettings(reconcile_policy="client_wins")


class TestValidateAllSettings:
    """Tests for the startup check."""

    def test_reports_missing_groups(self, monkeypatch):
        """Test that unconfigured groups are reported with their error."""
        monkeypatch.delenv("LEDGER_REMOTE_SCRIPT_URL", raising=False)
        monkeypatch.delenv("LEDGER_REMOTE_PIN", raising=False)
        results = validate_all_settings()
        assert results["sync"] is True
        assert results["app"] is True
        assert results["remote"] is False
        assert "remote_error" in results
