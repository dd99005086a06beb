"""Tests for hard75.config — settings parsing and validation."""

import pytest
from pydantic import ValidationError

from hard75.config import Settings, _load_settings


class TestSettings:
    def test_trailing_slash_stripped(self):
        assert Settings(API_BASE_URL="https://api.example.com/").API_BASE_URL == "https://api.example.com"

    def test_user_ids_from_csv(self):
        s = Settings(API_BASE_URL="http://x", ALLOWED_USER_IDS="1, 2,,3")
        assert s.ALLOWED_USER_IDS == [1, 2, 3]

    @pytest.mark.parametrize("raw,expected", [("true", True), ("1", True), ("off", False), ("", False)])
    def test_persist_flag(self, raw, expected):
        assert Settings(API_BASE_URL="http://x", PERSIST_PENDING_CHANGES=raw).PERSIST_PENDING_CHANGES is expected

    def test_reminder_hour_bounds(self):
        with pytest.raises(ValidationError):
            Settings(API_BASE_URL="http://x", REMINDER_HOUR=24)

    def test_sync_interval_must_be_positive(self):
        with pytest.raises(ValidationError):
            Settings(API_BASE_URL="http://x", SYNC_INTERVAL_SECONDS=0)


class TestLoadSettings:
    def test_missing_base_url_exits(self, monkeypatch):
        monkeypatch.setenv("API_BASE_URL", "your-api-base-url")
        with pytest.raises(SystemExit):
            _load_settings()

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("API_BASE_URL", "http://api.test/")
        monkeypatch.setenv("SYNC_INTERVAL_SECONDS", "60")
        s = _load_settings()
        assert s.API_BASE_URL == "http://api.test"
        assert s.SYNC_INTERVAL_SECONDS == 60
