"""Tests for the JSON settings store."""

import json
import logging
import stat
import sys
from pathlib import Path
from unittest.mock import patch

import pytest

from vicare_auth.store import REFRESH_TOKEN_KEY, SettingsStore


class TestSettingsStoreLoad:
    """Tests for SettingsStore.load."""

    def test_missing_file_is_created_empty(self, settings_path: Path):
        store = SettingsStore(settings_path)

        assert store.load() == {}
        assert settings_path.exists()
        assert json.loads(settings_path.read_text()) == {}

    def test_missing_parent_directory_is_created(self, tmp_path: Path):
        path = tmp_path / "nested" / "dir" / "settings.json"
        SettingsStore(path).load()
        assert path.exists()

    def test_loads_existing_object(self, settings_path: Path):
        settings_path.write_text(json.dumps({"refreshToken": "abc", "other": 1}))
        assert SettingsStore(settings_path).load() == {"refreshToken": "abc", "other": 1}

    def test_corrupted_file_returns_empty_and_warns(self, settings_path: Path, caplog):
        settings_path.write_text("{ not json")

        with caplog.at_level(logging.WARNING, logger="vicare_auth.store"):
            result = SettingsStore(settings_path).load()

        assert result == {}
        assert "not valid JSON" in caplog.text

    def test_non_object_json_returns_empty(self, settings_path: Path, caplog):
        settings_path.write_text("[1, 2, 3]")

        with caplog.at_level(logging.WARNING, logger="vicare_auth.store"):
            assert SettingsStore(settings_path).load() == {}
        assert "JSON object" in caplog.text

    def test_empty_file_returns_empty(self, settings_path: Path):
        settings_path.write_text("")
        assert SettingsStore(settings_path).load() == {}

    def test_read_error_is_swallowed(self, settings_path: Path, caplog):
        settings_path.write_text("{}")
        store = SettingsStore(settings_path)

        with patch.object(Path, "read_text", side_effect=PermissionError("denied")):
            with caplog.at_level(logging.WARNING, logger="vicare_auth.store"):
                assert store.load() == {}

        assert "Error while loading local storage" in caplog.text


class TestSettingsStoreSave:
    """Tests for SettingsStore.save."""

    def test_round_trip_through_fresh_instance(self, settings_path: Path):
        SettingsStore(settings_path).save({"refreshToken": "abc"})
        assert SettingsStore(settings_path).load() == {"refreshToken": "abc"}

    def test_save_preserves_unrelated_keys(self, settings_path: Path):
        settings_path.write_text(json.dumps({"devices": [{"id": "0"}], "refreshToken": "old"}))

        store = SettingsStore(settings_path)
        store.load()
        assert store.save({"refreshToken": "new"})

        assert json.loads(settings_path.read_text()) == {
            "devices": [{"id": "0"}],
            "refreshToken": "new",
        }

    def test_save_without_explicit_load(self, settings_path: Path):
        settings_path.write_text(json.dumps({"keep": True}))
        SettingsStore(settings_path).save({"refreshToken": "abc"})
        assert json.loads(settings_path.read_text()) == {"keep": True, "refreshToken": "abc"}

    def test_write_error_is_swallowed(self, settings_path: Path, caplog):
        store = SettingsStore(settings_path)
        store.load()

        with patch.object(Path, "write_text", side_effect=OSError("disk full")):
            with caplog.at_level(logging.WARNING, logger="vicare_auth.store"):
                assert store.save({"refreshToken": "abc"}) is False

        assert "Error while saving local storage" in caplog.text

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX permissions")
    def test_file_permissions_owner_only(self, settings_path: Path):
        SettingsStore(settings_path).save({"refreshToken": "abc"})
        mode = stat.S_IMODE(settings_path.stat().st_mode)
        assert mode == 0o600


class TestRefreshTokenHelpers:
    def test_save_and_get_refresh_token(self, settings_path: Path):
        SettingsStore(settings_path).save_refresh_token("abc")
        assert SettingsStore(settings_path).get_refresh_token() == "abc"

    def test_get_refresh_token_missing(self, settings_path: Path):
        assert SettingsStore(settings_path).get_refresh_token() is None

    def test_get_refresh_token_ignores_non_string(self, settings_path: Path):
        settings_path.write_text(json.dumps({REFRESH_TOKEN_KEY: 123}))
        assert SettingsStore(settings_path).get_refresh_token() is None
