from __future__ import annotations

import pytest

from rsvpdesk import config


def test_defaults_apply_without_config_file(tmp_path, monkeypatch):
    monkeypatch.setenv("RSVPDESK_BASE_DIR", str(tmp_path))
    monkeypatch.delenv("RSVPDESK_CONFIG", raising=False)
    loaded = config.load_settings()
    assert loaded.rsvps_per_page == 10
    assert loaded.guest_min == 1 and loaded.guest_max == 50
    assert loaded.reset_page_on_search is True
    assert loaded.database_path == tmp_path / "data" / "rsvpdesk.db"
    assert loaded.media_dir.is_dir()
    assert loaded.max_upload_bytes == 50 * 1024 * 1024


def test_env_overrides_toml(tmp_path, monkeypatch):
    config_path = tmp_path / "rsvpdesk.toml"
    config_path.write_text(
        'rsvps_per_page = 25\nbase_url = "https://rsvp.example.org/"\n'
        "reset_page_on_search = true\n"
    )
    monkeypatch.setenv("RSVPDESK_BASE_DIR", str(tmp_path))
    monkeypatch.setenv("RSVPDESK_RESET_PAGE_ON_SEARCH", "no")
    loaded = config.load_settings(config_path)
    assert loaded.rsvps_per_page == 25
    assert loaded.base_url == "https://rsvp.example.org"
    assert loaded.reset_page_on_search is False


def test_bad_boolean_is_rejected(tmp_path, monkeypatch):
    monkeypatch.setenv("RSVPDESK_BASE_DIR", str(tmp_path))
    monkeypatch.setenv("RSVPDESK_ENABLE_SCHEDULER", "sometimes")
    with pytest.raises(ValueError):
        config.load_settings(tmp_path / "missing.toml")


def test_update_config_file_merges_known_keys(tmp_path, monkeypatch):
    monkeypatch.setattr(config, "settings", config.settings)
    monkeypatch.setenv("RSVPDESK_BASE_DIR", str(tmp_path))
    config_path = tmp_path / "rsvpdesk.toml"
    config.write_config_file({"guest_max": 20}, path=config_path)

    updated = config.update_config_file(
        {"default_title": 'Gala "2025"', "bogus": 1}, path=config_path
    )

    assert updated.guest_max == 20
    assert updated.default_title == 'Gala "2025"'
    assert "bogus" not in config_path.read_text()
    assert config.settings_as_dict(updated)["default_title"] == 'Gala "2025"'
