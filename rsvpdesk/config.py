"""Global configuration for RSVPDesk."""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any, Callable

DEFAULTS: dict[str, Any] = {
    "rsvps_per_page": 10,
    "guest_min": 1,
    "guest_max": 50,
    "default_title": "Event RSVP",
    "base_url": "http://localhost:8000",
    "export_basename": "rsvp_list",
    "reset_page_on_search": True,
    "max_upload_mb": 50,
    "enable_scheduler": True,
    "sqlite_vacuum_hours": 12,
    "session_max_age_hours": 12,
    "seed_rsvps": 25,
    "app_host": "0.0.0.0",
    "app_port": 8000,
}

TYPE_CASTERS: dict[str, Callable[[Any], Any]] = {
    "rsvps_per_page": int,
    "guest_min": int,
    "guest_max": int,
    "default_title": str,
    "base_url": str,
    "export_basename": str,
    "reset_page_on_search": bool,
    "max_upload_mb": int,
    "enable_scheduler": bool,
    "sqlite_vacuum_hours": int,
    "session_max_age_hours": int,
    "seed_rsvps": int,
    "app_host": str,
    "app_port": int,
}


@dataclass(frozen=True)
class Settings:
    base_dir: Path
    data_dir: Path
    database_path: Path
    media_dir: Path
    rsvps_per_page: int
    guest_min: int
    guest_max: int
    default_title: str
    base_url: str
    export_basename: str
    reset_page_on_search: bool
    max_upload_mb: int
    enable_scheduler: bool
    sqlite_vacuum_hours: int
    session_max_age_hours: int
    seed_rsvps: int
    root_token_key: str
    app_host: str
    app_port: int
    config_path: Path

    @property
    def vacuum_interval(self) -> timedelta:
        return timedelta(hours=self.sqlite_vacuum_hours)

    @property
    def session_max_age(self) -> timedelta:
        return timedelta(hours=self.session_max_age_hours)

    @property
    def max_upload_bytes(self) -> int:
        return self.max_upload_mb * 1024 * 1024


def _boolify(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
    raise ValueError(f"Cannot parse boolean value from {value!r}")


def _cast_value(key: str, value: Any) -> Any:
    if key not in TYPE_CASTERS:
        return value
    caster = TYPE_CASTERS[key]
    if caster is bool:
        return _boolify(value)
    return caster(value)


def _load_toml_config(config_path: Path) -> dict[str, Any]:
    if not config_path.exists():
        return {}
    with config_path.open("rb") as handle:
        return tomllib.load(handle)


def _config_layered_value(key: str, *, toml_config: dict[str, Any]) -> Any:
    env_key = f"RSVPDESK_{key.upper()}"
    if env_key in os.environ:
        return _cast_value(key, os.environ[env_key])
    if key in toml_config:
        return _cast_value(key, toml_config[key])
    return DEFAULTS[key]


def _resolve_under(base: Path, raw: str | Path | None, fallback: Path) -> Path:
    resolved = Path(raw) if raw else fallback
    if not resolved.is_absolute():
        resolved = base / resolved
    return resolved


def load_settings(config_override: Path | None = None) -> Settings:
    base_dir = Path(os.getenv("RSVPDESK_BASE_DIR", Path.cwd()))
    env_config = os.getenv("RSVPDESK_CONFIG")
    config_path = Path(config_override or env_config or base_dir / "rsvpdesk.toml")
    toml_config = _load_toml_config(config_path)

    data_dir = _resolve_under(
        base_dir,
        os.getenv("RSVPDESK_DATA_DIR", toml_config.get("data_dir")),
        base_dir / "data",
    )
    database_path = _resolve_under(
        base_dir,
        os.getenv("RSVPDESK_DB", toml_config.get("database_path")),
        data_dir / "rsvpdesk.db",
    )
    media_dir = _resolve_under(
        base_dir,
        os.getenv("RSVPDESK_MEDIA_DIR", toml_config.get("media_dir")),
        data_dir / "media",
    )

    values = {
        key: _config_layered_value(key, toml_config=toml_config) for key in DEFAULTS
    }
    values["base_url"] = str(values["base_url"]).rstrip("/")

    settings = Settings(
        base_dir=base_dir,
        data_dir=data_dir,
        database_path=database_path,
        media_dir=media_dir,
        root_token_key="root_admin_token",
        config_path=config_path,
        **values,
    )
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.media_dir.mkdir(parents=True, exist_ok=True)
    return settings


def settings_as_dict(settings: Settings) -> dict[str, Any]:
    data: dict[str, Any] = {
        "base_dir": str(settings.base_dir),
        "data_dir": str(settings.data_dir),
        "database_path": str(settings.database_path),
        "media_dir": str(settings.media_dir),
    }
    for key in DEFAULTS:
        data[key] = getattr(settings, key)
    return data


def _toml_literal(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    escaped = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def write_config_file(config: dict[str, Any], *, path: Path) -> None:
    lines = ["# RSVPDesk configuration\n"]
    for key in sorted(config.keys()):
        lines.append(f"{key} = {_toml_literal(config[key])}\n")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("".join(lines), encoding="utf-8")


def update_config_file(updates: dict[str, Any], *, path: Path | None = None) -> Settings:
    current_settings = settings if "settings" in globals() else load_settings()
    target_path = path or current_settings.config_path
    existing = _load_toml_config(target_path)
    merged = {**existing}
    for key, value in updates.items():
        if key not in DEFAULTS:
            continue
        merged[key] = _cast_value(key, value)
    write_config_file(merged, path=target_path)
    new_settings = load_settings(target_path)
    globals()["settings"] = new_settings
    return new_settings


settings = load_settings()
