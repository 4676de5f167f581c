"""Layered settings for Invitely (environment, then TOML file, then defaults)."""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

DEFAULTS: dict[str, Any] = {
    "app_host": "0.0.0.0",
    "app_port": 8000,
    "public_url": "http://localhost:8000",
    "cover_bucket": "event-covers",
    "email_from": "Invitely <invites@localhost>",
    "resend_api_key": "",
    "invite_batch_limit": 200,
    "draft_ttl_minutes": 120,
    "log_level": "info",
}

TYPE_CASTERS: dict[str, Callable[[Any], Any]] = {
    "app_host": str,
    "app_port": int,
    "public_url": str,
    "cover_bucket": str,
    "email_from": str,
    "resend_api_key": str,
    "invite_batch_limit": int,
    "draft_ttl_minutes": int,
    "log_level": str,
}

SECRET_KEYS = {"resend_api_key"}


@dataclass(frozen=True)
class Settings:
    base_dir: Path
    data_dir: Path
    database_path: Path
    assets_dir: Path
    app_host: str
    app_port: int
    public_url: str
    cover_bucket: str
    email_from: str
    resend_api_key: str
    invite_batch_limit: int
    draft_ttl_minutes: int
    log_level: str
    config_path: Path

    @property
    def email_enabled(self) -> bool:
        return bool(self.resend_api_key)

    @property
    def assets_url(self) -> str:
        return f"{self.public_url.rstrip('/')}/assets"


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
    caster = TYPE_CASTERS.get(key)
    if caster is None:
        return value
    if caster is bool:
        return _boolify(value)
    return caster(value)


def _load_toml_config(config_path: Path) -> dict[str, Any]:
    if not config_path.exists():
        return {}
    with config_path.open("rb") as handle:
        return tomllib.load(handle)


def _config_layered_value(key: str, *, toml_config: dict[str, Any]) -> Any:
    env_key = f"INVITELY_{key.upper()}"
    if env_key in os.environ:
        return _cast_value(key, os.environ[env_key])
    if key in toml_config:
        return _cast_value(key, toml_config[key])
    return DEFAULTS[key]


def _resolve_path(base_dir: Path, value: str | Path | None, fallback: Path) -> Path:
    resolved = Path(value) if value else fallback
    if not resolved.is_absolute():
        resolved = base_dir / resolved
    return resolved


def load_settings(config_override: Path | None = None) -> Settings:
    base_dir = Path(os.getenv("INVITELY_BASE_DIR", Path.cwd()))
    env_config = os.getenv("INVITELY_CONFIG")
    config_path = Path(config_override or env_config or base_dir / "invitely.toml")
    toml_config = _load_toml_config(config_path)

    data_dir = _resolve_path(
        base_dir,
        os.getenv("INVITELY_DATA_DIR", toml_config.get("data_dir")),
        base_dir / "data",
    )
    database_path = _resolve_path(
        base_dir,
        os.getenv("INVITELY_DB", toml_config.get("database_path")),
        data_dir / "invitely.db",
    )
    assets_dir = _resolve_path(
        base_dir,
        os.getenv("INVITELY_ASSETS_DIR", toml_config.get("assets_dir")),
        data_dir / "assets",
    )

    layered = {
        key: _config_layered_value(key, toml_config=toml_config) for key in DEFAULTS
    }
    settings = Settings(
        base_dir=base_dir,
        data_dir=data_dir,
        database_path=database_path,
        assets_dir=assets_dir,
        config_path=config_path,
        **layered,
    )
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.assets_dir.mkdir(parents=True, exist_ok=True)
    return settings


def settings_as_dict(settings: Settings, *, reveal_secrets: bool = False) -> dict[str, Any]:
    data: dict[str, Any] = {
        "base_dir": str(settings.base_dir),
        "data_dir": str(settings.data_dir),
        "database_path": str(settings.database_path),
        "assets_dir": str(settings.assets_dir),
    }
    for key in DEFAULTS:
        value = getattr(settings, key)
        if key in SECRET_KEYS and value and not reveal_secrets:
            value = "********"
        data[key] = value
    return data


def _toml_literal(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    escaped = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def write_config_file(config: dict[str, Any], *, path: Path) -> None:
    lines = ["# Invitely configuration\n"]
    for key in sorted(config.keys()):
        lines.append(f"{key} = {_toml_literal(config[key])}\n")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("".join(lines), encoding="utf-8")


def update_config_file(updates: dict[str, Any], *, path: Path | None = None) -> Settings:
    """Persist known keys to the TOML file and reload the module settings."""
    current_settings = settings if "settings" in globals() else load_settings()
    target_path = path or current_settings.config_path
    merged = dict(_load_toml_config(target_path))
    for key, value in updates.items():
        if key not in DEFAULTS:
            continue
        merged[key] = _cast_value(key, value)
    write_config_file(merged, path=target_path)
    new_settings = load_settings(target_path)
    globals()["settings"] = new_settings
    return new_settings


settings = load_settings()
