from __future__ import annotations

import json

from typer.testing import CliRunner

from invitely import cli, config


def _clear_env(monkeypatch, tmp_path):
    for key in config.DEFAULTS:
        monkeypatch.delenv(f"INVITELY_{key.upper()}", raising=False)
    monkeypatch.setenv("INVITELY_BASE_DIR", str(tmp_path))
    monkeypatch.setenv("INVITELY_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.delenv("INVITELY_CONFIG", raising=False)
    monkeypatch.delenv("INVITELY_DB", raising=False)
    monkeypatch.delenv("INVITELY_ASSETS_DIR", raising=False)


def test_environment_overrides_toml_overrides_defaults(monkeypatch, tmp_path):
    _clear_env(monkeypatch, tmp_path)
    path = tmp_path / "invitely.toml"
    path.write_text('public_url = "https://party.example"\ninvite_batch_limit = 5\n')
    monkeypatch.setenv("INVITELY_INVITE_BATCH_LIMIT", "7")

    settings = config.load_settings(path)

    assert settings.public_url == "https://party.example"
    assert settings.invite_batch_limit == 7
    assert settings.cover_bucket == "event-covers"
    assert settings.draft_ttl_minutes == 120
    assert settings.assets_url == "https://party.example/assets"
    assert settings.database_path == tmp_path / "data" / "invitely.db"
    assert settings.assets_dir.is_dir()
    assert settings.email_enabled is False


def test_secrets_are_masked(monkeypatch, tmp_path):
    _clear_env(monkeypatch, tmp_path)
    monkeypatch.setenv("INVITELY_RESEND_API_KEY", "re_secret")
    settings = config.load_settings(tmp_path / "missing.toml")

    assert settings.email_enabled is True
    assert config.settings_as_dict(settings)["resend_api_key"] == "********"
    assert config.settings_as_dict(settings, reveal_secrets=True)["resend_api_key"] == "re_secret"


def test_cli_config_set_persists_known_keys(monkeypatch, tmp_path):
    _clear_env(monkeypatch, tmp_path)
    monkeypatch.setattr(config, "settings", config.load_settings(tmp_path / "invitely.toml"))
    path = tmp_path / "invitely.toml"
    runner = CliRunner()

    result = runner.invoke(cli.app, ["config", "--set", "cover_bucket=covers", "--config-path", str(path)])
    assert result.exit_code == 0
    assert 'cover_bucket = "covers"' in path.read_text()

    rejected = runner.invoke(cli.app, ["config", "--set", "nope=1", "--config-path", str(path)])
    assert rejected.exit_code == 1


def test_cli_attendees_prints_snapshot(monkeypatch, owner, event):
    monkeypatch.setattr(cli, "init_db", lambda: None)
    owner.insert(
        "rsvps",
        {"event_id": event["id"], "first_name": "Ana", "last_name": "Lee", "status": "going"},
    )

    result = CliRunner().invoke(cli.app, ["attendees", event["id"]])
    assert result.exit_code == 0
    snapshot = json.loads(result.output)
    assert snapshot["counts"]["going"] == 1
    assert snapshot["attendees"][0]["name"] == "Ana Lee"

    missing = CliRunner().invoke(cli.app, ["attendees", "missing"])
    assert missing.exit_code == 1
