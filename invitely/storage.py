"""Schema management for the Invitely database."""

from __future__ import annotations

import shutil
from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import inspect

from .config import settings
from .database import engine


def init_db() -> None:
    upgrade_database(make_backup=False)


def _alembic_config() -> Config:
    script_location = Path(__file__).resolve().parent / "alembic"
    ini_path = script_location.parent / "alembic.ini"

    config = Config(str(ini_path)) if ini_path.exists() else Config()
    config.set_main_option("script_location", str(script_location))
    # Alembic's config is a ConfigParser; a literal "%" must be doubled.
    url = engine.url.render_as_string(hide_password=False).replace("%", "%%")
    config.set_main_option("sqlalchemy.url", url)
    return config


def upgrade_database(*, make_backup: bool = True) -> list[str]:
    """Bring the schema to the latest Alembic revision.

    Returns a list of applied actions. A database created before Alembic
    tracking is stamped rather than migrated.
    """
    actions: list[str] = []
    db_path = Path(settings.database_path)

    if make_backup and db_path.exists():
        backup_path = db_path.with_suffix(db_path.suffix + ".bak")
        shutil.copy(db_path, backup_path)
        actions.append(f"Backup created at {backup_path}")

    inspector = inspect(engine)
    has_alembic = inspector.has_table("alembic_version")
    has_events = inspector.has_table("events")
    config = _alembic_config()

    if not has_alembic and not has_events:
        command.upgrade(config, "head")
        actions.append("Ran Alembic upgrade to head (fresh database)")
    elif not has_alembic:
        command.stamp(config, "head")
        actions.append("Stamped existing database to Alembic head")
    else:
        command.upgrade(config, "head")
        actions.append("Applied Alembic migrations to head")

    return actions
