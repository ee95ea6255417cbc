"""Alembic migrations of the dataset store."""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import TYPE_CHECKING, Final

from alembic import command
from alembic.config import Config

from qvain_sync.config import get_database_config

if TYPE_CHECKING:
    from sqlalchemy.engine import Engine

MIGRATIONS_PATH: Final[Path] = Path(__file__).resolve().parent
SOURCE_PYPROJECT: Final[Path] = MIGRATIONS_PATH.parents[4] / "pyproject.toml"


def _checkout_options() -> dict[str, str]:
    """Return the ``[tool.alembic]`` table of a source checkout, if there is one."""
    if not SOURCE_PYPROJECT.is_file():
        return {}
    with SOURCE_PYPROJECT.open("rb") as handle:
        section = tomllib.load(handle).get("tool", {}).get("alembic", {})
    return {str(key): str(value) for key, value in section.items()}


def alembic_config(database_uri: str | None = None) -> Config:
    config = Config()
    for key, value in _checkout_options().items():
        if key not in {"script_location", "sqlalchemy.url"}:
            config.set_main_option(key, value)
    # Revisions are shipped inside the package.
    config.set_main_option("script_location", str(MIGRATIONS_PATH))
    if database_uri is not None:
        config.set_main_option("sqlalchemy.url", database_uri)
    return config


def upgrade_head(*, engine: Engine | None = None, database_uri: str | None = None) -> None:
    """Migrate the dataset store to the newest revision.

    With an ``engine`` the upgrade runs on one of its connections, so a
    throwaway SQLite database used by tests is migrated in place.
    """
    if engine is None:
        command.upgrade(alembic_config(database_uri or get_database_config().uri), "head")
        return
    config = alembic_config()
    with engine.begin() as connection:
        config.attributes["connection"] = connection
        command.upgrade(config, "head")
