"""Alembic entry points for the sync tables."""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import TYPE_CHECKING, Final

from alembic import command
from alembic.config import Config

from subsync.config.storage import get_database_uri

if TYPE_CHECKING:
    from sqlalchemy.engine import Engine

MIGRATIONS_PATH: Final[Path] = Path(__file__).resolve().parent
# src/subsync/adapters/sqlalchemy/migrations -> repository root
CHECKOUT_ROOT: Final[Path] = MIGRATIONS_PATH.parents[4]
PYPROJECT_PATH: Final[Path] = CHECKOUT_ROOT / "pyproject.toml"

_SKIPPED_OPTIONS: Final[frozenset[str]] = frozenset({"script_location", "prepend_sys_path"})


def _checkout_options() -> dict[str, str]:
    """``[tool.alembic]`` from the checkout's pyproject; empty for installed packages."""

    if not PYPROJECT_PATH.is_file():
        return {}
    with PYPROJECT_PATH.open("rb") as handle:
        section = tomllib.load(handle).get("tool", {}).get("alembic", {})
    return {str(key): str(value) for key, value in section.items()}


def _script_location(options: dict[str, str]) -> Path:
    configured = options.get("script_location")
    if configured is None:
        return MIGRATIONS_PATH
    path = Path(configured)
    if not path.is_absolute():
        path = CHECKOUT_ROOT / path
    return path if path.exists() else MIGRATIONS_PATH


def build_config() -> Config:
    options = _checkout_options()
    config = Config()
    config.set_main_option("script_location", str(_script_location(options)))
    for key, value in options.items():
        if key not in _SKIPPED_OPTIONS:
            config.set_main_option(key, value)
    return config


def upgrade_head(*, engine: Engine | None = None, database_uri: str | None = None) -> None:
    """Bring the sync tables to the latest revision.

    With ``engine`` the upgrade runs on one of its connections, so in-memory SQLite
    databases used by tests see the created tables.
    """

    config = build_config()
    if engine is None:
        config.set_main_option("sqlalchemy.url", database_uri or get_database_uri())
        command.upgrade(config, "head")
        return
    with engine.begin() as connection:
        config.attributes["connection"] = connection
        command.upgrade(config, "head")
