"""Where subsync keeps its own database, and where the customer table lives."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Final

APP_DIR_NAME: Final[str] = "subsync"
DEFAULT_DB_FILENAME: Final[str] = "subsync.db"


def _platform_data_home() -> Path:
    if os.name == "nt":
        local = os.getenv("LOCALAPPDATA")
        return Path(local) if local else Path.home() / "AppData" / "Local"
    xdg = os.getenv("XDG_DATA_HOME")
    return Path(xdg) if xdg else Path.home() / ".local" / "share"


@dataclass(frozen=True, slots=True)
class StorageConfig:
    data_dir: Path
    database_filename: str = DEFAULT_DB_FILENAME

    def resolve_data_dir(self) -> Path:
        return self.data_dir.expanduser().resolve()

    def sqlite_uri(self) -> str:
        """SQLite URI inside the data directory, which is created on first use."""

        directory = self.resolve_data_dir()
        directory.mkdir(parents=True, exist_ok=True)
        return f"sqlite+pysqlite:///{directory / self.database_filename}"


@dataclass(frozen=True, slots=True)
class DatabaseConfig:
    """``uri`` holds the sync tables; ``primary_uri`` the ``clients`` table."""

    uri: str
    primary_uri: str


def get_storage_config() -> StorageConfig:
    explicit = os.getenv("SUBSYNC_DATA_DIR")
    return StorageConfig(
        data_dir=Path(explicit) if explicit else _platform_data_home() / APP_DIR_NAME
    )


def get_database_config(*, storage: StorageConfig | None = None) -> DatabaseConfig:
    uri = os.getenv("DATABASE_URI") or (storage or get_storage_config()).sqlite_uri()
    return DatabaseConfig(uri=uri, primary_uri=os.getenv("PRIMARY_DATABASE_URI") or uri)


def get_database_uri() -> str:
    return get_database_config().uri
