"""SQLAlchemy adapter package for subsync."""

from __future__ import annotations

from .mappings import (
    mapper_registry,
    start_mappers,
)
from .primary_store import SqlAlchemyPrimaryStore, clients_table, create_clients_table
from .repositories import (
    SqlAlchemyAuditLogRepository,
    SqlAlchemyConflictRepository,
    SqlAlchemyCrosswalkRepository,
    SqlAlchemyShadowRepository,
    SqlAlchemySyncLock,
    SqlAlchemySyncStateRepository,
)
from .unit_of_work import (
    SqlAlchemySyncUnitOfWork,
    StartupError,
    shutdown,
    startup,
)

__all__ = [
    "SqlAlchemyAuditLogRepository",
    "SqlAlchemyConflictRepository",
    "SqlAlchemyCrosswalkRepository",
    "SqlAlchemyPrimaryStore",
    "SqlAlchemyShadowRepository",
    "SqlAlchemySyncLock",
    "SqlAlchemySyncStateRepository",
    "SqlAlchemySyncUnitOfWork",
    "StartupError",
    "clients_table",
    "create_clients_table",
    "mapper_registry",
    "shutdown",
    "start_mappers",
    "startup",
]
