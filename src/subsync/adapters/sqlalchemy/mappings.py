"""SQLAlchemy mapping metadata for the engine-owned records."""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime
from functools import cache

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Dialect,
    Enum,
    Index,
    String,
    Table,
    TypeDecorator,
    Uuid,
    orm,
)

from subsync.domain.model import (
    AuditAction,
    AuditEntry,
    Conflict,
    ConflictKind,
    ConflictStatus,
    CrosswalkEntry,
    Direction,
    ShadowSnapshot,
)

log = logging.getLogger(__name__)

UUIDColumnType = Uuid[uuid.UUID]
EMAIL_LENGTH = 320


class UTCDateTime(TypeDecorator[datetime]):
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        return value if value.tzinfo else value.replace(tzinfo=UTC)


mapper_registry = orm.registry()
mapper_registry.metadata.naming_convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_label)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_label)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

# Record tables ----------------------------------------------------------------

crosswalk_table = Table(
    "integration_crosswalk",
    mapper_registry.metadata,
    Column("email", String(EMAIL_LENGTH), primary_key=True),
    Column("primary_id", String(64), nullable=True, index=True),
    Column("secondary_id", String(64), nullable=True, index=True),
    Column("created_at", UTCDateTime(), nullable=False),
    Column("updated_at", UTCDateTime(), nullable=False),
)

shadow_table = Table(
    "sync_shadow",
    mapper_registry.metadata,
    Column("email", String(EMAIL_LENGTH), primary_key=True),
    Column("primary_fields", JSON, nullable=False, default=dict),
    Column("secondary_fields", JSON, nullable=False, default=dict),
    Column("updated_at", UTCDateTime(), nullable=False),
)

conflict_table = Table(
    "sync_conflicts",
    mapper_registry.metadata,
    Column("id", UUIDColumnType, primary_key=True),
    Column("email", String(EMAIL_LENGTH), nullable=False),
    Column("field", String(128), nullable=False),
    Column("primary_value", JSON, nullable=True),
    Column("secondary_value", JSON, nullable=True),
    Column("kind", Enum(ConflictKind, native_enum=False), nullable=False),
    Column("status", Enum(ConflictStatus, native_enum=False), nullable=False),
    Column("resolved_value", JSON, nullable=True),
    Column("resolved_at", UTCDateTime(), nullable=True),
    Column("detected_at", UTCDateTime(), nullable=False),
    Index("ix_sync_conflicts_email_field_status", "email", "field", "status"),
)

audit_log_table = Table(
    "sync_log",
    mapper_registry.metadata,
    Column("id", UUIDColumnType, primary_key=True),
    Column("email", String(EMAIL_LENGTH), nullable=False, index=True),
    Column("action", Enum(AuditAction, native_enum=False), nullable=False),
    Column("direction", Enum(Direction, native_enum=False), nullable=True),
    Column("field", String(128), nullable=True),
    Column("old_value", JSON, nullable=True),
    Column("new_value", JSON, nullable=True),
    Column("created_at", UTCDateTime(), nullable=False),
)

# Document and lease tables (Core only) ----------------------------------------

sync_state_table = Table(
    "sync_state",
    mapper_registry.metadata,
    Column("key", String(128), primary_key=True),
    Column("document", JSON, nullable=False),
    Column("updated_at", UTCDateTime(), nullable=False),
)

sync_lock_table = Table(
    "sync_lock",
    mapper_registry.metadata,
    Column("key", String(128), primary_key=True),
    Column("owner", String(64), nullable=False),
    Column("acquired_at", UTCDateTime(), nullable=False),
    Column("expires_at", UTCDateTime(), nullable=False),
)


@cache
def start_mappers() -> orm.registry:
    """Configure SQLAlchemy mappers for the domain records."""

    log.info("Starting SQLAlchemy mappers")

    mapper_registry.map_imperatively(CrosswalkEntry, crosswalk_table)
    mapper_registry.map_imperatively(ShadowSnapshot, shadow_table)
    mapper_registry.map_imperatively(Conflict, conflict_table)
    mapper_registry.map_imperatively(AuditEntry, audit_log_table)

    orm.configure_mappers()
    return mapper_registry

