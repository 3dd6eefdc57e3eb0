"""Ports for the engine's own durable state."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from datetime import datetime
    from uuid import UUID

    from subsync.domain.model import (
        AuditEntry,
        Conflict,
        CrosswalkEntry,
        JsonValue,
        ShadowSnapshot,
        SyncCheckpoint,
        SyncRunStatus,
    )


@runtime_checkable
class Repository[TEntity](Protocol):
    """Minimal repository contract for a persistent aggregate store."""

    def add(self, entity: TEntity) -> None: ...


@runtime_checkable
class CrosswalkRepository(Repository["CrosswalkEntry"], Protocol):
    def get(self, email: str) -> CrosswalkEntry | None: ...

    def upsert(
        self,
        email: str,
        *,
        primary_id: str | None = None,
        secondary_id: str | None = None,
    ) -> CrosswalkEntry: ...


@runtime_checkable
class ShadowRepository(Repository["ShadowSnapshot"], Protocol):
    def get(self, email: str) -> ShadowSnapshot | None: ...

    def get_or_create(self, email: str) -> ShadowSnapshot: ...


@runtime_checkable
class ConflictRepository(Repository["Conflict"], Protocol):
    def get(self, conflict_id: UUID) -> Conflict | None: ...

    def find_pending(self, email: str, field: str) -> Conflict | None: ...

    def list_pending(self, *, email: str | None = None) -> list[Conflict]: ...


@runtime_checkable
class AuditLogRepository(Repository["AuditEntry"], Protocol):
    def list_for(self, email: str) -> list[AuditEntry]: ...


@runtime_checkable
class SyncStateRepository(Protocol):
    """Keyed documents: checkpoints, run status and quota counters."""

    def load_checkpoint(self, key: str) -> SyncCheckpoint | None: ...

    def save_checkpoint(self, checkpoint: SyncCheckpoint) -> None: ...

    def delete_checkpoint(self, key: str) -> None: ...

    def load_status(self, key: str) -> SyncRunStatus | None: ...

    def save_status(self, key: str, status: SyncRunStatus) -> None: ...

    def load_document(self, key: str) -> dict[str, JsonValue] | None: ...

    def save_document(self, key: str, document: dict[str, JsonValue]) -> None: ...


@runtime_checkable
class SyncLock(Protocol):
    """Per-key lease preventing concurrent runs against the same checkpoint."""

    def acquire(self, key: str, *, owner: str, now: datetime, expires_at: datetime) -> bool: ...

    def release(self, key: str, *, owner: str) -> None: ...
