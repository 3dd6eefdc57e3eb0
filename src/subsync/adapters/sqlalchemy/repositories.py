"""Repository implementations backed by SQLAlchemy sessions."""

from __future__ import annotations

from typing import TYPE_CHECKING, cast

import pydantic
from sqlalchemy import delete, insert, select, update
from sqlalchemy.exc import IntegrityError

from subsync.adapters.sqlalchemy.documents import CheckpointDocument, StatusDocument
from subsync.adapters.sqlalchemy.mappings import (
    audit_log_table,
    conflict_table,
    sync_lock_table,
    sync_state_table,
)
from subsync.domain.errors import FatalConfigError
from subsync.domain.model import (
    AuditEntry,
    Conflict,
    ConflictStatus,
    CrosswalkEntry,
    ShadowSnapshot,
    utcnow,
)

if TYPE_CHECKING:
    from datetime import datetime
    from uuid import UUID

    from sqlalchemy.orm import Session

    from subsync.domain.model import JsonValue, SyncCheckpoint, SyncRunStatus


def _pending_by_email[TRecord: (CrosswalkEntry, ShadowSnapshot)](
    session: Session, record_cls: type[TRecord], email: str
) -> TRecord | None:
    for candidate in session.new:
        if isinstance(candidate, record_cls) and candidate.email == email:
            return candidate
    return None


class SqlAlchemyCrosswalkRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def add(self, entity: CrosswalkEntry) -> None:
        self.session.add(entity)

    def get(self, email: str) -> CrosswalkEntry | None:
        return self.session.get(CrosswalkEntry, email) or _pending_by_email(
            self.session, CrosswalkEntry, email
        )

    def upsert(
        self,
        email: str,
        *,
        primary_id: str | None = None,
        secondary_id: str | None = None,
    ) -> CrosswalkEntry:
        entry = self.get(email)
        if entry is None:
            now = utcnow()
            entry = CrosswalkEntry(
                email=email,
                primary_id=primary_id or None,
                secondary_id=secondary_id or None,
                created_at=now,
                updated_at=now,
            )
            self.session.add(entry)
            return entry
        entry.link(primary_id=primary_id, secondary_id=secondary_id)
        return entry


class SqlAlchemyShadowRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def add(self, entity: ShadowSnapshot) -> None:
        self.session.add(entity)

    def get(self, email: str) -> ShadowSnapshot | None:
        return self.session.get(ShadowSnapshot, email) or _pending_by_email(
            self.session, ShadowSnapshot, email
        )

    def get_or_create(self, email: str) -> ShadowSnapshot:
        snapshot = self.get(email)
        if snapshot is None:
            snapshot = ShadowSnapshot(email=email)
            self.session.add(snapshot)
        return snapshot


class SqlAlchemyConflictRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def add(self, entity: Conflict) -> None:
        self.session.add(entity)

    def get(self, conflict_id: UUID) -> Conflict | None:
        return self.session.get(Conflict, conflict_id)

    def find_pending(self, email: str, field: str) -> Conflict | None:
        stmt = (
            select(Conflict)
            .where(conflict_table.c.email == email)
            .where(conflict_table.c.field == field)
            .where(conflict_table.c.status == ConflictStatus.PENDING)
        )
        return self.session.execute(stmt).scalars().first()

    def list_pending(self, *, email: str | None = None) -> list[Conflict]:
        stmt = select(Conflict).where(conflict_table.c.status == ConflictStatus.PENDING)
        if email is not None:
            stmt = stmt.where(conflict_table.c.email == email)
        stmt = stmt.order_by(conflict_table.c.detected_at, conflict_table.c.email)
        return list(self.session.execute(stmt).scalars())


class SqlAlchemyAuditLogRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def add(self, entity: AuditEntry) -> None:
        self.session.add(entity)

    def list_for(self, email: str) -> list[AuditEntry]:
        stmt = (
            select(AuditEntry)
            .where(audit_log_table.c.email == email)
            .order_by(audit_log_table.c.created_at)
        )
        return list(self.session.execute(stmt).scalars())


class SqlAlchemySyncStateRepository:
    """Keyed JSON documents; every write is an upsert on the key."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def load_document(self, key: str) -> dict[str, JsonValue] | None:
        stmt = select(sync_state_table.c.document).where(sync_state_table.c.key == key)
        document = self.session.execute(stmt).scalar_one_or_none()
        if document is None:
            return None
        return cast("dict[str, JsonValue]", document)

    def save_document(self, key: str, document: dict[str, JsonValue]) -> None:
        now = utcnow()
        result = self.session.execute(
            update(sync_state_table)
            .where(sync_state_table.c.key == key)
            .values(document=document, updated_at=now)
        )
        if result.rowcount == 0:
            self.session.execute(
                insert(sync_state_table).values(key=key, document=document, updated_at=now)
            )

    def delete_document(self, key: str) -> None:
        self.session.execute(delete(sync_state_table).where(sync_state_table.c.key == key))

    def load_checkpoint(self, key: str) -> SyncCheckpoint | None:
        document = self.load_document(key)
        if document is None:
            return None
        try:
            return CheckpointDocument.model_validate({"key": key, **document}).to_domain()
        except pydantic.ValidationError as exc:
            raise FatalConfigError(
                f"checkpoint {key} is unreadable; restart the sync to rebuild it: {exc}"
            ) from exc

    def save_checkpoint(self, checkpoint: SyncCheckpoint) -> None:
        document = CheckpointDocument.from_domain(checkpoint).model_dump(mode="json")
        self.save_document(checkpoint.key, document)

    def delete_checkpoint(self, key: str) -> None:
        self.delete_document(key)

    def load_status(self, key: str) -> SyncRunStatus | None:
        document = self.load_document(key)
        if document is None:
            return None
        return StatusDocument.model_validate(document).to_domain()

    def save_status(self, key: str, status: SyncRunStatus) -> None:
        self.save_document(key, StatusDocument.from_domain(status).model_dump(mode="json"))


class SqlAlchemySyncLock:
    """Lease rows in ``sync_lock``; an expired lease may be taken over."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def acquire(self, key: str, *, owner: str, now: datetime, expires_at: datetime) -> bool:
        taken = self.session.execute(
            update(sync_lock_table)
            .where(sync_lock_table.c.key == key)
            .where(sync_lock_table.c.expires_at <= now)
            .values(owner=owner, acquired_at=now, expires_at=expires_at)
        )
        if taken.rowcount:
            return True
        held = self.session.execute(
            select(sync_lock_table.c.owner).where(sync_lock_table.c.key == key)
        ).scalar_one_or_none()
        if held is not None:
            return False
        try:
            self.session.execute(
                insert(sync_lock_table).values(
                    key=key, owner=owner, acquired_at=now, expires_at=expires_at
                )
            )
        except IntegrityError:
            # another run inserted the lease between our select and insert
            self.session.rollback()
            return False
        return True

    def release(self, key: str, *, owner: str) -> None:
        self.session.execute(
            delete(sync_lock_table)
            .where(sync_lock_table.c.key == key)
            .where(sync_lock_table.c.owner == owner)
        )
