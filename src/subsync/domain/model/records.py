"""Engine-owned records: identity crosswalk, shadow snapshots, conflicts and audit entries."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from datetime import UTC, datetime
from uuid import UUID, uuid4

from .enums import AuditAction, ConflictKind, ConflictStatus, Direction, Side
from .fields import JsonValue


def utcnow() -> datetime:
    return datetime.now(tz=UTC)


@dataclass(eq=False, kw_only=True)
class CrosswalkEntry:
    """Identity mapping between both sides for a single email."""

    email: str
    primary_id: str | None = None
    secondary_id: str | None = None
    created_at: datetime = dataclasses.field(default_factory=utcnow)
    updated_at: datetime = dataclasses.field(default_factory=utcnow)

    def id_for(self, side: Side) -> str | None:
        return self.primary_id if side is Side.PRIMARY else self.secondary_id

    def link(
        self,
        *,
        primary_id: str | None = None,
        secondary_id: str | None = None,
        at: datetime | None = None,
    ) -> bool:
        """Record newly observed ids. Known ids are never cleared."""

        changed = False
        if primary_id and primary_id != self.primary_id:
            self.primary_id = primary_id
            changed = True
        if secondary_id and secondary_id != self.secondary_id:
            self.secondary_id = secondary_id
            changed = True
        if changed:
            self.updated_at = at or utcnow()
        return changed


@dataclass(eq=False, kw_only=True)
class ShadowSnapshot:
    """Last values both sides were known to agree on, per domain field."""

    email: str
    primary_fields: dict[str, JsonValue] = dataclasses.field(default_factory=dict)
    secondary_fields: dict[str, JsonValue] = dataclasses.field(default_factory=dict)
    updated_at: datetime = dataclasses.field(default_factory=utcnow)

    def value_for(self, side: Side, name: str) -> JsonValue:
        fields = self.primary_fields if side is Side.PRIMARY else self.secondary_fields
        return fields.get(name)

    def record_agreed(self, name: str, value: JsonValue, *, at: datetime | None = None) -> None:
        # reassign rather than mutate so JSON columns register the change
        self.primary_fields = {**self.primary_fields, name: value}
        self.secondary_fields = {**self.secondary_fields, name: value}
        self.updated_at = at or utcnow()


@dataclass(eq=False, kw_only=True)
class Conflict:
    """A field both sides changed to different values since the last sync."""

    email: str
    field: str
    primary_value: JsonValue
    secondary_value: JsonValue
    kind: ConflictKind = ConflictKind.VALUE_MISMATCH
    status: ConflictStatus = ConflictStatus.PENDING
    resolved_value: JsonValue = None
    resolved_at: datetime | None = None
    detected_at: datetime = dataclasses.field(default_factory=utcnow)
    id: UUID = dataclasses.field(default_factory=uuid4)

    @property
    def is_pending(self) -> bool:
        return self.status is ConflictStatus.PENDING

    def value_for(self, side: Side) -> JsonValue:
        return self.primary_value if side is Side.PRIMARY else self.secondary_value

    def refresh(
        self,
        *,
        primary_value: JsonValue,
        secondary_value: JsonValue,
        kind: ConflictKind,
        at: datetime | None = None,
    ) -> None:
        self.primary_value = primary_value
        self.secondary_value = secondary_value
        self.kind = kind
        self.detected_at = at or utcnow()

    def resolve(self, value: JsonValue, *, at: datetime | None = None) -> None:
        self.status = ConflictStatus.RESOLVED
        self.resolved_value = value
        self.resolved_at = at or utcnow()


@dataclass(eq=False, kw_only=True)
class AuditEntry:
    email: str
    action: AuditAction
    direction: Direction | None = None
    field: str | None = None
    old_value: JsonValue = None
    new_value: JsonValue = None
    created_at: datetime = dataclasses.field(default_factory=utcnow)
    id: UUID = dataclasses.field(default_factory=uuid4)
