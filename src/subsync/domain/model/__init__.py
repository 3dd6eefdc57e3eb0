"""Public domain model surface."""

from __future__ import annotations

from subsync.domain.model.checkpoint import (
    CheckpointStats,
    Partitions,
    SyncCheckpoint,
    SyncRunStatus,
)
from subsync.domain.model.enums import (
    PHASE_ORDER,
    AuditAction,
    ConflictKind,
    ConflictStatus,
    Direction,
    FieldType,
    PauseReason,
    Phase,
    RunState,
    Side,
    SyncMode,
)
from subsync.domain.model.fields import (
    DEFAULT_FIELD_MAPPINGS,
    EMAIL_FIELD,
    GROUPS_FIELD,
    RESERVED_SECONDARY_FIELDS,
    STATUS_FIELD,
    FieldMapping,
    FieldMappingTable,
    FieldValue,
    JsonValue,
    coerce,
    is_valid_email,
    normalize_email,
    normalize_for_compare,
    to_json_value,
)
from subsync.domain.model.records import (
    AuditEntry,
    Conflict,
    CrosswalkEntry,
    ShadowSnapshot,
    utcnow,
)

__all__ = [
    "DEFAULT_FIELD_MAPPINGS",
    "EMAIL_FIELD",
    "GROUPS_FIELD",
    "PHASE_ORDER",
    "RESERVED_SECONDARY_FIELDS",
    "STATUS_FIELD",
    "AuditAction",
    "AuditEntry",
    "CheckpointStats",
    "Conflict",
    "ConflictKind",
    "ConflictStatus",
    "CrosswalkEntry",
    "Direction",
    "FieldMapping",
    "FieldMappingTable",
    "FieldType",
    "FieldValue",
    "JsonValue",
    "Partitions",
    "PauseReason",
    "Phase",
    "RunState",
    "ShadowSnapshot",
    "Side",
    "SyncCheckpoint",
    "SyncMode",
    "SyncRunStatus",
    "coerce",
    "is_valid_email",
    "normalize_email",
    "normalize_for_compare",
    "to_json_value",
    "utcnow",
]
