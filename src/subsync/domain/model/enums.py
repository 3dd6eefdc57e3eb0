"""Domain enums (pure, dependency-light)."""

from __future__ import annotations

from enum import StrEnum


class Side(StrEnum):
    """One of the two systems being reconciled."""

    PRIMARY = "primary"
    SECONDARY = "secondary"

    @property
    def other(self) -> Side:
        return Side.SECONDARY if self is Side.PRIMARY else Side.PRIMARY


class Direction(StrEnum):
    PRIMARY_TO_SECONDARY = "primary_to_secondary"
    SECONDARY_TO_PRIMARY = "secondary_to_primary"

    @classmethod
    def towards(cls, target: Side) -> Direction:
        if target is Side.SECONDARY:
            return cls.PRIMARY_TO_SECONDARY
        return cls.SECONDARY_TO_PRIMARY

    @property
    def target(self) -> Side:
        if self is Direction.PRIMARY_TO_SECONDARY:
            return Side.SECONDARY
        return Side.PRIMARY


class SyncMode(StrEnum):
    A_TO_B = "AtoB"
    B_TO_A = "BtoA"
    BIDIRECTIONAL = "bidirectional"
    FULL = "full"

    def allows(self, direction: Direction) -> bool:
        """Return whether this mode may write in ``direction``."""

        if self is SyncMode.A_TO_B:
            return direction is Direction.PRIMARY_TO_SECONDARY
        if self is SyncMode.B_TO_A:
            return direction is Direction.SECONDARY_TO_PRIMARY
        return True


class Phase(StrEnum):
    INIT = "init"
    ONLY_IN_SECONDARY = "onlyInSecondary"
    ONLY_IN_PRIMARY = "onlyInPrimary"
    IN_BOTH = "inBoth"
    DONE = "done"


PHASE_ORDER: tuple[Phase, ...] = (
    Phase.INIT,
    Phase.ONLY_IN_SECONDARY,
    Phase.ONLY_IN_PRIMARY,
    Phase.IN_BOTH,
    Phase.DONE,
)


class PauseReason(StrEnum):
    NONE = "none"
    TIMEOUT_PROTECTION = "timeout-protection"
    RATE_LIMIT = "rate-limit"
    QUOTA_EXHAUSTED = "quota-exhausted"
    BATCH_LIMIT = "batch-limit"


class RunState(StrEnum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    ERROR = "error"


class ConflictKind(StrEnum):
    VALUE_MISMATCH = "value_mismatch"
    MISSING_PRIMARY = "missing_primary"
    MISSING_SECONDARY = "missing_secondary"


class ConflictStatus(StrEnum):
    PENDING = "pending"
    RESOLVED = "resolved"


class FieldType(StrEnum):
    TEXT = "text"
    EMAIL = "email"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "date"


class AuditAction(StrEnum):
    CREATED = "created"
    UPDATED = "updated"
    CONFLICT_DETECTED = "conflict_detected"
    CONFLICT_RESOLVED = "conflict_resolved"
