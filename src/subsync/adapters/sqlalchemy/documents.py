"""Versioned JSON documents stored in the ``sync_state`` table."""

from __future__ import annotations

from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Final, Literal, cast

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator

from subsync.domain.model import (
    CheckpointStats,
    Partitions,
    PauseReason,
    Phase,
    RunState,
    SyncCheckpoint,
    SyncMode,
    SyncRunStatus,
)

CHECKPOINT_SCHEMA_VERSION: Final[int] = 2

# first-generation documents named phases and partitions after the two concrete systems
_LEGACY_PHASES: Final[dict[str, Phase]] = {
    "init": Phase.INIT,
    "onlyInML": Phase.ONLY_IN_SECONDARY,
    "onlyInSB": Phase.ONLY_IN_PRIMARY,
    "inBoth": Phase.IN_BOTH,
    "done": Phase.DONE,
}
_LEGACY_PAUSE_REASONS: Final[dict[str, PauseReason]] = {
    "timeout_protection": PauseReason.TIMEOUT_PROTECTION,
    "rate_limit": PauseReason.RATE_LIMIT,
    "batch_limit": PauseReason.BATCH_LIMIT,
}
_LEGACY_KEYS: Final[frozenset[str]] = frozenset(
    {"idx", "onlyInML", "onlyInSB", "inBoth", "last_save_reason"}
)


def _epoch_millis_to_datetime(value: object) -> object:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value / 1000, tz=UTC)
    return value


class DocumentModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class StatsDocument(DocumentModel):
    created: int = 0
    updated: int = 0
    skipped: int = 0
    errors: int = 0
    conflicts: int = 0


class PartitionsDocument(DocumentModel):
    only_in_secondary: list[str] = Field(default_factory=list)
    only_in_primary: list[str] = Field(default_factory=list)
    in_both: list[str] = Field(default_factory=list)


class CheckpointDocument(DocumentModel):
    schema_version: Literal[2] = CHECKPOINT_SCHEMA_VERSION
    key: str
    mode: SyncMode = SyncMode.BIDIRECTIONAL
    filter_digest: str | None = None
    phase: Phase = Phase.INIT
    cursor_index: int = Field(default=0, ge=0)
    partitions: PartitionsDocument = Field(default_factory=PartitionsDocument)
    stats: StatsDocument = Field(default_factory=StatsDocument)
    pause_reason: PauseReason = PauseReason.NONE
    next_run_at: datetime | None = None
    started_at: datetime
    updated_at: datetime
    last_completed_at: datetime | None = None

    @model_validator(mode="before")
    @classmethod
    def _migrate_legacy_schema(cls, value: object) -> object:
        """Upgrade version-1 documents: no ``schema_version`` and the old field names."""

        if not isinstance(value, Mapping):
            return value
        data: dict[str, object] = dict(cast(Mapping[str, object], value))
        if "schema_version" in data or _LEGACY_KEYS.isdisjoint(data):
            return data

        now = datetime.now(tz=UTC)
        raw_phase = data.get("phase")
        phase = _LEGACY_PHASES.get(raw_phase, Phase.INIT) if isinstance(raw_phase, str) else None
        raw_reason = data.get("last_save_reason")
        stats = data.get("stats")
        return {
            "schema_version": CHECKPOINT_SCHEMA_VERSION,
            "key": data.get("key", "full_sync_state"),
            "mode": data.get("mode", SyncMode.BIDIRECTIONAL),
            "phase": phase or Phase.INIT,
            "cursor_index": data.get("idx", 0),
            "partitions": {
                "only_in_secondary": data.get("onlyInML") or [],
                "only_in_primary": data.get("onlyInSB") or [],
                "in_both": data.get("inBoth") or [],
            },
            "stats": stats if isinstance(stats, Mapping) else {},
            "pause_reason": (
                _LEGACY_PAUSE_REASONS.get(raw_reason, PauseReason.NONE)
                if isinstance(raw_reason, str)
                else PauseReason.NONE
            ),
            "next_run_at": _epoch_millis_to_datetime(data.get("next_run_at")),
            "started_at": _epoch_millis_to_datetime(data.get("started_at")) or now,
            "updated_at": now,
        }

    @model_validator(mode="after")
    def _check_cursor(self) -> CheckpointDocument:
        partition = self.to_domain().current_partition
        if self.cursor_index > len(partition):
            raise ValueError(
                f"cursor_index {self.cursor_index} beyond {len(partition)} entries of {self.phase}"
            )
        return self

    @classmethod
    def from_domain(cls, checkpoint: SyncCheckpoint) -> CheckpointDocument:
        return cls(
            schema_version=CHECKPOINT_SCHEMA_VERSION,
            key=checkpoint.key,
            mode=checkpoint.mode,
            filter_digest=checkpoint.filter_digest,
            phase=checkpoint.phase,
            cursor_index=checkpoint.cursor_index,
            partitions=PartitionsDocument(
                only_in_secondary=list(checkpoint.partitions.only_in_secondary),
                only_in_primary=list(checkpoint.partitions.only_in_primary),
                in_both=list(checkpoint.partitions.in_both),
            ),
            stats=StatsDocument(
                created=checkpoint.stats.created,
                updated=checkpoint.stats.updated,
                skipped=checkpoint.stats.skipped,
                errors=checkpoint.stats.errors,
                conflicts=checkpoint.stats.conflicts,
            ),
            pause_reason=checkpoint.pause_reason,
            next_run_at=checkpoint.next_run_at,
            started_at=checkpoint.started_at,
            updated_at=checkpoint.updated_at,
            last_completed_at=checkpoint.last_completed_at,
        )

    def to_domain(self) -> SyncCheckpoint:
        return SyncCheckpoint(
            key=self.key,
            mode=self.mode,
            filter_digest=self.filter_digest,
            phase=self.phase,
            cursor_index=self.cursor_index,
            partitions=Partitions(
                only_in_secondary=list(self.partitions.only_in_secondary),
                only_in_primary=list(self.partitions.only_in_primary),
                in_both=list(self.partitions.in_both),
            ),
            stats=CheckpointStats(**self.stats.model_dump()),
            pause_reason=self.pause_reason,
            next_run_at=self.next_run_at,
            started_at=self.started_at,
            updated_at=self.updated_at,
            last_completed_at=self.last_completed_at,
        )


class StatusDocument(DocumentModel):
    state: RunState = Field(
        default=RunState.IDLE, validation_alias=AliasChoices("state", "status")
    )
    message: str | None = None
    updated_at: datetime = Field(default_factory=lambda: datetime.now(tz=UTC))

    @classmethod
    def from_domain(cls, status: SyncRunStatus) -> StatusDocument:
        return cls(state=status.state, message=status.message, updated_at=status.updated_at)

    def to_domain(self) -> SyncRunStatus:
        return SyncRunStatus(state=self.state, message=self.message, updated_at=self.updated_at)
