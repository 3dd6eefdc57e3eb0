"""Result types returned by reconciliation runs."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from subsync.domain.model import CheckpointStats, PauseReason, RunState

if TYPE_CHECKING:
    from datetime import datetime


@dataclass(slots=True, kw_only=True)
class RecordResult:
    email: str
    changed: bool = False
    created: bool = False
    skipped: bool = False
    reason: str | None = None
    error: str | None = None
    target_id: str | None = None
    conflicts: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        """Compact wire shape: only the flags and fields that carry information."""

        payload: dict[str, object] = {"email": self.email}
        if self.changed:
            payload["changed"] = True
        if self.skipped:
            payload["skipped"] = True
        if self.reason is not None:
            payload["reason"] = self.reason
        if self.error is not None:
            payload["error"] = self.error
        if self.target_id is not None:
            payload["targetId"] = self.target_id
        if self.conflicts:
            payload["conflicts"] = list(self.conflicts)
        return payload


@dataclass(slots=True, kw_only=True)
class SyncRunResult:
    records: list[RecordResult] = field(default_factory=list)
    done: bool = False
    state: RunState = RunState.IDLE
    pause_reason: PauseReason = PauseReason.NONE
    next_run_at: datetime | None = None
    message: str | None = None
    stats: CheckpointStats = field(default_factory=CheckpointStats)

    @property
    def processed_count(self) -> int:
        return len(self.records)

    @property
    def changed_count(self) -> int:
        return sum(1 for record in self.records if record.changed)

    @property
    def skipped_count(self) -> int:
        return sum(1 for record in self.records if record.skipped)

    @property
    def error_count(self) -> int:
        return sum(1 for record in self.records if record.error is not None)

    @property
    def conflict_count(self) -> int:
        return sum(len(record.conflicts) for record in self.records)
