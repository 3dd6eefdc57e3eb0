"""Resumable progress marker and observable run status."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING

from .enums import PHASE_ORDER, PauseReason, Phase, RunState, SyncMode
from .records import utcnow

if TYPE_CHECKING:
    from datetime import datetime


@dataclass(slots=True, kw_only=True)
class CheckpointStats:
    created: int = 0
    updated: int = 0
    skipped: int = 0
    errors: int = 0
    conflicts: int = 0


@dataclass(slots=True, kw_only=True)
class Partitions:
    """Sorted email lists for the three work phases."""

    only_in_secondary: list[str] = field(default_factory=list)
    only_in_primary: list[str] = field(default_factory=list)
    in_both: list[str] = field(default_factory=list)

    def for_phase(self, phase: Phase) -> list[str]:
        if phase is Phase.ONLY_IN_SECONDARY:
            return self.only_in_secondary
        if phase is Phase.ONLY_IN_PRIMARY:
            return self.only_in_primary
        if phase is Phase.IN_BOTH:
            return self.in_both
        return []

    @classmethod
    def from_sets(
        cls,
        *,
        primary: set[str],
        secondary: set[str],
    ) -> Partitions:
        return cls(
            only_in_secondary=sorted(secondary - primary),
            only_in_primary=sorted(primary - secondary),
            in_both=sorted(primary & secondary),
        )


@dataclass(kw_only=True)
class SyncCheckpoint:
    key: str
    mode: SyncMode
    filter_digest: str | None = None
    phase: Phase = Phase.INIT
    cursor_index: int = 0
    partitions: Partitions = field(default_factory=Partitions)
    stats: CheckpointStats = field(default_factory=CheckpointStats)
    pause_reason: PauseReason = PauseReason.NONE
    next_run_at: datetime | None = None
    started_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    last_completed_at: datetime | None = None

    @property
    def done(self) -> bool:
        return self.phase is Phase.DONE

    @property
    def current_partition(self) -> list[str]:
        return self.partitions.for_phase(self.phase)

    @property
    def remaining(self) -> int:
        return len(self.current_partition) - self.cursor_index

    @property
    def current_email(self) -> str | None:
        partition = self.current_partition
        if self.cursor_index < len(partition):
            return partition[self.cursor_index]
        return None

    def matches(self, mode: SyncMode, filter_digest: str | None) -> bool:
        """Return whether this checkpoint was planned for the same run arguments."""

        return self.mode is mode and self.filter_digest == filter_digest

    def advance_cursor(self) -> None:
        if self.cursor_index >= len(self.current_partition):
            raise IndexError(f"cursor already at end of phase {self.phase}")
        self.cursor_index += 1

    def advance_phase(self, *, at: datetime | None = None) -> Phase:
        """Move to the next phase with work left, or to ``done``."""

        position = PHASE_ORDER.index(self.phase)
        for phase in PHASE_ORDER[position + 1 :]:
            if phase is Phase.DONE or self.partitions.for_phase(phase):
                self.phase = phase
                break
        self.cursor_index = 0
        if self.done:
            self.last_completed_at = at or utcnow()
            self.pause_reason = PauseReason.NONE
            self.next_run_at = None
        return self.phase

    def pause(self, reason: PauseReason, *, next_run_at: datetime | None = None) -> None:
        self.pause_reason = reason
        self.next_run_at = next_run_at

    def blocked_until(self, now: datetime) -> datetime | None:
        """Return ``next_run_at`` while a rate or quota pause is still in force."""

        if self.pause_reason not in (PauseReason.RATE_LIMIT, PauseReason.QUOTA_EXHAUSTED):
            return None
        if self.next_run_at is not None and now < self.next_run_at:
            return self.next_run_at
        return None

    def copy(self) -> SyncCheckpoint:
        return replace(
            self,
            partitions=replace(
                self.partitions,
                only_in_secondary=list(self.partitions.only_in_secondary),
                only_in_primary=list(self.partitions.only_in_primary),
                in_both=list(self.partitions.in_both),
            ),
            stats=replace(self.stats),
        )


@dataclass(slots=True, kw_only=True)
class SyncRunStatus:
    state: RunState = RunState.IDLE
    message: str | None = None
    updated_at: datetime = field(default_factory=utcnow)
