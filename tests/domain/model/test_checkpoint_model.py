from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from subsync.domain.model import (
    Conflict,
    ConflictKind,
    CrosswalkEntry,
    Partitions,
    PauseReason,
    Phase,
    ShadowSnapshot,
    Side,
    SyncCheckpoint,
    SyncMode,
)

NOW = datetime(2025, 1, 6, 12, 0, tzinfo=UTC)


def _checkpoint(**partitions: list[str]) -> SyncCheckpoint:
    return SyncCheckpoint(
        key="full_sync_state",
        mode=SyncMode.BIDIRECTIONAL,
        partitions=Partitions(**partitions),
    )


def test_partitions_are_sorted_and_disjoint() -> None:
    partitions = Partitions.from_sets(
        primary={"c@x.io", "a@x.io", "b@x.io"},
        secondary={"b@x.io", "d@x.io", "a@x.io"},
    )

    assert partitions.only_in_secondary == ["d@x.io"]
    assert partitions.only_in_primary == ["c@x.io"]
    assert partitions.in_both == ["a@x.io", "b@x.io"]


def test_advance_phase_skips_empty_partitions() -> None:
    checkpoint = _checkpoint(in_both=["a@x.io"])

    assert checkpoint.advance_phase(at=NOW) is Phase.IN_BOTH
    assert checkpoint.current_email == "a@x.io"

    checkpoint.advance_cursor()
    assert checkpoint.current_email is None
    assert checkpoint.advance_phase(at=NOW) is Phase.DONE
    assert checkpoint.done
    assert checkpoint.last_completed_at == NOW


def test_advance_phase_from_init_with_nothing_to_do_is_done() -> None:
    checkpoint = _checkpoint()

    assert checkpoint.advance_phase(at=NOW) is Phase.DONE


def test_cursor_never_passes_partition_end() -> None:
    checkpoint = _checkpoint(only_in_secondary=["a@x.io", "b@x.io"])
    checkpoint.advance_phase()

    checkpoint.advance_cursor()
    assert checkpoint.remaining == 1
    checkpoint.advance_cursor()
    assert checkpoint.remaining == 0
    with pytest.raises(IndexError):
        checkpoint.advance_cursor()


def test_completion_clears_pause() -> None:
    checkpoint = _checkpoint()
    checkpoint.pause(PauseReason.RATE_LIMIT, next_run_at=NOW)

    checkpoint.advance_phase(at=NOW)

    assert checkpoint.pause_reason is PauseReason.NONE
    assert checkpoint.next_run_at is None


def test_blocked_until_only_for_rate_and_quota_pauses() -> None:
    checkpoint = _checkpoint()
    later = NOW + timedelta(minutes=1)

    checkpoint.pause(PauseReason.BATCH_LIMIT, next_run_at=later)
    assert checkpoint.blocked_until(NOW) is None

    checkpoint.pause(PauseReason.RATE_LIMIT, next_run_at=later)
    assert checkpoint.blocked_until(NOW) == later
    assert checkpoint.blocked_until(later) is None

    checkpoint.pause(PauseReason.QUOTA_EXHAUSTED, next_run_at=later)
    assert checkpoint.blocked_until(NOW) == later


def test_matches_compares_mode_and_filter() -> None:
    checkpoint = _checkpoint()
    checkpoint.filter_digest = "abc"

    assert checkpoint.matches(SyncMode.BIDIRECTIONAL, "abc")
    assert not checkpoint.matches(SyncMode.A_TO_B, "abc")
    assert not checkpoint.matches(SyncMode.BIDIRECTIONAL, None)


def test_copy_is_independent() -> None:
    checkpoint = _checkpoint(in_both=["a@x.io"])
    clone = checkpoint.copy()

    clone.advance_phase()
    clone.advance_cursor()
    clone.stats.updated += 1
    clone.partitions.in_both.append("b@x.io")

    assert checkpoint.phase is Phase.INIT
    assert checkpoint.stats.updated == 0
    assert checkpoint.partitions.in_both == ["a@x.io"]


def test_crosswalk_link_never_clears_known_ids() -> None:
    entry = CrosswalkEntry(email="a@x.io", primary_id="p1")

    assert entry.link(secondary_id="s1", at=NOW)
    assert entry.updated_at == NOW
    assert not entry.link(primary_id=None, secondary_id="s1")
    assert entry.primary_id == "p1"
    assert entry.id_for(Side.SECONDARY) == "s1"


def test_shadow_records_agreed_value_on_both_sides() -> None:
    shadow = ShadowSnapshot(email="a@x.io")

    shadow.record_agreed("city", "Oslo", at=NOW)

    assert shadow.value_for(Side.PRIMARY, "city") == "Oslo"
    assert shadow.value_for(Side.SECONDARY, "city") == "Oslo"
    assert shadow.value_for(Side.PRIMARY, "phone") is None


def test_conflict_lifecycle() -> None:
    conflict = Conflict(email="a@x.io", field="city", primary_value="Oslo", secondary_value="Rome")
    assert conflict.is_pending
    assert conflict.value_for(Side.SECONDARY) == "Rome"

    conflict.refresh(
        primary_value="Oslo", secondary_value=None, kind=ConflictKind.MISSING_SECONDARY, at=NOW
    )
    assert conflict.kind is ConflictKind.MISSING_SECONDARY
    assert conflict.detected_at == NOW

    conflict.resolve("Oslo", at=NOW)
    assert not conflict.is_pending
    assert conflict.resolved_value == "Oslo"
    assert conflict.resolved_at == NOW
