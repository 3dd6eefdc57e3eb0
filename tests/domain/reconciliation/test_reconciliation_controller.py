from __future__ import annotations

import threading
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import pytest

from subsync.domain.errors import (
    AuthenticationError,
    FatalConfigError,
    RateLimitSignal,
    TransientUpstreamError,
    UpstreamError,
    ValidationError,
)
from subsync.domain.model import (
    AuditAction,
    ConflictKind,
    Direction,
    FieldMappingTable,
    PauseReason,
    Phase,
    RunState,
    Side,
)
from subsync.domain.reconciliation import (
    ControllerSettings,
    GovernorPolicy,
    ReconciliationController,
    SyncRequest,
)
from tests.support.scenarios import ALICE, BOB, CAROL, seed_three_customers

if TYPE_CHECKING:
    from collections.abc import Callable

    from subsync.adapters.sqlalchemy import SqlAlchemySyncUnitOfWork
    from tests.support.fakes import FakePrimaryStore, FakeSecondaryService, ManualClock

type UowFactory = Callable[[], SqlAlchemySyncUnitOfWork]


@pytest.fixture
def controller(
    sqlite_unit_of_work: UowFactory,
    primary: FakePrimaryStore,
    secondary: FakeSecondaryService,
    clock: ManualClock,
) -> ReconciliationController:
    return ReconciliationController(
        unit_of_work_factory=sqlite_unit_of_work,
        primary=primary,
        secondary=secondary,
        mappings=FieldMappingTable(),
        clock=clock,
        sleep=clock.sleep,
    )


def _request(**kwargs: object) -> SyncRequest:
    kwargs.setdefault("mode", "bidirectional")
    return SyncRequest.build(**kwargs)  # type: ignore[arg-type]


def test_full_run_creates_missing_records_on_both_sides(
    controller: ReconciliationController,
    primary: FakePrimaryStore,
    secondary: FakeSecondaryService,
    sqlite_unit_of_work: UowFactory,
) -> None:
    ids = seed_three_customers(primary, secondary)

    result = controller.run(_request())

    assert result.done
    assert result.state is RunState.COMPLETED
    assert [record.email for record in result.records] == [CAROL, ALICE, BOB]
    assert result.records[-1].reason == "in-sync"
    assert (result.stats.created, result.stats.updated, result.stats.skipped) == (2, 0, 1)
    assert result.message is not None
    assert result.message.startswith("completed:")

    carol = primary.get_by_email(CAROL)
    assert carol is not None
    assert carol.fields["first_name"] == "Carol"
    assert secondary.created == [(ALICE, {"name": "Alice", "phone": "555"})]

    with sqlite_unit_of_work() as uow:
        carol_link = uow.repositories.crosswalk.get(CAROL)
        bob_link = uow.repositories.crosswalk.get(BOB)
        carol_audit = uow.repositories.audit_log.list_for(CAROL)
        status = uow.repositories.state.load_status("sync_status")

    assert carol_link is not None
    assert carol_link.primary_id == carol.id
    assert carol_link.secondary_id == ids.carol_secondary
    assert bob_link is not None
    assert (bob_link.primary_id, bob_link.secondary_id) == (ids.bob_primary, ids.bob_secondary)
    assert [(entry.action, entry.direction) for entry in carol_audit] == [
        (AuditAction.CREATED, Direction.SECONDARY_TO_PRIMARY)
    ]
    assert status is not None
    assert status.state is RunState.COMPLETED


def test_completed_sync_is_idempotent(
    controller: ReconciliationController,
    primary: FakePrimaryStore,
    secondary: FakeSecondaryService,
) -> None:
    seed_three_customers(primary, secondary)
    controller.run(_request())
    created = (list(primary.created), list(secondary.created))

    again = controller.run(_request())
    assert again.done
    assert again.message == "already complete"
    assert again.records == []

    replanned = controller.run(_request(restart=True))
    assert replanned.done
    assert {record.reason for record in replanned.records} == {"in-sync"}
    assert replanned.stats.skipped == 3
    assert (primary.created, secondary.created) == created
    assert primary.updates == []
    assert secondary.updates == []


def test_one_sided_changes_propagate(
    controller: ReconciliationController,
    primary: FakePrimaryStore,
    secondary: FakeSecondaryService,
    sqlite_unit_of_work: UowFactory,
) -> None:
    ids = seed_three_customers(primary, secondary)
    controller.run(_request())

    primary.rows[ids.bob_primary]["city"] = "Oslo"
    alice = secondary.find_by_email(ALICE)
    assert alice is not None
    secondary.subscribers[alice.id]["phone"] = "999"

    result = controller.run(_request(restart=True))

    assert result.stats.updated == 2
    assert (ids.bob_secondary, {"city": "Oslo"}) in secondary.updates
    assert primary.updates == [(ids.alice_primary, {"phone": "999"})]

    with sqlite_unit_of_work() as uow:
        bob_audit = uow.repositories.audit_log.list_for(BOB)
        shadow = uow.repositories.shadows.get(ALICE)

    update = next(entry for entry in bob_audit if entry.action is AuditAction.UPDATED)
    assert (update.field, update.old_value, update.new_value) == ("city", None, "Oslo")
    assert update.direction is Direction.PRIMARY_TO_SECONDARY
    assert shadow is not None
    assert shadow.value_for(Side.PRIMARY, "phone") == "999"


def test_cleared_field_is_not_pushed_to_the_other_side(
    controller: ReconciliationController,
    primary: FakePrimaryStore,
    secondary: FakeSecondaryService,
) -> None:
    ids = seed_three_customers(primary, secondary)
    controller.run(_request())

    primary.rows[ids.alice_primary]["phone"] = ""

    result = controller.run(_request(restart=True))
    alice = next(record for record in result.records if record.email == ALICE)

    assert alice.reason == "in-sync"
    assert alice.conflicts == []
    assert secondary.updates == []
    remote = secondary.find_by_email(ALICE)
    assert remote is not None
    assert remote.fields["phone"] == "555"


def test_changes_on_both_sides_become_a_conflict(
    controller: ReconciliationController,
    primary: FakePrimaryStore,
    secondary: FakeSecondaryService,
    sqlite_unit_of_work: UowFactory,
) -> None:
    ids = seed_three_customers(primary, secondary)
    controller.run(_request())

    primary.rows[ids.bob_primary]["first_name"] = "Robert"
    secondary.subscribers[ids.bob_secondary]["name"] = "Bobby"

    result = controller.run(_request(restart=True))
    bob = next(record for record in result.records if record.email == BOB)

    assert bob.reason == "conflict"
    assert bob.conflicts == ["first_name"]
    assert result.stats.conflicts == 1
    assert primary.updates == []
    assert secondary.updates == []

    controller.run(_request(restart=True))

    with sqlite_unit_of_work() as uow:
        pending = uow.repositories.conflicts.list_pending(email=BOB)

    assert len(pending) == 1
    conflict = pending[0]
    assert (conflict.primary_value, conflict.secondary_value) == ("Robert", "Bobby")
    assert conflict.kind is ConflictKind.VALUE_MISMATCH


def test_equal_edits_on_both_sides_only_update_the_shadow(
    controller: ReconciliationController,
    primary: FakePrimaryStore,
    secondary: FakeSecondaryService,
    sqlite_unit_of_work: UowFactory,
) -> None:
    ids = seed_three_customers(primary, secondary)
    controller.run(_request())

    primary.rows[ids.bob_primary]["city"] = "Oslo"
    secondary.subscribers[ids.bob_secondary]["city"] = "OSLO"

    result = controller.run(_request(restart=True))
    bob = next(record for record in result.records if record.email == BOB)

    assert bob.reason == "in-sync"
    assert secondary.updates == []
    with sqlite_unit_of_work() as uow:
        shadow = uow.repositories.shadows.get(BOB)
    assert shadow is not None
    assert shadow.value_for(Side.SECONDARY, "city") == "Oslo"


def test_batch_limit_resumes_where_it_stopped(
    controller: ReconciliationController,
    primary: FakePrimaryStore,
    secondary: FakeSecondaryService,
    sqlite_unit_of_work: UowFactory,
) -> None:
    seed_three_customers(primary, secondary)

    first = controller.run(_request(max_records=1))
    assert not first.done
    assert first.pause_reason is PauseReason.BATCH_LIMIT
    assert [record.email for record in first.records] == [CAROL]

    with sqlite_unit_of_work() as uow:
        checkpoint = uow.repositories.state.load_checkpoint("full_sync_state")
    assert checkpoint is not None
    assert (checkpoint.phase, checkpoint.cursor_index) == (Phase.ONLY_IN_PRIMARY, 0)

    emails = [CAROL]
    runs = 1
    while True:
        result = controller.run(_request(max_records=1))
        runs += 1
        emails.extend(record.email for record in result.records)
        if result.done:
            break

    assert runs == 3
    assert emails == [CAROL, ALICE, BOB]
    assert (result.stats.created, result.stats.skipped) == (2, 1)
    assert len(primary.created) == 1
    assert len(secondary.created) == 1


def test_mode_change_mid_sync_requires_restart(
    controller: ReconciliationController,
    primary: FakePrimaryStore,
    secondary: FakeSecondaryService,
) -> None:
    seed_three_customers(primary, secondary)
    controller.run(_request(max_records=1))

    with pytest.raises(ValidationError, match="in progress"):
        controller.run(_request(mode="AtoB"))

    result = controller.run(_request(mode="AtoB", restart=True))
    assert result.done


def test_persistent_rate_limit_pauses_and_blocks_reruns(
    controller: ReconciliationController,
    primary: FakePrimaryStore,
    secondary: FakeSecondaryService,
    clock: ManualClock,
) -> None:
    seed_three_customers(primary, secondary)
    secondary.fail_next("get", RateLimitSignal("429"), times=5)

    paused = controller.run(_request())

    assert not paused.done
    assert paused.state is RunState.PAUSED
    assert paused.pause_reason is PauseReason.RATE_LIMIT
    assert paused.next_run_at == clock() + timedelta(seconds=60)
    assert clock.sleeps == [0.25, 0.5, 1.0, 2.0]

    calls = len(secondary.calls)
    blocked = controller.run(_request())
    assert blocked.state is RunState.PAUSED
    assert blocked.next_run_at == paused.next_run_at
    assert len(secondary.calls) == calls

    clock.advance(seconds=61)
    resumed = controller.run(_request())
    assert resumed.done
    assert resumed.stats.created == 2


def test_daily_quota_pauses_until_utc_midnight(
    sqlite_unit_of_work: UowFactory,
    primary: FakePrimaryStore,
    secondary: FakeSecondaryService,
    clock: ManualClock,
) -> None:
    seed_three_customers(primary, secondary)
    controller = ReconciliationController(
        unit_of_work_factory=sqlite_unit_of_work,
        primary=primary,
        secondary=secondary,
        mappings=FieldMappingTable(),
        policy=GovernorPolicy(daily_quota=3),
        clock=clock,
        sleep=clock.sleep,
    )

    paused = controller.run(_request())

    midnight = datetime(2025, 1, 7, tzinfo=UTC)
    assert not paused.done
    assert paused.state is RunState.PAUSED
    assert paused.pause_reason is PauseReason.QUOTA_EXHAUSTED
    assert paused.next_run_at == midnight
    assert secondary.calls == ["ping", "list_page", "get"]
    assert [record.email for record in paused.records] == [CAROL]

    clock.advance(hours=6)
    blocked = controller.run(_request())
    assert blocked.state is RunState.PAUSED
    assert blocked.pause_reason is PauseReason.QUOTA_EXHAUSTED
    assert blocked.next_run_at == midnight
    assert len(secondary.calls) == 3

    clock.advance(hours=6)
    resumed = controller.run(_request(max_records=1))
    assert [record.email for record in resumed.records] == [ALICE]
    assert resumed.pause_reason is PauseReason.BATCH_LIMIT


def test_primary_outage_while_planning_aborts_run(
    controller: ReconciliationController,
    primary: FakePrimaryStore,
    secondary: FakeSecondaryService,
    sqlite_unit_of_work: UowFactory,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    seed_three_customers(primary, secondary)

    def unavailable(cursor: str | None, limit: int) -> object:
        del cursor, limit
        raise TransientUpstreamError("primary store unavailable: connection refused")

    monkeypatch.setattr(primary, "list_page", unavailable)

    with pytest.raises(FatalConfigError, match="primary store unreachable"):
        controller.run(_request())

    with sqlite_unit_of_work() as uow:
        assert uow.repositories.state.load_checkpoint("full_sync_state") is None
        status = uow.repositories.state.load_status("sync_status")
    assert status is not None
    assert status.state is RunState.ERROR

    monkeypatch.undo()
    assert controller.run(_request()).done


def test_time_budget_pauses_before_next_unit(
    controller: ReconciliationController,
    primary: FakePrimaryStore,
    secondary: FakeSecondaryService,
    clock: ManualClock,
) -> None:
    seed_three_customers(primary, secondary)

    def slow_call(_operation: str) -> None:
        clock.advance(seconds=3)

    secondary.on_call = slow_call

    result = controller.run(_request(max_duration_ms=10_000))

    assert not result.done
    assert result.pause_reason is PauseReason.TIMEOUT_PROTECTION
    assert result.processed_count < 3


def test_held_lock_skips_run(
    controller: ReconciliationController,
    primary: FakePrimaryStore,
    secondary: FakeSecondaryService,
    sqlite_unit_of_work: UowFactory,
    clock: ManualClock,
) -> None:
    seed_three_customers(primary, secondary)
    with sqlite_unit_of_work() as uow:
        assert uow.repositories.locks.acquire(
            "full_sync_state",
            owner="other-worker",
            now=clock(),
            expires_at=clock() + timedelta(hours=1),
        )
        uow.commit()

    skipped = controller.run(_request())
    assert skipped.state is RunState.RUNNING
    assert skipped.message == "sync already running"
    assert secondary.calls == []

    clock.advance(hours=2)
    taken_over = controller.run(_request())
    assert taken_over.done


def test_dry_run_reports_without_writing(
    controller: ReconciliationController,
    primary: FakePrimaryStore,
    secondary: FakeSecondaryService,
    sqlite_unit_of_work: UowFactory,
) -> None:
    seed_three_customers(primary, secondary)

    result = controller.run(_request(dry_run=True))

    assert result.done
    reasons = {record.email: record.reason for record in result.records}
    assert reasons == {
        CAROL: "create-on-primary",
        ALICE: "create-on-secondary",
        BOB: "in-sync",
    }
    assert primary.created == []
    assert secondary.created == []
    with sqlite_unit_of_work() as uow:
        assert uow.repositories.state.load_checkpoint("full_sync_state") is None
        assert uow.repositories.crosswalk.get(BOB) is None
        assert uow.repositories.shadows.get(BOB) is None


def test_failed_record_is_counted_and_run_continues(
    controller: ReconciliationController,
    primary: FakePrimaryStore,
    secondary: FakeSecondaryService,
) -> None:
    seed_three_customers(primary, secondary)
    secondary.fail_next("create", UpstreamError("invalid field value"))

    result = controller.run(_request())

    assert result.done
    alice = next(record for record in result.records if record.email == ALICE)
    assert alice.error == "invalid field value"
    assert result.stats.errors == 1
    assert result.stats.created == 1


def test_authentication_failure_aborts_and_releases_lock(
    controller: ReconciliationController,
    primary: FakePrimaryStore,
    secondary: FakeSecondaryService,
    sqlite_unit_of_work: UowFactory,
) -> None:
    seed_three_customers(primary, secondary)
    secondary.fail_next("ping", AuthenticationError("invalid API key"))

    with pytest.raises(AuthenticationError):
        controller.run(_request())

    with sqlite_unit_of_work() as uow:
        status = uow.repositories.state.load_status("sync_status")
    assert status is not None
    assert status.state is RunState.ERROR

    assert controller.run(_request()).done


def test_cancellation_stops_at_unit_boundary(
    sqlite_unit_of_work: UowFactory,
    primary: FakePrimaryStore,
    secondary: FakeSecondaryService,
    clock: ManualClock,
) -> None:
    seed_three_customers(primary, secondary)
    cancel = threading.Event()

    def cancel_on_first_fetch(operation: str) -> None:
        if operation == "get":
            cancel.set()

    secondary.on_call = cancel_on_first_fetch
    controller = ReconciliationController(
        unit_of_work_factory=sqlite_unit_of_work,
        primary=primary,
        secondary=secondary,
        mappings=FieldMappingTable(),
        clock=clock,
        sleep=clock.sleep,
        cancel_event=cancel,
    )

    result = controller.run(_request())

    assert not result.done
    assert result.message == "cancelled"
    assert [record.email for record in result.records] == [CAROL]


def test_email_filter_limits_the_run(
    controller: ReconciliationController,
    primary: FakePrimaryStore,
    secondary: FakeSecondaryService,
) -> None:
    seed_three_customers(primary, secondary)

    result = controller.run(_request(emails=[" ALICE@example.com", CAROL, CAROL]))

    assert result.done
    assert [record.email for record in result.records] == [CAROL, ALICE]


def test_invalid_filter_rejected_unless_dry_run(
    controller: ReconciliationController,
    primary: FakePrimaryStore,
    secondary: FakeSecondaryService,
) -> None:
    seed_three_customers(primary, secondary)

    with pytest.raises(ValidationError, match="invalid emails"):
        controller.run(_request(emails=["not-an-address", ALICE]))

    preview = controller.run(_request(emails=["not-an-address", ALICE], dry_run=True))
    assert preview.records[0].reason == "invalid-email"
    assert preview.records[1].email == ALICE


def test_one_way_mode_skips_disabled_direction(
    controller: ReconciliationController,
    primary: FakePrimaryStore,
    secondary: FakeSecondaryService,
) -> None:
    seed_three_customers(primary, secondary)

    result = controller.run(_request(mode="AtoB"))

    reasons = {record.email: record.reason for record in result.records}
    assert reasons[CAROL] == "direction-not-enabled"
    assert primary.created == []
    assert [email for email, _ in secondary.created] == [ALICE]


def test_restart_discards_checkpoint(
    controller: ReconciliationController,
    primary: FakePrimaryStore,
    secondary: FakeSecondaryService,
    sqlite_unit_of_work: UowFactory,
) -> None:
    seed_three_customers(primary, secondary)
    controller.run(_request(max_records=1))

    controller.restart()

    with sqlite_unit_of_work() as uow:
        assert uow.repositories.state.load_checkpoint("full_sync_state") is None
        status = uow.repositories.state.load_status("sync_status")
    assert status is not None
    assert (status.state, status.message) == (RunState.IDLE, "restarted")


def test_request_validation() -> None:
    with pytest.raises(ValidationError):
        SyncRequest.build(mode="sideways")
    with pytest.raises(ValidationError):
        SyncRequest.build(mode="full", max_records=0)
    with pytest.raises(ValidationError):
        SyncRequest.build(mode="full", emails="a@x.io")  # type: ignore[arg-type]


def _group_controller(
    sqlite_unit_of_work: UowFactory,
    primary: FakePrimaryStore,
    secondary: FakeSecondaryService,
    clock: ManualClock,
) -> ReconciliationController:
    return ReconciliationController(
        unit_of_work_factory=sqlite_unit_of_work,
        primary=primary,
        secondary=secondary,
        mappings=FieldMappingTable(),
        settings=ControllerSettings(sync_groups=True, managed_groups=frozenset({"Trial"})),
        clock=clock,
        sleep=clock.sleep,
    )


def test_groups_follow_the_primary_store_but_keep_unmanaged_ones(
    sqlite_unit_of_work: UowFactory,
    primary: FakePrimaryStore,
    secondary: FakeSecondaryService,
    clock: ManualClock,
) -> None:
    ids = seed_three_customers(primary, secondary)
    primary.rows[ids.alice_primary]["groups"] = "VIP"
    primary.rows[ids.bob_primary]["groups"] = "VIP, Newsletter"
    secondary.subscribers[ids.bob_secondary]["groups"] = ["Newsletter", "Trial", "Webinar"]
    controller = _group_controller(sqlite_unit_of_work, primary, secondary, clock)

    result = controller.run(_request())

    alice = secondary.find_by_email(ALICE)
    assert alice is not None
    assert secondary.group_changes == [
        (alice.id, ("VIP",), ()),
        (ids.bob_secondary, ("VIP",), ("Trial",)),
    ]
    assert alice.fields["groups"] == ["VIP"]
    assert secondary.subscribers[ids.bob_secondary]["groups"] == [
        "Newsletter",
        "VIP",
        "Webinar",
    ]
    bob = next(record for record in result.records if record.email == BOB)
    assert bob.changed
    assert (result.stats.created, result.stats.updated) == (2, 1)

    with sqlite_unit_of_work() as uow:
        bob_audit = uow.repositories.audit_log.list_for(BOB)
    groups_entry = next(entry for entry in bob_audit if entry.field == "groups")
    assert groups_entry.old_value == "Newsletter, Trial, Webinar"
    assert groups_entry.new_value == "Newsletter, VIP, Webinar"

    controller.run(_request(restart=True))
    assert len(secondary.group_changes) == 2


def test_groups_are_left_alone_when_primary_writes_only_flow_inwards(
    sqlite_unit_of_work: UowFactory,
    primary: FakePrimaryStore,
    secondary: FakeSecondaryService,
    clock: ManualClock,
) -> None:
    ids = seed_three_customers(primary, secondary)
    primary.rows[ids.bob_primary]["groups"] = "VIP"
    controller = _group_controller(sqlite_unit_of_work, primary, secondary, clock)

    result = controller.run(_request(mode="BtoA"))

    assert result.done
    assert secondary.group_changes == []
    assert "set_groups" not in secondary.calls


def test_repair_fills_blank_primary_fields_without_conflicts(
    controller: ReconciliationController,
    primary: FakePrimaryStore,
    secondary: FakeSecondaryService,
    sqlite_unit_of_work: UowFactory,
) -> None:
    ids = seed_three_customers(primary, secondary)
    controller.run(_request())

    primary.rows[ids.alice_primary]["phone"] = None
    primary.rows[ids.bob_primary]["first_name"] = "Robert"
    secondary.subscribers[ids.bob_secondary]["name"] = "Bobby"

    result = controller.run(_request(restart=True, repair=True))
    records = {record.email: record for record in result.records}

    assert records[ALICE].changed
    assert records[ALICE].reason == "repaired"
    assert primary.updates == [(ids.alice_primary, {"phone": "555"})]
    assert records[BOB].conflicts == []
    assert result.stats.conflicts == 0
    assert secondary.updates == []
    with sqlite_unit_of_work() as uow:
        assert uow.repositories.conflicts.list_pending(email=BOB) == []


def test_repair_requires_a_mode_that_writes_to_the_primary_store() -> None:
    with pytest.raises(ValidationError, match="repair"):
        _request(mode="AtoB", repair=True)

    assert _request(mode="BtoA", repair=True).repair
