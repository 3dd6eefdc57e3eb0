"""Checkpointed reconciliation state machine.

One invocation processes a bounded slice of work and returns; callers keep invoking
until ``done`` is reported. Progress lives in a single checkpoint document per key:

    init -> onlyInSecondary -> onlyInPrimary -> inBoth -> done

``init`` enumerates both sides (or looks up a caller-supplied email filter) and
partitions emails by where they exist. Each later phase walks its sorted partition
from ``cursor_index``. Every unit commits its crosswalk, shadow, conflict and audit
writes together with the advanced checkpoint, so a crash loses at most the unit in
flight.
"""

from __future__ import annotations

import hashlib
import threading
import time
from collections.abc import Callable, Iterator, Sequence
from dataclasses import dataclass, field
from datetime import timedelta
from logging import getLogger
from typing import TYPE_CHECKING
from uuid import uuid4

from subsync.domain.errors import (
    FatalConfigError,
    PausedError,
    QuotaExhaustedError,
    SyncError,
    TransientUpstreamError,
    UpstreamError,
    ValidationError,
)
from subsync.domain.model import (
    GROUPS_FIELD,
    AuditAction,
    AuditEntry,
    CheckpointStats,
    Conflict,
    ConflictKind,
    Direction,
    Partitions,
    PauseReason,
    Phase,
    RunState,
    Side,
    SyncCheckpoint,
    SyncMode,
    SyncRunStatus,
    is_valid_email,
    normalize_email,
    to_json_value,
    utcnow,
)

from .apply import ApplyEngine
from .diff import Decision, FieldDiff, diff_record, repair_diffs
from .governor import Clock, Governor, GovernorPolicy, QuotaTracker, Sleep
from .groups import parse_groups, plan_groups
from .results import RecordResult, SyncRunResult

if TYPE_CHECKING:
    from subsync.domain.model import FieldMappingTable, FieldValue
    from subsync.domain.ports import (
        PrimaryStore,
        RecordPage,
        RemoteRecord,
        SecondaryService,
        SyncRepositories,
        SyncUnitOfWork,
    )

log = getLogger(__name__)

type UnitOfWorkFactory = Callable[[], SyncUnitOfWork]


@dataclass(slots=True, frozen=True, kw_only=True)
class ControllerSettings:
    checkpoint_key: str = "full_sync_state"
    status_key: str = "sync_status"
    quota_key: str = "secondary_quota"
    page_size: int = 1000
    email_filter_cap: int = 2000
    lock_grace: timedelta = timedelta(minutes=5)
    sync_groups: bool = False
    managed_groups: frozenset[str] = frozenset()


@dataclass(slots=True, frozen=True, kw_only=True)
class SyncRequest:
    mode: SyncMode
    emails: tuple[str, ...] | None = None
    max_records: int = 300
    max_duration_ms: int = 120_000
    dry_run: bool = False
    restart: bool = False
    repair: bool = False

    @classmethod
    def build(
        cls,
        *,
        mode: str | SyncMode,
        emails: Sequence[str] | None = None,
        max_records: int = 300,
        max_duration_ms: int = 120_000,
        dry_run: bool = False,
        restart: bool = False,
        repair: bool = False,
    ) -> SyncRequest:
        """Validate loosely-typed caller input into a request."""

        try:
            parsed_mode = SyncMode(mode)
        except ValueError:
            allowed = ", ".join(item.value for item in SyncMode)
            raise ValidationError(f"invalid mode {mode!r}; expected one of {allowed}") from None
        if isinstance(emails, str):
            raise ValidationError("emails must be a list of addresses")
        if max_records <= 0:
            raise ValidationError("max_records must be positive")
        if max_duration_ms <= 0:
            raise ValidationError("max_duration_ms must be positive")
        if repair and not parsed_mode.allows(Direction.SECONDARY_TO_PRIMARY):
            raise ValidationError(
                f"repair writes to the primary store, which mode {parsed_mode} does not allow"
            )
        return cls(
            mode=parsed_mode,
            emails=tuple(emails) if emails is not None else None,
            max_records=max_records,
            max_duration_ms=max_duration_ms,
            dry_run=dry_run,
            restart=restart,
            repair=repair,
        )


@dataclass(slots=True, frozen=True)
class EmailFilter:
    emails: tuple[str, ...]
    invalid: tuple[str, ...] = ()

    @property
    def digest(self) -> str:
        joined = "\n".join(sorted(self.emails))
        return hashlib.sha256(joined.encode("utf-8")).hexdigest()


def prepare_email_filter(raw: Sequence[str] | None, *, cap: int) -> EmailFilter | None:
    """Normalise, de-duplicate and cap a caller-supplied email list."""

    if raw is None:
        return None
    seen: dict[str, None] = {}
    invalid: list[str] = []
    for item in raw:
        email = normalize_email(item) if isinstance(item, str) else ""
        if not is_valid_email(email):
            invalid.append(str(item))
            continue
        seen.setdefault(email, None)
    emails = tuple(seen)
    if len(emails) > cap:
        log.warning("Email filter has %s entries; only the first %s are used", len(emails), cap)
        emails = emails[:cap]
    return EmailFilter(emails=emails, invalid=tuple(invalid))


@dataclass(slots=True, kw_only=True)
class _Run:
    request: SyncRequest
    governor: Governor
    engine: ApplyEngine
    quota: QuotaTracker
    records: list[RecordResult] = field(default_factory=list)
    processed: int = 0
    cancelled: bool = False

    @property
    def dry_run(self) -> bool:
        return self.request.dry_run


def discard_checkpoint(
    unit_of_work_factory: UnitOfWorkFactory,
    settings: ControllerSettings,
    *,
    clock: Clock = utcnow,
) -> None:
    """Operator restart: drop the checkpoint and mark the run idle."""

    with unit_of_work_factory() as uow:
        uow.repositories.state.delete_checkpoint(settings.checkpoint_key)
        uow.repositories.state.save_status(
            settings.status_key,
            SyncRunStatus(state=RunState.IDLE, message="restarted", updated_at=clock()),
        )
        uow.commit()
    log.info("Checkpoint %s discarded", settings.checkpoint_key)


def _count(stats: CheckpointStats, record: RecordResult) -> None:
    if record.error is not None:
        stats.errors += 1
    elif record.created:
        stats.created += 1
    elif record.changed:
        stats.updated += 1
    elif record.skipped:
        stats.skipped += 1
    stats.conflicts += len(record.conflicts)


class ReconciliationController:
    def __init__(
        self,
        *,
        unit_of_work_factory: UnitOfWorkFactory,
        primary: PrimaryStore,
        secondary: SecondaryService,
        mappings: FieldMappingTable,
        settings: ControllerSettings | None = None,
        policy: GovernorPolicy | None = None,
        clock: Clock = utcnow,
        sleep: Sleep = time.sleep,
        cancel_event: threading.Event | None = None,
    ) -> None:
        self.unit_of_work_factory = unit_of_work_factory
        self.primary = primary
        self.secondary = secondary
        self.mappings = mappings
        self.settings = settings or ControllerSettings()
        self.policy = policy or GovernorPolicy()
        self.clock = clock
        self.sleep = sleep
        self.cancel_event = cancel_event or threading.Event()

    # -- entry point -----------------------------------------------------------------

    def run(self, request: SyncRequest) -> SyncRunResult:
        email_filter = None
        if request.mode is not SyncMode.FULL:
            email_filter = prepare_email_filter(
                request.emails, cap=self.settings.email_filter_cap
            )
        if email_filter is not None and not request.dry_run:
            if email_filter.invalid:
                raise ValidationError(f"invalid emails: {', '.join(email_filter.invalid)}")
            if not email_filter.emails:
                raise ValidationError("email filter is empty")

        owner = uuid4().hex
        if not self._acquire_lock(owner, request):
            log.info("Sync %s is already running; skipping", self.settings.checkpoint_key)
            return SyncRunResult(state=RunState.RUNNING, message="sync already running")
        try:
            return self._run_locked(request, email_filter)
        finally:
            self._release_lock(owner)

    def restart(self) -> None:
        """Discard the checkpoint so the next run starts over from ``init``."""

        discard_checkpoint(self.unit_of_work_factory, self.settings, clock=self.clock)

    # -- orchestration ---------------------------------------------------------------

    def _run_locked(
        self, request: SyncRequest, email_filter: EmailFilter | None
    ) -> SyncRunResult:
        key = self.settings.checkpoint_key
        digest = email_filter.digest if email_filter is not None else None
        with self.unit_of_work_factory() as uow:
            stored = uow.repositories.state.load_checkpoint(key)
            quota = QuotaTracker.from_document(
                uow.repositories.state.load_document(self.settings.quota_key),
                limit=self.policy.daily_quota,
            )
        checkpoint = stored.copy() if stored is not None and request.dry_run else stored

        if checkpoint is not None and not request.restart:
            if checkpoint.done and checkpoint.matches(request.mode, digest):
                log.info("Checkpoint %s is already complete; nothing to do", key)
                return SyncRunResult(
                    done=True,
                    state=RunState.COMPLETED,
                    stats=checkpoint.stats,
                    message="already complete",
                )
            in_progress = checkpoint.phase not in (Phase.INIT, Phase.DONE)
            if in_progress and not checkpoint.matches(request.mode, digest):
                raise ValidationError(
                    f"checkpoint {key} is in progress for mode {checkpoint.mode}; "
                    "finish it or restart before changing mode or email filter"
                )
            blocked_until = checkpoint.blocked_until(self.clock())
            if blocked_until is not None:
                log.info(
                    "Sync %s paused (%s) until %s", key, checkpoint.pause_reason, blocked_until
                )
                return SyncRunResult(
                    state=RunState.PAUSED,
                    pause_reason=checkpoint.pause_reason,
                    next_run_at=blocked_until,
                    stats=checkpoint.stats,
                    message=f"paused until {blocked_until.isoformat()}",
                )

        governor = Governor(
            policy=self.policy,
            max_duration=timedelta(milliseconds=request.max_duration_ms),
            clock=self.clock,
            sleep=self.sleep,
            quota=quota,
        )
        run = _Run(
            request=request,
            governor=governor,
            engine=ApplyEngine(
                primary=self.primary,
                secondary=self.secondary,
                governor=governor,
                mappings=self.mappings,
            ),
            quota=quota,
        )
        if email_filter is not None:
            run.records.extend(
                RecordResult(email=email, skipped=True, reason="invalid-email")
                for email in email_filter.invalid
            )

        planning = (
            checkpoint is None
            or request.restart
            or checkpoint.phase in (Phase.INIT, Phase.DONE)
        )
        try:
            governor.preflight(self.secondary.ping)
            self._save_status(run, RunState.RUNNING, f"sync in progress ({request.mode})")
            active = (
                checkpoint
                if checkpoint is not None and not planning
                else self._plan(run, email_filter, digest)
            )
            checkpoint, planning = active, False
            self._process(run, active)
        except PausedError as exc:
            if checkpoint is None or planning:
                checkpoint = SyncCheckpoint(key=key, mode=request.mode, filter_digest=digest)
            checkpoint.pause(_pause_reason(exc), next_run_at=exc.next_run_at)
            log.warning("Sync %s paused: %s", key, exc)
        except FatalConfigError as exc:
            log.error(f"Sync {key} aborted: {exc}")
            self._save_status(run, RunState.ERROR, str(exc))
            raise
        except Exception as exc:
            self._save_status(run, RunState.ERROR, f"unexpected failure: {exc}")
            raise

        return self._finish(run, checkpoint)

    def _plan(
        self, run: _Run, email_filter: EmailFilter | None, digest: str | None
    ) -> SyncCheckpoint:
        primary_ids: dict[str, str] = {}
        secondary_ids: dict[str, str] = {}
        if email_filter is not None:
            try:
                for email in email_filter.emails:
                    primary_record = self.primary.get_by_email(email)
                    if primary_record is not None:
                        primary_ids[email] = primary_record.id
                    secondary_record = self._find_secondary(run.governor, email)
                    if secondary_record is not None:
                        secondary_ids[email] = secondary_record.id
            except (TransientUpstreamError, UpstreamError) as exc:
                raise FatalConfigError(f"cannot look up filtered emails: {exc}") from exc
        else:
            try:
                for record in self._enumerate(self._primary_page):
                    primary_ids[normalize_email(record.email)] = record.id
            except (TransientUpstreamError, UpstreamError) as exc:
                raise FatalConfigError(f"primary store unreachable: {exc}") from exc
            try:
                for record in self._enumerate(lambda cursor: self._secondary_page(run, cursor)):
                    secondary_ids[normalize_email(record.email)] = record.id
            except (TransientUpstreamError, UpstreamError) as exc:
                raise FatalConfigError(f"secondary service unreachable: {exc}") from exc
            primary_ids.pop("", None)
            secondary_ids.pop("", None)

        now = self.clock()
        checkpoint = SyncCheckpoint(
            key=self.settings.checkpoint_key,
            mode=run.request.mode,
            filter_digest=digest,
            partitions=Partitions.from_sets(
                primary=set(primary_ids), secondary=set(secondary_ids)
            ),
            started_at=now,
            updated_at=now,
        )
        checkpoint.advance_phase(at=now)
        log.info(
            f"Planned sync {checkpoint.key}: "
            f"only_in_secondary={len(checkpoint.partitions.only_in_secondary)}, "
            f"only_in_primary={len(checkpoint.partitions.only_in_primary)}, "
            f"in_both={len(checkpoint.partitions.in_both)}"
        )
        if run.dry_run:
            return checkpoint

        with self.unit_of_work_factory() as uow:
            for email in sorted(primary_ids.keys() | secondary_ids.keys()):
                uow.repositories.crosswalk.upsert(
                    email,
                    primary_id=primary_ids.get(email),
                    secondary_id=secondary_ids.get(email),
                )
            uow.repositories.state.save_checkpoint(checkpoint)
            uow.commit()
        return checkpoint

    def _process(self, run: _Run, checkpoint: SyncCheckpoint) -> None:
        while not checkpoint.done:
            email = checkpoint.current_email
            if email is None:
                phase = checkpoint.advance_phase(at=self.clock())
                log.info("Sync %s advanced to phase %s", checkpoint.key, phase)
                continue
            if run.processed >= run.request.max_records:
                checkpoint.pause(PauseReason.BATCH_LIMIT)
                return
            if self.cancel_event.is_set():
                run.cancelled = True
                return
            if not run.governor.has_budget():
                checkpoint.pause(PauseReason.TIMEOUT_PROTECTION)
                return
            self._run_unit(run, checkpoint, email)
            run.processed += 1
        checkpoint.pause(PauseReason.NONE)

    def _run_unit(self, run: _Run, checkpoint: SyncCheckpoint, email: str) -> None:
        phase = checkpoint.phase
        try:
            with self.unit_of_work_factory() as uow:
                record = self._process_unit(uow.repositories, run, phase, email)
                checkpoint.advance_cursor()
                _count(checkpoint.stats, record)
                checkpoint.updated_at = self.clock()
                if not run.dry_run:
                    uow.repositories.state.save_checkpoint(checkpoint)
                    uow.commit()
        except (PausedError, FatalConfigError):
            raise
        except SyncError as exc:
            log.warning(f"Failed to reconcile {email} in phase {phase}: {exc}")
            record = RecordResult(email=email, error=str(exc))
            checkpoint.advance_cursor()
            _count(checkpoint.stats, record)
            checkpoint.updated_at = self.clock()
            if not run.dry_run:
                with self.unit_of_work_factory() as uow:
                    uow.repositories.state.save_checkpoint(checkpoint)
                    uow.commit()
        run.records.append(record)

    def _finish(self, run: _Run, checkpoint: SyncCheckpoint) -> SyncRunResult:
        now = self.clock()
        checkpoint.updated_at = now
        stats = checkpoint.stats
        if checkpoint.done:
            state = RunState.COMPLETED
            message = (
                f"completed: created={stats.created}, updated={stats.updated}, "
                f"skipped={stats.skipped}, errors={stats.errors}, conflicts={stats.conflicts}"
            )
        elif run.cancelled:
            state = RunState.PAUSED
            message = "cancelled"
        else:
            state = RunState.PAUSED
            message = f"paused: {checkpoint.pause_reason}"

        if not run.dry_run:
            with self.unit_of_work_factory() as uow:
                uow.repositories.state.save_checkpoint(checkpoint)
                uow.repositories.state.save_status(
                    self.settings.status_key,
                    SyncRunStatus(state=state, message=message, updated_at=now),
                )
                uow.repositories.state.save_document(
                    self.settings.quota_key, run.quota.to_document()
                )
                uow.commit()

        log.info(
            f"Sync {checkpoint.key} {state}: processed={run.processed}, "
            f"phase={checkpoint.phase}, cursor={checkpoint.cursor_index}, "
            f"secondary_calls={run.governor.calls}"
        )
        return SyncRunResult(
            records=run.records,
            done=checkpoint.done,
            state=state,
            pause_reason=checkpoint.pause_reason,
            next_run_at=checkpoint.next_run_at,
            message=message,
            stats=stats,
        )

    # -- units -----------------------------------------------------------------------

    def _process_unit(
        self, repositories: SyncRepositories, run: _Run, phase: Phase, email: str
    ) -> RecordResult:
        if phase is Phase.ONLY_IN_SECONDARY:
            return self._create_missing(repositories, run, email, source=Side.SECONDARY)
        if phase is Phase.ONLY_IN_PRIMARY:
            return self._create_missing(repositories, run, email, source=Side.PRIMARY)
        return self._reconcile(repositories, run, email)

    def _create_missing(
        self, repositories: SyncRepositories, run: _Run, email: str, *, source: Side
    ) -> RecordResult:
        target = source.other
        direction = Direction.towards(target)
        if not run.request.mode.allows(direction):
            return RecordResult(email=email, skipped=True, reason="direction-not-enabled")

        record = self._fetch(repositories, run, source, email)
        if record is None:
            return RecordResult(email=email, skipped=True, reason=f"missing-on-{source}")
        values = self.mappings.from_side(source, record.fields)
        if run.dry_run:
            return RecordResult(email=email, changed=True, reason=f"create-on-{target}")

        outcome = run.engine.create(repositories, target=target, email=email, values=values)
        if source is Side.PRIMARY:
            repositories.crosswalk.upsert(email, primary_id=record.id)
            self._sync_groups(
                repositories,
                run,
                email,
                desired=record.fields.get(GROUPS_FIELD),
                current=None,
                secondary_id=outcome.target_id,
            )
        else:
            repositories.crosswalk.upsert(email, secondary_id=record.id)
        repositories.audit_log.add(
            AuditEntry(
                email=email,
                action=AuditAction.CREATED if outcome.created else AuditAction.UPDATED,
                direction=direction,
                created_at=self.clock(),
            )
        )
        return RecordResult(
            email=email,
            changed=True,
            created=outcome.created,
            target_id=outcome.target_id,
        )

    def _reconcile(self, repositories: SyncRepositories, run: _Run, email: str) -> RecordResult:
        primary_record = self._fetch(repositories, run, Side.PRIMARY, email)
        secondary_record = self._fetch(repositories, run, Side.SECONDARY, email)
        if primary_record is None or secondary_record is None:
            missing = Side.PRIMARY if primary_record is None else Side.SECONDARY
            return RecordResult(email=email, skipped=True, reason=f"missing-on-{missing}")

        diffs = diff_record(
            self.mappings,
            primary=self.mappings.from_side(Side.PRIMARY, primary_record.fields),
            secondary=self.mappings.from_side(Side.SECONDARY, secondary_record.fields),
            shadow=repositories.shadows.get(email),
        )
        if run.request.repair:
            diffs = repair_diffs(diffs)
        outgoing: dict[Side, dict[str, FieldValue]] = {Side.PRIMARY: {}, Side.SECONDARY: {}}
        converged: list[FieldDiff] = []
        conflicts: list[FieldDiff] = []
        held_back = False
        for diff in diffs:
            if diff.decision is Decision.SHADOW_ONLY:
                converged.append(diff)
            elif diff.decision is Decision.CONFLICT:
                conflicts.append(diff)
            elif diff.target is not None:
                if run.request.mode.allows(Direction.towards(diff.target)):
                    outgoing[diff.target][diff.field] = diff.winning_value
                else:
                    held_back = True

        result = RecordResult(email=email, conflicts=[diff.field for diff in conflicts])
        result.changed = any(outgoing.values())
        if not run.dry_run:
            repositories.crosswalk.upsert(
                email, primary_id=primary_record.id, secondary_id=secondary_record.id
            )
            record_ids = {Side.PRIMARY: primary_record.id, Side.SECONDARY: secondary_record.id}
            current = {diff.field: diff for diff in diffs}
            for target, values in outgoing.items():
                if not values:
                    continue
                outcome = run.engine.update(
                    repositories,
                    target=target,
                    email=email,
                    values=values,
                    record_id=record_ids[target],
                )
                result.target_id = outcome.target_id
                for name, value in values.items():
                    previous = current[name].value_for(target)
                    repositories.audit_log.add(
                        AuditEntry(
                            email=email,
                            action=AuditAction.UPDATED,
                            direction=Direction.towards(target),
                            field=name,
                            old_value=to_json_value(previous),
                            new_value=to_json_value(value),
                            created_at=self.clock(),
                        )
                    )
            if converged:
                shadow = repositories.shadows.get_or_create(email)
                for diff in converged:
                    shadow.record_agreed(
                        diff.field, to_json_value(diff.primary_value), at=self.clock()
                    )
            for diff in conflicts:
                self._record_conflict(repositories, email, diff)

        if self._sync_groups(
            repositories,
            run,
            email,
            desired=primary_record.fields.get(GROUPS_FIELD),
            current=secondary_record.fields.get(GROUPS_FIELD),
            secondary_id=secondary_record.id,
        ):
            result.changed = True
        if run.request.repair and outgoing[Side.PRIMARY]:
            result.reason = "repaired"
        if not result.changed:
            result.skipped = True
            if conflicts:
                result.reason = "conflict"
            elif held_back:
                result.reason = "direction-not-enabled"
            else:
                result.reason = "in-sync"
        return result

    def _record_conflict(
        self, repositories: SyncRepositories, email: str, diff: FieldDiff
    ) -> None:
        kind = diff.conflict_kind or ConflictKind.VALUE_MISMATCH
        now = self.clock()
        primary_value = to_json_value(diff.primary_value)
        secondary_value = to_json_value(diff.secondary_value)
        existing = repositories.conflicts.find_pending(email, diff.field)
        if existing is not None:
            existing.refresh(
                primary_value=primary_value,
                secondary_value=secondary_value,
                kind=kind,
                at=now,
            )
            return
        repositories.conflicts.add(
            Conflict(
                email=email,
                field=diff.field,
                primary_value=primary_value,
                secondary_value=secondary_value,
                kind=kind,
                detected_at=now,
            )
        )
        repositories.audit_log.add(
            AuditEntry(
                email=email,
                action=AuditAction.CONFLICT_DETECTED,
                field=diff.field,
                old_value=primary_value,
                new_value=secondary_value,
                created_at=now,
            )
        )
        log.info("Conflict on %s field %s (%s)", email, diff.field, kind)

    def _sync_groups(  # noqa: PLR0913
        self,
        repositories: SyncRepositories,
        run: _Run,
        email: str,
        *,
        desired: object,
        current: object,
        secondary_id: str | None,
    ) -> bool:
        """Bring the subscriber's groups in line with the primary record's."""

        if not self.settings.sync_groups or secondary_id is None:
            return False
        if not run.request.mode.allows(Direction.PRIMARY_TO_SECONDARY):
            return False
        current_groups = parse_groups(current)
        plan = plan_groups(
            desired=parse_groups(desired),
            current=current_groups,
            managed=self.settings.managed_groups,
        )
        if plan.unmanaged:
            log.debug(f"Keeping unmanaged groups {', '.join(plan.unmanaged)} for {email}")
        if plan.empty:
            return False
        if run.dry_run:
            return True
        run.governor.call(
            lambda: self.secondary.set_groups(secondary_id, add=plan.add, remove=plan.remove),
            label=f"groups {secondary_id}",
        )
        repositories.audit_log.add(
            AuditEntry(
                email=email,
                action=AuditAction.UPDATED,
                direction=Direction.PRIMARY_TO_SECONDARY,
                field=GROUPS_FIELD,
                old_value=", ".join(sorted(current_groups)),
                new_value=", ".join(plan.applied_to(current_groups)),
                created_at=self.clock(),
            )
        )
        log.info(f"Groups for {email}: joined {list(plan.add)}, left {list(plan.remove)}")
        return True

    # -- side access -----------------------------------------------------------------

    def _fetch(
        self, repositories: SyncRepositories, run: _Run, side: Side, email: str
    ) -> RemoteRecord | None:
        if side is Side.PRIMARY:
            return self.primary.get_by_email(email)
        entry = repositories.crosswalk.get(email)
        if entry is not None and entry.secondary_id:
            secondary_id = entry.secondary_id
            record = run.governor.call(
                lambda: self.secondary.get(secondary_id), label=f"get {secondary_id}"
            )
            if record is not None:
                return record
        return self._find_secondary(run.governor, email)

    def _find_secondary(self, governor: Governor, email: str) -> RemoteRecord | None:
        return governor.call(lambda: self.secondary.find_by_email(email), label=f"lookup {email}")

    def _primary_page(self, cursor: str | None) -> RecordPage:
        return self.primary.list_page(cursor, self.settings.page_size)

    def _secondary_page(self, run: _Run, cursor: str | None) -> RecordPage:
        return run.governor.call(
            lambda: self.secondary.list_page(cursor, self.settings.page_size),
            label="list page",
        )

    @staticmethod
    def _enumerate(fetch_page: Callable[[str | None], RecordPage]) -> Iterator[RemoteRecord]:
        cursor: str | None = None
        while True:
            page = fetch_page(cursor)
            yield from page.records
            if not page.next_cursor:
                return
            cursor = page.next_cursor

    # -- state documents -------------------------------------------------------------

    def _save_status(self, run: _Run, state: RunState, message: str) -> None:
        if run.dry_run:
            return
        with self.unit_of_work_factory() as uow:
            uow.repositories.state.save_status(
                self.settings.status_key,
                SyncRunStatus(state=state, message=message, updated_at=self.clock()),
            )
            uow.commit()

    def _acquire_lock(self, owner: str, request: SyncRequest) -> bool:
        now = self.clock()
        expires_at = (
            now + timedelta(milliseconds=request.max_duration_ms) + self.settings.lock_grace
        )
        with self.unit_of_work_factory() as uow:
            acquired = uow.repositories.locks.acquire(
                self.settings.checkpoint_key, owner=owner, now=now, expires_at=expires_at
            )
            uow.commit()
        return acquired

    def _release_lock(self, owner: str) -> None:
        with self.unit_of_work_factory() as uow:
            uow.repositories.locks.release(self.settings.checkpoint_key, owner=owner)
            uow.commit()


def _pause_reason(exc: PausedError) -> PauseReason:
    if isinstance(exc, QuotaExhaustedError):
        return PauseReason.QUOTA_EXHAUSTED
    return PauseReason.RATE_LIMIT

