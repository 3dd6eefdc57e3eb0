"""Application orchestration entry points."""

from __future__ import annotations

import time
import uuid
from collections.abc import Callable
from contextlib import ExitStack
from logging import getLogger
from typing import TYPE_CHECKING

from sqlalchemy import create_engine

from subsync.adapters.mailerlite import MailerLiteService
from subsync.adapters.sqlalchemy import (
    SqlAlchemyPrimaryStore,
    SqlAlchemySyncUnitOfWork,
    create_clients_table,
    startup,
)
from subsync.adapters.sqlalchemy.documents import CheckpointDocument, StatusDocument
from subsync.adapters.sqlalchemy.unit_of_work import configured_engine, is_started
from subsync.config import (
    ConfigurationError,
    get_database_config,
    get_sync_config,
    load_field_mapping,
)
from subsync.domain.errors import (
    FatalConfigError,
    NotFoundError,
    PermissionDeniedError,
    UpstreamError,
    ValidationError,
)
from subsync.domain.model import Side
from subsync.domain.reconciliation import (
    ApplyEngine,
    ControllerSettings,
    Governor,
    ReconciliationController,
    ResolutionService,
    SyncRequest,
    discard_checkpoint,
)

if TYPE_CHECKING:
    import threading
    from collections.abc import Sequence
    from datetime import datetime

    from subsync.config import SyncConfig
    from subsync.domain.model import FieldMappingTable
    from subsync.domain.ports import (
        Authorizer,
        PrimaryStore,
        SecondaryService,
    )
    from subsync.domain.reconciliation import SyncRunResult, UnitOfWorkFactory

log = getLogger(__name__)


def _ensure_started() -> None:
    if not is_started():
        startup()


def _settings(config: SyncConfig) -> ControllerSettings:
    return ControllerSettings(
        checkpoint_key=config.checkpoint_key,
        status_key=config.status_key,
        quota_key=config.quota_key,
        page_size=config.page_size,
        email_filter_cap=config.email_filter_cap,
        lock_grace=config.lock_grace,
        sync_groups=config.sync_groups,
        managed_groups=config.managed_groups,
    )


def build_primary_store(mappings: FieldMappingTable) -> SqlAlchemyPrimaryStore:
    """Open the primary customer store; a shared local database gets its table created."""

    database = get_database_config()
    engine = configured_engine()
    if engine is not None and database.primary_uri == database.uri:
        create_clients_table(engine)
    else:
        engine = create_engine(database.primary_uri, future=True)
    return SqlAlchemyPrimaryStore(engine, mappings=mappings)


def _parse_conflict_id(value: str) -> uuid.UUID:
    try:
        return uuid.UUID(str(value))
    except ValueError:
        raise ValidationError(f"invalid conflict id {value!r}") from None


def _parse_side(value: str) -> Side:
    try:
        return Side(value)
    except ValueError:
        allowed = ", ".join(side.value for side in Side)
        raise ValidationError(f"invalid source {value!r}; expected one of {allowed}") from None


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _result_payload(result: SyncRunResult) -> dict[str, object]:
    stats = result.stats
    return {
        "ok": True,
        "count": result.processed_count,
        "out": [record.to_dict() for record in result.records],
        "done": result.done,
        "state": str(result.state),
        "pause_reason": str(result.pause_reason),
        "next_run_at": _iso(result.next_run_at),
        "message": result.message,
        "stats": {
            "created": stats.created,
            "updated": stats.updated,
            "skipped": stats.skipped,
            "errors": stats.errors,
            "conflicts": stats.conflicts,
        },
    }


def _failure_payload(exc: Exception) -> dict[str, object]:
    return {
        "ok": False,
        "count": 0,
        "out": [],
        "done": False,
        "state": "error",
        "error": str(exc),
    }


def run_sync(  # noqa: PLR0913
    mode: str,
    *,
    emails: Sequence[str] | None = None,
    max_records: int | None = None,
    max_duration_ms: int | None = None,
    dry_run: bool = False,
    restart: bool = False,
    repair: bool = False,
    primary: PrimaryStore | None = None,
    secondary: SecondaryService | None = None,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
    mappings: FieldMappingTable | None = None,
    config: SyncConfig | None = None,
    cancel_event: threading.Event | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> dict[str, object]:
    """Run one bounded reconciliation slice with the configured adapters.

    Input and configuration problems come back as ``{"ok": False, "error": ...}``;
    anything else propagates to the caller.
    """

    with ExitStack() as stack:
        try:
            sync_config = config or get_sync_config()
            request = SyncRequest.build(
                mode=mode,
                emails=emails,
                max_records=(
                    sync_config.max_records if max_records is None else max_records
                ),
                max_duration_ms=(
                    sync_config.max_duration_ms if max_duration_ms is None else max_duration_ms
                ),
                dry_run=dry_run,
                restart=restart,
                repair=repair,
            )
            if unit_of_work_factory is None:
                _ensure_started()
            field_mappings = mappings or load_field_mapping()
            if secondary is None:
                secondary = stack.enter_context(MailerLiteService())
            controller = ReconciliationController(
                unit_of_work_factory=unit_of_work_factory or SqlAlchemySyncUnitOfWork,
                primary=primary or build_primary_store(field_mappings),
                secondary=secondary,
                mappings=field_mappings,
                settings=_settings(sync_config),
                policy=sync_config.governor,
                sleep=sleep,
                cancel_event=cancel_event,
            )
            log.info(
                "Starting sync: mode=%s, emails=%s, max_records=%s, max_duration_ms=%s, "
                "dry_run=%s, restart=%s, repair=%s",
                request.mode,
                len(request.emails) if request.emails is not None else "all",
                request.max_records,
                request.max_duration_ms,
                request.dry_run,
                request.restart,
                request.repair,
            )
            result = controller.run(request)
        except (ValidationError, ConfigurationError, FatalConfigError) as exc:
            log.error(f"Sync rejected: {exc}")
            return _failure_payload(exc)

    log.info(
        f"Finished sync slice: processed={result.processed_count}, "
        f"changed={result.changed_count}, errors={result.error_count}, done={result.done}"
    )
    return _result_payload(result)


def resolve_conflict(  # noqa: PLR0913
    conflict_id: str,
    chosen_value: object,
    source: str,
    caller: str | None = None,
    *,
    authorizer: Authorizer | None = None,
    primary: PrimaryStore | None = None,
    secondary: SecondaryService | None = None,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
    mappings: FieldMappingTable | None = None,
    config: SyncConfig | None = None,
) -> dict[str, object]:
    """Write the chosen value to the side opposite ``source`` and close the conflict."""

    with ExitStack() as stack:
        try:
            if authorizer is not None and not authorizer.is_privileged(caller):
                raise PermissionDeniedError(
                    f"{caller or 'anonymous caller'} may not resolve conflicts"
                )
            parsed_id = _parse_conflict_id(conflict_id)
            side = _parse_side(source)
            sync_config = config or get_sync_config()
            if unit_of_work_factory is None:
                _ensure_started()
            field_mappings = mappings or load_field_mapping()
            if secondary is None:
                secondary = stack.enter_context(MailerLiteService())
            governor = Governor(policy=sync_config.governor)
            service = ResolutionService(
                unit_of_work_factory=unit_of_work_factory or SqlAlchemySyncUnitOfWork,
                engine=ApplyEngine(
                    primary=primary or build_primary_store(field_mappings),
                    secondary=secondary,
                    governor=governor,
                    mappings=field_mappings,
                ),
            )
            outcome = service.resolve(parsed_id, chosen_value, side)
        except (NotFoundError, PermissionDeniedError, UpstreamError, ValidationError) as exc:
            log.warning(f"Conflict {conflict_id} not resolved: {exc}")
            return {"success": False, "message": str(exc)}
        except (ConfigurationError, FatalConfigError) as exc:
            log.error(f"Conflict {conflict_id} not resolved: {exc}")
            return {"success": False, "message": str(exc)}

    return {"success": True, "message": outcome.message}


def read_progress(
    *,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
    config: SyncConfig | None = None,
) -> dict[str, object]:
    """Return the stored checkpoint and run status documents (read-only)."""

    sync_config = config or get_sync_config()
    if unit_of_work_factory is None:
        _ensure_started()
    with (unit_of_work_factory or SqlAlchemySyncUnitOfWork)() as uow:
        checkpoint = uow.repositories.state.load_checkpoint(sync_config.checkpoint_key)
        status = uow.repositories.state.load_status(sync_config.status_key)
    return {
        "checkpoint": (
            CheckpointDocument.from_domain(checkpoint).model_dump(mode="json")
            if checkpoint is not None
            else None
        ),
        "status": (
            StatusDocument.from_domain(status).model_dump(mode="json")
            if status is not None
            else None
        ),
    }


def restart_sync(
    *,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
    config: SyncConfig | None = None,
) -> dict[str, object]:
    """Drop the checkpoint so the next run starts from ``init``."""

    sync_config = config or get_sync_config()
    if unit_of_work_factory is None:
        _ensure_started()
    settings = _settings(sync_config)
    discard_checkpoint(unit_of_work_factory or SqlAlchemySyncUnitOfWork, settings)
    return {"success": True, "message": f"checkpoint {settings.checkpoint_key} discarded"}
