"""Apply a human-chosen winning value to a previously detected conflict."""

from __future__ import annotations

from dataclasses import dataclass
from logging import getLogger
from typing import TYPE_CHECKING

from subsync.domain.errors import (
    NotFoundError,
    PausedError,
    TransientUpstreamError,
    UpstreamError,
)
from subsync.domain.model import AuditAction, AuditEntry, Direction, to_json_value, utcnow

if TYPE_CHECKING:
    from uuid import UUID

    from subsync.domain.model import Conflict, Side
    from subsync.domain.reconciliation.apply import ApplyEngine
    from subsync.domain.reconciliation.controller import UnitOfWorkFactory
    from subsync.domain.reconciliation.governor import Clock

log = getLogger(__name__)


@dataclass(slots=True, frozen=True)
class ResolutionResult:
    conflict: Conflict
    message: str


@dataclass(slots=True, kw_only=True)
class ResolutionService:
    unit_of_work_factory: UnitOfWorkFactory
    engine: ApplyEngine
    clock: Clock = utcnow

    def resolve(self, conflict_id: UUID, chosen_value: object, source: Side) -> ResolutionResult:
        """Write ``chosen_value`` to the side opposite ``source`` and close the conflict.

        The conflict stays pending if the write fails, so the call can be retried.
        """

        target = source.other
        direction = Direction.towards(target)
        with self.unit_of_work_factory() as uow:
            repositories = uow.repositories
            conflict = repositories.conflicts.get(conflict_id)
            if conflict is None or not conflict.is_pending:
                raise NotFoundError(f"no pending conflict with id {conflict_id}")

            value = self.engine.mappings.get(conflict.field).coerce(chosen_value)
            try:
                self.engine.update(
                    repositories,
                    target=target,
                    email=conflict.email,
                    values={conflict.field: value},
                )
            except (TransientUpstreamError, UpstreamError, PausedError) as exc:
                uow.rollback()
                log.warning(f"Resolving conflict {conflict_id} failed: {exc}")
                raise UpstreamError(f"could not update {target}: {exc}") from exc

            now = self.clock()
            json_value = to_json_value(value)
            repositories.audit_log.add(
                AuditEntry(
                    email=conflict.email,
                    action=AuditAction.CONFLICT_RESOLVED,
                    direction=direction,
                    field=conflict.field,
                    old_value=conflict.value_for(target),
                    new_value=json_value,
                    created_at=now,
                )
            )
            conflict.resolve(json_value, at=now)
            uow.commit()

        message = f"Set {conflict.field} for {conflict.email} on {target} ({direction})"
        log.info(message)
        return ResolutionResult(conflict=conflict, message=message)
