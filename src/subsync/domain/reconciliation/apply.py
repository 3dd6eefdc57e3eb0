"""Translate chosen domain values into mutations on one side."""

from __future__ import annotations

from dataclasses import dataclass
from logging import getLogger
from typing import TYPE_CHECKING

from subsync.domain.errors import UpstreamError, ValidationError
from subsync.domain.model import EMAIL_FIELD, Side, normalize_email, to_json_value

if TYPE_CHECKING:
    from collections.abc import Mapping

    from subsync.domain.model import FieldMappingTable, FieldValue
    from subsync.domain.ports import (
        PrimaryStore,
        RemoteRecord,
        SecondaryService,
        SyncRepositories,
    )
    from subsync.domain.reconciliation.governor import Governor

log = getLogger(__name__)


@dataclass(slots=True, frozen=True)
class ApplyOutcome:
    target_id: str
    created: bool


@dataclass(slots=True, kw_only=True)
class ApplyEngine:
    """Writes to either side and records the agreed values afterwards.

    Secondary-side calls always go through the governor. Crosswalk and shadow
    updates land in the caller's unit of work, so they commit together with
    whatever else the caller records for the same unit.
    """

    primary: PrimaryStore
    secondary: SecondaryService
    governor: Governor
    mappings: FieldMappingTable

    def create(
        self,
        repositories: SyncRepositories,
        *,
        target: Side,
        email: str,
        values: Mapping[str, FieldValue],
    ) -> ApplyOutcome:
        """Insert the record on ``target`` unless one with this email already exists."""

        email = normalize_email(email)
        complete = self.mappings.for_create(email, values)
        existing = self._find(target, email)
        if existing is not None:
            data = {name: value for name, value in complete.items() if name != EMAIL_FIELD}
            self._update(target, existing.id, data)
            outcome = ApplyOutcome(target_id=existing.id, created=False)
        else:
            payload = self.mappings.to_side(target, complete)
            if target is Side.PRIMARY:
                record_id = self.primary.create(payload)
            else:
                side_payload = {
                    key: value
                    for key, value in payload.items()
                    if key != self.mappings.get(EMAIL_FIELD).secondary_field
                }
                record_id = self.governor.call(
                    lambda: self.secondary.create(email, side_payload),
                    label=f"create {email}",
                )
            outcome = ApplyOutcome(target_id=record_id, created=True)
            log.info("Created %s record %s for %s", target, record_id, email)

        self._record(
            repositories,
            target=target,
            email=email,
            target_id=outcome.target_id,
            values=complete,
        )
        return outcome

    def update(
        self,
        repositories: SyncRepositories,
        *,
        target: Side,
        email: str,
        values: Mapping[str, FieldValue],
        record_id: str | None = None,
    ) -> ApplyOutcome:
        """Write ``values`` to the existing ``target`` record for ``email``."""

        email = normalize_email(email)
        if not values:
            raise ValidationError(f"nothing to apply for {email}")
        coerced = {name: self.mappings.get(name).coerce(value) for name, value in values.items()}
        target_id = record_id or self._resolve_id(repositories, target, email)
        self._update(target, target_id, coerced)
        self._record(
            repositories, target=target, email=email, target_id=target_id, values=coerced
        )
        return ApplyOutcome(target_id=target_id, created=False)

    def _resolve_id(self, repositories: SyncRepositories, target: Side, email: str) -> str:
        entry = repositories.crosswalk.get(email)
        known = entry.id_for(target) if entry else None
        if known:
            return known
        found = self._find(target, email)
        if found is None:
            raise UpstreamError(f"no {target} record exists for {email}")
        return found.id

    def _find(self, target: Side, email: str) -> RemoteRecord | None:
        if target is Side.PRIMARY:
            return self.primary.get_by_email(email)
        return self.governor.call(
            lambda: self.secondary.find_by_email(email), label=f"lookup {email}"
        )

    def _update(self, target: Side, record_id: str, values: Mapping[str, FieldValue]) -> None:
        payload = self.mappings.to_side(target, values)
        if target is Side.PRIMARY:
            self.primary.update(record_id, payload)
            return
        self.governor.call(
            lambda: self.secondary.update(record_id, payload), label=f"update {record_id}"
        )

    def _record(
        self,
        repositories: SyncRepositories,
        *,
        target: Side,
        email: str,
        target_id: str,
        values: Mapping[str, FieldValue],
    ) -> None:
        if target is Side.PRIMARY:
            repositories.crosswalk.upsert(email, primary_id=target_id)
        else:
            repositories.crosswalk.upsert(email, secondary_id=target_id)
        shadow = repositories.shadows.get_or_create(email)
        for name, value in values.items():
            if name == EMAIL_FIELD:
                continue
            shadow.record_agreed(name, to_json_value(value))
