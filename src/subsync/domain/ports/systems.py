"""Ports for the two external systems being reconciled."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable


@dataclass(slots=True, frozen=True, kw_only=True)
class RemoteRecord:
    """A record as one side reports it, keyed by that side's own field names."""

    id: str
    email: str
    fields: Mapping[str, object] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class RecordPage:
    records: tuple[RemoteRecord, ...]
    next_cursor: str | None = None


@runtime_checkable
class PrimaryStore(Protocol):
    """Relational customer store (side A)."""

    def list_page(self, cursor: str | None, limit: int) -> RecordPage: ...

    def get_by_email(self, email: str) -> RemoteRecord | None: ...

    def create(self, fields: Mapping[str, object]) -> str:
        """Insert a record unless one with the same email exists; return its id."""
        ...

    def update(self, record_id: str, fields: Mapping[str, object]) -> None: ...


@runtime_checkable
class SecondaryService(Protocol):
    """Third-party subscriber service (side B).

    Implementations raise ``RateLimitSignal`` for a single rate-limit response and
    leave retrying to the caller.
    """

    def ping(self) -> None: ...

    def list_page(self, cursor: str | None, limit: int) -> RecordPage: ...

    def get(self, record_id: str) -> RemoteRecord | None: ...

    def find_by_email(self, email: str) -> RemoteRecord | None: ...

    def create(self, email: str, fields: Mapping[str, object]) -> str: ...

    def update(self, record_id: str, fields: Mapping[str, object]) -> None: ...

    def set_groups(
        self, record_id: str, *, add: Sequence[str], remove: Sequence[str]
    ) -> None:
        """Join and leave groups by name; names the service does not know are skipped."""
        ...


@runtime_checkable
class Authorizer(Protocol):
    """Identity collaborator deciding who may resolve conflicts."""

    def is_privileged(self, caller: str | None) -> bool: ...
