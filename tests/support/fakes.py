"""In-memory stand-ins for the two external systems and a manual clock."""

from __future__ import annotations

from collections import defaultdict
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from subsync.domain.model import normalize_email
from subsync.domain.ports import RecordPage, RemoteRecord

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping, Sequence


class ManualClock:
    """Clock and sleep function in one; sleeping advances the clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2025, 1, 6, 12, 0, tzinfo=UTC)
        self.sleeps: list[float] = []

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> None:
        self.now += timedelta(**delta)

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += timedelta(seconds=seconds)


class FakePrimaryStore:
    def __init__(self) -> None:
        self.rows: dict[str, dict[str, object]] = {}
        self.created: list[dict[str, object]] = []
        self.updates: list[tuple[str, dict[str, object]]] = []
        self._next_id = 1

    def seed(self, email: str, **fields: object) -> str:
        record_id = f"p{self._next_id:04d}"
        self._next_id += 1
        self.rows[record_id] = {"email": normalize_email(email), **fields}
        return record_id

    def list_page(self, cursor: str | None, limit: int) -> RecordPage:
        ids = sorted(record_id for record_id in self.rows if cursor is None or record_id > cursor)
        page = ids[:limit]
        records = tuple(self._record(record_id) for record_id in page)
        return RecordPage(records=records, next_cursor=page[-1] if len(ids) > limit else None)

    def get_by_email(self, email: str) -> RemoteRecord | None:
        wanted = normalize_email(email)
        for record_id, row in self.rows.items():
            if row["email"] == wanted:
                return self._record(record_id)
        return None

    def create(self, fields: Mapping[str, object]) -> str:
        existing = self.get_by_email(str(fields["email"]))
        if existing is not None:
            return existing.id
        self.created.append(dict(fields))
        data = {key: value for key, value in fields.items() if key != "email"}
        return self.seed(str(fields["email"]), **data)

    def update(self, record_id: str, fields: Mapping[str, object]) -> None:
        self.updates.append((record_id, dict(fields)))
        self.rows[record_id].update(fields)

    def _record(self, record_id: str) -> RemoteRecord:
        row = self.rows[record_id]
        return RemoteRecord(id=record_id, email=str(row["email"]), fields=dict(row))


class FakeSecondaryService:
    """Subscriber service double with scripted failures per operation."""

    def __init__(self) -> None:
        self.subscribers: dict[str, dict[str, object]] = {}
        self.created: list[tuple[str, dict[str, object]]] = []
        self.updates: list[tuple[str, dict[str, object]]] = []
        self.group_changes: list[tuple[str, tuple[str, ...], tuple[str, ...]]] = []
        self.calls: list[str] = []
        self.on_call: Callable[[str], None] | None = None
        self._failures: dict[str, list[Exception]] = defaultdict(list)
        self._next_id = 1

    def seed(self, email: str, *, status: str = "active", **fields: object) -> str:
        record_id = f"s{self._next_id:04d}"
        self._next_id += 1
        self.subscribers[record_id] = {
            "email": normalize_email(email),
            "status": status,
            **fields,
        }
        return record_id

    def fail_next(self, operation: str, error: Exception, *, times: int = 1) -> None:
        self._failures[operation].extend([error] * times)

    def ping(self) -> None:
        self._enter("ping")

    def list_page(self, cursor: str | None, limit: int) -> RecordPage:
        self._enter("list_page")
        ids = sorted(
            record_id for record_id in self.subscribers if cursor is None or record_id > cursor
        )
        page = ids[:limit]
        records = tuple(self._record(record_id) for record_id in page)
        return RecordPage(records=records, next_cursor=page[-1] if len(ids) > limit else None)

    def get(self, record_id: str) -> RemoteRecord | None:
        self._enter("get")
        if record_id not in self.subscribers:
            return None
        return self._record(record_id)

    def find_by_email(self, email: str) -> RemoteRecord | None:
        self._enter("find_by_email")
        return self._find(email)

    def create(self, email: str, fields: Mapping[str, object]) -> str:
        self._enter("create")
        existing = self._find(email)
        if existing is not None:
            self.subscribers[existing.id].update(fields)
            return existing.id
        self.created.append((email, dict(fields)))
        return self.seed(email, **fields)

    def update(self, record_id: str, fields: Mapping[str, object]) -> None:
        self._enter("update")
        self.updates.append((record_id, dict(fields)))
        self.subscribers[record_id].update(fields)

    def set_groups(
        self, record_id: str, *, add: Sequence[str], remove: Sequence[str]
    ) -> None:
        self._enter("set_groups")
        self.group_changes.append((record_id, tuple(add), tuple(remove)))
        current = {str(name) for name in self.subscribers[record_id].get("groups", [])}
        self.subscribers[record_id]["groups"] = sorted((current | set(add)) - set(remove))

    def _enter(self, operation: str) -> None:
        self.calls.append(operation)
        if self.on_call is not None:
            self.on_call(operation)
        pending = self._failures.get(operation)
        if pending:
            raise pending.pop(0)

    def _find(self, email: str) -> RemoteRecord | None:
        wanted = normalize_email(email)
        for record_id, subscriber in self.subscribers.items():
            if subscriber["email"] == wanted:
                return self._record(record_id)
        return None

    def _record(self, record_id: str) -> RemoteRecord:
        subscriber = self.subscribers[record_id]
        return RemoteRecord(id=record_id, email=str(subscriber["email"]), fields=dict(subscriber))
