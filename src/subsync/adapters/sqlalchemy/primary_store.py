"""Primary customer store over a relational ``clients`` table."""

from __future__ import annotations

import uuid
from collections.abc import Mapping
from logging import getLogger
from typing import TYPE_CHECKING, Final

from sqlalchemy import Column, MetaData, String, Table, func, insert, select, update
from sqlalchemy.exc import SQLAlchemyError

from subsync.adapters.sqlalchemy.mappings import UTCDateTime
from subsync.domain.errors import FatalConfigError, TransientUpstreamError, UpstreamError
from subsync.domain.model import EMAIL_FIELD, normalize_email, utcnow
from subsync.domain.ports import RecordPage, RemoteRecord

if TYPE_CHECKING:
    from contextlib import AbstractContextManager

    from sqlalchemy.engine import Connection, Engine, Row

    from subsync.domain.model import FieldMappingTable

log = getLogger(__name__)

_SYSTEM_COLUMNS: Final[frozenset[str]] = frozenset({"id", "created_at", "updated_at"})

client_metadata = MetaData()

clients_table = Table(
    "clients",
    client_metadata,
    Column("id", String(36), primary_key=True),
    Column("email", String(320), nullable=False, unique=True),
    Column("first_name", String(255), nullable=True),
    Column("last_name", String(255), nullable=True),
    Column("phone", String(64), nullable=True),
    Column("city", String(255), nullable=True),
    Column("country", String(255), nullable=True),
    Column("groups", String(1024), nullable=True),
    Column("created_at", UTCDateTime(), nullable=False),
    Column("updated_at", UTCDateTime(), nullable=False),
)


def create_clients_table(engine: Engine) -> None:
    """Create the ``clients`` table for local and test databases."""

    client_metadata.create_all(engine)


class SqlAlchemyPrimaryStore:
    """Reads and writes customer rows; email matching is case-insensitive.

    Rows are paged by primary key (keyset pagination), so concurrent inserts never
    shift a page that was already read.
    """

    def __init__(
        self,
        engine: Engine,
        *,
        mappings: FieldMappingTable,
        table: Table = clients_table,
    ) -> None:
        self.engine = engine
        self.table = table
        missing = [
            mapping.primary_field
            for mapping in mappings
            if mapping.primary_field not in table.c
        ]
        if missing:
            raise FatalConfigError(
                f"field mapping refers to unknown {table.name} columns: {', '.join(missing)}"
            )
        self._email_column = table.c[mappings.get(EMAIL_FIELD).primary_field]
        self._field_columns = tuple(
            column for column in table.c if column.name not in _SYSTEM_COLUMNS
        )

    def list_page(self, cursor: str | None, limit: int) -> RecordPage:
        stmt = select(self.table).order_by(self.table.c.id).limit(limit)
        if cursor is not None:
            stmt = stmt.where(self.table.c.id > cursor)
        with self._connect() as connection:
            rows = connection.execute(stmt).all()
        records = tuple(self._to_record(row) for row in rows)
        next_cursor = records[-1].id if len(records) == limit else None
        return RecordPage(records=records, next_cursor=next_cursor)

    def get_by_email(self, email: str) -> RemoteRecord | None:
        with self._connect() as connection:
            row = self._select_by_email(connection, email)
        return self._to_record(row) if row is not None else None

    def create(self, fields: Mapping[str, object]) -> str:
        email = fields.get(self._email_column.name)
        if not isinstance(email, str) or not email.strip():
            raise UpstreamError("cannot create a client without an email")
        values = self._column_values(fields)
        values[self._email_column.name] = normalize_email(email)
        with self._begin() as connection:
            existing = self._select_by_email(connection, email)
            if existing is not None:
                return str(existing.id)
            record_id = str(uuid.uuid4())
            now = utcnow()
            connection.execute(
                insert(self.table).values(id=record_id, created_at=now, updated_at=now, **values)
            )
        log.debug("Inserted client %s", record_id)
        return record_id

    def update(self, record_id: str, fields: Mapping[str, object]) -> None:
        values = self._column_values(fields)
        if not values:
            return
        with self._begin() as connection:
            result = connection.execute(
                update(self.table)
                .where(self.table.c.id == record_id)
                .values(updated_at=utcnow(), **values)
            )
        if result.rowcount == 0:
            raise UpstreamError(f"client {record_id} does not exist")

    def _select_by_email(self, connection: Connection, email: str) -> Row[object] | None:
        stmt = select(self.table).where(
            func.lower(func.trim(self._email_column)) == normalize_email(email)
        )
        return connection.execute(stmt).first()

    def _column_values(self, fields: Mapping[str, object]) -> dict[str, object]:
        values: dict[str, object] = {}
        for name, value in fields.items():
            if name in _SYSTEM_COLUMNS or name not in self.table.c:
                raise UpstreamError(f"{self.table.name} has no writable column {name!r}")
            values[name] = value
        return values

    def _to_record(self, row: Row[object]) -> RemoteRecord:
        data = row._mapping  # noqa: SLF001
        return RemoteRecord(
            id=str(data["id"]),
            email=normalize_email(str(data[self._email_column.name] or "")),
            fields={column.name: data[column.name] for column in self._field_columns},
        )

    def _connect(self) -> _Guarded:
        return _Guarded(self.engine, begin=False)

    def _begin(self) -> _Guarded:
        return _Guarded(self.engine, begin=True)


class _Guarded:
    """Connection context translating driver failures into upstream errors."""

    def __init__(self, engine: Engine, *, begin: bool) -> None:
        self._engine = engine
        self._begin = begin
        self._context: AbstractContextManager[Connection] | None = None

    def __enter__(self) -> Connection:
        try:
            self._context = self._engine.begin() if self._begin else self._engine.connect()
            return self._context.__enter__()
        except SQLAlchemyError as exc:
            raise TransientUpstreamError(f"primary store unavailable: {exc}") from exc

    def __exit__(self, exc_type: object, exc: BaseException | None, tb: object) -> bool:
        try:
            self._context.__exit__(exc_type, exc, tb)  # type: ignore[arg-type]
        except SQLAlchemyError as commit_exc:
            raise TransientUpstreamError(
                f"primary store write failed: {commit_exc}"
            ) from commit_exc
        if isinstance(exc, SQLAlchemyError):
            raise TransientUpstreamError(f"primary store query failed: {exc}") from exc
        return False
