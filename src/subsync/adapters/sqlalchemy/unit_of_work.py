"""SQLAlchemy-backed units of work for the reconciliation engine."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Literal

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from subsync.adapters.sqlalchemy.mappings import start_mappers
from subsync.adapters.sqlalchemy.migrations import upgrade_head
from subsync.adapters.sqlalchemy.repositories import (
    SqlAlchemyAuditLogRepository,
    SqlAlchemyConflictRepository,
    SqlAlchemyCrosswalkRepository,
    SqlAlchemyShadowRepository,
    SqlAlchemySyncLock,
    SqlAlchemySyncStateRepository,
)
from subsync.config.storage import get_database_uri
from subsync.domain.ports import SyncRepositories

if TYPE_CHECKING:
    from types import TracebackType

    from sqlalchemy.engine import Engine


class StartupError(RuntimeError):
    """Raised when a SQLAlchemy unit of work is used before initialisation."""


@dataclass(slots=True)
class _AdapterState:
    engine: Engine | None = None
    factory: sessionmaker[Session] | None = None

    @property
    def session_factory(self) -> sessionmaker[Session]:
        if self.factory is None:
            raise StartupError(
                "SQLAlchemy adapter not initialised; call "
                "subsync.adapters.sqlalchemy.startup() first."
            )
        return self.factory


_STATE = _AdapterState()


def startup(
    *,
    engine: Engine | None = None,
    database_uri: str | None = None,
    force: bool = False,
) -> None:
    """Bind the adapter to an engine and migrate the sync tables to head."""

    if _STATE.engine is not None and not force:
        raise StartupError("SQLAlchemy adapter already initialised; pass force=True.")

    bound = engine or create_engine(database_uri or get_database_uri(), future=True)
    start_mappers()
    upgrade_head(engine=bound)
    _STATE.engine = bound
    _STATE.factory = sessionmaker(bind=bound, expire_on_commit=False)


def configured_engine() -> Engine | None:
    return _STATE.engine


def is_started() -> bool:
    return _STATE.engine is not None


def shutdown() -> None:
    """Dispose the bound engine; a later ``startup()`` may bind a new one."""

    if _STATE.engine is not None:
        _STATE.engine.dispose()
    _STATE.engine = None
    _STATE.factory = None


class SqlAlchemySyncUnitOfWork:
    """One session spanning crosswalk, shadow, conflict, audit and checkpoint writes.

    Nothing is committed implicitly: callers commit once per reconciled unit, and
    leaving the context with an exception rolls the session back.
    """

    def __init__(self, session_factory: sessionmaker[Session] | None = None) -> None:
        self.session_factory = session_factory or _STATE.session_factory
        self._session: Session | None = None
        self._repositories: SyncRepositories | None = None

    def __enter__(self) -> SqlAlchemySyncUnitOfWork:
        if self._session is not None:
            raise StartupError("Unit of work session already initialised")
        session = self.session_factory()
        self._session = session
        self._repositories = SyncRepositories(
            crosswalk=SqlAlchemyCrosswalkRepository(session),
            shadows=SqlAlchemyShadowRepository(session),
            conflicts=SqlAlchemyConflictRepository(session),
            audit_log=SqlAlchemyAuditLogRepository(session),
            state=SqlAlchemySyncStateRepository(session),
            locks=SqlAlchemySyncLock(session),
        )
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> Literal[False]:
        session = self.session
        try:
            if exc_type is not None:
                session.rollback()
        finally:
            session.close()
            self._session = None
            self._repositories = None
        return False

    def commit(self) -> None:
        self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()

    @property
    def repositories(self) -> SyncRepositories:
        if self._repositories is None:
            raise StartupError("Unit of work session not initialised")
        return self._repositories

    @property
    def session(self) -> Session:
        if self._session is None:
            raise StartupError("Unit of work session not initialised")
        return self._session


if TYPE_CHECKING:
    from subsync.domain.ports import SyncUnitOfWork

    _uow_sync_check: SyncUnitOfWork = SqlAlchemySyncUnitOfWork()
