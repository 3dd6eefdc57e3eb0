"""Domain port definitions for adapters."""

from __future__ import annotations

from .persistence import (
    AuditLogRepository,
    ConflictRepository,
    CrosswalkRepository,
    Repository,
    ShadowRepository,
    SyncLock,
    SyncStateRepository,
)
from .systems import Authorizer, PrimaryStore, RecordPage, RemoteRecord, SecondaryService
from .unit_of_work import RepositoryCollection, SyncRepositories, SyncUnitOfWork, UnitOfWork

__all__ = [
    "AuditLogRepository",
    "Authorizer",
    "ConflictRepository",
    "CrosswalkRepository",
    "PrimaryStore",
    "RecordPage",
    "RemoteRecord",
    "Repository",
    "RepositoryCollection",
    "SecondaryService",
    "ShadowRepository",
    "SyncLock",
    "SyncRepositories",
    "SyncStateRepository",
    "SyncUnitOfWork",
    "UnitOfWork",
]
