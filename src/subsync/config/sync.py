"""Synchronization defaults for reconciliation runs."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import timedelta

from subsync.domain.reconciliation.governor import GovernorPolicy

from .env import env_flag, env_int, env_list

DEFAULT_MAX_RECORDS = 300
DEFAULT_MAX_DURATION_MS = 120_000
DEFAULT_EMAIL_FILTER_CAP = 2000
DEFAULT_PAGE_SIZE = 1000
DEFAULT_CHECKPOINT_KEY = "full_sync_state"
DEFAULT_STATUS_KEY = "sync_status"
DEFAULT_QUOTA_KEY = "secondary_quota"
DEFAULT_LOCK_GRACE = timedelta(minutes=5)


@dataclass(frozen=True, slots=True)
class SyncConfig:
    max_records: int = DEFAULT_MAX_RECORDS
    max_duration_ms: int = DEFAULT_MAX_DURATION_MS
    email_filter_cap: int = DEFAULT_EMAIL_FILTER_CAP
    page_size: int = DEFAULT_PAGE_SIZE
    checkpoint_key: str = DEFAULT_CHECKPOINT_KEY
    status_key: str = DEFAULT_STATUS_KEY
    quota_key: str = DEFAULT_QUOTA_KEY
    lock_grace: timedelta = DEFAULT_LOCK_GRACE
    governor: GovernorPolicy = field(default_factory=GovernorPolicy)
    sync_groups: bool = False
    managed_groups: frozenset[str] = frozenset()


def get_sync_config() -> SyncConfig:
    quota_raw = os.getenv("SUBSYNC_DAILY_QUOTA")
    daily_quota = env_int("SUBSYNC_DAILY_QUOTA", 1) if quota_raw else None
    return SyncConfig(
        max_records=env_int("SUBSYNC_MAX_RECORDS", DEFAULT_MAX_RECORDS),
        max_duration_ms=env_int("SUBSYNC_MAX_DURATION_MS", DEFAULT_MAX_DURATION_MS),
        page_size=env_int("SUBSYNC_PAGE_SIZE", DEFAULT_PAGE_SIZE),
        checkpoint_key=os.getenv("SUBSYNC_CHECKPOINT_KEY") or DEFAULT_CHECKPOINT_KEY,
        governor=GovernorPolicy(daily_quota=daily_quota),
        sync_groups=env_flag("SUBSYNC_SYNC_GROUPS"),
        managed_groups=frozenset(env_list("SUBSYNC_MANAGED_GROUPS")),
    )
