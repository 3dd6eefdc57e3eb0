"""Reconciliation engine: three-way diff, apply, governor, controller and resolution."""

from __future__ import annotations

from .apply import ApplyEngine, ApplyOutcome
from .controller import (
    ControllerSettings,
    EmailFilter,
    ReconciliationController,
    SyncRequest,
    UnitOfWorkFactory,
    discard_checkpoint,
    prepare_email_filter,
)
from .diff import Decision, FieldDiff, diff_field, diff_record, repair_diffs
from .governor import Governor, GovernorPolicy, QuotaTracker, next_utc_midnight
from .groups import GroupPlan, parse_groups, plan_groups
from .resolution import ResolutionResult, ResolutionService
from .results import RecordResult, SyncRunResult

__all__ = [
    "ApplyEngine",
    "ApplyOutcome",
    "ControllerSettings",
    "Decision",
    "EmailFilter",
    "FieldDiff",
    "Governor",
    "GovernorPolicy",
    "GroupPlan",
    "QuotaTracker",
    "RecordResult",
    "ReconciliationController",
    "ResolutionResult",
    "ResolutionService",
    "SyncRequest",
    "SyncRunResult",
    "UnitOfWorkFactory",
    "diff_field",
    "diff_record",
    "discard_checkpoint",
    "next_utc_midnight",
    "parse_groups",
    "plan_groups",
    "prepare_email_filter",
    "repair_diffs",
]
