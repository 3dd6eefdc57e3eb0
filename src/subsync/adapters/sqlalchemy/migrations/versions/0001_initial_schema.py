"""Initial schema: crosswalk, shadow, conflicts, audit log, state documents and leases.

Revision ID: 0001
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

from subsync.adapters.sqlalchemy.mappings import UTCDateTime

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

_CONFLICT_KINDS = ("MISSING_PRIMARY", "MISSING_SECONDARY", "VALUE_MISMATCH")
_CONFLICT_STATUSES = ("PENDING", "RESOLVED")
_AUDIT_ACTIONS = ("CREATED", "UPDATED", "CONFLICT_DETECTED", "CONFLICT_RESOLVED")
_DIRECTIONS = ("PRIMARY_TO_SECONDARY", "SECONDARY_TO_PRIMARY")


def upgrade() -> None:
    op.create_table(
        "integration_crosswalk",
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("primary_id", sa.String(64), nullable=True),
        sa.Column("secondary_id", sa.String(64), nullable=True),
        sa.Column("created_at", UTCDateTime(), nullable=False),
        sa.Column("updated_at", UTCDateTime(), nullable=False),
        sa.PrimaryKeyConstraint("email", name="pk_integration_crosswalk"),
    )
    op.create_index(
        "ix_integration_crosswalk_primary_id", "integration_crosswalk", ["primary_id"]
    )
    op.create_index(
        "ix_integration_crosswalk_secondary_id", "integration_crosswalk", ["secondary_id"]
    )

    op.create_table(
        "sync_shadow",
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("primary_fields", sa.JSON(), nullable=False),
        sa.Column("secondary_fields", sa.JSON(), nullable=False),
        sa.Column("updated_at", UTCDateTime(), nullable=False),
        sa.PrimaryKeyConstraint("email", name="pk_sync_shadow"),
    )

    op.create_table(
        "sync_conflicts",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("field", sa.String(128), nullable=False),
        sa.Column("primary_value", sa.JSON(), nullable=True),
        sa.Column("secondary_value", sa.JSON(), nullable=True),
        sa.Column(
            "kind",
            sa.Enum(*_CONFLICT_KINDS, name="conflictkind", native_enum=False),
            nullable=False,
        ),
        sa.Column(
            "status",
            sa.Enum(*_CONFLICT_STATUSES, name="conflictstatus", native_enum=False),
            nullable=False,
        ),
        sa.Column("resolved_value", sa.JSON(), nullable=True),
        sa.Column("resolved_at", UTCDateTime(), nullable=True),
        sa.Column("detected_at", UTCDateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_sync_conflicts"),
    )
    op.create_index(
        "ix_sync_conflicts_email_field_status",
        "sync_conflicts",
        ["email", "field", "status"],
    )

    op.create_table(
        "sync_log",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column(
            "action",
            sa.Enum(*_AUDIT_ACTIONS, name="auditaction", native_enum=False),
            nullable=False,
        ),
        sa.Column(
            "direction",
            sa.Enum(*_DIRECTIONS, name="direction", native_enum=False),
            nullable=True,
        ),
        sa.Column("field", sa.String(128), nullable=True),
        sa.Column("old_value", sa.JSON(), nullable=True),
        sa.Column("new_value", sa.JSON(), nullable=True),
        sa.Column("created_at", UTCDateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_sync_log"),
    )
    op.create_index("ix_sync_log_email", "sync_log", ["email"])

    op.create_table(
        "sync_state",
        sa.Column("key", sa.String(128), nullable=False),
        sa.Column("document", sa.JSON(), nullable=False),
        sa.Column("updated_at", UTCDateTime(), nullable=False),
        sa.PrimaryKeyConstraint("key", name="pk_sync_state"),
    )

    op.create_table(
        "sync_lock",
        sa.Column("key", sa.String(128), nullable=False),
        sa.Column("owner", sa.String(64), nullable=False),
        sa.Column("acquired_at", UTCDateTime(), nullable=False),
        sa.Column("expires_at", UTCDateTime(), nullable=False),
        sa.PrimaryKeyConstraint("key", name="pk_sync_lock"),
    )


def downgrade() -> None:
    op.drop_table("sync_lock")
    op.drop_table("sync_state")
    op.drop_index("ix_sync_log_email", table_name="sync_log")
    op.drop_table("sync_log")
    op.drop_index("ix_sync_conflicts_email_field_status", table_name="sync_conflicts")
    op.drop_table("sync_conflicts")
    op.drop_index("ix_integration_crosswalk_secondary_id", table_name="integration_crosswalk")
    op.drop_index("ix_integration_crosswalk_primary_id", table_name="integration_crosswalk")
    op.drop_table("integration_crosswalk")
