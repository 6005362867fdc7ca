"""create license tables

Revision ID: 20260301_0001
Revises:
Create Date: 2026-03-01 09:00:00.000000
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import sqlalchemy as sa
from alembic import op

from licensync.adapters.sqlalchemy.mappings import UTCDateTime

if TYPE_CHECKING:
    from decimal import Decimal

revision = "20260301_0001"
down_revision = None
branch_labels = None
depends_on = None


def _money() -> sa.Numeric[Decimal]:
    return sa.Numeric(10, 2)


def _status(*values: str, name: str) -> sa.Enum:
    return sa.Enum(*values, name=name, native_enum=False, length=20)


def upgrade() -> None:
    op.create_table(
        "external_license",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("appid", sa.String(length=255), nullable=False),
        sa.Column("appid_key", sa.String(length=255), nullable=False),
        sa.Column("countid", sa.Integer(), nullable=True),
        sa.Column("email_license", sa.String(length=255), nullable=True),
        sa.Column("dba", sa.String(length=255), nullable=True),
        sa.Column("zip", sa.String(length=20), nullable=True),
        sa.Column("mid", sa.String(length=255), nullable=True),
        sa.Column("license_type", sa.String(length=50), nullable=True),
        sa.Column("status", sa.String(length=50), nullable=True),
        sa.Column("activate_date", UTCDateTime(), nullable=True),
        sa.Column("coming_expired", UTCDateTime(), nullable=True),
        sa.Column("monthly_fee", _money(), nullable=True),
        sa.Column("sms_balance", _money(), nullable=True),
        sa.Column("sms_purchased", sa.Integer(), nullable=True),
        sa.Column("package", sa.JSON(), nullable=True),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("sendbat_workspace", sa.String(length=255), nullable=True),
        sa.Column("last_active", UTCDateTime(), nullable=True),
        sa.Column("last_synced_at", UTCDateTime(), nullable=True),
        sa.Column(
            "sync_status", _status("pending", "synced", "failed", name="syncstatus"), nullable=False
        ),
        sa.Column("sync_error", sa.Text(), nullable=True),
        sa.Column("created_at", UTCDateTime(), nullable=False),
        sa.Column("updated_at", UTCDateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_external_license")),
        sa.UniqueConstraint("appid_key", name=op.f("uq_external_license_appid_key")),
    )
    with op.batch_alter_table("external_license", schema=None) as batch_op:
        batch_op.create_index("ix_external_license_countid", ["countid"], unique=False)
        batch_op.create_index(
            "ix_external_license_email_license", ["email_license"], unique=False
        )
        batch_op.create_index(
            "ix_external_license_sync_status_updated_at",
            ["sync_status", "updated_at"],
            unique=False,
        )

    op.create_table(
        "internal_license",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("key", sa.String(length=255), nullable=False),
        sa.Column("product", sa.String(length=255), nullable=False),
        sa.Column("dba", sa.String(length=255), nullable=True),
        sa.Column("zip", sa.String(length=20), nullable=True),
        sa.Column("starts_at", UTCDateTime(), nullable=True),
        sa.Column(
            "status", _status("active", "pending", "cancel", name="licensestatus"), nullable=False
        ),
        sa.Column("plan", sa.String(length=100), nullable=False),
        sa.Column("term", sa.String(length=50), nullable=False),
        sa.Column("cancel_date", UTCDateTime(), nullable=True),
        sa.Column("last_payment", _money(), nullable=True),
        sa.Column("last_active", UTCDateTime(), nullable=True),
        sa.Column("sms_purchased", sa.Integer(), nullable=True),
        sa.Column("sms_sent", sa.Integer(), nullable=True),
        sa.Column("sms_balance", _money(), nullable=True),
        sa.Column("seats_total", sa.Integer(), nullable=False),
        sa.Column("seats_used", sa.Integer(), nullable=False),
        sa.Column("agents", sa.Integer(), nullable=False),
        sa.Column("agents_name", sa.JSON(), nullable=False),
        sa.Column("agents_cost", _money(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("appid", sa.String(length=255), nullable=True),
        sa.Column("appid_key", sa.String(length=255), nullable=True),
        sa.Column("countid", sa.Integer(), nullable=True),
        sa.Column("external_email", sa.String(length=255), nullable=True),
        sa.Column("mid", sa.String(length=255), nullable=True),
        sa.Column("license_type", sa.String(length=50), nullable=True),
        sa.Column("package_data", sa.JSON(), nullable=True),
        sa.Column("sendbat_workspace", sa.String(length=255), nullable=True),
        sa.Column("coming_expired", UTCDateTime(), nullable=True),
        sa.Column(
            "external_sync_status",
            _status("pending", "synced", "failed", name="syncstatus"),
            nullable=True,
        ),
        sa.Column("last_external_sync", UTCDateTime(), nullable=True),
        sa.Column("created_at", UTCDateTime(), nullable=False),
        sa.Column("updated_at", UTCDateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_internal_license")),
        sa.UniqueConstraint("key", name=op.f("uq_internal_license_key")),
    )
    with op.batch_alter_table("internal_license", schema=None) as batch_op:
        batch_op.create_index("ix_internal_license_appid_key", ["appid_key"], unique=False)
        batch_op.create_index("ix_internal_license_countid", ["countid"], unique=False)
        batch_op.create_index(
            "ix_internal_license_external_email", ["external_email"], unique=False
        )


def downgrade() -> None:
    with op.batch_alter_table("internal_license", schema=None) as batch_op:
        batch_op.drop_index("ix_internal_license_external_email")
        batch_op.drop_index("ix_internal_license_countid")
        batch_op.drop_index("ix_internal_license_appid_key")
    op.drop_table("internal_license")

    with op.batch_alter_table("external_license", schema=None) as batch_op:
        batch_op.drop_index("ix_external_license_sync_status_updated_at")
        batch_op.drop_index("ix_external_license_email_license")
        batch_op.drop_index("ix_external_license_countid")
    op.drop_table("external_license")
