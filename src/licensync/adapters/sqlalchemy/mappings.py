"""SQLAlchemy table metadata for the license stores."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Dialect,
    Enum,
    Index,
    Integer,
    Numeric,
    String,
    Table,
    Text,
    TypeDecorator,
    Uuid,
    orm,
)

from licensync.domain.model import APPID_MAX_LENGTH, LicenseStatus, SyncStatus

if TYPE_CHECKING:
    from decimal import Decimal
    from enum import StrEnum

UUIDColumnType = Uuid[uuid.UUID]


class UTCDateTime(TypeDecorator[datetime]):
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        return value if value.tzinfo else value.replace(tzinfo=UTC)


def _money() -> Numeric[Decimal]:
    return Numeric(10, 2, asdecimal=True)


def _enum(enum_class: type[StrEnum]) -> Enum:
    return Enum(
        enum_class,
        native_enum=False,
        length=20,
        values_callable=lambda members: [member.value for member in members],
    )


mapper_registry = orm.registry()
mapper_registry.metadata.naming_convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_label)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_label)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

# Partner mirror ---------------------------------------------------------------

external_license_table = Table(
    "external_license",
    mapper_registry.metadata,
    Column("id", UUIDColumnType, primary_key=True, default=uuid.uuid4),
    Column("appid", String(APPID_MAX_LENGTH), nullable=False),
    Column("appid_key", String(APPID_MAX_LENGTH), nullable=False, unique=True),
    Column("countid", Integer, nullable=True),
    Column("email_license", String(255), nullable=True),
    Column("dba", String(255), nullable=True),
    Column("zip", String(20), nullable=True),
    Column("mid", String(255), nullable=True),
    Column("license_type", String(50), nullable=True),
    Column("status", String(50), nullable=True),
    Column("activate_date", UTCDateTime(), nullable=True),
    Column("coming_expired", UTCDateTime(), nullable=True),
    Column("monthly_fee", _money(), nullable=True),
    Column("sms_balance", _money(), nullable=True),
    Column("sms_purchased", Integer, nullable=True),
    Column("package", JSON, nullable=True),
    Column("note", Text, nullable=True),
    Column("sendbat_workspace", String(255), nullable=True),
    Column("last_active", UTCDateTime(), nullable=True),
    Column("last_synced_at", UTCDateTime(), nullable=True),
    Column(
        "sync_status",
        _enum(SyncStatus),
        nullable=False,
        default=SyncStatus.PENDING,
    ),
    Column("sync_error", Text, nullable=True),
    Column("created_at", UTCDateTime(), nullable=False),
    Column("updated_at", UTCDateTime(), nullable=False),
    Index("ix_external_license_countid", "countid"),
    Index("ix_external_license_email_license", "email_license"),
    Index("ix_external_license_sync_status_updated_at", "sync_status", "updated_at"),
)

# Internally-owned licenses ----------------------------------------------------

internal_license_table = Table(
    "internal_license",
    mapper_registry.metadata,
    Column("id", UUIDColumnType, primary_key=True, default=uuid.uuid4),
    Column("key", String(255), nullable=False, unique=True),
    Column("product", String(255), nullable=False),
    Column("dba", String(255), nullable=True),
    Column("zip", String(20), nullable=True),
    Column("starts_at", UTCDateTime(), nullable=True),
    Column("status", _enum(LicenseStatus), nullable=False),
    Column("plan", String(100), nullable=False),
    Column("term", String(50), nullable=False),
    Column("cancel_date", UTCDateTime(), nullable=True),
    Column("last_payment", _money(), nullable=True),
    Column("last_active", UTCDateTime(), nullable=True),
    Column("sms_purchased", Integer, nullable=True),
    Column("sms_sent", Integer, nullable=True),
    Column("sms_balance", _money(), nullable=True),
    Column("seats_total", Integer, nullable=False, default=1),
    Column("seats_used", Integer, nullable=False, default=0),
    Column("agents", Integer, nullable=False, default=0),
    Column("agents_name", JSON, nullable=False, default=list),
    Column("agents_cost", _money(), nullable=False, default=0),
    Column("notes", Text, nullable=True),
    Column("appid", String(APPID_MAX_LENGTH), nullable=True),
    Column("appid_key", String(APPID_MAX_LENGTH), nullable=True),
    Column("countid", Integer, nullable=True),
    Column("external_email", String(255), nullable=True),
    Column("mid", String(255), nullable=True),
    Column("license_type", String(50), nullable=True),
    Column("package_data", JSON, nullable=True),
    Column("sendbat_workspace", String(255), nullable=True),
    Column("coming_expired", UTCDateTime(), nullable=True),
    Column("external_sync_status", _enum(SyncStatus), nullable=True),
    Column("last_external_sync", UTCDateTime(), nullable=True),
    Column("created_at", UTCDateTime(), nullable=False),
    Column("updated_at", UTCDateTime(), nullable=False),
    Index("ix_internal_license_appid_key", "appid_key"),
    Index("ix_internal_license_countid", "countid"),
    Index("ix_internal_license_external_email", "external_email"),
)
