"""License stores backed by SQLAlchemy Core tables.

Rows are converted to and from the domain dataclasses here; nothing is mapped
onto the domain classes themselves. Upserts use the dialect's
``INSERT ... ON CONFLICT DO UPDATE`` and report created/updated per record by
checking which conflict keys existed beforehand, inside the same transaction.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from logging import getLogger
from typing import TYPE_CHECKING, Any, Final, cast

from sqlalchemy import func, select, update
from sqlalchemy.dialects import postgresql, sqlite

from licensync.adapters.resilience import retry_transient, translate_store_errors
from licensync.domain.model import (
    ExternalLicenseRecord,
    InternalLicenseRecord,
    SyncStatus,
    appid_key,
)
from licensync.domain.ports import Page, SyncStats, UpsertResult

from .mappings import external_license_table, internal_license_table

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping, Sequence

    from sqlalchemy import ColumnElement, CursorResult, Select, Table
    from sqlalchemy.engine import RowMapping
    from sqlalchemy.orm import Session

    from licensync.domain.model import InternalPatch
    from licensync.domain.ports import PageFilters

log = getLogger(__name__)

type Clock = Callable[[], datetime]

_BOOKKEEPING_COLUMNS: Final[frozenset[str]] = frozenset({"id", "created_at"})

# Session.info key holding the transaction that carries uncommitted writes.
_WRITE_TRANSACTION_KEY: Final = "licensync.write_transaction"

EXTERNAL_RECORD_FIELDS: Final[tuple[str, ...]] = (
    "appid",
    "countid",
    "email_license",
    "dba",
    "zip",
    "mid",
    "license_type",
    "status",
    "activate_date",
    "coming_expired",
    "monthly_fee",
    "sms_balance",
    "sms_purchased",
    "package",
    "note",
    "sendbat_workspace",
    "last_active",
    "last_synced_at",
    "sync_status",
    "sync_error",
)

INTERNAL_RECORD_FIELDS: Final[tuple[str, ...]] = (
    "key",
    "product",
    "dba",
    "zip",
    "starts_at",
    "status",
    "plan",
    "term",
    "cancel_date",
    "last_payment",
    "last_active",
    "sms_purchased",
    "sms_sent",
    "sms_balance",
    "seats_total",
    "seats_used",
    "agents",
    "agents_name",
    "agents_cost",
    "notes",
    "appid",
    "countid",
    "external_email",
    "mid",
    "license_type",
    "package_data",
    "sendbat_workspace",
    "coming_expired",
    "external_sync_status",
    "last_external_sync",
)

EXTERNAL_FILTER_COLUMNS: Final[frozenset[str]] = frozenset(
    {"sync_status", "license_type", "status", "countid", "email_license"}
)
INTERNAL_FILTER_COLUMNS: Final[frozenset[str]] = frozenset(
    {"status", "plan", "external_sync_status", "countid", "product"}
)


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _dialect_insert(session: Session, table: Table) -> Any:
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(table)
    if dialect == "sqlite":
        return sqlite.insert(table)
    raise NotImplementedError(f"Upserts are not supported on the {dialect!r} dialect")


def _rowcount(result: object) -> int:
    return cast("CursorResult[Any]", result).rowcount


def _filtered(
    statement: Select[Any],
    table: Table,
    filters: PageFilters | None,
    allowed: frozenset[str],
) -> Select[Any]:
    if not filters:
        return statement
    unknown = sorted(set(filters) - allowed)
    if unknown:
        raise ValueError(f"Unsupported filter(s) for {table.name}: {', '.join(unknown)}")
    conditions: list[ColumnElement[bool]] = []
    for name, value in filters.items():
        column = table.c[name]
        enum_class = getattr(column.type, "enum_class", None)
        if enum_class is not None and not isinstance(value, enum_class):
            value = enum_class(value)
        conditions.append(column == value)
    return statement.where(*conditions)


def _external_status_text(value: object) -> str | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return "1" if value else "0"
    return str(value)


def external_to_row(record: ExternalLicenseRecord) -> dict[str, object]:
    row: dict[str, object] = {name: getattr(record, name) for name in EXTERNAL_RECORD_FIELDS}
    row["status"] = _external_status_text(record.status)
    row["appid_key"] = record.appid_key
    return row


def external_from_row(row: RowMapping) -> ExternalLicenseRecord:
    return ExternalLicenseRecord(
        id=row["id"],
        **{name: row[name] for name in EXTERNAL_RECORD_FIELDS},
    )


def internal_to_row(record: InternalLicenseRecord) -> dict[str, object]:
    row: dict[str, object] = {name: getattr(record, name) for name in INTERNAL_RECORD_FIELDS}
    row["agents_name"] = list(record.agents_name)
    row["appid_key"] = record.appid_key
    return row


def internal_from_row(row: RowMapping) -> InternalLicenseRecord:
    values = {name: row[name] for name in INTERNAL_RECORD_FIELDS}
    values["agents_name"] = list(values["agents_name"] or [])
    return InternalLicenseRecord(id=row["id"], **values)


class _SqlAlchemyLicenseStore:
    table: Table
    filter_columns: frozenset[str]
    record_fields: tuple[str, ...]

    def __init__(self, session: Session, *, clock: Clock = _utc_now) -> None:
        self.session = session
        self._clock = clock

    def can_retry_transient(self) -> bool:
        """Reads may be retried unless the open transaction holds uncommitted writes."""
        written_in = self.session.info.get(_WRITE_TRANSACTION_KEY)
        return written_in is None or written_in is not self.session.get_transaction()

    def reset_after_transient(self) -> None:
        log.info("Rolling back %s session after a transient failure", self.table.name)
        self.session.rollback()

    def _mark_written(self) -> None:
        transaction = self.session.get_transaction()
        if transaction is None:
            transaction = self.session.begin()
        self.session.info[_WRITE_TRANSACTION_KEY] = transaction

    def _count(self, filters: PageFilters | None) -> int:
        statement = _filtered(
            select(func.count()).select_from(self.table), self.table, filters, self.filter_columns
        )
        return int(self.session.execute(statement).scalar_one())

    def _page_rows(
        self, page_number: int, page_size: int, filters: PageFilters | None
    ) -> tuple[list[RowMapping], int]:
        if page_number < 1 or page_size < 1:
            raise ValueError("page_number and page_size must be positive")
        statement = (
            select(self.table)
            .order_by(self.table.c.created_at, self.table.c.id)
            .offset((page_number - 1) * page_size)
            .limit(page_size)
        )
        statement = _filtered(statement, self.table, filters, self.filter_columns)
        rows = list(self.session.execute(statement).mappings())
        return rows, self._count(filters)

    def _first(self, *conditions: ColumnElement[bool]) -> RowMapping | None:
        statement = (
            select(self.table)
            .where(*conditions)
            .order_by(self.table.c.updated_at.desc(), self.table.c.id)
            .limit(1)
        )
        return self.session.execute(statement).mappings().first()

    def _get_row(self, record_id: uuid.UUID) -> RowMapping | None:
        statement = select(self.table).where(self.table.c.id == record_id)
        return self.session.execute(statement).mappings().first()

    def _patch_values(self, patch: InternalPatch) -> dict[str, object]:
        unknown = sorted(name for name in patch if name not in self.record_fields)
        if unknown:
            raise ValueError(f"Unknown field(s) for {self.table.name}: {', '.join(unknown)}")
        values = dict(patch)
        if "appid" in values:
            values["appid_key"] = appid_key(values["appid"])
        values["updated_at"] = self._clock()
        return values

    def _apply_patch(self, record_id: uuid.UUID, patch: InternalPatch) -> RowMapping | None:
        self._mark_written()
        statement = (
            update(self.table)
            .where(self.table.c.id == record_id)
            .values(**self._patch_values(patch))
        )
        if _rowcount(self.session.execute(statement)) == 0:
            return None
        return self._get_row(record_id)

    def _update_by_id(self, record_id: uuid.UUID, **values: object) -> bool:
        self._mark_written()
        statement = (
            update(self.table)
            .where(self.table.c.id == record_id)
            .values(updated_at=self._clock(), **values)
        )
        return _rowcount(self.session.execute(statement)) > 0

    def _upsert_rows(
        self,
        rows: Sequence[dict[str, object]],
        conflict_column: str,
        *,
        preserve: frozenset[str] = frozenset(),
    ) -> tuple[list[RowMapping], set[object]]:
        """Upsert ``rows`` on ``conflict_column``; return stored rows and pre-existing keys."""

        self._mark_written()
        conflict = self.table.c[conflict_column]
        keys = [row[conflict_column] for row in rows]
        existing = set(self.session.execute(select(conflict).where(conflict.in_(keys))).scalars())

        now = self._clock()
        values = [{**row, "id": uuid.uuid4(), "created_at": now, "updated_at": now} for row in rows]
        insert = _dialect_insert(self.session, self.table)
        statement = insert.values(values)
        statement = statement.on_conflict_do_update(
            index_elements=[conflict],
            set_={
                name: statement.excluded[name]
                for name in values[0]
                if name not in _BOOKKEEPING_COLUMNS and name not in preserve
            },
        )
        self.session.execute(statement)

        stored = {
            row[conflict_column]: row
            for row in self.session.execute(
                select(self.table).where(conflict.in_(keys))
            ).mappings()
        }
        return [stored[key] for key in keys], existing


class SqlAlchemyExternalLicenseStore(_SqlAlchemyLicenseStore):
    table = external_license_table
    filter_columns = EXTERNAL_FILTER_COLUMNS
    record_fields = EXTERNAL_RECORD_FIELDS

    @retry_transient()
    @translate_store_errors
    def page(
        self,
        page_number: int,
        page_size: int,
        filters: PageFilters | None = None,
    ) -> Page[ExternalLicenseRecord]:
        rows, total = self._page_rows(page_number, page_size, filters)
        return Page(records=[external_from_row(row) for row in rows], total=total)

    @retry_transient()
    @translate_store_errors
    def find_by_key(
        self,
        *,
        appid: str | None = None,
        countid: int | None = None,
        email: str | None = None,
    ) -> ExternalLicenseRecord | None:
        table = self.table
        row: RowMapping | None = None
        key = appid_key(appid)
        if key is not None:
            row = self._first(table.c.appid_key == key)
        elif countid is not None:
            row = self._first(table.c.countid == countid)
        elif email is not None and email.strip():
            row = self._first(func.lower(table.c.email_license) == email.strip().lower())
        return external_from_row(row) if row is not None else None

    @translate_store_errors
    def upsert(self, record: ExternalLicenseRecord) -> UpsertResult[ExternalLicenseRecord]:
        return self.bulk_upsert([record])[0]

    @translate_store_errors
    def bulk_upsert(
        self, records: Sequence[ExternalLicenseRecord]
    ) -> list[UpsertResult[ExternalLicenseRecord]]:
        if not records:
            return []
        unique: dict[str, ExternalLicenseRecord] = {}
        for record in records:
            key = record.appid_key
            if key is None:
                raise ValueError(f"Cannot upsert external license without appid: {record}")
            unique[key] = record

        rows = [external_to_row(record) for record in unique.values()]
        stored, existing = self._upsert_rows(
            rows, "appid_key", preserve=frozenset({"last_synced_at"})
        )
        results = [
            UpsertResult(record=external_from_row(row), created=row["appid_key"] not in existing)
            for row in stored
        ]
        log.debug(
            "Upserted %s external licenses (%s new)",
            len(results),
            sum(1 for result in results if result.created),
        )
        return results

    @translate_store_errors
    def update(
        self, record_id: uuid.UUID, patch: InternalPatch
    ) -> ExternalLicenseRecord | None:
        row = self._apply_patch(record_id, patch)
        return external_from_row(row) if row is not None else None

    @translate_store_errors
    def mark_synced(self, record_id: uuid.UUID, timestamp: datetime) -> bool:
        return self._update_by_id(
            record_id,
            sync_status=SyncStatus.SYNCED,
            last_synced_at=timestamp,
            sync_error=None,
        )

    @translate_store_errors
    def mark_failed(self, record_id: uuid.UUID, message: str) -> bool:
        return self._update_by_id(record_id, sync_status=SyncStatus.FAILED, sync_error=message)

    @retry_transient()
    @translate_store_errors
    def find_needing_sync(self, limit: int = 100) -> list[ExternalLicenseRecord]:
        table = self.table
        statement = (
            select(table)
            .where(table.c.sync_status.in_((SyncStatus.PENDING, SyncStatus.FAILED)))
            .order_by(table.c.updated_at, table.c.id)
            .limit(limit)
        )
        return [external_from_row(row) for row in self.session.execute(statement).mappings()]

    @retry_transient()
    @translate_store_errors
    def sync_stats(self) -> SyncStats:
        table = self.table
        statement = select(table.c.sync_status, func.count()).group_by(table.c.sync_status)
        counts: Mapping[SyncStatus, int] = {
            status: count for status, count in self.session.execute(statement).tuples()
        }
        return SyncStats(
            total=sum(counts.values()),
            synced=counts.get(SyncStatus.SYNCED, 0),
            failed=counts.get(SyncStatus.FAILED, 0),
            pending=counts.get(SyncStatus.PENDING, 0),
        )


class SqlAlchemyInternalLicenseStore(_SqlAlchemyLicenseStore):
    table = internal_license_table
    filter_columns = INTERNAL_FILTER_COLUMNS
    record_fields = INTERNAL_RECORD_FIELDS

    @retry_transient()
    @translate_store_errors
    def page(
        self,
        page_number: int,
        page_size: int,
        filters: PageFilters | None = None,
    ) -> Page[InternalLicenseRecord]:
        rows, total = self._page_rows(page_number, page_size, filters)
        return Page(records=[internal_from_row(row) for row in rows], total=total)

    @retry_transient()
    @translate_store_errors
    def find_by_key(
        self,
        *,
        appid: str | None = None,
        countid: int | None = None,
        email: str | None = None,
    ) -> InternalLicenseRecord | None:
        table = self.table
        row: RowMapping | None = None
        key = appid_key(appid)
        if key is not None:
            row = self._first(table.c.appid_key == key)
        elif countid is not None:
            row = self._first(table.c.countid == countid)
        elif email is not None and email.strip():
            row = self._first(func.lower(table.c.external_email) == email.strip().lower())
        return internal_from_row(row) if row is not None else None

    @translate_store_errors
    def create(self, record: InternalLicenseRecord) -> InternalLicenseRecord:
        self._mark_written()
        now = self._clock()
        record_id = record.id or uuid.uuid4()
        values = {**internal_to_row(record), "id": record_id, "created_at": now, "updated_at": now}
        self.session.execute(self.table.insert().values(**values))
        row = self._get_row(record_id)
        if row is None:
            raise RuntimeError(f"Internal license {record_id} vanished after insert")
        return internal_from_row(row)

    @translate_store_errors
    def upsert(self, record: InternalLicenseRecord) -> UpsertResult[InternalLicenseRecord]:
        stored, existing = self._upsert_rows([internal_to_row(record)], "key")
        row = stored[0]
        return UpsertResult(record=internal_from_row(row), created=row["key"] not in existing)

    @translate_store_errors
    def update(
        self, record_id: uuid.UUID, patch: InternalPatch
    ) -> InternalLicenseRecord | None:
        row = self._apply_patch(record_id, patch)
        return internal_from_row(row) if row is not None else None

    @translate_store_errors
    def mark_synced(self, record_id: uuid.UUID, timestamp: datetime) -> bool:
        return self._update_by_id(
            record_id, external_sync_status=SyncStatus.SYNCED, last_external_sync=timestamp
        )

    @translate_store_errors
    def mark_failed(self, record_id: uuid.UUID, message: str) -> bool:
        log.debug("Internal license %s failed to sync: %s", record_id, message)
        return self._update_by_id(record_id, external_sync_status=SyncStatus.FAILED)


if TYPE_CHECKING:
    from licensync.domain.ports import ExternalLicenseStore, InternalLicenseStore

    _session_stub = cast("Session", object())
    _external_check: ExternalLicenseStore = SqlAlchemyExternalLicenseStore(_session_stub)
    _internal_check: InternalLicenseStore = SqlAlchemyInternalLicenseStore(_session_stub)
