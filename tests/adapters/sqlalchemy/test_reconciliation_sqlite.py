"""End-to-end reconciliation runs against the migrated SQLite schema."""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from licensync.app import run_comprehensive_sync, run_legacy_sync
from licensync.config import SyncConfig
from licensync.domain.model import (
    ExternalLicenseRecord,
    InternalLicenseRecord,
    LicenseStatus,
    SyncStatus,
)
from licensync.domain.reconciliation import LicenseSyncEngine
from tests.helpers.licenses import FakeExternalSource

if TYPE_CHECKING:
    from collections.abc import Callable

    from licensync.adapters.sqlalchemy.unit_of_work import SqlAlchemyLicenseUnitOfWork

    UnitOfWorkFactory = Callable[[], SqlAlchemyLicenseUnitOfWork]

CONFIG = SyncConfig(
    lookup_chunk_size=2,
    internal_chunk_size=2,
    external_chunk_size=2,
    execute_batch_size=2,
)


def _partner_records() -> list[ExternalLicenseRecord]:
    return [
        ExternalLicenseRecord(
            appid="A1",
            countid=42,
            dba="Acme",
            zip="10115",
            status=1,
            monthly_fee=Decimal("19.90"),
            sms_balance=Decimal(0),
            activate_date=datetime(2024, 3, 15, tzinfo=UTC),
            package={"tier": "gold"},
        ),
        ExternalLicenseRecord(appid="Z9", countid=7, dba="Zeta", status="active"),
        ExternalLicenseRecord(appid="B2", countid=8, email_license="b@example.com", status=0),
    ]


def _seed(uow_factory: UnitOfWorkFactory) -> None:
    engine = LicenseSyncEngine(uow_factory)
    report = engine.mirror(_partner_records())
    assert report.created_count == 3
    with uow_factory() as uow:
        uow.repositories.internal_licenses.create(
            InternalLicenseRecord(key="KEY-1", countid=42, plan="gold", seats_total=5)
        )
        uow.commit()


def test_comprehensive_sync_converges(sqlite_unit_of_work: UnitOfWorkFactory) -> None:
    _seed(sqlite_unit_of_work)

    first = run_comprehensive_sync(unit_of_work_factory=sqlite_unit_of_work, config=CONFIG)
    second = run_comprehensive_sync(unit_of_work_factory=sqlite_unit_of_work, config=CONFIG)

    assert (first.updated_count, first.created_count, first.failed_count) == (1, 2, 0)
    assert second.planned_count == 0
    assert second.synced_count == 0

    with sqlite_unit_of_work() as uow:
        internal = uow.repositories.internal_licenses
        assert internal.page(1, 10).total == 3
        matched = internal.find_by_key(appid="A1")
        assert matched is not None
        assert matched.key == "KEY-1"
        assert matched.dba == "Acme"
        assert matched.last_payment == Decimal("19.90")
        assert matched.plan == "gold"
        assert matched.seats_total == 5
        assert matched.external_sync_status is SyncStatus.SYNCED
        created = internal.find_by_key(appid="B2")
        assert created is not None
        assert created.key.startswith("EXT-B2-")
        assert created.status is LicenseStatus.CANCEL
        assert created.external_email == "b@example.com"


def test_legacy_sync_overwrites_matched_records(sqlite_unit_of_work: UnitOfWorkFactory) -> None:
    _seed(sqlite_unit_of_work)
    with sqlite_unit_of_work() as uow:
        uow.repositories.internal_licenses.create(
            InternalLicenseRecord(key="KEY-2", external_email="B@example.com", dba="Stale")
        )
        uow.commit()

    summary = run_legacy_sync(unit_of_work_factory=sqlite_unit_of_work, config=CONFIG)

    assert (summary.updated_count, summary.created_count, summary.failed_count) == (2, 1, 0)
    with sqlite_unit_of_work() as uow:
        by_email = uow.repositories.internal_licenses.find_by_key(appid="B2")
        assert by_email is not None
        assert by_email.key == "KEY-2"
        assert by_email.status is LicenseStatus.CANCEL


def test_mirror_refresh_and_retry(sqlite_unit_of_work: UnitOfWorkFactory) -> None:
    engine = LicenseSyncEngine(sqlite_unit_of_work)
    engine.mirror([ExternalLicenseRecord(appid="A1", dba="Old")])

    refreshed = engine.mirror(
        [
            ExternalLicenseRecord(appid="a1", dba="New"),
            ExternalLicenseRecord(appid="A1", dba="Newest"),
            ExternalLicenseRecord(appid="C3"),
        ]
    )

    assert (refreshed.created_count, refreshed.updated_count) == (1, 1)
    assert refreshed.duplicates_dropped == 1

    with sqlite_unit_of_work() as uow:
        uow.repositories.external_licenses.bulk_upsert(
            [ExternalLicenseRecord(appid="A1", dba="Newest"), ExternalLicenseRecord(appid="C3")]
        )
        uow.commit()
    assert engine.sync_stats().pending == 2

    source = FakeExternalSource([ExternalLicenseRecord(appid="A1", dba="From partner")])
    retried = engine.retry_pending(source)

    assert retried.updated_count == 1
    assert retried.failed_count == 1
    stats = engine.sync_stats()
    assert (stats.total, stats.synced, stats.failed) == (2, 1, 1)
    with sqlite_unit_of_work() as uow:
        record = uow.repositories.external_licenses.find_by_key(appid="A1")
        assert record is not None
        assert record.dba == "From partner"
        assert record.sync_status is SyncStatus.SYNCED
