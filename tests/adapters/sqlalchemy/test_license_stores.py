from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING

import pytest

from licensync.adapters.sqlalchemy.stores import (
    SqlAlchemyExternalLicenseStore,
    SqlAlchemyInternalLicenseStore,
)
from licensync.domain.model import (
    ExternalLicenseRecord,
    InternalLicenseRecord,
    LicenseStatus,
    SyncStatus,
)

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

START = datetime(2024, 1, 1, tzinfo=UTC)


class TickingClock:
    def __init__(self) -> None:
        self.now = START

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


@pytest.fixture
def external_store(sqlite_session: Session) -> SqlAlchemyExternalLicenseStore:
    return SqlAlchemyExternalLicenseStore(sqlite_session, clock=TickingClock())


@pytest.fixture
def internal_store(sqlite_session: Session) -> SqlAlchemyInternalLicenseStore:
    return SqlAlchemyInternalLicenseStore(sqlite_session, clock=TickingClock())


def test_external_page_orders_by_creation(
    external_store: SqlAlchemyExternalLicenseStore,
) -> None:
    for appid in ("C", "A", "B"):
        external_store.upsert(ExternalLicenseRecord(appid=appid))

    first = external_store.page(1, 2)
    second = external_store.page(2, 2)

    assert first.total == 3
    assert [record.appid for record in first.records] == ["C", "A"]
    assert [record.appid for record in second.records] == ["B"]
    assert external_store.page(3, 2).records == []


def test_page_rejects_non_positive_arguments(
    external_store: SqlAlchemyExternalLicenseStore,
) -> None:
    with pytest.raises(ValueError, match="must be positive"):
        external_store.page(0, 10)


def test_page_filters_and_rejects_unknown_filters(
    external_store: SqlAlchemyExternalLicenseStore,
) -> None:
    external_store.bulk_upsert(
        [
            ExternalLicenseRecord(appid="A1", license_type="trial"),
            ExternalLicenseRecord(appid="A2", license_type="product"),
        ]
    )

    page = external_store.page(1, 10, {"license_type": "trial"})
    assert [record.appid for record in page.records] == ["A1"]
    assert page.total == 1
    assert external_store.page(1, 10, {"sync_status": "pending"}).total == 2

    with pytest.raises(ValueError, match="Unsupported filter"):
        external_store.page(1, 10, {"dba": "Acme"})


def test_find_by_key_strategies(external_store: SqlAlchemyExternalLicenseStore) -> None:
    external_store.upsert(
        ExternalLicenseRecord(appid="Shop-1", countid=42, email_license="Owner@Example.com")
    )

    by_appid = external_store.find_by_key(appid=" shop-1 ")
    by_countid = external_store.find_by_key(countid=42)
    by_email = external_store.find_by_key(email="owner@example.com ")

    assert by_appid is not None
    assert by_appid.appid == "Shop-1"
    assert by_countid == by_appid
    assert by_email == by_appid
    assert external_store.find_by_key(countid=7) is None
    assert external_store.find_by_key() is None


def test_find_by_key_prefers_appid_over_other_identifiers(
    external_store: SqlAlchemyExternalLicenseStore,
) -> None:
    external_store.upsert(ExternalLicenseRecord(appid="A1", countid=1))

    assert external_store.find_by_key(appid="missing", countid=1) is None


def test_bulk_upsert_reports_created_and_updated(
    external_store: SqlAlchemyExternalLicenseStore,
) -> None:
    [first] = external_store.bulk_upsert([ExternalLicenseRecord(appid="A1", dba="Old")])
    results = external_store.bulk_upsert(
        [
            ExternalLicenseRecord(appid="a1", dba="New", monthly_fee=Decimal("9.50")),
            ExternalLicenseRecord(appid="A2", status=1),
        ]
    )

    assert first.created
    assert [(result.record.appid, result.created) for result in results] == [
        ("a1", False),
        ("A2", True),
    ]
    updated = results[0].record
    assert updated.id == first.record.id
    assert updated.dba == "New"
    assert updated.monthly_fee == Decimal("9.50")
    assert results[1].record.status == "1"
    assert results[1].record.normalized_status is LicenseStatus.ACTIVE
    assert external_store.page(1, 10).total == 2


def test_bulk_upsert_keeps_last_duplicate(
    external_store: SqlAlchemyExternalLicenseStore,
) -> None:
    results = external_store.bulk_upsert(
        [
            ExternalLicenseRecord(appid="A1", dba="First"),
            ExternalLicenseRecord(appid="A1", dba="Second"),
        ]
    )

    assert len(results) == 1
    assert results[0].record.dba == "Second"


def test_bulk_upsert_preserves_last_synced_at(
    external_store: SqlAlchemyExternalLicenseStore,
) -> None:
    stored = external_store.upsert(ExternalLicenseRecord(appid="A1")).record
    assert stored.id is not None
    synced_at = datetime(2024, 2, 1, 9, 30, tzinfo=UTC)
    assert external_store.mark_synced(stored.id, synced_at)

    refreshed = external_store.upsert(
        ExternalLicenseRecord(appid="A1", dba="Refreshed", sync_status=SyncStatus.PENDING)
    ).record

    assert refreshed.last_synced_at == synced_at
    assert refreshed.sync_status is SyncStatus.PENDING
    assert refreshed.dba == "Refreshed"


def test_bulk_upsert_requires_appid(external_store: SqlAlchemyExternalLicenseStore) -> None:
    with pytest.raises(ValueError, match="without appid"):
        external_store.bulk_upsert([ExternalLicenseRecord(appid=None, countid=42)])

    assert external_store.bulk_upsert([]) == []


def test_update_applies_patch_and_rejects_unknown_fields(
    external_store: SqlAlchemyExternalLicenseStore,
) -> None:
    stored = external_store.upsert(ExternalLicenseRecord(appid="A1")).record
    assert stored.id is not None

    updated = external_store.update(stored.id, {"dba": "Patched", "countid": 9})

    assert updated is not None
    assert updated.dba == "Patched"
    assert updated.countid == 9
    assert external_store.update(uuid.uuid4(), {"dba": "x"}) is None
    with pytest.raises(ValueError, match="Unknown field"):
        external_store.update(stored.id, {"not_a_column": 1})


def test_mark_failed_and_needing_sync(external_store: SqlAlchemyExternalLicenseStore) -> None:
    synced, failed, pending = (
        external_store.upsert(ExternalLicenseRecord(appid=appid)).record
        for appid in ("S", "F", "P")
    )
    assert synced.id is not None
    assert failed.id is not None
    assert external_store.mark_synced(synced.id, START)
    assert external_store.mark_failed(failed.id, "partner timeout")
    assert not external_store.mark_failed(uuid.uuid4(), "nothing here")

    needing = external_store.find_needing_sync()
    stats = external_store.sync_stats()

    assert sorted(record.appid or "" for record in needing) == ["F", "P"]
    assert next(record for record in needing if record.appid == "F").sync_error == (
        "partner timeout"
    )
    assert len(external_store.find_needing_sync(limit=1)) == 1
    assert (stats.total, stats.synced, stats.failed, stats.pending) == (3, 1, 1, 1)
    assert stats.success_rate == 33
    assert pending.sync_status is SyncStatus.PENDING


def test_mark_synced_clears_previous_error(
    external_store: SqlAlchemyExternalLicenseStore,
) -> None:
    stored = external_store.upsert(ExternalLicenseRecord(appid="A1")).record
    assert stored.id is not None
    external_store.mark_failed(stored.id, "boom")

    external_store.mark_synced(stored.id, START)

    record = external_store.find_by_key(appid="A1")
    assert record is not None
    assert record.sync_status is SyncStatus.SYNCED
    assert record.sync_error is None
    assert record.last_synced_at == START


def test_internal_create_and_find(internal_store: SqlAlchemyInternalLicenseStore) -> None:
    created = internal_store.create(
        InternalLicenseRecord(
            key="KEY-1",
            appid="A1",
            countid=5,
            external_email="a@example.com",
            status=LicenseStatus.ACTIVE,
            agents_name=["ann", "bob"],
            package_data={"tier": "gold"},
        )
    )

    assert created.id is not None
    found = internal_store.find_by_key(appid="a1")
    assert found == created
    assert found is not None
    assert found.agents_name == ["ann", "bob"]
    assert found.package_data == {"tier": "gold"}
    assert internal_store.find_by_key(countid=5) == created
    assert internal_store.find_by_key(email="A@example.com") == created


def test_internal_upsert_by_key(internal_store: SqlAlchemyInternalLicenseStore) -> None:
    first = internal_store.upsert(InternalLicenseRecord(key="KEY-1", dba="Old"))
    second = internal_store.upsert(InternalLicenseRecord(key="KEY-1", dba="New"))

    assert first.created
    assert not second.created
    assert second.record.id == first.record.id
    assert second.record.dba == "New"


def test_internal_update_and_bookkeeping(internal_store: SqlAlchemyInternalLicenseStore) -> None:
    created = internal_store.create(InternalLicenseRecord(key="KEY-1"))
    assert created.id is not None

    updated = internal_store.update(
        created.id, {"appid": "New-App", "status": LicenseStatus.CANCEL}
    )
    assert updated is not None
    assert updated.status is LicenseStatus.CANCEL
    assert internal_store.find_by_key(appid="new-app") == updated

    assert internal_store.mark_synced(created.id, START)
    record = internal_store.find_by_key(appid="new-app")
    assert record is not None
    assert record.external_sync_status is SyncStatus.SYNCED
    assert record.last_external_sync == START

    assert internal_store.mark_failed(created.id, "rejected")
    record = internal_store.find_by_key(appid="new-app")
    assert record is not None
    assert record.external_sync_status is SyncStatus.FAILED


def test_internal_page_filters(internal_store: SqlAlchemyInternalLicenseStore) -> None:
    internal_store.create(InternalLicenseRecord(key="KEY-1", status=LicenseStatus.ACTIVE))
    internal_store.create(InternalLicenseRecord(key="KEY-2"))

    active = internal_store.page(1, 10, {"status": "active"})

    assert [record.key for record in active.records] == ["KEY-1"]
    with pytest.raises(ValueError, match="Unsupported filter"):
        internal_store.page(1, 10, {"key": "KEY-1"})
