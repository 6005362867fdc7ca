from __future__ import annotations

from typing import TYPE_CHECKING

from licensync.domain.model import MatchStrategy
from licensync.domain.reconciliation import (
    NO_MATCH_REASON,
    CreateOperation,
    PlanOptions,
    UpdateOperation,
    plan_comprehensive_sync,
    plan_legacy_sync,
)
from licensync.domain.reconciliation.errors import TransientStoreError
from tests.helpers.licenses import FakeLicenseDatabase, make_external, make_internal

if TYPE_CHECKING:
    from licensync.domain.ports import LicenseRepositories

SMALL_PAGES = PlanOptions(
    lookup_chunk_size=2,
    internal_chunk_size=2,
    external_chunk_size=2,
    max_pages=100,
)


def _repositories(database: FakeLicenseDatabase) -> LicenseRepositories:
    return database.unit_of_work().repositories


def test_countid_match_produces_update_with_missing_dba() -> None:
    internal = make_internal(appid=None, countid=42, dba="")
    database = FakeLicenseDatabase(
        external=[make_external("A1", countid=42, dba="Acme")],
        internal=[internal],
    )

    plan = plan_comprehensive_sync(_repositories(database), SMALL_PAGES)

    assert plan.creates == []
    [update] = plan.updates
    assert update.matched_by is MatchStrategy.COUNTID
    assert update.internal.id == internal.id
    assert "dba" in update.missing_fields


def test_unmatched_external_produces_create() -> None:
    database = FakeLicenseDatabase(
        external=[make_external("Z9", countid=7)],
        internal=[make_internal(appid="other", countid=1)],
    )

    plan = plan_comprehensive_sync(_repositories(database), SMALL_PAGES)

    assert len(plan.operations) == 1
    [create] = plan.operations
    assert isinstance(create, CreateOperation)
    assert create.external.appid == "Z9"
    assert create.reason == NO_MATCH_REASON == "No internal license match found"


def test_in_sync_pairs_produce_no_operations() -> None:
    database = FakeLicenseDatabase(
        external=[make_external("A1", dba="Acme", zip="10115")],
        internal=[make_internal(appid="a1", dba="Acme", zip="10115")],
    )

    plan = plan_comprehensive_sync(_repositories(database), SMALL_PAGES)

    assert plan.operations == []
    assert plan.stats.internal_scanned == 1
    assert plan.stats.external_scanned == 1


def test_updates_come_before_creates_across_many_pages() -> None:
    externals = [make_external(f"A{n}", dba=f"Shop {n}") for n in range(7)]
    internals = [make_internal(appid=f"A{n}") for n in range(4)]
    database = FakeLicenseDatabase(external=externals, internal=internals)

    plan = plan_comprehensive_sync(_repositories(database), SMALL_PAGES)

    kinds = [type(op) for op in plan.operations]
    assert kinds == [UpdateOperation] * 4 + [CreateOperation] * 3
    assert {op.external.appid for op in plan.creates} == {"A4", "A5", "A6"}
    assert plan.stats.external_indexed == 7
    assert not plan.stats.truncated


def test_external_records_without_identifiers_are_skipped() -> None:
    database = FakeLicenseDatabase(
        external=[make_external(None, email_license="nobody@example.com")],
    )

    plan = plan_comprehensive_sync(_repositories(database), SMALL_PAGES)

    assert plan.operations == []
    assert plan.stats.unmatchable == 1


def test_probe_failure_skips_the_record_instead_of_creating_it() -> None:
    database = FakeLicenseDatabase(external=[make_external("A1")])
    database.internal.probe_error = TransientStoreError("timeout")

    plan = plan_comprehensive_sync(_repositories(database), SMALL_PAGES)

    assert plan.operations == []
    assert plan.stats.probe_failures == 1


def test_operation_cap_stops_external_scan() -> None:
    database = FakeLicenseDatabase(external=[make_external(f"A{n}") for n in range(10)])
    options = PlanOptions(
        lookup_chunk_size=3, internal_chunk_size=3, external_chunk_size=3, max_operations=4
    )

    plan = plan_comprehensive_sync(_repositories(database), options)

    assert len(plan.creates) == 4
    assert plan.stats.cap_reached
    assert plan.stats.truncated


def test_page_ceiling_marks_plan_truncated() -> None:
    database = FakeLicenseDatabase(
        external=[make_external(f"A{n}") for n in range(6)],
        internal=[make_internal(appid=f"A{n}", dba="") for n in range(6)],
    )
    options = PlanOptions(
        lookup_chunk_size=2, internal_chunk_size=2, external_chunk_size=2, max_pages=2
    )

    plan = plan_comprehensive_sync(_repositories(database), options)

    assert plan.stats.index_truncated
    assert plan.stats.internal_truncated
    assert plan.stats.external_truncated
    assert plan.stats.truncated


def test_planning_does_not_write() -> None:
    database = FakeLicenseDatabase(
        external=[make_external("A1", dba="Acme"), make_external("B1")],
        internal=[make_internal(appid="A1")],
    )
    before = database.snapshot()

    plan_comprehensive_sync(_repositories(database), SMALL_PAGES)

    assert database.snapshot() == before
    assert database.commits == 0


def test_legacy_matches_by_email_before_countid() -> None:
    by_email = make_internal(external_email="owner@example.com")
    by_countid = make_internal(countid=42)
    database = FakeLicenseDatabase(
        external=[make_external("A1", countid=42, email_license="Owner@Example.com")],
        internal=[by_countid, by_email],
    )

    plan = plan_legacy_sync(_repositories(database), SMALL_PAGES)

    [update] = plan.updates
    assert update.matched_by is MatchStrategy.EMAIL
    assert update.internal.id == by_email.id


def test_legacy_prefers_appid_and_lists_every_present_field() -> None:
    internal = make_internal(appid="A1", dba="Old", external_email="owner@example.com")
    database = FakeLicenseDatabase(
        external=[make_external("A1", dba="New", status=1, email_license="x@example.com")],
        internal=[internal],
    )

    plan = plan_legacy_sync(_repositories(database), SMALL_PAGES)

    [update] = plan.updates
    assert update.matched_by is MatchStrategy.APPID
    assert set(update.missing_fields) >= {"dba", "appid", "external_email", "status"}


def test_legacy_creates_unmatched_and_skips_second_match_of_same_internal() -> None:
    internal = make_internal(countid=5)
    database = FakeLicenseDatabase(
        external=[
            make_external("A1", countid=5),
            make_external("A2", countid=5),
            make_external("Z9", countid=7),
        ],
        internal=[internal],
    )

    plan = plan_legacy_sync(_repositories(database), SMALL_PAGES)

    assert [op.external.appid for op in plan.updates] == ["A1"]
    assert [op.external.appid for op in plan.creates] == ["Z9"]
