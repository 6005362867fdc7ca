"""Sync bookkeeping on the external mirror and the write path that feeds it.

An external license is ``pending`` until its own write succeeds (``synced``:
``last_synced_at`` stamped, ``sync_error`` cleared) or fails (``failed``:
``sync_error`` set, ``last_synced_at`` left alone). Failed records stay
selectable by ``find_needing_sync`` and are picked up again by
``retry_pending``; ``sync_one`` refreshes a single license on demand.
"""

from __future__ import annotations

from dataclasses import dataclass
from logging import getLogger
from typing import TYPE_CHECKING

from licensync.domain.model import FailureIsolation, normalize_appid

from .errors import BatchFatalError, ItemSyncError
from .execute import utc_now

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence
    from uuid import UUID

    from licensync.domain.model import ExternalLicenseRecord
    from licensync.domain.ports import (
        ExternalLicenseSource,
        ExternalLicenseStore,
        UpsertResult,
    )

    from .execute import Clock, UnitOfWorkFactory

log = getLogger(__name__)


class SyncStatusTracker:
    """Moves external mirror records between pending, synced and failed."""

    def __init__(self, store: ExternalLicenseStore, *, clock: Clock = utc_now) -> None:
        self._store = store
        self._clock = clock

    def mark_synced(self, record: ExternalLicenseRecord) -> None:
        if record.id is None:
            raise ItemSyncError(f"External license {record.describe()} has no id")
        if not self._store.mark_synced(record.id, self._clock()):
            raise ItemSyncError(f"External license {record.describe()} disappeared")

    def mark_failed(self, record_id: UUID, message: str) -> bool:
        return self._store.mark_failed(record_id, message)

    def record_results(
        self, results: Iterable[UpsertResult[ExternalLicenseRecord]]
    ) -> tuple[int, int]:
        """Mark every upserted record synced; return ``(created, updated)``."""

        created = updated = 0
        for result in results:
            self.mark_synced(result.record)
            if result.created:
                created += 1
            else:
                updated += 1
        return created, updated


@dataclass(frozen=True, slots=True)
class MirrorFailure:
    record: ExternalLicenseRecord
    message: str


@dataclass(frozen=True, slots=True)
class MirrorReport:
    created_count: int = 0
    updated_count: int = 0
    duplicates_dropped: int = 0
    errors: tuple[MirrorFailure, ...] = ()

    @property
    def synced_count(self) -> int:
        return self.created_count + self.updated_count

    @property
    def failed_count(self) -> int:
        return len(self.errors)

    def merge(self, other: MirrorReport) -> MirrorReport:
        return MirrorReport(
            created_count=self.created_count + other.created_count,
            updated_count=self.updated_count + other.updated_count,
            duplicates_dropped=self.duplicates_dropped + other.duplicates_dropped,
            errors=self.errors + other.errors,
        )


def deduplicate_by_appid(
    records: Iterable[ExternalLicenseRecord],
) -> tuple[list[ExternalLicenseRecord], list[ExternalLicenseRecord], int]:
    """Split records into ``(unique, rejected, dropped)``.

    Records sharing a normalized appid collapse to the last one seen; records
    without an appid cannot be written and are returned as rejected.
    """

    unique: dict[str, ExternalLicenseRecord] = {}
    rejected: list[ExternalLicenseRecord] = []
    dropped = 0
    for record in records:
        key = record.appid_key
        if key is None:
            rejected.append(record)
            continue
        if key in unique:
            dropped += 1
        unique[key] = record
    return list(unique.values()), rejected, dropped


class ExternalMirrorWriter:
    """Upserts ingested partner licenses into the external mirror in batches."""

    def __init__(
        self,
        unit_of_work_factory: UnitOfWorkFactory,
        *,
        batch_size: int = 100,
        isolation: FailureIsolation = FailureIsolation.PER_ITEM,
        clock: Clock = utc_now,
    ) -> None:
        if batch_size < 1:
            raise ValueError(f"batch_size must be positive (got {batch_size})")
        self._uow_factory = unit_of_work_factory
        self.batch_size = batch_size
        self.isolation = isolation
        self._clock = clock

    def write(self, records: Sequence[ExternalLicenseRecord]) -> MirrorReport:
        report = MirrorReport()
        for start in range(0, len(records), self.batch_size):
            batch = records[start : start + self.batch_size]
            report = report.merge(self._write_batch(batch, start // self.batch_size + 1))
        log.info(
            "Mirrored %s external licenses: %s created, %s updated, %s failed, %s duplicates",
            len(records),
            report.created_count,
            report.updated_count,
            report.failed_count,
            report.duplicates_dropped,
        )
        return report

    def _write_batch(self, batch: Sequence[ExternalLicenseRecord], number: int) -> MirrorReport:
        unique, rejected, dropped = deduplicate_by_appid(batch)
        if dropped:
            log.warning("Batch %s: dropped %s records with a duplicate appid", number, dropped)
        rejections = tuple(
            MirrorFailure(record=record, message="External license has no appid")
            for record in rejected
        )
        for record in rejected:
            log.warning("Batch %s: rejecting %s without appid", number, record.describe())

        if self.isolation is FailureIsolation.PER_BATCH:
            report = self._write_transactional(unique, number)
        else:
            report = self._write_isolated(unique)
        return report.merge(MirrorReport(duplicates_dropped=dropped, errors=rejections))

    def _write_transactional(
        self, records: list[ExternalLicenseRecord], number: int
    ) -> MirrorReport:
        if not records:
            return MirrorReport()
        try:
            created, updated = self._commit_batch(records, number)
        except BatchFatalError as exc:
            log.error("%s", exc)  # noqa: TRY400
            message = str(exc)
            for record in records:
                self._flag_failed(record, message)
            return MirrorReport(
                errors=tuple(MirrorFailure(record=record, message=message) for record in records)
            )
        return MirrorReport(created_count=created, updated_count=updated)

    def _commit_batch(self, records: list[ExternalLicenseRecord], number: int) -> tuple[int, int]:
        try:
            with self._uow_factory() as uow:
                store = uow.repositories.external_licenses
                results = store.bulk_upsert(records)
                counts = SyncStatusTracker(store, clock=self._clock).record_results(results)
                uow.commit()
        except Exception as exc:
            raise BatchFatalError(f"mirror batch {number} aborted: {exc}") from exc
        return counts

    def _write_isolated(self, records: list[ExternalLicenseRecord]) -> MirrorReport:
        created = updated = 0
        failures: list[MirrorFailure] = []
        for record in records:
            try:
                with self._uow_factory() as uow:
                    store = uow.repositories.external_licenses
                    result = store.upsert(record)
                    SyncStatusTracker(store, clock=self._clock).mark_synced(result.record)
                    uow.commit()
            except Exception as exc:  # noqa: BLE001
                message = str(exc) or type(exc).__name__
                log.error("Failed to mirror %s: %s", record.describe(), message)
                failures.append(MirrorFailure(record=record, message=message))
                self._flag_failed(record, message)
                continue
            if result.created:
                created += 1
            else:
                updated += 1
        return MirrorReport(created_count=created, updated_count=updated, errors=tuple(failures))

    def _flag_failed(self, record: ExternalLicenseRecord, message: str) -> None:
        _flag_failed_by_appid(self._uow_factory, record.appid, message, record.describe())


def mirror_external_records(
    records: Iterable[ExternalLicenseRecord],
    unit_of_work_factory: UnitOfWorkFactory,
    *,
    batch_size: int = 100,
    isolation: FailureIsolation = FailureIsolation.PER_ITEM,
    clock: Clock = utc_now,
) -> MirrorReport:
    writer = ExternalMirrorWriter(
        unit_of_work_factory, batch_size=batch_size, isolation=isolation, clock=clock
    )
    return writer.write(list(records))


def retry_pending(
    source: ExternalLicenseSource,
    unit_of_work_factory: UnitOfWorkFactory,
    *,
    limit: int = 100,
    clock: Clock = utc_now,
) -> MirrorReport:
    """Re-fetch pending and failed mirror records from the partner and rewrite them."""

    with unit_of_work_factory() as uow:
        pending = uow.repositories.external_licenses.find_needing_sync(limit)
    log.info("Retrying %s external licenses that still need a sync", len(pending))

    created = updated = 0
    failures: list[MirrorFailure] = []
    for record in pending:
        try:
            result = _refresh_record(source, unit_of_work_factory, record, clock)
        except Exception as exc:  # noqa: BLE001
            message = str(exc) or type(exc).__name__
            log.error("Retry of %s failed: %s", record.describe(), message)
            failures.append(MirrorFailure(record=record, message=message))
            _mark_failed_by_id(unit_of_work_factory, record, message)
            continue
        if result.created:
            created += 1
        else:
            updated += 1
    return MirrorReport(created_count=created, updated_count=updated, errors=tuple(failures))


def _refresh_record(
    source: ExternalLicenseSource,
    unit_of_work_factory: UnitOfWorkFactory,
    record: ExternalLicenseRecord,
    clock: Clock,
) -> UpsertResult[ExternalLicenseRecord]:
    if record.appid is None:
        raise ItemSyncError(f"External license {record.describe()} has no appid")
    return _refresh_one(source, unit_of_work_factory, record.appid, clock)


def _refresh_one(
    source: ExternalLicenseSource,
    unit_of_work_factory: UnitOfWorkFactory,
    appid: str,
    clock: Clock,
) -> UpsertResult[ExternalLicenseRecord]:
    fresh = source(appid)
    if fresh is None:
        raise ItemSyncError(f"External license {appid} not found in partner system")
    with unit_of_work_factory() as uow:
        store = uow.repositories.external_licenses
        result = store.upsert(fresh)
        SyncStatusTracker(store, clock=clock).mark_synced(result.record)
        uow.commit()
    return result


def _mark_failed_by_id(
    unit_of_work_factory: UnitOfWorkFactory, record: ExternalLicenseRecord, message: str
) -> None:
    if record.id is None:
        return
    try:
        with unit_of_work_factory() as uow:
            SyncStatusTracker(uow.repositories.external_licenses).mark_failed(record.id, message)
            uow.commit()
    except Exception:
        log.exception("Could not flag external license %s as failed", record.describe())


def _flag_failed_by_appid(
    unit_of_work_factory: UnitOfWorkFactory, appid: str | None, message: str, label: str
) -> None:
    """Mark an already-mirrored record failed; new records have nothing to flag."""

    try:
        with unit_of_work_factory() as uow:
            store = uow.repositories.external_licenses
            existing = store.find_by_key(appid=appid)
            if existing is None or existing.id is None:
                return
            SyncStatusTracker(store).mark_failed(existing.id, message)
            uow.commit()
    except Exception:
        log.exception("Could not flag external license %s as failed", label)


@dataclass(frozen=True, slots=True)
class SingleSyncResult:
    appid: str
    record: ExternalLicenseRecord | None = None
    created: bool = False
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


def sync_one(
    source: ExternalLicenseSource,
    unit_of_work_factory: UnitOfWorkFactory,
    appid: str,
    *,
    clock: Clock = utc_now,
) -> SingleSyncResult:
    """Fetch one license from the partner by appid and mirror it.

    Failures are reported in the result rather than raised. A mirror record that
    already exists for the appid is marked failed with the error message.
    """

    normalized = normalize_appid(appid)
    if normalized is None:
        raise ValueError("appid must not be blank")
    log.info("Syncing single external license %s", normalized)
    try:
        result = _refresh_one(source, unit_of_work_factory, normalized, clock)
    except Exception as exc:  # noqa: BLE001
        message = str(exc) or type(exc).__name__
        log.error("Single license sync of %s failed: %s", normalized, message)
        _flag_failed_by_appid(unit_of_work_factory, normalized, message, normalized)
        return SingleSyncResult(appid=normalized, error=message)
    return SingleSyncResult(appid=normalized, record=result.record, created=result.created)
