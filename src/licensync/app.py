"""Application orchestration entry points."""

from __future__ import annotations

import json
from collections.abc import Callable
from logging import getLogger
from typing import TYPE_CHECKING, Protocol

from pydantic import ValidationError

from licensync.adapters.partner import PartnerLicenseClient, to_external_record
from licensync.adapters.sqlalchemy.unit_of_work import (
    SqlAlchemyLicenseUnitOfWork,
    is_started,
    startup,
)
from licensync.config import SyncConfig, get_sync_config
from licensync.domain.ports.unit_of_work import LicenseUnitOfWork
from licensync.domain.reconciliation import (
    EngineOptions,
    LicenseSyncEngine,
    MirrorReport,
    PlanOptions,
)

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path

    from licensync.domain.model import ExternalLicenseRecord
    from licensync.domain.ports import ExternalLicenseSource, SyncStats
    from licensync.domain.reconciliation import SingleSyncResult, SyncRunSummary

UnitOfWorkFactory = Callable[[], LicenseUnitOfWork]


class LicensePageReader(Protocol):
    def iter_license_pages(
        self, *, max_pages: int = ...
    ) -> Iterator[list[ExternalLicenseRecord]]: ...


log = getLogger(__name__)


def engine_options(config: SyncConfig) -> EngineOptions:
    return EngineOptions(
        plan=PlanOptions(
            lookup_chunk_size=config.lookup_chunk_size,
            internal_chunk_size=config.internal_chunk_size,
            external_chunk_size=config.external_chunk_size,
            max_pages=config.max_pages,
            max_operations=config.max_operations,
        ),
        batch_size=config.execute_batch_size,
        isolation=config.isolation,
        mirror_batch_size=config.mirror_batch_size,
        pending_limit=config.pending_limit,
    )


def build_engine(
    *,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
    config: SyncConfig | None = None,
) -> LicenseSyncEngine:
    """Wire the reconciliation engine to the configured database."""

    if unit_of_work_factory is None:
        if not is_started():
            startup()
        unit_of_work_factory = SqlAlchemyLicenseUnitOfWork
    return LicenseSyncEngine(unit_of_work_factory, engine_options(config or get_sync_config()))


def run_comprehensive_sync(
    *,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
    config: SyncConfig | None = None,
) -> SyncRunSummary:
    engine = build_engine(unit_of_work_factory=unit_of_work_factory, config=config)
    return engine.run_comprehensive_sync()


def run_legacy_sync(
    *,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
    config: SyncConfig | None = None,
) -> SyncRunSummary:
    engine = build_engine(unit_of_work_factory=unit_of_work_factory, config=config)
    return engine.run_legacy_sync()


def read_partner_file(path: Path) -> list[ExternalLicenseRecord]:
    """Read partner licenses from a JSON array, a ``{"data": [...]}`` document or JSON lines."""

    text = path.read_text(encoding="utf-8")
    try:
        document = json.loads(text)
    except ValueError:
        return [_parse_item(item, location) for location, item in _json_lines(path, text)]
    if isinstance(document, dict):
        items = document["data"] if "data" in document else [document]
    else:
        items = document
    if not isinstance(items, list):
        raise ValueError(f"{path}: expected a list of licenses")
    return [_parse_item(item, f"{path}[{index}]") for index, item in enumerate(items)]


def _json_lines(path: Path, text: str) -> Iterator[tuple[str, object]]:
    for number, line in enumerate(text.splitlines(), start=1):
        if not line.strip():
            continue
        try:
            yield f"{path}:{number}", json.loads(line)
        except ValueError as exc:
            raise ValueError(f"{path}:{number}: invalid JSON ({exc})") from exc


def _parse_item(item: object, location: str) -> ExternalLicenseRecord:
    if not isinstance(item, dict):
        raise ValueError(f"{location}: expected a JSON object")  # noqa: TRY004
    try:
        return to_external_record(item)
    except ValidationError as exc:
        raise ValueError(f"{location}: invalid license ({exc.error_count()} errors)") from exc


def import_partner_file(
    path: Path,
    *,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
    config: SyncConfig | None = None,
) -> MirrorReport:
    """Mirror a partner export file into the external license store."""

    records = read_partner_file(path)
    log.info("Importing %s partner licenses from %s", len(records), path)
    engine = build_engine(unit_of_work_factory=unit_of_work_factory, config=config)
    report = engine.mirror(records)
    log.info(
        "Finished import: %s created, %s updated, %s failed, %s duplicates dropped",
        report.created_count,
        report.updated_count,
        report.failed_count,
        report.duplicates_dropped,
    )
    return report


def pull_partner_licenses(
    *,
    client: LicensePageReader | None = None,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
    config: SyncConfig | None = None,
) -> MirrorReport:
    """Page through the partner API and mirror every license it returns."""

    effective_config = config or get_sync_config()
    effective_client: LicensePageReader = client or PartnerLicenseClient()
    engine = build_engine(unit_of_work_factory=unit_of_work_factory, config=effective_config)
    log.info("Starting partner pull: max_pages=%s", effective_config.max_pages)

    report = MirrorReport()
    for page in effective_client.iter_license_pages(max_pages=effective_config.max_pages):
        report = report.merge(engine.mirror(page))

    log.info(
        f"Finished partner pull: created={report.created_count}, "
        f"updated={report.updated_count}, failed={report.failed_count}"
    )
    return report


def retry_pending_licenses(
    *,
    source: ExternalLicenseSource | None = None,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
    config: SyncConfig | None = None,
) -> MirrorReport:
    """Refresh pending and failed mirror records from the partner API."""

    engine = build_engine(unit_of_work_factory=unit_of_work_factory, config=config)
    return engine.retry_pending(source or PartnerLicenseClient())


def sync_license(
    appid: str,
    *,
    source: ExternalLicenseSource | None = None,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
    config: SyncConfig | None = None,
) -> SingleSyncResult:
    """Fetch one license from the partner API by appid and mirror it."""

    engine = build_engine(unit_of_work_factory=unit_of_work_factory, config=config)
    return engine.sync_one(source or PartnerLicenseClient(), appid)


def sync_status(
    *,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
) -> SyncStats:
    engine = build_engine(unit_of_work_factory=unit_of_work_factory, config=SyncConfig())
    return engine.sync_stats()
