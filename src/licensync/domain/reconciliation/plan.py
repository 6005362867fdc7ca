"""Sync operation planning.

``plan_comprehensive_sync`` runs in two passes over bounded pages:

1. every internal license is checked against the full external lookup index
   and yields an ``UpdateOperation`` when the gap analysis finds work;
2. every external license that no internal license matches by appid or
   countid yields a ``CreateOperation``.

``plan_legacy_sync`` is the single-pass variant for small datasets. It loads
the external table in full and matches each record against the internal
store by appid, then email, then countid.

Both planners only read. Counters come back inside the returned ``SyncPlan``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING, ClassVar, Final

from licensync.domain.model import MatchStrategy, OperationKind

from .errors import TransientStoreError
from .gaps import analyze_gaps
from .lookup import build_lookup_index
from .merge import present_fields
from .pagination import PageStream

if TYPE_CHECKING:
    from uuid import UUID

    from licensync.domain.model import ExternalLicenseRecord, InternalLicenseRecord
    from licensync.domain.ports import InternalLicenseStore, LicenseRepositories

log = getLogger(__name__)

NO_MATCH_REASON: Final[str] = "No internal license match found"


@dataclass(frozen=True, slots=True)
class UpdateOperation:
    kind: ClassVar[OperationKind] = OperationKind.UPDATE

    internal: InternalLicenseRecord
    external: ExternalLicenseRecord
    missing_fields: tuple[str, ...]
    matched_by: MatchStrategy

    def describe(self) -> str:
        return f"update internal id={self.internal.id} from external {self.external.describe()}"


@dataclass(frozen=True, slots=True)
class CreateOperation:
    kind: ClassVar[OperationKind] = OperationKind.CREATE

    external: ExternalLicenseRecord
    reason: str = NO_MATCH_REASON

    def describe(self) -> str:
        return f"create internal license from external {self.external.describe()}"


type SyncOperation = UpdateOperation | CreateOperation


@dataclass(frozen=True, slots=True)
class PlanOptions:
    lookup_chunk_size: int = 100
    internal_chunk_size: int = 1000
    external_chunk_size: int = 500
    max_pages: int = 1000
    max_operations: int = 10_000


@dataclass(slots=True)
class PlanStats:
    external_indexed: int = 0
    internal_scanned: int = 0
    external_scanned: int = 0
    unmatchable: int = 0
    probe_failures: int = 0
    index_truncated: bool = False
    internal_truncated: bool = False
    external_truncated: bool = False
    cap_reached: bool = False

    @property
    def truncated(self) -> bool:
        return (
            self.index_truncated
            or self.internal_truncated
            or self.external_truncated
            or self.cap_reached
        )


@dataclass(slots=True)
class SyncPlan:
    operations: list[SyncOperation] = field(default_factory=list["SyncOperation"])
    stats: PlanStats = field(default_factory=PlanStats)

    @property
    def updates(self) -> list[UpdateOperation]:
        return [op for op in self.operations if isinstance(op, UpdateOperation)]

    @property
    def creates(self) -> list[CreateOperation]:
        return [op for op in self.operations if isinstance(op, CreateOperation)]


def plan_comprehensive_sync(
    repositories: LicenseRepositories,
    options: PlanOptions | None = None,
) -> SyncPlan:
    options = options or PlanOptions()
    plan = SyncPlan()
    stats = plan.stats

    index = build_lookup_index(
        repositories.external_licenses,
        chunk_size=options.lookup_chunk_size,
        max_pages=options.max_pages,
    )
    stats.external_indexed = index.records_seen
    stats.index_truncated = index.truncated

    internal_pages = PageStream(
        repositories.internal_licenses.page,
        page_size=options.internal_chunk_size,
        max_pages=options.max_pages,
        label="Internal gap scan",
    )
    for records in internal_pages:
        for internal in records:
            analysis = analyze_gaps(internal, index)
            if not analysis.needs_sync:
                continue
            if analysis.external is None or analysis.matched_by is None:
                continue
            plan.operations.append(
                UpdateOperation(
                    internal=internal,
                    external=analysis.external,
                    missing_fields=analysis.missing_fields,
                    matched_by=analysis.matched_by,
                )
            )
    stats.internal_scanned = internal_pages.records_read
    stats.internal_truncated = internal_pages.truncated
    log.info(
        "Gap scan found %s update operations across %s internal licenses",
        len(plan.operations),
        stats.internal_scanned,
    )

    external_pages = PageStream(
        repositories.external_licenses.page,
        page_size=options.external_chunk_size,
        max_pages=options.max_pages,
        label="External orphan scan",
    )
    for records in external_pages:
        for external in records:
            if len(plan.operations) >= options.max_operations:
                stats.cap_reached = True
                break
            stats.external_scanned += 1
            if not external.has_identifier:
                stats.unmatchable += 1
                log.warning(
                    "Skipping external license %s: it has neither appid nor countid",
                    external.describe(),
                )
                continue
            try:
                matched = _has_internal_match(repositories.internal_licenses, external)
            except TransientStoreError as exc:
                stats.probe_failures += 1
                log.warning("Could not probe internal match for %s: %s", external.describe(), exc)
                continue
            if not matched:
                plan.operations.append(CreateOperation(external=external))
        if stats.cap_reached:
            log.warning(
                "Reached the limit of %s sync operations; stopping the external scan early",
                options.max_operations,
            )
            break
    stats.external_truncated = external_pages.truncated

    log.info(
        "Planned %s operations (%s updates, %s creates)",
        len(plan.operations),
        len(plan.updates),
        len(plan.creates),
    )
    return plan


def _has_internal_match(store: InternalLicenseStore, external: ExternalLicenseRecord) -> bool:
    if external.appid is not None and store.find_by_key(appid=external.appid) is not None:
        return True
    return external.countid is not None and store.find_by_key(countid=external.countid) is not None


def find_internal_match(
    store: InternalLicenseStore, external: ExternalLicenseRecord
) -> tuple[InternalLicenseRecord, MatchStrategy] | None:
    """Legacy matching order: appid, then the partner's license email, then countid."""

    if external.appid is not None:
        found = store.find_by_key(appid=external.appid)
        if found is not None:
            return found, MatchStrategy.APPID
    if external.email_license:
        found = store.find_by_key(email=external.email_license)
        if found is not None:
            return found, MatchStrategy.EMAIL
    if external.countid is not None:
        found = store.find_by_key(countid=external.countid)
        if found is not None:
            return found, MatchStrategy.COUNTID
    return None


def plan_legacy_sync(
    repositories: LicenseRepositories,
    options: PlanOptions | None = None,
) -> SyncPlan:
    options = options or PlanOptions()
    plan = SyncPlan()
    stats = plan.stats

    external_pages = PageStream(
        repositories.external_licenses.page,
        page_size=options.external_chunk_size,
        max_pages=options.max_pages,
        label="Legacy external load",
    )
    externals = [record for records in external_pages for record in records]
    stats.external_truncated = external_pages.truncated
    log.info("Legacy sync loaded %s external licenses", len(externals))

    targeted: set[UUID | None] = set()
    for external in externals:
        stats.external_scanned += 1
        match = find_internal_match(repositories.internal_licenses, external)
        if match is None:
            plan.operations.append(CreateOperation(external=external))
            continue
        internal, matched_by = match
        if internal.id in targeted:
            log.warning(
                "Internal license %s already matched earlier in this run; skipping %s",
                internal.id,
                external.describe(),
            )
            continue
        targeted.add(internal.id)
        plan.operations.append(
            UpdateOperation(
                internal=internal,
                external=external,
                missing_fields=present_fields(external),
                matched_by=matched_by,
            )
        )
    return plan
