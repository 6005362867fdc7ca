"""Entry points for a reconciliation run."""

from __future__ import annotations

from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING

from licensync.domain.model import FailureIsolation

from .execute import BatchExecutor, utc_now
from .keys import generate_license_key
from .plan import PlanOptions, PlanStats, plan_comprehensive_sync, plan_legacy_sync
from .status import mirror_external_records, retry_pending, sync_one

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from licensync.domain.model import ExternalLicenseRecord
    from licensync.domain.ports import ExternalLicenseSource, LicenseRepositories, SyncStats

    from .execute import Clock, ExecutionReport, KeyGenerator, OperationFailure, UnitOfWorkFactory
    from .plan import SyncPlan
    from .status import MirrorReport, SingleSyncResult

log = getLogger(__name__)


@dataclass(frozen=True, slots=True)
class EngineOptions:
    plan: PlanOptions = field(default_factory=PlanOptions)
    batch_size: int = 50
    isolation: FailureIsolation = FailureIsolation.PER_ITEM
    mirror_batch_size: int = 100
    pending_limit: int = 100


@dataclass(frozen=True, slots=True)
class SyncRunSummary:
    mode: str
    synced_count: int
    updated_count: int
    created_count: int
    planned_count: int
    errors: tuple[OperationFailure, ...]
    plan_stats: PlanStats

    @property
    def failed_count(self) -> int:
        return len(self.errors)

    @property
    def truncated(self) -> bool:
        return self.plan_stats.truncated

    @classmethod
    def from_run(cls, mode: str, plan: SyncPlan, report: ExecutionReport) -> SyncRunSummary:
        return cls(
            mode=mode,
            synced_count=report.synced_count,
            updated_count=report.updated_count,
            created_count=report.created_count,
            planned_count=len(plan.operations),
            errors=report.errors,
            plan_stats=plan.stats,
        )


class LicenseSyncEngine:
    """Plans and executes reconciliation runs between the two license stores.

    Per-operation failures end up in the summary's ``errors``. Only a failure to
    read the first page of a store escapes ``run_*``.
    """

    def __init__(
        self,
        unit_of_work_factory: UnitOfWorkFactory,
        options: EngineOptions | None = None,
        *,
        clock: Clock = utc_now,
        key_generator: KeyGenerator = generate_license_key,
    ) -> None:
        self._uow_factory = unit_of_work_factory
        self.options = options or EngineOptions()
        self._clock = clock
        self._executor = BatchExecutor(
            unit_of_work_factory,
            batch_size=self.options.batch_size,
            isolation=self.options.isolation,
            clock=clock,
            key_generator=key_generator,
        )

    def run_comprehensive_sync(self) -> SyncRunSummary:
        log.info(
            "Starting comprehensive sync (batch size %s, %s isolation)",
            self.options.batch_size,
            self.options.isolation,
        )
        return self._run("comprehensive", plan_comprehensive_sync)

    def run_legacy_sync(self) -> SyncRunSummary:
        log.info("Starting legacy sync")
        return self._run("legacy", plan_legacy_sync)

    def _run(
        self,
        mode: str,
        planner: Callable[[LicenseRepositories, PlanOptions], SyncPlan],
    ) -> SyncRunSummary:
        with self._uow_factory() as uow:
            plan = planner(uow.repositories, self.options.plan)
        report = self._executor.execute(plan.operations)
        summary = SyncRunSummary.from_run(mode, plan, report)
        if summary.truncated:
            log.warning("The %s sync stopped early; results are partial", mode)
        log.info(
            "Finished %s sync: %s synced (%s updated, %s created), %s failed of %s planned",
            mode,
            summary.synced_count,
            summary.updated_count,
            summary.created_count,
            summary.failed_count,
            summary.planned_count,
        )
        return summary

    def mirror(self, records: Iterable[ExternalLicenseRecord]) -> MirrorReport:
        return mirror_external_records(
            records,
            self._uow_factory,
            batch_size=self.options.mirror_batch_size,
            isolation=self.options.isolation,
            clock=self._clock,
        )

    def retry_pending(self, source: ExternalLicenseSource) -> MirrorReport:
        return retry_pending(
            source, self._uow_factory, limit=self.options.pending_limit, clock=self._clock
        )

    def sync_one(self, source: ExternalLicenseSource, appid: str) -> SingleSyncResult:
        return sync_one(source, self._uow_factory, appid, clock=self._clock)

    def sync_stats(self) -> SyncStats:
        with self._uow_factory() as uow:
            return uow.repositories.external_licenses.sync_stats()
