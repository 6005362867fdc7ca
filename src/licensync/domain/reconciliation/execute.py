"""Apply planned sync operations in fixed-size batches."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from logging import getLogger
from typing import TYPE_CHECKING

from licensync.domain.model import FailureIsolation, OperationKind

from .errors import BatchFatalError, ItemSyncError
from .keys import generate_license_key
from .merge import build_internal_record, build_update_patch, updated_field_names
from .plan import CreateOperation, UpdateOperation

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator, Sequence

    from licensync.domain.ports import LicenseRepositories, LicenseUnitOfWork

    from .plan import SyncOperation

log = getLogger(__name__)

type UnitOfWorkFactory = Callable[[], LicenseUnitOfWork]
type Clock = Callable[[], datetime]
type KeyGenerator = Callable[..., str]


def utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True, slots=True)
class OperationFailure:
    operation: SyncOperation
    message: str


@dataclass(frozen=True, slots=True)
class BatchOutcome:
    updated: int = 0
    created: int = 0
    failures: tuple[OperationFailure, ...] = ()


@dataclass(frozen=True, slots=True)
class ExecutionReport:
    synced_count: int = 0
    updated_count: int = 0
    created_count: int = 0
    errors: tuple[OperationFailure, ...] = ()

    @property
    def failed_count(self) -> int:
        return len(self.errors)

    def with_batch(self, outcome: BatchOutcome) -> ExecutionReport:
        return ExecutionReport(
            synced_count=self.synced_count + outcome.updated + outcome.created,
            updated_count=self.updated_count + outcome.updated,
            created_count=self.created_count + outcome.created,
            errors=self.errors + outcome.failures,
        )


def _batches[T](items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


def _tally(
    kinds: Sequence[OperationKind], failures: tuple[OperationFailure, ...] = ()
) -> BatchOutcome:
    return BatchOutcome(
        updated=sum(1 for kind in kinds if kind is OperationKind.UPDATE),
        created=sum(1 for kind in kinds if kind is OperationKind.CREATE),
        failures=failures,
    )


class BatchExecutor:
    """Runs sync operations batch by batch and reports per-operation outcomes.

    ``FailureIsolation.PER_ITEM`` gives every operation its own unit of work, so
    one failure never affects its neighbours. ``FailureIsolation.PER_BATCH``
    wraps each batch in a single unit of work; a failure rolls the whole batch
    back and every operation in it is reported as failed.

    Nothing is retried here.
    """

    def __init__(
        self,
        unit_of_work_factory: UnitOfWorkFactory,
        *,
        batch_size: int = 50,
        isolation: FailureIsolation = FailureIsolation.PER_ITEM,
        clock: Clock = utc_now,
        key_generator: KeyGenerator = generate_license_key,
    ) -> None:
        if batch_size < 1:
            raise ValueError(f"batch_size must be positive (got {batch_size})")
        self._uow_factory = unit_of_work_factory
        self.batch_size = batch_size
        self.isolation = isolation
        self._clock = clock
        self._key_generator = key_generator

    def execute(self, operations: Sequence[SyncOperation]) -> ExecutionReport:
        report = ExecutionReport()
        total_batches = (len(operations) + self.batch_size - 1) // self.batch_size
        for number, batch in enumerate(_batches(operations, self.batch_size), start=1):
            if self.isolation is FailureIsolation.PER_BATCH:
                outcome = self._execute_transactional_batch(batch, number)
            else:
                outcome = self._execute_isolated_batch(batch)
            log.debug(
                "Batch %s/%s: %s updated, %s created, %s failed",
                number,
                total_batches,
                outcome.updated,
                outcome.created,
                len(outcome.failures),
            )
            report = report.with_batch(outcome)

        log.info(
            "Executed %s operations: %s updated, %s created, %s failed",
            len(operations),
            report.updated_count,
            report.created_count,
            report.failed_count,
        )
        return report

    def _execute_isolated_batch(self, batch: Sequence[SyncOperation]) -> BatchOutcome:
        kinds: list[OperationKind] = []
        failures: list[OperationFailure] = []
        for operation in batch:
            try:
                kinds.append(self._run_in_own_transaction(operation))
            except ItemSyncError as exc:
                log.error("Failed to %s: %s", operation.describe(), exc)  # noqa: TRY400
                failures.append(OperationFailure(operation=operation, message=str(exc)))
                self._record_failure(operation, str(exc))
        return _tally(kinds, tuple(failures))

    def _run_in_own_transaction(self, operation: SyncOperation) -> OperationKind:
        try:
            with self._uow_factory() as uow:
                kind = self._apply(uow.repositories, operation)
                uow.commit()
        except ItemSyncError:
            raise
        except Exception as exc:
            raise ItemSyncError(str(exc) or type(exc).__name__, operation=operation) from exc
        return kind

    def _execute_transactional_batch(
        self, batch: Sequence[SyncOperation], number: int
    ) -> BatchOutcome:
        try:
            kinds = self._run_batch_transaction(batch, number)
        except BatchFatalError as exc:
            log.error("Batch %s rolled back: %s", number, exc)  # noqa: TRY400
            message = str(exc)
            for operation in batch:
                self._record_failure(operation, message)
            return BatchOutcome(
                failures=tuple(OperationFailure(operation=op, message=message) for op in batch)
            )
        return _tally(kinds)

    def _run_batch_transaction(
        self, batch: Sequence[SyncOperation], number: int
    ) -> list[OperationKind]:
        current: SyncOperation | None = None
        try:
            with self._uow_factory() as uow:
                kinds: list[OperationKind] = []
                for operation in batch:
                    current = operation
                    kinds.append(self._apply(uow.repositories, operation))
                current = None
                uow.commit()
        except Exception as exc:
            culprit = current.describe() if current is not None else "commit"
            raise BatchFatalError(
                f"batch {number} aborted at {culprit}: {exc}", operations=tuple(batch)
            ) from exc
        return kinds

    def _apply(self, repositories: LicenseRepositories, operation: SyncOperation) -> OperationKind:
        now = self._clock()
        store = repositories.internal_licenses
        if isinstance(operation, UpdateOperation):
            if operation.internal.id is None:
                raise ItemSyncError("Internal license has no id", operation=operation)
            patch = build_update_patch(operation.external, now=now)
            if store.update(operation.internal.id, patch) is None:
                raise ItemSyncError(
                    f"Internal license {operation.internal.id} no longer exists",
                    operation=operation,
                )
            log.debug(
                "Updated internal license %s (matched by %s, missing %s, wrote %s)",
                operation.internal.id,
                operation.matched_by,
                list(operation.missing_fields),
                updated_field_names(patch),
            )
            return OperationKind.UPDATE

        key = self._key_generator(operation.external, now=now)
        created = store.create(build_internal_record(operation.external, key=key, now=now))
        log.debug(
            "Created internal license %s with key %s (%s)",
            created.id,
            key,
            operation.reason,
        )
        return OperationKind.CREATE

    def _record_failure(self, operation: SyncOperation, message: str) -> None:
        """Flag the targeted internal license as failed, when there is one."""

        if isinstance(operation, CreateOperation) or operation.internal.id is None:
            return
        try:
            with self._uow_factory() as uow:
                uow.repositories.internal_licenses.mark_failed(operation.internal.id, message)
                uow.commit()
        except Exception:
            log.exception("Could not flag internal license %s as failed", operation.internal.id)
