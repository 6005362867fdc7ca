"""Failure taxonomy for reconciliation runs."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .plan import SyncOperation


class SyncError(RuntimeError):
    """Base class for all reconciliation failures."""


class TransientStoreError(SyncError):
    """A store call failed for a reason that may go away on retry (connection, timeout)."""


class ItemSyncError(SyncError):
    """A single operation could not be applied. The run continues."""

    def __init__(self, message: str, *, operation: SyncOperation | None = None) -> None:
        super().__init__(message)
        self.operation = operation


class BatchFatalError(SyncError):
    """A whole batch was rolled back; every operation in it counts as failed."""

    def __init__(self, message: str, *, operations: tuple[SyncOperation, ...] = ()) -> None:
        super().__init__(message)
        self.operations = operations


class PlannerSafetyLimitReached(SyncError):  # noqa: N818
    """The page ceiling was hit while paginating a store."""

    def __init__(self, *, pages_read: int, max_pages: int) -> None:
        super().__init__(f"Stopped paginating after {pages_read} pages (limit {max_pages})")
        self.pages_read = pages_read
        self.max_pages = max_pages
