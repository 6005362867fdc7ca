"""Ports for the two paginated license stores."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from licensync.domain.model import ExternalLicenseRecord, InternalLicenseRecord

if TYPE_CHECKING:
    from datetime import datetime
    from uuid import UUID

    from licensync.domain.model import InternalPatch


type PageFilters = Mapping[str, object]


@dataclass(slots=True, frozen=True)
class Page[TRecord]:
    """One page of a paginated collection."""

    records: Sequence[TRecord]
    total: int


@dataclass(slots=True, frozen=True)
class UpsertResult[TRecord]:
    """Outcome of one upsert, with the store reporting whether a row was inserted."""

    record: TRecord
    created: bool


@dataclass(slots=True, frozen=True)
class SyncStats:
    total: int = 0
    synced: int = 0
    failed: int = 0
    pending: int = 0

    @property
    def success_rate(self) -> int:
        return round(self.synced / self.total * 100) if self.total else 0


@runtime_checkable
class LicenseStore[TRecord](Protocol):
    """Paginated store contract shared by both sides."""

    def page(
        self,
        page_number: int,
        page_size: int,
        filters: PageFilters | None = None,
    ) -> Page[TRecord]: ...

    def find_by_key(
        self,
        *,
        appid: str | None = None,
        countid: int | None = None,
        email: str | None = None,
    ) -> TRecord | None: ...

    def upsert(self, record: TRecord) -> UpsertResult[TRecord]: ...

    def update(self, record_id: UUID, patch: InternalPatch) -> TRecord | None: ...

    def mark_synced(self, record_id: UUID, timestamp: datetime) -> bool: ...

    def mark_failed(self, record_id: UUID, message: str) -> bool: ...


@runtime_checkable
class ExternalLicenseStore(LicenseStore[ExternalLicenseRecord], Protocol):
    """Mirror of the partner's license table. Upserts conflict on ``appid``."""

    def bulk_upsert(
        self, records: Sequence[ExternalLicenseRecord]
    ) -> list[UpsertResult[ExternalLicenseRecord]]: ...

    def find_needing_sync(self, limit: int = 100) -> list[ExternalLicenseRecord]: ...

    def sync_stats(self) -> SyncStats: ...


@runtime_checkable
class InternalLicenseStore(LicenseStore[InternalLicenseRecord], Protocol):
    """Internally-owned licenses. Upserts conflict on ``key``."""

    def create(self, record: InternalLicenseRecord) -> InternalLicenseRecord: ...


@runtime_checkable
class ExternalLicenseSource(Protocol):
    """Callable port that re-fetches one license from the partner system by appid."""

    def __call__(self, appid: str) -> ExternalLicenseRecord | None: ...
