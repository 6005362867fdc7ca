"""Domain port definitions for adapters."""

from __future__ import annotations

from .stores import (
    ExternalLicenseSource,
    ExternalLicenseStore,
    InternalLicenseStore,
    LicenseStore,
    Page,
    PageFilters,
    SyncStats,
    UpsertResult,
)
from .unit_of_work import (
    LicenseRepositories,
    LicenseUnitOfWork,
    RepositoryCollection,
    UnitOfWork,
)

__all__ = [
    "ExternalLicenseSource",
    "ExternalLicenseStore",
    "InternalLicenseStore",
    "LicenseRepositories",
    "LicenseStore",
    "LicenseUnitOfWork",
    "Page",
    "PageFilters",
    "RepositoryCollection",
    "SyncStats",
    "UnitOfWork",
    "UpsertResult",
]
