"""SQLAlchemy adapter package for licensync."""

from __future__ import annotations

from .mappings import (
    external_license_table,
    internal_license_table,
    mapper_registry,
)
from .stores import SqlAlchemyExternalLicenseStore, SqlAlchemyInternalLicenseStore
from .unit_of_work import (
    SqlAlchemyLicenseUnitOfWork,
    StartupError,
    configured_engine,
    is_started,
    shutdown,
    startup,
)

__all__ = [
    "SqlAlchemyExternalLicenseStore",
    "SqlAlchemyInternalLicenseStore",
    "SqlAlchemyLicenseUnitOfWork",
    "StartupError",
    "configured_engine",
    "external_license_table",
    "internal_license_table",
    "is_started",
    "mapper_registry",
    "shutdown",
    "startup",
]
