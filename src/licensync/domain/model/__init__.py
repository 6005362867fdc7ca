"""Public domain model surface."""

from __future__ import annotations

from licensync.domain.model.enums import (
    FailureIsolation,
    LicenseStatus,
    MatchStrategy,
    OperationKind,
    SyncStatus,
)
from licensync.domain.model.licenses import (
    APPID_MAX_LENGTH,
    DEFAULT_PLAN,
    DEFAULT_PRODUCT,
    DEFAULT_TERM,
    ExternalLicenseRecord,
    InternalLicenseRecord,
    InternalPatch,
    appid_key,
    normalize_appid,
    normalize_external_status,
)

__all__ = [
    "APPID_MAX_LENGTH",
    "DEFAULT_PLAN",
    "DEFAULT_PRODUCT",
    "DEFAULT_TERM",
    "ExternalLicenseRecord",
    "FailureIsolation",
    "InternalLicenseRecord",
    "InternalPatch",
    "LicenseStatus",
    "MatchStrategy",
    "OperationKind",
    "SyncStatus",
    "appid_key",
    "normalize_appid",
    "normalize_external_status",
]
