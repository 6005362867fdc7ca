"""Domain enums (pure, dependency-light)."""

from __future__ import annotations

from enum import StrEnum


class SyncStatus(StrEnum):
    """Per-record synchronisation state shared by both stores."""

    PENDING = "pending"
    SYNCED = "synced"
    FAILED = "failed"


class LicenseStatus(StrEnum):
    ACTIVE = "active"
    PENDING = "pending"
    CANCEL = "cancel"


class MatchStrategy(StrEnum):
    """Identifier that paired an internal record with an external one."""

    APPID = "appid"
    COUNTID = "countid"
    EMAIL = "email"


class OperationKind(StrEnum):
    UPDATE = "update"
    CREATE = "create"


class FailureIsolation(StrEnum):
    """Transaction granularity used when writing a batch of operations."""

    PER_ITEM = "per_item"
    PER_BATCH = "per_batch"
