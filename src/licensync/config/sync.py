"""Synchronization defaults for the reconciliation engine."""

from __future__ import annotations

import os
from dataclasses import dataclass

from licensync.domain.model import FailureIsolation

from .env import env_int
from .errors import ConfigurationError

DEFAULT_EXECUTE_BATCH_SIZE = 50
DEFAULT_LOOKUP_CHUNK_SIZE = 100
DEFAULT_INTERNAL_CHUNK_SIZE = 1000
DEFAULT_EXTERNAL_CHUNK_SIZE = 500
DEFAULT_MAX_PAGES = 1000
DEFAULT_MAX_OPERATIONS = 10_000
DEFAULT_MIRROR_BATCH_SIZE = 100
DEFAULT_PENDING_LIMIT = 100


@dataclass(frozen=True, slots=True)
class SyncConfig:
    execute_batch_size: int = DEFAULT_EXECUTE_BATCH_SIZE
    lookup_chunk_size: int = DEFAULT_LOOKUP_CHUNK_SIZE
    internal_chunk_size: int = DEFAULT_INTERNAL_CHUNK_SIZE
    external_chunk_size: int = DEFAULT_EXTERNAL_CHUNK_SIZE
    max_pages: int = DEFAULT_MAX_PAGES
    max_operations: int = DEFAULT_MAX_OPERATIONS
    mirror_batch_size: int = DEFAULT_MIRROR_BATCH_SIZE
    pending_limit: int = DEFAULT_PENDING_LIMIT
    isolation: FailureIsolation = FailureIsolation.PER_ITEM

    def __post_init__(self) -> None:
        errors: list[str] = []
        for name, low, high in (
            ("execute_batch_size", 1, 1000),
            ("lookup_chunk_size", 1, 10_000),
            ("internal_chunk_size", 1, 10_000),
            ("external_chunk_size", 1, 10_000),
            ("mirror_batch_size", 1, 1000),
            ("max_pages", 1, 100_000),
            ("max_operations", 1, 50_000),
            ("pending_limit", 1, 10_000),
        ):
            value = getattr(self, name)
            if not low <= value <= high:
                errors.append(f"{name} must be between {low} and {high} (got {value})")
        if errors:
            raise ConfigurationError(
                "License sync configuration validation failed: " + "; ".join(errors)
            )


def _isolation_from_env() -> FailureIsolation:
    raw = os.getenv("LICENSE_SYNC_ISOLATION")
    if raw is None or not raw.strip():
        return FailureIsolation.PER_ITEM
    try:
        return FailureIsolation(raw.strip().lower())
    except ValueError as exc:
        allowed = ", ".join(member.value for member in FailureIsolation)
        raise ConfigurationError(
            f"LICENSE_SYNC_ISOLATION must be one of: {allowed} (got {raw!r})"
        ) from exc


def get_sync_config() -> SyncConfig:
    return SyncConfig(
        execute_batch_size=env_int("LICENSE_SYNC_BATCH_SIZE", DEFAULT_EXECUTE_BATCH_SIZE),
        lookup_chunk_size=env_int("LICENSE_SYNC_LOOKUP_CHUNK_SIZE", DEFAULT_LOOKUP_CHUNK_SIZE),
        internal_chunk_size=env_int(
            "LICENSE_SYNC_INTERNAL_CHUNK_SIZE", DEFAULT_INTERNAL_CHUNK_SIZE
        ),
        external_chunk_size=env_int(
            "LICENSE_SYNC_EXTERNAL_CHUNK_SIZE", DEFAULT_EXTERNAL_CHUNK_SIZE
        ),
        max_pages=env_int("LICENSE_SYNC_MAX_PAGES", DEFAULT_MAX_PAGES),
        max_operations=env_int("LICENSE_SYNC_MAX_COMPREHENSIVE", DEFAULT_MAX_OPERATIONS),
        mirror_batch_size=env_int("LICENSE_SYNC_MIRROR_BATCH_SIZE", DEFAULT_MIRROR_BATCH_SIZE),
        pending_limit=env_int("LICENSE_SYNC_PENDING_LIMIT", DEFAULT_PENDING_LIMIT),
        isolation=_isolation_from_env(),
    )
