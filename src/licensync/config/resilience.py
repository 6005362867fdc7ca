"""Retry policy for transient store failures."""

from __future__ import annotations

from dataclasses import dataclass

from .env import env_float, env_int


@dataclass(slots=True, frozen=True)
class RetryPolicy:
    attempts: int = 3
    backoff_multiplier: float = 0.5
    min_wait_seconds: float = 0.5
    max_wait_seconds: float = 10.0


def get_retry_policy() -> RetryPolicy:
    defaults = RetryPolicy()
    return RetryPolicy(
        attempts=env_int("LICENSE_SYNC_RETRY_ATTEMPTS", defaults.attempts),
        backoff_multiplier=env_float(
            "LICENSE_SYNC_RETRY_BACKOFF_MULTIPLIER", defaults.backoff_multiplier
        ),
        min_wait_seconds=env_float("LICENSE_SYNC_RETRY_MIN_WAIT", defaults.min_wait_seconds),
        max_wait_seconds=env_float("LICENSE_SYNC_RETRY_MAX_WAIT", defaults.max_wait_seconds),
    )
