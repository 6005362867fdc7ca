"""Transient-failure handling for store adapters.

``translate_store_errors`` turns driver-level connection and timeout failures
into ``TransientStoreError``; ``retry_transient`` retries a store read that
raised one with exponential backoff (tenacity).

A failed statement poisons the transaction it ran in, so the store is reset
(its session rolled back) before every retry. That is only safe while the
transaction holds no uncommitted writes: a read issued after writes is not
retried, and the error is left to the caller's failure policy.
"""

from __future__ import annotations

import functools
import logging
from typing import TYPE_CHECKING, Concatenate, Protocol

from sqlalchemy.exc import DisconnectionError, OperationalError, PendingRollbackError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from licensync.config import RetryPolicy, get_retry_policy
from licensync.domain.reconciliation.errors import TransientStoreError

if TYPE_CHECKING:
    from collections.abc import Callable

    from tenacity import RetryCallState, retry_base

log = logging.getLogger(__name__)

TRANSIENT_DRIVER_ERRORS: tuple[type[Exception], ...] = (
    OperationalError,
    DisconnectionError,
    PoolTimeoutError,
    PendingRollbackError,
)


class TransientRecovery(Protocol):
    """A store that can recover its connection state after a transient failure."""

    def can_retry_transient(self) -> bool: ...

    def reset_after_transient(self) -> None: ...


def translate_store_errors[**P, T](func: Callable[P, T]) -> Callable[P, T]:
    @functools.wraps(func)
    def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
        try:
            return func(*args, **kwargs)
        except TRANSIENT_DRIVER_ERRORS as exc:
            orig = getattr(exc, "orig", None)
            raise TransientStoreError(str(orig or exc)) from exc

    return wrapper


def build_retrying(
    policy: RetryPolicy,
    *,
    can_retry: Callable[[], bool] | None = None,
    reset: Callable[[], None] | None = None,
) -> Retrying:
    """Build the tenacity controller for one call.

    ``can_retry`` vetoes a retry after a failed attempt; ``reset`` runs before
    each retry, after the backoff has been logged.
    """
    retry: retry_base = retry_if_exception_type(TransientStoreError)
    if can_retry is not None:
        retry = retry & retry_if_exception(lambda _exc: can_retry())
    log_before_sleep = before_sleep_log(log, logging.WARNING)

    def before_sleep(retry_state: RetryCallState) -> None:
        log_before_sleep(retry_state)
        if reset is not None:
            reset()

    return Retrying(
        stop=stop_after_attempt(policy.attempts),
        wait=wait_exponential(
            multiplier=policy.backoff_multiplier,
            min=policy.min_wait_seconds,
            max=policy.max_wait_seconds,
        ),
        retry=retry,
        before_sleep=before_sleep,
        reraise=True,
    )


def retry_transient[S: TransientRecovery, **P, T](
    policy: RetryPolicy | None = None,
) -> Callable[[Callable[Concatenate[S, P], T]], Callable[Concatenate[S, P], T]]:
    """Retry the decorated store read on ``TransientStoreError``.

    Without an explicit ``policy`` the one from the environment is read on each
    call, so tests can tune it with ``monkeypatch.setenv``. When the retries run
    out the store is still reset (if it may be), so later reads on the same
    session do not trip over the failed transaction.
    """

    def decorator(method: Callable[Concatenate[S, P], T]) -> Callable[Concatenate[S, P], T]:
        @functools.wraps(method)
        def wrapper(store: S, *args: P.args, **kwargs: P.kwargs) -> T:
            retrying = build_retrying(
                policy or get_retry_policy(),
                can_retry=store.can_retry_transient,
                reset=store.reset_after_transient,
            )
            try:
                return retrying(method, store, *args, **kwargs)
            except TransientStoreError:
                if store.can_retry_transient():
                    store.reset_after_transient()
                raise

        return wrapper

    return decorator
