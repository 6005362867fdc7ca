from __future__ import annotations

import re
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.exc import IntegrityError, OperationalError, PendingRollbackError
from sqlalchemy.orm import Session

from licensync.adapters.resilience import retry_transient, translate_store_errors
from licensync.adapters.sqlalchemy.migrations import upgrade_head
from licensync.adapters.sqlalchemy.stores import SqlAlchemyExternalLicenseStore
from licensync.config import RetryPolicy
from licensync.domain.reconciliation import TransientStoreError
from tests.helpers.licenses import make_external

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path

    from sqlalchemy.engine import Engine, ExceptionContext

NO_WAIT = RetryPolicy(attempts=3, backoff_multiplier=0, min_wait_seconds=0, max_wait_seconds=0)


class FlakyStore:
    def __init__(self, failures: int, *, writes_pending: bool = False) -> None:
        self.failures = failures
        self.writes_pending = writes_pending
        self.calls = 0
        self.resets = 0

    def can_retry_transient(self) -> bool:
        return not self.writes_pending

    def reset_after_transient(self) -> None:
        self.resets += 1

    def _read(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise OperationalError("SELECT 1", {}, Exception("server closed the connection"))
        return "rows"

    @retry_transient(NO_WAIT)
    @translate_store_errors
    def read(self) -> str:
        return self._read()

    @retry_transient()
    @translate_store_errors
    def read_with_environment_policy(self) -> str:
        return self._read()

    @retry_transient(NO_WAIT)
    def reject_filter(self) -> None:
        self.calls += 1
        raise ValueError("bad filter")


def test_operational_errors_become_transient() -> None:
    read = translate_store_errors(FlakyStore(failures=1)._read)

    with pytest.raises(TransientStoreError, match="server closed the connection"):
        read()


def test_pending_rollback_becomes_transient() -> None:
    @translate_store_errors
    def read() -> None:
        raise PendingRollbackError("transaction has been rolled back")

    with pytest.raises(TransientStoreError, match="rolled back"):
        read()


def test_other_database_errors_pass_through() -> None:
    @translate_store_errors
    def insert() -> None:
        raise IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed"))

    with pytest.raises(IntegrityError):
        insert()


def test_retry_transient_resets_store_before_each_retry() -> None:
    store = FlakyStore(failures=2)

    assert store.read() == "rows"
    assert store.calls == 3
    assert store.resets == 2


def test_retry_transient_gives_up_after_attempts_and_resets() -> None:
    store = FlakyStore(failures=5)

    with pytest.raises(TransientStoreError):
        store.read()
    assert store.calls == 3
    assert store.resets == 3


def test_retry_transient_does_not_retry_with_pending_writes() -> None:
    store = FlakyStore(failures=1, writes_pending=True)

    with pytest.raises(TransientStoreError):
        store.read()
    assert store.calls == 1
    assert store.resets == 0


def test_retry_transient_reads_policy_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LICENSE_SYNC_RETRY_ATTEMPTS", "2")
    monkeypatch.setenv("LICENSE_SYNC_RETRY_MIN_WAIT", "0")
    monkeypatch.setenv("LICENSE_SYNC_RETRY_MAX_WAIT", "0")
    store = FlakyStore(failures=5)

    with pytest.raises(TransientStoreError):
        store.read_with_environment_policy()
    assert store.calls == 2


def test_retry_transient_does_not_retry_other_errors() -> None:
    store = FlakyStore(failures=0)

    with pytest.raises(ValueError, match="bad filter"):
        store.reject_filter()
    assert store.calls == 1
    assert store.resets == 0


class CountingClock:
    def __init__(self) -> None:
        self.now = datetime(2024, 1, 1, tzinfo=UTC)

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


class DroppedConnections:
    """Make the next ``remaining`` external-license reads fail as a lost connection."""

    def __init__(self, engine: Engine) -> None:
        self.remaining = 0
        self.injected = 0
        event.listen(engine, "before_cursor_execute", self.before_cursor_execute, retval=True)
        event.listen(engine, "handle_error", self.handle_error)

    def before_cursor_execute(
        self,
        conn: object,
        cursor: object,
        statement: str,
        parameters: object,
        context: object,
        executemany: bool,
    ) -> tuple[str, object]:
        if self.remaining and statement.lstrip().upper().startswith("SELECT"):
            if "FROM external_license" in statement:
                self.remaining -= 1
                self.injected += 1
                statement = re.sub(r"\bexternal_license\b", "external_license_gone", statement)
        return statement, parameters

    def handle_error(self, context: ExceptionContext) -> None:
        if "external_license_gone" in str(context.original_exception):
            context.is_disconnect = True


@pytest.fixture
def file_engine(tmp_path: Path) -> Iterator[Engine]:
    # A lost in-memory connection would take the database with it.
    engine = create_engine(f"sqlite+pysqlite:///{tmp_path / 'licenses.db'}", future=True)
    upgrade_head(engine=engine)
    with Session(engine) as session:
        store = SqlAlchemyExternalLicenseStore(session, clock=CountingClock())
        for appid in ("A1", "A2", "A3"):
            store.upsert(make_external(appid))
        session.commit()
    try:
        yield engine
    finally:
        engine.dispose()


def test_store_read_recovers_from_dropped_connection_mid_transaction(
    file_engine: Engine,
) -> None:
    dropped = DroppedConnections(file_engine)
    with Session(file_engine) as session:
        store = SqlAlchemyExternalLicenseStore(session)
        first = store.page(1, 2)

        dropped.remaining = 1
        second = store.page(2, 2)

    assert dropped.injected == 1
    assert [record.appid for record in first.records] == ["A1", "A2"]
    assert [record.appid for record in second.records] == ["A3"]
    assert second.total == 3


def test_store_stays_usable_after_retries_run_out(
    file_engine: Engine, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("LICENSE_SYNC_RETRY_ATTEMPTS", "2")
    dropped = DroppedConnections(file_engine)
    with Session(file_engine) as session:
        store = SqlAlchemyExternalLicenseStore(session)
        store.page(1, 2)

        dropped.remaining = 5
        with pytest.raises(TransientStoreError):
            store.page(2, 2)
        dropped.remaining = 0
        found = store.find_by_key(appid="A2")

    assert dropped.injected == 2
    assert found is not None
    assert found.appid == "A2"


def test_store_read_after_uncommitted_writes_is_not_retried(file_engine: Engine) -> None:
    dropped = DroppedConnections(file_engine)
    with Session(file_engine) as session:
        store = SqlAlchemyExternalLicenseStore(session)
        store.upsert(make_external("A9"))

        dropped.remaining = 1
        with pytest.raises(TransientStoreError):
            store.find_by_key(appid="A1")

        assert dropped.injected == 1
        assert not store.can_retry_transient()
