from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from sqlalchemy.exc import IntegrityError

from licensync.adapters.sqlalchemy.unit_of_work import (
    SqlAlchemyLicenseUnitOfWork,
    StartupError,
    configured_engine,
    is_started,
    shutdown,
    startup,
)
from licensync.domain.model import ExternalLicenseRecord, InternalLicenseRecord

if TYPE_CHECKING:
    from collections.abc import Callable

    from sqlalchemy.engine import Engine


def test_unit_of_work_requires_startup() -> None:
    shutdown()

    with pytest.raises(StartupError, match="not initialised"):
        SqlAlchemyLicenseUnitOfWork()


def test_startup_refuses_to_reconfigure_without_force(sqlite_engine: Engine) -> None:
    startup(engine=sqlite_engine, force=True)
    try:
        assert is_started()
        assert configured_engine() is sqlite_engine
        with pytest.raises(StartupError, match="already initialised"):
            startup(engine=sqlite_engine)
    finally:
        shutdown()

    assert not is_started()
    assert configured_engine() is None


def test_repositories_unavailable_outside_context(
    sqlite_unit_of_work: Callable[[], SqlAlchemyLicenseUnitOfWork],
) -> None:
    uow = sqlite_unit_of_work()

    with pytest.raises(StartupError, match="session not initialised"):
        _ = uow.repositories


def test_commit_persists_across_units_of_work(
    sqlite_unit_of_work: Callable[[], SqlAlchemyLicenseUnitOfWork],
) -> None:
    with sqlite_unit_of_work() as uow:
        uow.repositories.external_licenses.upsert(ExternalLicenseRecord(appid="A1"))
        uow.repositories.internal_licenses.create(InternalLicenseRecord(key="KEY-1"))
        uow.commit()

    with sqlite_unit_of_work() as uow:
        assert uow.repositories.external_licenses.find_by_key(appid="A1") is not None
        assert uow.repositories.internal_licenses.page(1, 10).total == 1


def test_uncommitted_work_is_discarded(
    sqlite_unit_of_work: Callable[[], SqlAlchemyLicenseUnitOfWork],
) -> None:
    with sqlite_unit_of_work() as uow:
        uow.repositories.external_licenses.upsert(ExternalLicenseRecord(appid="A1"))

    with sqlite_unit_of_work() as uow:
        assert uow.repositories.external_licenses.find_by_key(appid="A1") is None


def test_exception_rolls_back_and_propagates(
    sqlite_unit_of_work: Callable[[], SqlAlchemyLicenseUnitOfWork],
) -> None:
    def write_then_fail() -> None:
        with sqlite_unit_of_work() as uow:
            uow.repositories.internal_licenses.create(InternalLicenseRecord(key="KEY-1"))
            raise RuntimeError("boom")

    with pytest.raises(RuntimeError, match="boom"):
        write_then_fail()

    with sqlite_unit_of_work() as uow:
        assert uow.repositories.internal_licenses.page(1, 10).total == 0


def test_duplicate_key_fails_only_its_own_transaction(
    sqlite_unit_of_work: Callable[[], SqlAlchemyLicenseUnitOfWork],
) -> None:
    with sqlite_unit_of_work() as uow:
        uow.repositories.internal_licenses.create(InternalLicenseRecord(key="KEY-1"))
        uow.commit()

    def create_duplicate() -> None:
        with sqlite_unit_of_work() as uow:
            uow.repositories.internal_licenses.create(InternalLicenseRecord(key="KEY-1"))
            uow.commit()

    with pytest.raises(IntegrityError, match="UNIQUE"):
        create_duplicate()

    with sqlite_unit_of_work() as uow:
        assert uow.repositories.internal_licenses.page(1, 10).total == 1
