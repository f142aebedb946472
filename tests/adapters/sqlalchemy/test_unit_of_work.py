from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

import pytest
from sqlalchemy import create_engine

from pbsinventory.adapters.sqlalchemy.unit_of_work import (
    SqlAlchemyUnitOfWork,
    StartupError,
    configured_engine,
    is_started,
    shutdown,
    startup,
)
from pbsinventory.domain.model import Datastore, MetadataEnvelope

if TYPE_CHECKING:
    from collections.abc import Iterator

    from sqlalchemy.engine import Engine

WHEN = datetime(2024, 1, 1, tzinfo=UTC)


@pytest.fixture(autouse=True)
def reset_unit_of_work_state() -> Iterator[None]:
    shutdown()
    yield
    shutdown()


def _datastore(mountpoint: str) -> Datastore:
    return Datastore(
        host_id=1, name="ds", mountpoint=mountpoint, metadata=MetadataEnvelope.new(WHEN)
    )


def test_sqlalchemy_unit_of_work_requires_startup() -> None:
    assert not is_started()
    with pytest.raises(StartupError):
        SqlAlchemyUnitOfWork()


def test_startup_requires_force_for_reconfiguration() -> None:
    engine_a = create_engine("sqlite+pysqlite:///:memory:", future=True)
    engine_b = create_engine("sqlite+pysqlite:///:memory:", future=True)

    startup(engine=engine_a, force=True)

    with pytest.raises(StartupError):
        startup(engine=engine_b)

    startup(engine=engine_b, force=True)
    assert configured_engine() is engine_b


def test_store_is_only_available_inside_the_context(sqlite_engine: Engine) -> None:
    startup(engine=sqlite_engine, force=True)
    uow = SqlAlchemyUnitOfWork(batch_size=2)

    with pytest.raises(StartupError):
        _ = uow.store
    with uow:
        assert uow.store.batch_size == 2
    with pytest.raises(StartupError):
        _ = uow.store


def test_committed_rows_are_visible_to_the_next_unit(sqlite_engine: Engine) -> None:
    startup(engine=sqlite_engine, force=True)

    with SqlAlchemyUnitOfWork() as uow:
        uow.store.insert_many(Datastore, [_datastore("/mnt/a")])
        uow.commit()

    with SqlAlchemyUnitOfWork() as uow:
        (found,) = uow.store.find(Datastore, scope={"host_id": 1})
        assert found.mountpoint == "/mnt/a"


def test_exception_rolls_back_the_whole_unit(sqlite_engine: Engine) -> None:
    startup(engine=sqlite_engine, force=True)

    with pytest.raises(RuntimeError), SqlAlchemyUnitOfWork() as uow:
        uow.store.insert_many(Datastore, [_datastore("/mnt/a"), _datastore("/mnt/b")])
        raise RuntimeError("scan failed")

    with SqlAlchemyUnitOfWork() as uow:
        assert uow.store.find(Datastore, scope={"host_id": 1}) == []
