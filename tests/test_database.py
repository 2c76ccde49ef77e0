"""Tests for the unit-of-work error mapping, with a stub asyncpg pool."""

import asyncio
from contextlib import asynccontextmanager

import asyncpg
import pytest

from campus_eats.database import Database
from campus_eats.exceptions import ConcurrencyConflict


class StubConnection:
    def __init__(self):
        self.rolled_back = False

    @asynccontextmanager
    async def transaction(self):
        try:
            yield
        except BaseException:
            self.rolled_back = True
            raise


class StubPool:
    def __init__(self):
        self.conn = StubConnection()

    @asynccontextmanager
    async def acquire(self):
        yield self.conn


def _database():
    db = Database("postgresql://unused")
    db.pool = StubPool()
    return db


class TestUnitOfWork:
    @pytest.mark.parametrize("error", [
        asyncpg.DeadlockDetectedError("deadlock detected"),
        asyncpg.SerializationError("could not serialize access"),
    ])
    def test_lost_lock_races_become_conflicts(self, error):
        db = _database()

        async def run():
            async with db.unit_of_work():
                raise error

        with pytest.raises(ConcurrencyConflict) as excinfo:
            asyncio.run(run())
        assert excinfo.value.__cause__ is error
        assert db.pool.conn.rolled_back

    def test_other_database_errors_propagate(self):
        db = _database()
        error = asyncpg.UniqueViolationError("duplicate key")

        async def run():
            async with db.unit_of_work():
                raise error

        with pytest.raises(asyncpg.UniqueViolationError):
            asyncio.run(run())

    def test_yields_repositories_bound_to_connection(self):
        db = _database()

        async def run():
            async with db.unit_of_work() as uow:
                return uow

        uow = asyncio.run(run())

        assert uow.conn is db.pool.conn
        assert uow.menu_items.conn is db.pool.conn
        assert uow.categories.conn is db.pool.conn
