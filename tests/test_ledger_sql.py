"""Tests for the SQL contribution ledger."""
import asyncio

import pytest
from sqlalchemy import text

from tidequote.errors import AlreadyContributed
from tidequote.identity import Identity
from tidequote.infra.sql import make_async_engine, normalize_async_url
from tidequote.model.ledger import (
    create_schema, increment_if_contributed, new_store, record_contribution,
)


def person(n) -> Identity:
    return Identity(id=f"id-{n}", display_name=f"Person {n}",
                    email=f"p{n}@example.com")


@pytest.fixture
async def db(tmp_path):
    engine, SessionAsync, gated = make_async_engine(
        f"sqlite:///{tmp_path / 'ledger.db'}"
    )
    async with engine.begin() as conn:
        await create_schema(conn)
    yield engine, SessionAsync, gated
    await engine.dispose()


async def _store_call(db, method, *args):
    _, SessionAsync, gated = db
    async with SessionAsync() as session:
        store = new_store("sql", db=session, gated=gated)
        return await getattr(store, method)(*args)


async def _try_contribute(db, identity):
    try:
        return await _store_call(db, "contribute", identity)
    except AlreadyContributed:
        return None


class TestUrlNormalization:

    @pytest.mark.parametrize("url,expected", [
        ("sqlite:///x.db", "sqlite+aiosqlite:///x.db"),
        ("postgresql://u@h/db", "postgresql+asyncpg://u@h/db"),
        ("postgres://u@h/db", "postgresql+asyncpg://u@h/db"),
        ("postgresql+asyncpg://u@h/db", "postgresql+asyncpg://u@h/db"),
    ])
    def test_normalize(self, url, expected):
        assert normalize_async_url(url) == expected


class TestContribute:

    async def test_empty_ledger(self, db):
        assert await _store_call(db, "count") == 0
        assert await _store_call(db, "has_contributed", "id-1") is False

    async def test_first_contribution_counts(self, db):
        assert await _store_call(db, "contribute", person(1)) == 1
        assert await _store_call(db, "count") == 1
        assert await _store_call(db, "has_contributed", "id-1") is True

    async def test_second_contribution_rejected(self, db):
        await _store_call(db, "contribute", person(1))
        with pytest.raises(AlreadyContributed) as exc_info:
            await _store_call(db, "contribute", person(1))
        assert exc_info.value.identity_id == "id-1"
        assert await _store_call(db, "count") == 1

    async def test_counter_equals_distinct_contributors(self, db):
        for n in range(7):
            await _store_call(db, "contribute", person(n))
        assert await _store_call(db, "count") == 7
        assert await _store_call(db, "has_contributed", "id-6") is True
        assert await _store_call(db, "has_contributed", "id-7") is False

    async def test_concurrent_same_identity_counts_once(self, db):
        results = await asyncio.gather(
            *[_try_contribute(db, person(1)) for _ in range(10)]
        )
        assert [r for r in results if r is not None] == [1]
        engine, _, _ = db
        async with engine.connect() as conn:
            rows = (await conn.execute(
                text("SELECT COUNT(*) FROM contributions")
            )).scalar_one()
        assert rows == 1
        assert await _store_call(db, "count") == 1

    async def test_concurrent_distinct_identities(self, db):
        results = await asyncio.gather(
            *[_try_contribute(db, person(n)) for n in range(20)]
        )
        assert sorted(results) == list(range(1, 21))
        assert await _store_call(db, "count") == 20


class TestPrimitives:

    async def test_increment_requires_created(self, db):
        _, SessionAsync, _ = db
        async with SessionAsync() as session:
            async with session.begin():
                with pytest.raises(AlreadyContributed):
                    await increment_if_contributed(session, {"created": False})

    async def test_counter_upserted_when_missing(self, db):
        engine, SessionAsync, _ = db
        async with engine.begin() as conn:
            await conn.execute(text("DELETE FROM click_counter"))
        async with SessionAsync() as session:
            async with session.begin():
                result = await record_contribution(session, person(1))
                assert result == {"created": True}
                assert await increment_if_contributed(session, result) == 1

    async def test_failed_transaction_keeps_nothing(self, db):
        _, SessionAsync, _ = db

        with pytest.raises(RuntimeError):
            async with SessionAsync() as session:
                async with session.begin():
                    await record_contribution(session, person(1))
                    raise RuntimeError("crash before the counter moved")

        assert await _store_call(db, "has_contributed", "id-1") is False
        assert await _store_call(db, "contribute", person(1)) == 1


class TestReconcile:

    async def test_reconcile_repairs_drift(self, db):
        engine, _, _ = db
        for n in range(3):
            await _store_call(db, "contribute", person(n))
        async with engine.begin() as conn:
            await conn.execute(text("UPDATE click_counter SET value = 1"))

        assert await _store_call(db, "reconcile") == (1, 3)
        assert await _store_call(db, "count") == 3

    async def test_reconcile_noop_when_consistent(self, db):
        await _store_call(db, "contribute", person(1))
        assert await _store_call(db, "reconcile") == (1, 1)

    async def test_create_schema_is_idempotent(self, db):
        engine, _, _ = db
        await _store_call(db, "contribute", person(1))
        async with engine.begin() as conn:
            await create_schema(conn)
        assert await _store_call(db, "count") == 1
