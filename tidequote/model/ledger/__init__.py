# model/ledger/__init__.py
from typing import Optional, Union

import redis.asyncio as redis
from sqlalchemy.ext.asyncio import AsyncSession

from ...infra.sql import Gated
from ._redis import LedgerStore as RedisLedgerStore
from ._sql import LedgerStore as SqlLedgerStore
from ._sql import (
    create_schema, increment_if_contributed, reconcile_counter,
    record_contribution,
)

LedgerStore = Union[SqlLedgerStore, RedisLedgerStore]


# Factory keeps server.py simple and constructor-agnostic:
def new_store(backend: str, *, db: Optional[AsyncSession] = None,
              r: Optional[redis.Redis] = None,
              gated: Optional[Gated] = None) -> LedgerStore:
    if backend == "sql":
        if db is None:
            raise RuntimeError("LedgerStore(sql) requires db=AsyncSession")
        if gated is None:
            raise RuntimeError("LedgerStore(sql) requires gated=Gated")
        return SqlLedgerStore(db=db, gated=gated)
    if backend == "redis":
        if r is None:
            raise RuntimeError("LedgerStore(redis) requires r=redis.Redis")
        return RedisLedgerStore(r=r)
    raise RuntimeError(f"unknown ledger backend: {backend}")


__all__ = [
    "LedgerStore", "SqlLedgerStore", "RedisLedgerStore", "new_store",
    "create_schema", "reconcile_counter", "record_contribution",
    "increment_if_contributed",
]
