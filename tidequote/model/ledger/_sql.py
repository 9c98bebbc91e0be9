# model/ledger/_sql.py
"""
SQL ledger backend (SQLite via aiosqlite, PostgreSQL via asyncpg):
- contributions: one row per identity, guarded by the primary key
- click_counter: singleton row, upserted in the same transaction as the
  contribution insert, so value == COUNT(contributions) at every commit
"""

from __future__ import annotations
import logging
from typing import Dict, Optional, Tuple

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncSession

from ...errors import AlreadyContributed
from ...helpers import now_ts
from ...identity import Identity
from ...infra.sql import Gated
from ..orm import COUNTER_ID, Base

logger = logging.getLogger(__name__)


# ------------------------------------------------------------------------------
# SQL
# ------------------------------------------------------------------------------
SQL_INSERT_CONTRIBUTION = r"""
INSERT INTO contributions (identity_id, display_name, email, created_at)
VALUES (:identity_id, :display_name, :email, :created_at)
ON CONFLICT (identity_id) DO NOTHING
RETURNING identity_id
"""

SQL_INCREMENT_COUNTER = r"""
INSERT INTO click_counter (id, value) VALUES (:id, 1)
ON CONFLICT (id) DO UPDATE SET value = click_counter.value + 1
RETURNING value
"""

SQL_SEED_COUNTER = r"""
INSERT INTO click_counter (id, value) VALUES (:id, 0)
ON CONFLICT (id) DO NOTHING
"""


# ------------------------------------------------------------------------------
# DDL (idempotent) + fixtures
# ------------------------------------------------------------------------------
async def create_schema(conn: AsyncConnection) -> None:
    """
    Create tables if missing and seed the counter row if it doesn't exist.
    """
    await conn.run_sync(Base.metadata.create_all)
    await conn.execute(text(SQL_SEED_COUNTER), {"id": COUNTER_ID})


async def reconcile_counter(
    db_or_conn: AsyncSession | AsyncConnection
) -> Tuple[int, int]:
    """
    Force the counter to COUNT(contributions). Returns (before, after).
    Only repairs drift left behind by writers that did not update both
    tables in one transaction.
    """
    exec_ = db_or_conn.execute
    before = (await exec_(
        text("SELECT value FROM click_counter WHERE id = :id"),
        {"id": COUNTER_ID},
    )).scalar_one_or_none()
    after = (await exec_(
        text("SELECT COUNT(*) FROM contributions")
    )).scalar_one()
    if before is None:
        await exec_(
            text("INSERT INTO click_counter (id, value) VALUES (:id, :v)"),
            {"id": COUNTER_ID, "v": int(after)},
        )
    elif int(before) != int(after):
        await exec_(
            text("UPDATE click_counter SET value = :v WHERE id = :id"),
            {"id": COUNTER_ID, "v": int(after)},
        )
    return (-1 if before is None else int(before)), int(after)


# ------------------------------------------------------------------------------
# Core logic
# ------------------------------------------------------------------------------

# UN-GATED internal function, caller owns the transaction
async def record_contribution(
    db: AsyncSession | AsyncConnection, identity: Identity,
    created_at: Optional[float] = None,
) -> Dict[str, bool]:
    """
    Insert-if-absent. The primary key decides, not a prior SELECT, so two
    racing transactions for the same identity cannot both insert.
    """
    row = (await db.execute(text(SQL_INSERT_CONTRIBUTION), {
        "identity_id": identity.id,
        "display_name": identity.display_name,
        "email": identity.email,
        "created_at": now_ts() if created_at is None else created_at,
    })).first()
    if row is None:
        raise AlreadyContributed(identity.id)
    return {"created": True}


# UN-GATED internal function, caller owns the transaction
async def increment_if_contributed(
    db: AsyncSession | AsyncConnection, result: Dict[str, bool]
) -> int:
    if not result.get("created"):
        raise AlreadyContributed()
    value = (await db.execute(
        text(SQL_INCREMENT_COUNTER), {"id": COUNTER_ID}
    )).scalar_one()
    return int(value)


class LedgerStore:
    backend = "sql"

    def __init__(self, *, db: AsyncSession, gated: Gated) -> None:
        self.db = db
        self.gated = gated

    async def contribute(self, identity: Identity) -> int:
        # one transaction: AlreadyContributed rolls back, crash loses both
        async with self.gated():
            async with self.db.begin():
                result = await record_contribution(self.db, identity)
                count = await increment_if_contributed(self.db, result)
        logger.info("contribution recorded",
                    extra={"identity_id": identity.id, "count": count})
        return count

    async def has_contributed(self, identity_id: str) -> bool:
        async with self.gated():
            async with self.db.begin():
                row = (await self.db.execute(
                    text("SELECT 1 FROM contributions "
                         "WHERE identity_id = :id"),
                    {"id": identity_id},
                )).first()
        return row is not None

    async def count(self) -> int:
        async with self.gated():
            async with self.db.begin():
                value = (await self.db.execute(
                    text("SELECT value FROM click_counter WHERE id = :id"),
                    {"id": COUNTER_ID},
                )).scalar_one_or_none()
        return int(value or 0)

    async def reconcile(self) -> Tuple[int, int]:
        async with self.gated():
            async with self.db.begin():
                return await reconcile_counter(self.db)
