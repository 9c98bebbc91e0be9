# model/ledger/_redis.py
from __future__ import annotations
import json
import logging
from typing import Tuple

import redis.asyncio as redis

from ...errors import AlreadyContributed
from ...helpers import now_ts
from ...identity import Identity

logger = logging.getLogger(__name__)


# ---- keys
def k_contributions() -> str:
    return "tidequote:contributions"


def k_counter() -> str:
    return "tidequote:click_count"


# HSETNX and INCR run inside one script, so redis applies both or neither
LUA_CONTRIBUTE = """
if redis.call('HSETNX', KEYS[1], ARGV[1], ARGV[2]) == 0 then
  return -1
end
return redis.call('INCR', KEYS[2])
"""

LUA_RECONCILE = """
local n = redis.call('HLEN', KEYS[1])
local before = tonumber(redis.call('GET', KEYS[2]) or '-1')
redis.call('SET', KEYS[2], n)
return {before, n}
"""


class LedgerStore:
    backend = "redis"

    def __init__(self, r: redis.Redis) -> None:
        self.r = r
        self._contribute = r.register_script(LUA_CONTRIBUTE)
        self._reconcile = r.register_script(LUA_RECONCILE)

    async def ensure_counter(self) -> None:
        await self.r.set(k_counter(), 0, nx=True)

    async def contribute(self, identity: Identity) -> int:
        record = json.dumps({
            "identity_id": identity.id,
            "display_name": identity.display_name,
            "email": identity.email,
            "created_at": now_ts(),
        })
        count = int(await self._contribute(
            keys=[k_contributions(), k_counter()],
            args=[identity.id, record],
        ))
        if count < 0:
            raise AlreadyContributed(identity.id)
        logger.info("contribution recorded",
                    extra={"identity_id": identity.id, "count": count})
        return count

    async def has_contributed(self, identity_id: str) -> bool:
        return bool(await self.r.hexists(k_contributions(), identity_id))

    async def count(self) -> int:
        value = await self.r.get(k_counter())
        return int(value or 0)

    async def reconcile(self) -> Tuple[int, int]:
        before, after = await self._reconcile(
            keys=[k_contributions(), k_counter()]
        )
        return int(before), int(after)
