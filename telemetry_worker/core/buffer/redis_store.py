"""Store de fragmentos en Redis (hash por ráfaga + scripts Lua).

Varias instancias del worker consumen la misma suscripción compartida, así
que dos fragmentos de la misma ráfaga pueden llegar a procesos distintos.
Todo lo que combina "escribir + contar + reclamar" corre dentro de un
script Lua para que Redis lo ejecute de forma atómica.
"""

from __future__ import annotations

import logging
import os
from typing import Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from .store import AppendResult, FragmentStore, RawFragmentSet

logger = logging.getLogger(__name__)

# KEYS[1]=key  ARGV: index, total, header, values, ttl_ms, claim_token
# Devuelve {stored, expected, claimed}; stored=-1 si el índice está fuera de rango.
APPEND_SCRIPT = """
local key = KEYS[1]
local index = tonumber(ARGV[1])
redis.call('HSETNX', key, 'header', ARGV[3])
redis.call('HSETNX', key, 'total', ARGV[2])
local expected = tonumber(redis.call('HGET', key, 'total'))
if index < 1 or index > expected then
  return {-1, expected, 0}
end
redis.call('HSET', key, 'field_' .. index, ARGV[4])
local ttl = tonumber(ARGV[5])
if ttl > 0 then
  redis.call('PEXPIRE', key, ttl)
end
local stored = 0
for _, name in ipairs(redis.call('HKEYS', key)) do
  if string.sub(name, 1, 6) == 'field_' then
    stored = stored + 1
  end
end
local claimed = 0
if stored == expected then
  claimed = redis.call('HSETNX', key, 'claimed', ARGV[6])
end
return {stored, expected, claimed}
"""

IS_COMPLETE_SCRIPT = """
local total = redis.call('HGET', KEYS[1], 'total')
if not total then
  return 0
end
local stored = 0
for _, name in ipairs(redis.call('HKEYS', KEYS[1])) do
  if string.sub(name, 1, 6) == 'field_' then
    stored = stored + 1
  end
end
if stored == tonumber(total) then
  return 1
end
return 0
"""

# Solo drena sets completos: nunca se borra una ráfaga a medias.
DRAIN_SCRIPT = """
local total = redis.call('HGET', KEYS[1], 'total')
if not total then
  return {}
end
local data = redis.call('HGETALL', KEYS[1])
local stored = 0
for i = 1, #data, 2 do
  if string.sub(data[i], 1, 6) == 'field_' then
    stored = stored + 1
  end
end
if stored ~= tonumber(total) then
  return {}
end
redis.call('DEL', KEYS[1])
return data
"""

CLEAR_SCRIPT = """
if redis.call('HGET', KEYS[1], 'claimed') == ARGV[1] then
  return redis.call('DEL', KEYS[1])
end
return 0
"""

RELEASE_SCRIPT = """
if redis.call('HGET', KEYS[1], 'claimed') == ARGV[1] then
  return redis.call('HDEL', KEYS[1], 'claimed')
end
return 0
"""


class RedisFragmentStore(FragmentStore):
    """FragmentStore sobre un hash de Redis por clave."""

    def __init__(self, client: redis.Redis):
        self._client = client
        self._append = client.register_script(APPEND_SCRIPT)
        self._is_complete = client.register_script(IS_COMPLETE_SCRIPT)
        self._drain = client.register_script(DRAIN_SCRIPT)
        self._clear = client.register_script(CLEAR_SCRIPT)
        self._release = client.register_script(RELEASE_SCRIPT)

    @classmethod
    def from_url(cls, url: Optional[str] = None) -> "RedisFragmentStore":
        url = url or os.getenv("REDIS_URL", "redis://localhost:6379/0")
        client = redis.Redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=5.0,
            socket_connect_timeout=5.0,
        )
        logger.info("[BUFFER] Redis store: %s", url.split("@")[-1])
        return cls(client)

    @property
    def client(self) -> redis.Redis:
        return self._client

    async def append(self, key, part_index, part_total, header, values, ttl_ms, claim_token) -> AppendResult:
        stored, expected, claimed = await self._append(
            keys=[key],
            args=[part_index, part_total, header, values, int(ttl_ms), claim_token],
        )
        return AppendResult(stored=int(stored), expected=int(expected), claimed=bool(claimed))

    async def is_complete(self, key: str) -> bool:
        return bool(await self._is_complete(keys=[key]))

    async def read(self, key: str) -> Optional[RawFragmentSet]:
        return RawFragmentSet.from_hash(await self._client.hgetall(key))

    async def drain(self, key: str) -> Optional[RawFragmentSet]:
        flat = await self._drain(keys=[key])
        if not flat:
            return None
        return RawFragmentSet.from_hash(dict(zip(flat[0::2], flat[1::2])))

    async def clear(self, key: str, claim_token: str) -> bool:
        return bool(await self._clear(keys=[key], args=[claim_token]))

    async def release(self, key: str, claim_token: str) -> bool:
        return bool(await self._release(keys=[key], args=[claim_token]))

    async def exists(self, key: str) -> bool:
        return bool(await self._client.exists(key))

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except RedisError as e:
            logger.warning("[BUFFER] Redis ping failed: %s", e)
            return False

    async def close(self) -> None:
        await self._client.aclose()
