"""Usage counters stored as one Redis hash per scope.

Hash layout for ``<prefix><scope>``::

    total_seconds                    float
    total_kbytes                     float
    total_transcriptions             int
    seconds_by_language:<lang>       float
    transcriptions_by_language:<lang> int
    __language_maps__                marker, present once the maps exist

The increment runs as one Lua script so every field of a row moves together.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import redis.asyncio as redis
from redis.exceptions import RedisError, ResponseError

from voice_note_relay.core.usage.store import CounterStore
from voice_note_relay.domain.errors import SchemaError, UsageUpdateError
from voice_note_relay.domain.models import Scope, UsageCounter, UsageDelta

logger = logging.getLogger(__name__)

MAPS_MARKER = "__language_maps__"
SECONDS_FIELD = "total_seconds"
KBYTES_FIELD = "total_kbytes"
COUNT_FIELD = "total_transcriptions"
SECONDS_BY_LANG = "seconds_by_language:"
COUNT_BY_LANG = "transcriptions_by_language:"
SCHEMA_ERROR_TAG = "SCHEMA"

INCREMENT_SCRIPT = f"""
local key = KEYS[1]
if redis.call('HEXISTS', key, '{MAPS_MARKER}') == 0 then
  return redis.error_reply('{SCHEMA_ERROR_TAG} language maps missing')
end
redis.call('HINCRBYFLOAT', key, '{SECONDS_FIELD}', ARGV[1])
redis.call('HINCRBYFLOAT', key, '{KBYTES_FIELD}', ARGV[2])
redis.call('HINCRBY', key, '{COUNT_FIELD}', ARGV[3])
redis.call('HINCRBYFLOAT', key, '{SECONDS_BY_LANG}' .. ARGV[4], ARGV[1])
redis.call('HINCRBY', key, '{COUNT_BY_LANG}' .. ARGV[4], ARGV[3])
return 1
"""


@dataclass(slots=True)
class RedisCounterStore(CounterStore):
    client: redis.Redis
    key_prefix: str = "usage:"
    _script: Any = field(init=False, default=None, repr=False)

    def __post_init__(self) -> None:
        self._script = self.client.register_script(INCREMENT_SCRIPT)

    def key_for(self, scope: Scope) -> str:
        return f"{self.key_prefix}{scope.key}"

    async def increment_or_init(self, scope: Scope, delta: UsageDelta) -> None:
        try:
            await self._script(
                keys=[self.key_for(scope)],
                args=[repr(float(delta.seconds)), repr(float(delta.kilobytes)), delta.count, delta.language],
            )
        except ResponseError as exc:
            if str(exc).startswith(SCHEMA_ERROR_TAG):
                raise SchemaError(f"per-language maps missing for {scope}", exc) from exc
            raise UsageUpdateError(f"Increment rejected for {scope}", exc) from exc
        except RedisError as exc:
            raise UsageUpdateError(f"Increment failed for {scope}", exc) from exc

    async def init_maps_if_absent(self, scope: Scope) -> None:
        try:
            created = await self.client.hsetnx(self.key_for(scope), MAPS_MARKER, 1)
        except RedisError as exc:
            raise UsageUpdateError(f"Map initialization failed for {scope}", exc) from exc
        if created:
            logger.info(f"[Usage] Created language maps for {scope}")

    async def get(self, scope: Scope) -> UsageCounter | None:
        try:
            raw = await self.client.hgetall(self.key_for(scope))
        except RedisError as exc:
            raise UsageUpdateError(f"Read failed for {scope}", exc) from exc
        if not raw:
            return None
        return parse_counter_hash(raw)


def parse_counter_hash(raw: dict[Any, Any]) -> UsageCounter:
    counter = UsageCounter()
    for key, value in raw.items():
        name = key.decode() if isinstance(key, bytes) else str(key)
        text = value.decode() if isinstance(value, bytes) else str(value)
        if name == SECONDS_FIELD:
            counter.total_seconds = float(text)
        elif name == KBYTES_FIELD:
            counter.total_kilobytes = float(text)
        elif name == COUNT_FIELD:
            counter.total_count = int(text)
        elif name.startswith(SECONDS_BY_LANG):
            counter.seconds_by_language[name[len(SECONDS_BY_LANG) :]] = float(text)
        elif name.startswith(COUNT_BY_LANG):
            counter.count_by_language[name[len(COUNT_BY_LANG) :]] = int(text)
    return counter
