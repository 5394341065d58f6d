from __future__ import annotations

from dataclasses import dataclass, field

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import ResponseError

from voice_note_relay.core.usage.recorder import UsageRecorder
from voice_note_relay.domain.errors import SchemaError, UsageUpdateError
from voice_note_relay.domain.models import Scope, UsageDelta
from voice_note_relay.providers.redis_counters import (
    INCREMENT_SCRIPT,
    MAPS_MARKER,
    RedisCounterStore,
    parse_counter_hash,
)


@dataclass
class FakeRedis:
    """Emulates the hash commands and the increment script against dicts."""

    hashes: dict[str, dict[bytes, bytes]] = field(default_factory=dict)
    down: bool = False
    scripts: list[str] = field(default_factory=list)

    def register_script(self, script: str):
        self.scripts.append(script)

        async def run(keys, args):
            if self.down:
                raise RedisConnectionError("connection refused")
            row = self.hashes.get(keys[0], {})
            if MAPS_MARKER.encode() not in row:
                raise ResponseError("SCHEMA language maps missing")
            seconds, kbytes, count, lang = float(args[0]), float(args[1]), int(args[2]), args[3]
            self._add(row, "total_seconds", seconds)
            self._add(row, "total_kbytes", kbytes)
            self._add(row, "total_transcriptions", count, integer=True)
            self._add(row, f"seconds_by_language:{lang}", seconds)
            self._add(row, f"transcriptions_by_language:{lang}", count, integer=True)
            return 1

        return run

    @staticmethod
    def _add(row, name, value, *, integer=False):
        key = name.encode()
        current = row.get(key, b"0")
        total = (int(current) if integer else float(current)) + value
        row[key] = str(total).encode()

    async def hsetnx(self, key: str, name: str, value) -> int:
        if self.down:
            raise RedisConnectionError("connection refused")
        row = self.hashes.setdefault(key, {})
        if name.encode() in row:
            return 0
        row[name.encode()] = str(value).encode()
        return 1

    async def hgetall(self, key: str):
        if self.down:
            raise RedisConnectionError("connection refused")
        return dict(self.hashes.get(key, {}))


def test_script_guards_on_marker_before_incrementing():
    assert INCREMENT_SCRIPT.index("HEXISTS") < INCREMENT_SCRIPT.index("HINCRBYFLOAT")
    assert MAPS_MARKER in INCREMENT_SCRIPT


def test_parse_counter_hash_reads_totals_and_language_maps():
    counter = parse_counter_hash(
        {
            b"total_seconds": b"12.5",
            b"total_kbytes": b"40",
            b"total_transcriptions": b"3",
            b"seconds_by_language:en": b"10.5",
            b"seconds_by_language:he": b"2",
            b"transcriptions_by_language:en": b"2",
            b"transcriptions_by_language:he": b"1",
            MAPS_MARKER.encode(): b"1",
        }
    )
    assert counter.total_seconds == 12.5
    assert counter.total_kilobytes == 40.0
    assert counter.total_count == 3
    assert counter.seconds_by_language == {"en": 10.5, "he": 2.0}
    assert counter.count_by_language == {"en": 2, "he": 1}


def test_keys_are_prefixed_scope_keys():
    store = RedisCounterStore(client=FakeRedis(), key_prefix="usage:")
    assert store.key_for(Scope.global_scope()) == "usage:GLOBAL"
    assert store.key_for(Scope.for_user("7")) == "usage:USER:7"


@pytest.mark.asyncio
async def test_increment_without_maps_raises_schema_error_and_leaves_row_untouched():
    client = FakeRedis()
    store = RedisCounterStore(client=client)

    with pytest.raises(SchemaError):
        await store.increment_or_init(Scope.global_scope(), UsageDelta("en", 1.0, 1.0))
    assert await store.get(Scope.global_scope()) is None


@pytest.mark.asyncio
async def test_recorder_initializes_and_retries_against_redis_store():
    client = FakeRedis()
    recorder = UsageRecorder(store=RedisCounterStore(client=client))

    await recorder.record(user_id="7", language="he", duration_s=2.0, size_kb=8.0)
    await recorder.record(user_id="7", language="he", duration_s=3.0, size_kb=8.0)

    counter = await recorder.lifetime("7")
    assert counter.total_seconds == 5.0
    assert counter.total_count == 2
    assert counter.count_by_language == {"he": 2}


@pytest.mark.asyncio
async def test_connection_errors_become_usage_update_errors():
    client = FakeRedis(down=True)
    store = RedisCounterStore(client=client)

    with pytest.raises(UsageUpdateError):
        await store.increment_or_init(Scope.global_scope(), UsageDelta("en", 1.0, 1.0))
    with pytest.raises(UsageUpdateError):
        await store.init_maps_if_absent(Scope.global_scope())
    with pytest.raises(UsageUpdateError):
        await store.get(Scope.global_scope())
