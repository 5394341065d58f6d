from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Protocol

from voice_note_relay.domain.errors import SchemaError
from voice_note_relay.domain.models import Scope, UsageCounter, UsageDelta


class CounterStore(Protocol):
    async def increment_or_init(self, scope: Scope, delta: UsageDelta) -> None:
        """Atomically add `delta` to the scope's row.

        Absent numeric fields and absent language entries count as zero. Raises
        SchemaError when the row's per-language maps do not exist yet; the row is
        left untouched in that case.
        """

    async def init_maps_if_absent(self, scope: Scope) -> None:
        """Create empty per-language maps unless they already exist."""

    async def get(self, scope: Scope) -> UsageCounter | None: ...


@dataclass(slots=True)
class _Row:
    counter: UsageCounter = field(default_factory=UsageCounter)
    has_maps: bool = False


@dataclass(slots=True)
class InMemoryCounterStore:
    """Process-local counter store with the same schema rules as the remote ones."""

    _rows: dict[str, _Row] = field(default_factory=dict)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    increment_calls: int = 0
    init_calls: int = 0

    async def increment_or_init(self, scope: Scope, delta: UsageDelta) -> None:
        async with self._lock:
            self.increment_calls += 1
            row = self._rows.get(scope.key)
            if row is None or not row.has_maps:
                raise SchemaError(f"per-language maps missing for {scope}")

            c = row.counter
            c.total_seconds += delta.seconds
            c.total_kilobytes += delta.kilobytes
            c.total_count += delta.count
            c.seconds_by_language[delta.language] = (
                c.seconds_by_language.get(delta.language, 0.0) + delta.seconds
            )
            c.count_by_language[delta.language] = (
                c.count_by_language.get(delta.language, 0) + delta.count
            )

    async def init_maps_if_absent(self, scope: Scope) -> None:
        async with self._lock:
            self.init_calls += 1
            row = self._rows.setdefault(scope.key, _Row())
            row.has_maps = True

    async def get(self, scope: Scope) -> UsageCounter | None:
        async with self._lock:
            row = self._rows.get(scope.key)
            if row is None:
                return None
            c = row.counter
            return UsageCounter(
                total_seconds=c.total_seconds,
                total_kilobytes=c.total_kilobytes,
                total_count=c.total_count,
                seconds_by_language=dict(c.seconds_by_language),
                count_by_language=dict(c.count_by_language),
            )
