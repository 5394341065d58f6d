from __future__ import annotations

import logging
from dataclasses import dataclass

from voice_note_relay.core.usage.store import CounterStore
from voice_note_relay.domain.errors import SchemaError, UsageUpdateError
from voice_note_relay.domain.models import Scope, UsageCounter, UsageDelta

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class UsageRecorder:
    """Best-effort usage accounting shared by the streaming and batch paths.

    Each scope is updated independently: a failure for one never blocks or
    rolls back the other. A missing-schema failure triggers one idempotent map
    initialization and exactly one retry; anything else is logged and dropped.
    """

    store: CounterStore

    async def record(
        self,
        *,
        user_id: str,
        language: str,
        duration_s: float,
        size_kb: float,
    ) -> dict[Scope, bool]:
        delta = UsageDelta(language=language, seconds=duration_s, kilobytes=size_kb)
        results: dict[Scope, bool] = {}
        for scope in (Scope.global_scope(), Scope.for_user(user_id)):
            results[scope] = await self.record_scope(scope, delta)
        return results

    async def record_scope(self, scope: Scope, delta: UsageDelta) -> bool:
        try:
            await self.store.increment_or_init(scope, delta)
        except SchemaError:
            logger.info(f"[Usage] Initializing language maps for {scope}")
            try:
                await self.store.init_maps_if_absent(scope)
                await self.store.increment_or_init(scope, delta)
            except Exception as exc:
                logger.error(f"[Usage] Failed to update {scope} stats after init: {exc}")
                return False
        except UsageUpdateError as exc:
            logger.error(f"[Usage] Failed to update {scope} stats: {exc}")
            return False
        except Exception as exc:
            logger.exception(f"[Usage] Unexpected error updating {scope} stats: {exc}")
            return False

        logger.info(
            f"[Usage] {scope}: +{delta.seconds:.1f}s +{delta.kilobytes:.1f}KB ({delta.language})"
        )
        return True

    async def lifetime(self, user_id: str) -> UsageCounter:
        return await self.snapshot(Scope.for_user(user_id))

    async def snapshot(self, scope: Scope) -> UsageCounter:
        counter = await self.store.get(scope)
        return counter or UsageCounter()
