from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field, replace
from typing import AsyncIterator, Dict, Optional

import anyio

from ..core.gate import QuotaGate
from ..core.models import QuotaStatus
from ..storage.base import UsageStore, VersionConflictError


@dataclass
class _LockSlot:
    lock: anyio.Lock = field(default_factory=anyio.Lock)
    holders: int = 0


class UsageLedger:
    """Serializes read-evaluate-write of usage records per user id.

    The in-process lock covers concurrent requests handled by this worker;
    the store's version check covers writers in other processes.
    """

    def __init__(
        self,
        store: UsageStore,
        gate: QuotaGate,
        *,
        max_conflict_retries: int = 3,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        if max_conflict_retries < 1:
            raise ValueError("max_conflict_retries must be at least 1")
        self.store = store
        self.gate = gate
        self._max_conflict_retries = max_conflict_retries
        self._logger = logger or logging.getLogger(__name__)
        self._locks: Dict[str, _LockSlot] = {}

    @asynccontextmanager
    async def _user_lock(self, user_id: str) -> AsyncIterator[None]:
        slot = self._locks.get(user_id)
        if slot is None:
            slot = self._locks[user_id] = _LockSlot()
        slot.holders += 1
        try:
            async with slot.lock:
                yield
        finally:
            slot.holders -= 1
            if slot.holders == 0:
                self._locks.pop(user_id, None)

    async def track(self, user_id: str, units: int = 1, *, action: str = "generate") -> QuotaStatus:
        async with self._user_lock(user_id):
            for attempt in range(1, self._max_conflict_retries + 1):
                stored = await self.store.load(user_id)
                decision = self.gate.evaluate(
                    stored.record, units, user_id=user_id, defer_notices=True
                )
                if decision.record != stored.record:
                    try:
                        await self.store.save(
                            user_id, decision.record, expected_version=stored.version
                        )
                    except VersionConflictError:
                        if attempt == self._max_conflict_retries:
                            raise
                        self._logger.warning(
                            "Usage record for %s changed during %s, retrying (%d/%d)",
                            user_id,
                            action,
                            attempt,
                            self._max_conflict_retries,
                        )
                        continue
                self.gate.publish(decision)
                self._logger.info(
                    "Granted %d of %d units to %s for %s",
                    decision.allowed,
                    units,
                    user_id,
                    action,
                    extra={
                        "event": "quota_grant",
                        "user": user_id,
                        "action": action,
                        "color": decision.status.color,
                        "cooldown_started": decision.cooldown_started,
                    },
                )
                return decision.status
        raise RuntimeError("conflict retry loop exited unexpectedly")

    async def status(self, user_id: str) -> QuotaStatus:
        stored = await self.store.load(user_id)
        return self.gate.status(stored.record)

    async def reset(self, user_id: str) -> QuotaStatus:
        """Forget all usage and any cooldown; other document fields are kept."""
        async with self._user_lock(user_id):
            for attempt in range(1, self._max_conflict_retries + 1):
                stored = await self.store.load(user_id)
                empty = replace(stored.record, events=(), cooldown_until=None)
                try:
                    await self.store.save(user_id, empty, expected_version=stored.version)
                except VersionConflictError:
                    if attempt == self._max_conflict_retries:
                        raise
                    continue
                self._logger.warning(
                    "Usage reset for %s", user_id, extra={"event": "quota_reset", "user": user_id}
                )
                return self.gate.status(empty)
        raise RuntimeError("conflict retry loop exited unexpectedly")


__all__ = ["UsageLedger"]
