from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from ..core.record import UsageRecord


class StoreError(RuntimeError):
    """The document store could not serve a usage record."""


class VersionConflictError(StoreError):
    """Another writer stored the record after we loaded it."""

    def __init__(self, user_id: str, expected: int, actual: int | None = None) -> None:
        detail = f"expected version {expected}"
        if actual is not None:
            detail += f", found {actual}"
        super().__init__(f"usage record for {user_id} changed concurrently ({detail})")
        self.user_id = user_id
        self.expected = expected
        self.actual = actual


@dataclass(frozen=True)
class StoredRecord:
    record: UsageRecord
    # 0 means the document does not exist yet
    version: int = 0


class UsageStore(Protocol):
    async def load(self, user_id: str) -> StoredRecord:
        ...

    async def save(self, user_id: str, record: UsageRecord, *, expected_version: int) -> int:
        ...


__all__ = ["StoreError", "StoredRecord", "UsageStore", "VersionConflictError"]
