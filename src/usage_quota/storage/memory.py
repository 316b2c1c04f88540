from __future__ import annotations

from typing import Any, Dict, Mapping, Tuple

from ..core.record import UsageRecord, record_from_mapping, record_to_mapping
from .base import StoredRecord, VersionConflictError


class InMemoryUsageStore:
    """Process-local store keeping documents in their serialized form."""

    def __init__(self, documents: Mapping[str, Mapping[str, Any]] | None = None) -> None:
        self._documents: Dict[str, Tuple[int, Dict[str, Any]]] = {}
        for user_id, document in (documents or {}).items():
            self._documents[user_id] = (1, dict(document))

    async def load(self, user_id: str) -> StoredRecord:
        entry = self._documents.get(user_id)
        if entry is None:
            return StoredRecord(UsageRecord.empty(), 0)
        version, document = entry
        return StoredRecord(record_from_mapping(document), version)

    async def save(self, user_id: str, record: UsageRecord, *, expected_version: int) -> int:
        current = self._documents.get(user_id, (0, {}))[0]
        if current != expected_version:
            raise VersionConflictError(user_id, expected_version, current)
        version = current + 1
        self._documents[user_id] = (version, record_to_mapping(record))
        return version

    def document(self, user_id: str) -> Dict[str, Any] | None:
        entry = self._documents.get(user_id)
        return None if entry is None else dict(entry[1])


__all__ = ["InMemoryUsageStore"]
