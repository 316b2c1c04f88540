from __future__ import annotations

from ._retry import RetryConfig
from .base import StoredRecord, StoreError, UsageStore, VersionConflictError
from .http import HttpDocumentStore
from .memory import InMemoryUsageStore

__all__ = [
    "HttpDocumentStore",
    "InMemoryUsageStore",
    "RetryConfig",
    "StoreError",
    "StoredRecord",
    "UsageStore",
    "VersionConflictError",
]
