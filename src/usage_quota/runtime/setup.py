from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from ..config.loader import Settings
from ..config.policy import QuotaPolicy, load_quota_policy
from ..core.gate import MetricsFn, QuotaGate
from ..storage import HttpDocumentStore, InMemoryUsageStore, RetryConfig, UsageStore
from .ledger import UsageLedger

_LOGGER = logging.getLogger(__name__)


def as_mapping(value: object) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def get_float(value: Any, default: float) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def optional_str(value: object) -> Optional[str]:
    if isinstance(value, str) and value:
        return value
    return None


def _positive_int(value: Any, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValueError(f"{field} must be a positive integer")
    return value


def _non_negative_float(value: Any, default: float, field: str) -> float:
    result = get_float(value, default)
    if result < 0:
        raise ValueError(f"{field} must not be negative")
    return result


def build_retry_config(retry_cfg: Mapping[str, Any]) -> RetryConfig:
    return RetryConfig(
        max_attempts=_positive_int(
            retry_cfg.get("max_attempts", 3), "store.retry.max_attempts"
        ),
        base_backoff=_non_negative_float(
            retry_cfg.get("base_backoff"), 0.5, "store.retry.base_backoff"
        ),
        max_backoff=_non_negative_float(
            retry_cfg.get("max_backoff"), 8.0, "store.retry.max_backoff"
        ),
    )


class _ReloadingPolicy:
    """Reads the quota policy from hot-reloaded settings, keeping the last valid one."""

    def __init__(self, settings: Settings, *, logger: Optional[logging.Logger] = None) -> None:
        self._settings = settings
        self._logger = logger or _LOGGER
        self._current = settings.policy()

    def __call__(self) -> QuotaPolicy:
        try:
            policy = self._settings.policy()
        except ValueError as exc:
            self._logger.warning(
                "Ignoring invalid quota settings from %s: %s", self._settings.path, exc
            )
            return self._current
        if policy != self._current:
            self._logger.info(
                "Quota policy updated from %s",
                self._settings.path,
                extra={"event": "quota_policy_reload"},
            )
            self._current = policy
        return policy


def build_gate(
    settings: Mapping[str, Any],
    *,
    metrics: Optional[MetricsFn] = None,
    logger: Optional[logging.Logger] = None,
) -> QuotaGate:
    return QuotaGate(policy=load_quota_policy(settings), metrics=metrics, logger=logger)


def build_store(settings: Mapping[str, Any]) -> UsageStore:
    store_cfg = as_mapping(settings.get("store"))
    kind = optional_str(store_cfg.get("kind")) or "memory"
    if kind == "memory":
        return InMemoryUsageStore()
    if kind == "http":
        return HttpDocumentStore(
            optional_str(store_cfg.get("base_url")),
            optional_str(store_cfg.get("token")),
            collection=optional_str(store_cfg.get("collection")) or "usage",
            timeout=get_float(store_cfg.get("timeout"), 20.0),
            retry_config=build_retry_config(as_mapping(store_cfg.get("retry"))),
        )
    raise ValueError(f"store.kind must be 'memory' or 'http', got {kind!r}")


def build_ledger(
    settings: Mapping[str, Any],
    *,
    store: Optional[UsageStore] = None,
    metrics: Optional[MetricsFn] = None,
) -> UsageLedger:
    ledger_cfg = as_mapping(settings.get("ledger"))
    return UsageLedger(
        store or build_store(settings),
        build_gate(settings, metrics=metrics),
        max_conflict_retries=int(get_float(ledger_cfg.get("max_conflict_retries"), 3)),
    )


def build_ledger_from_settings(
    settings: Settings,
    *,
    store: Optional[UsageStore] = None,
    metrics: Optional[MetricsFn] = None,
) -> UsageLedger:
    """Wire a ledger whose quota policy follows edits to the settings file.

    The store and conflict-retry count are read once; only the ``quota``
    block is picked up on reload.
    """
    data = settings.data
    ledger_cfg = as_mapping(data.get("ledger"))
    return UsageLedger(
        store or build_store(data),
        QuotaGate(policy_source=_ReloadingPolicy(settings), metrics=metrics),
        max_conflict_retries=int(get_float(ledger_cfg.get("max_conflict_retries"), 3)),
    )


__all__ = [
    "build_gate",
    "build_ledger",
    "build_ledger_from_settings",
    "build_retry_config",
    "build_store",
]
