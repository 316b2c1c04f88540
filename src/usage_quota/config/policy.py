from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

DAY_SECONDS = 86400


@dataclass(frozen=True)
class QuotaPolicy:
    window_days: int = 30
    max_quota: int = 400
    overdraft: int = 3
    base_cooldown_hours: int = 2
    units_per_extra_hour: int = 20

    @property
    def window_seconds(self) -> int:
        return self.window_days * DAY_SECONDS

    @property
    def day_seconds(self) -> int:
        return DAY_SECONDS


DEFAULT_POLICY = QuotaPolicy()


def _ensure_positive_int(value: Any, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValueError(f"quota.{field} must be a positive integer")
    return value


def _ensure_non_negative_int(value: Any, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValueError(f"quota.{field} must be a non-negative integer")
    return value


def load_quota_policy(settings: Mapping[str, Any]) -> QuotaPolicy:
    quota_block = settings.get("quota")
    if quota_block is None:
        return DEFAULT_POLICY
    if not isinstance(quota_block, Mapping):
        raise ValueError("quota must be a mapping")

    def _get(key: str) -> Any:
        return quota_block.get(key, getattr(DEFAULT_POLICY, key))

    return QuotaPolicy(
        window_days=_ensure_positive_int(_get("window_days"), "window_days"),
        max_quota=_ensure_positive_int(_get("max_quota"), "max_quota"),
        overdraft=_ensure_non_negative_int(_get("overdraft"), "overdraft"),
        base_cooldown_hours=_ensure_positive_int(
            _get("base_cooldown_hours"), "base_cooldown_hours"
        ),
        units_per_extra_hour=_ensure_positive_int(
            _get("units_per_extra_hour"), "units_per_extra_hour"
        ),
    )


__all__ = ["DAY_SECONDS", "DEFAULT_POLICY", "QuotaPolicy", "load_quota_policy"]
