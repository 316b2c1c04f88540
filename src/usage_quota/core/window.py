from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, Tuple

from ..config.policy import QuotaPolicy
from .models import GREEN, RED, YELLOW, StatusColor


@dataclass(frozen=True)
class Allowance:
    used: int
    remaining_quota: int
    days_left: int
    daily_cap: int


def prune_events(events: Iterable[float], now: float, policy: QuotaPolicy) -> Tuple[float, ...]:
    """Drop events that have rolled out of the quota window.

    Events stamped after ``now`` are kept: a clock that moved backwards
    must not erase recorded usage.
    """
    cutoff = now - policy.window_seconds
    return tuple(ts for ts in events if ts >= cutoff)


def derive_allowance(events: Tuple[float, ...], now: float, policy: QuotaPolicy) -> Allowance:
    used = len(events)
    remaining = policy.max_quota - used
    if used == 0:
        days_left = policy.window_days
    else:
        window_end = min(events) + policy.window_seconds
        days_left = math.ceil((window_end - now) / policy.day_seconds)
        # clamp both ends; the upper bound only matters under clock skew
        days_left = min(policy.window_days, max(1, days_left))
    return Allowance(
        used=used,
        remaining_quota=remaining,
        days_left=days_left,
        daily_cap=remaining // days_left,
    )


def count_today(events: Iterable[float], now: float, policy: QuotaPolicy) -> int:
    cutoff = now - policy.day_seconds
    return sum(1 for ts in events if ts >= cutoff)


def classify_color(
    used_today: int,
    daily_cap: int,
    overdraft: int,
    *,
    in_cooldown: bool = False,
) -> StatusColor:
    if in_cooldown:
        return RED
    if used_today <= daily_cap:
        return GREEN
    if used_today <= daily_cap + overdraft:
        return YELLOW
    return RED


__all__ = ["Allowance", "classify_color", "count_today", "derive_allowance", "prune_events"]
