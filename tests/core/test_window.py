from __future__ import annotations

import pytest

from usage_quota.config.policy import DEFAULT_POLICY, QuotaPolicy
from usage_quota.core.window import classify_color, count_today, derive_allowance, prune_events

T0 = 1_700_000_000.0
DAY = 86400.0
WINDOW = DEFAULT_POLICY.window_seconds


def test_prune_keeps_window_boundary_and_drops_older() -> None:
    events = [T0 - WINDOW - 1, T0 - WINDOW, T0 - 5, T0]
    assert prune_events(events, T0, DEFAULT_POLICY) == (T0 - WINDOW, T0 - 5, T0)


def test_prune_keeps_events_ahead_of_now() -> None:
    assert prune_events([T0 + 3600], T0, DEFAULT_POLICY) == (T0 + 3600,)


def test_days_left_follows_oldest_event() -> None:
    allowance = derive_allowance((T0 - 29.5 * DAY, T0), T0, DEFAULT_POLICY)
    assert allowance.used == 2
    assert allowance.days_left == 1
    assert allowance.daily_cap == 398


def test_days_left_never_drops_below_one() -> None:
    allowance = derive_allowance((T0 - WINDOW,), T0, DEFAULT_POLICY)
    assert allowance.days_left == 1
    assert allowance.daily_cap == 399


def test_days_left_is_capped_by_window_under_clock_skew() -> None:
    allowance = derive_allowance((T0 + 3600,), T0, DEFAULT_POLICY)
    assert allowance.days_left == 30


def test_daily_cap_floors_negative_remaining() -> None:
    events = tuple([T0 - 10 * DAY] * 10)
    policy = QuotaPolicy(max_quota=5)
    allowance = derive_allowance(events, T0, policy)
    assert allowance.remaining_quota == -5
    assert allowance.days_left == 20
    assert allowance.daily_cap == -1


def test_count_today_is_trailing_24_hours() -> None:
    events = (T0 - DAY - 0.5, T0 - DAY, T0 - 1, T0)
    assert count_today(events, T0, DEFAULT_POLICY) == 3


@pytest.mark.parametrize(
    ("used_today", "daily_cap", "expected"),
    [
        (0, 13, "green"),
        (13, 13, "green"),
        (14, 13, "yellow"),
        (16, 13, "yellow"),
        (17, 13, "red"),
        (0, -1, "yellow"),
        (3, -1, "red"),
    ],
)
def test_classify_color_tiers(used_today: int, daily_cap: int, expected: str) -> None:
    assert classify_color(used_today, daily_cap, 3) == expected


def test_cooldown_forces_red() -> None:
    assert classify_color(0, 13, 3, in_cooldown=True) == "red"
