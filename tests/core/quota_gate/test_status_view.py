from __future__ import annotations

import logging
from datetime import datetime, timezone

import pytest
from freezegun import freeze_time

from usage_quota.config.policy import QuotaPolicy
from usage_quota.core.gate import QuotaGate, current_status
from usage_quota.core.models import InvalidRequestError, QuotaStatus
from usage_quota.core.record import UsageRecord

T0 = 1_700_000_000.0


def test_current_status_reads_wall_clock() -> None:
    frozen = datetime(2024, 1, 1, tzinfo=timezone.utc).timestamp()
    record = UsageRecord(events=(frozen - 90_000, frozen - 10, frozen - 5))

    with freeze_time("2024-01-01T00:00:00Z"):
        status = current_status(record)

    assert isinstance(status, QuotaStatus)
    assert status.allowed == 0
    assert status.used_today == 2
    assert status.remaining_quota == 397
    assert status.color == "green"


def test_status_uses_injected_clock_and_reports_cooldown() -> None:
    gate = QuotaGate(time_fn=lambda: T0)
    record = UsageRecord(events=(T0 - 60,), cooldown_until=T0 + 900)

    status = gate.status(record)

    assert status.allowed == 0
    assert status.color == "red"
    assert status.cooldown_until == T0 + 900
    assert status.in_cooldown is True
    assert status.as_dict() == {
        "allowed": 0,
        "remainingQuota": 399,
        "dailyCap": 13,
        "color": "red",
        "cooldownUntil": T0 + 900,
        "daysLeft": 30,
        "usedToday": 1,
        "allowedToday": 12,
    }


def test_status_during_cooldown_emits_no_denial(metrics) -> None:
    gate = QuotaGate(metrics=metrics.increment, time_fn=lambda: T0)
    gate.status(UsageRecord(cooldown_until=T0 + 60))
    assert metrics.calls == []


@pytest.mark.parametrize("units", [-1, -50, True, 1.5, "3"])
def test_invalid_unit_counts_fail_fast(units: object) -> None:
    gate = QuotaGate(time_fn=lambda: T0)
    with pytest.raises(InvalidRequestError):
        gate.evaluate(UsageRecord.empty(), units)  # type: ignore[arg-type]


def test_clock_skew_is_flagged_without_dropping_usage(
    metrics, caplog: pytest.LogCaptureFixture
) -> None:
    gate = QuotaGate(metrics=metrics.increment, logger=logging.getLogger("quota"))
    record = UsageRecord(events=(T0 + 3600, T0 + 3601))
    caplog.set_level(logging.WARNING)

    decision = gate.evaluate(record, 1, now=T0, user_id="skewed")

    assert decision.allowed == 1
    assert len(decision.record.events) == 3
    assert decision.status.days_left == 30
    assert decision.status.used_today == 3
    assert ("quota_clock_skew", {"user": "skewed"}) in metrics.calls
    assert "Clock skew for skewed" in caplog.text


def test_oversized_record_is_trimmed_to_quota(caplog: pytest.LogCaptureFixture) -> None:
    gate = QuotaGate(policy=QuotaPolicy(max_quota=10), logger=logging.getLogger("quota"))
    record = UsageRecord(events=tuple(T0 - 3 * 86400 + i for i in range(12)))
    caplog.set_level(logging.WARNING)

    decision = gate.evaluate(record, 1, now=T0)

    assert decision.allowed == 0
    assert decision.record.events == record.events[2:]
    assert "trimming to 10" in caplog.text
