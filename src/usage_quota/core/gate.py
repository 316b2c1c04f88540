from __future__ import annotations

import logging
import time
from dataclasses import replace
from typing import Callable, Dict, List, Optional, Tuple

from ..config.policy import DEFAULT_POLICY, QuotaPolicy
from .models import GateNotice, InvalidRequestError, QuotaDecision, QuotaStatus
from .record import UsageRecord
from .window import classify_color, count_today, derive_allowance, prune_events

# granted units in one call are spread by this much so they stay ordered
UNIT_OFFSET_SECONDS = 0.001
# sub-second offsets put fresh events slightly ahead of ``now``
_SKEW_TOLERANCE_SECONDS = 1.0

MetricsFn = Callable[[str, Dict[str, str]], None]


def cooldown_deadline(now: float, excess: int, policy: QuotaPolicy = DEFAULT_POLICY) -> float:
    """Return when a cooldown imposed at ``now`` for ``excess`` units ends."""
    excess = max(excess, 1)
    extra_hours = -(-excess // policy.units_per_extra_hour)
    return now + (policy.base_cooldown_hours + extra_hours) * 3600


def _validate_units(requested_units: object) -> int:
    if isinstance(requested_units, bool) or not isinstance(requested_units, int):
        raise InvalidRequestError(
            f"requested_units must be an integer, got {type(requested_units).__name__}"
        )
    if requested_units < 0:
        raise InvalidRequestError(f"requested_units must not be negative: {requested_units}")
    return requested_units


class QuotaGate:
    def __init__(
        self,
        *,
        policy: Optional[QuotaPolicy] = None,
        policy_source: Optional[Callable[[], QuotaPolicy]] = None,
        metrics: Optional[MetricsFn] = None,
        logger: Optional[logging.Logger] = None,
        time_fn: Optional[Callable[[], float]] = None,
    ) -> None:
        self._policy = policy or DEFAULT_POLICY
        self._policy_source = policy_source
        self._metrics = metrics
        self._logger = logger or logging.getLogger(__name__)
        self._time = time_fn or time.time

    @property
    def policy(self) -> QuotaPolicy:
        if self._policy_source is not None:
            return self._policy_source()
        return self._policy

    def evaluate(
        self,
        record: UsageRecord,
        requested_units: int = 1,
        *,
        now: Optional[float] = None,
        user_id: Optional[str] = None,
        defer_notices: bool = False,
    ) -> QuotaDecision:
        """Decide how many of ``requested_units`` to grant.

        With ``defer_notices`` the metrics and warnings this decision produces
        ride on ``QuotaDecision.notices`` until :meth:`publish` is called, so a
        caller that may discard the decision does not report it.
        """
        requested = _validate_units(requested_units)
        if now is None:
            now = self._time()
        policy = self.policy
        notices: List[GateNotice] = []
        events = self._live_events(record, now, policy, user_id, notices)

        cooldown = record.cooldown_until
        if cooldown is not None and cooldown > now:
            if requested > 0:
                notices.append(_denial(user_id, cooldown, requested))
            decision = QuotaDecision(
                allowed=0,
                record=replace(record, events=events),
                status=self._project(events, now, policy, allowed=0, cooldown_until=cooldown),
            )
            return self._finish(decision, notices, defer_notices)

        allowance = derive_allowance(events, now, policy)
        used_today = count_today(events, now, policy)
        allowed_today = max(0, allowance.daily_cap - used_today)
        with_overdraft = allowed_today + policy.overdraft
        allowed = max(0, min(requested, allowance.remaining_quota, with_overdraft))

        new_cooldown: Optional[float] = None
        over_limit = (
            requested > with_overdraft
            or used_today >= allowance.daily_cap + policy.overdraft
        )
        if requested > 0 and over_limit:
            excess = max(requested - with_overdraft, 1)
            new_cooldown = cooldown_deadline(now, excess, policy)
            notices.append(
                _cooldown_started(
                    user_id, new_cooldown, requested=requested, granted=allowed, excess=excess
                )
            )

        granted = tuple(now + i * UNIT_OFFSET_SECONDS for i in range(allowed))
        updated = prune_events(events + granted, now, policy)
        decision = QuotaDecision(
            allowed=allowed,
            record=replace(record, events=updated, cooldown_until=new_cooldown),
            status=self._project(
                updated, now, policy, allowed=allowed, cooldown_until=new_cooldown
            ),
            cooldown_started=new_cooldown is not None,
        )
        return self._finish(decision, notices, defer_notices)

    def status(self, record: UsageRecord, *, now: Optional[float] = None) -> QuotaStatus:
        """Project the current quota state without producing anything to persist."""
        return self.evaluate(record, 0, now=now).status

    def publish(self, decision: QuotaDecision) -> None:
        for notice in decision.notices:
            self._logger.log(notice.level, notice.message, *notice.args)
            if self._metrics is not None:
                self._metrics(notice.metric, dict(notice.tags))

    def _finish(
        self, decision: QuotaDecision, notices: List[GateNotice], defer: bool
    ) -> QuotaDecision:
        decision = replace(decision, notices=tuple(notices))
        if defer:
            return decision
        self.publish(decision)
        return replace(decision, notices=())

    def _live_events(
        self,
        record: UsageRecord,
        now: float,
        policy: QuotaPolicy,
        user_id: Optional[str],
        notices: List[GateNotice],
    ) -> Tuple[float, ...]:
        user = user_id or "-"
        events = tuple(sorted(prune_events(record.events, now, policy)))
        if events and events[-1] > now + _SKEW_TOLERANCE_SECONDS:
            notices.append(
                GateNotice(
                    metric="quota_clock_skew",
                    tags={"user": user},
                    message="Clock skew for %s: newest event %.3f is ahead of now %.3f",
                    args=(user, events[-1], now),
                )
            )
        if len(events) > policy.max_quota:
            notices.append(
                GateNotice(
                    metric="quota_record_trimmed",
                    tags={"user": user, "events": str(len(events))},
                    message="Usage record for %s holds %d events, trimming to %d",
                    args=(user, len(events), policy.max_quota),
                )
            )
            events = events[-policy.max_quota :]
        return events

    def _project(
        self,
        events: Tuple[float, ...],
        now: float,
        policy: QuotaPolicy,
        *,
        allowed: int,
        cooldown_until: Optional[float],
    ) -> QuotaStatus:
        allowance = derive_allowance(events, now, policy)
        used_today = count_today(events, now, policy)
        active = cooldown_until is not None and now < cooldown_until
        return QuotaStatus(
            allowed=allowed,
            remaining_quota=allowance.remaining_quota,
            daily_cap=allowance.daily_cap,
            color=classify_color(
                used_today,
                allowance.daily_cap,
                policy.overdraft,
                in_cooldown=active,
            ),
            cooldown_until=cooldown_until if active else None,
            days_left=allowance.days_left,
            used_today=used_today,
            allowed_today=max(0, allowance.daily_cap - used_today),
        )


def _denial(user_id: Optional[str], cooldown_until: float, requested: int) -> GateNotice:
    user = user_id or "-"
    return GateNotice(
        metric="quota_denied",
        tags={
            "user": user,
            "code": "cooldown",
            "requested": str(requested),
            "cooldown_until": f"{cooldown_until:.0f}",
        },
        message="Quota denied for %s: cooldown active",
        args=(user,),
    )


def _cooldown_started(
    user_id: Optional[str],
    cooldown_until: float,
    *,
    requested: int,
    granted: int,
    excess: int,
) -> GateNotice:
    user = user_id or "-"
    return GateNotice(
        metric="quota_cooldown_started",
        tags={
            "user": user,
            "requested": str(requested),
            "granted": str(granted),
            "excess": str(excess),
            "cooldown_until": f"{cooldown_until:.0f}",
        },
        message="Cooldown started for %s until %.0f: requested %d, granted %d",
        args=(user, cooldown_until, requested, granted),
    )


def evaluate_request(
    record: UsageRecord,
    now: float,
    requested_units: int,
    policy: QuotaPolicy = DEFAULT_POLICY,
) -> QuotaDecision:
    return QuotaGate(policy=policy).evaluate(record, requested_units, now=now)


def current_status(
    record: UsageRecord,
    now: Optional[float] = None,
    policy: QuotaPolicy = DEFAULT_POLICY,
) -> QuotaStatus:
    return QuotaGate(policy=policy).status(record, now=now)


__all__ = [
    "MetricsFn",
    "QuotaGate",
    "UNIT_OFFSET_SECONDS",
    "cooldown_deadline",
    "current_status",
    "evaluate_request",
]
