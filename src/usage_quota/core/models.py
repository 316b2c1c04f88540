from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Final, Literal, Mapping, Optional, Tuple

from .record import UsageRecord

StatusColor = Literal["green", "yellow", "red"]

GREEN: Final = "green"
YELLOW: Final = "yellow"
RED: Final = "red"


class InvalidRequestError(ValueError):
    """Raised when a caller asks for a negative or non-integer unit count."""


@dataclass(frozen=True)
class QuotaStatus:
    allowed: int
    remaining_quota: int
    daily_cap: int
    color: StatusColor
    cooldown_until: Optional[float]
    days_left: int
    used_today: int
    allowed_today: int

    @property
    def in_cooldown(self) -> bool:
        return self.cooldown_until is not None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "allowed": self.allowed,
            "remainingQuota": self.remaining_quota,
            "dailyCap": self.daily_cap,
            "color": self.color,
            "cooldownUntil": self.cooldown_until,
            "daysLeft": self.days_left,
            "usedToday": self.used_today,
            "allowedToday": self.allowed_today,
        }


@dataclass(frozen=True)
class GateNotice:
    """A metric plus log line the gate reports about one decision."""

    metric: str
    tags: Mapping[str, str]
    message: str
    args: Tuple[object, ...] = ()
    level: int = logging.WARNING


@dataclass(frozen=True)
class QuotaDecision:
    allowed: int
    record: UsageRecord
    status: QuotaStatus
    cooldown_started: bool = False
    notices: Tuple[GateNotice, ...] = field(default=(), compare=False, repr=False)


__all__ = [
    "GREEN",
    "GateNotice",
    "InvalidRequestError",
    "QuotaDecision",
    "QuotaStatus",
    "RED",
    "StatusColor",
    "YELLOW",
]
