from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple

_OWN_KEYS = frozenset({"events", "cooldownUntil", "cooldown_until"})


class UsageRecordError(ValueError):
    """A persisted usage document could not be decoded."""


@dataclass(frozen=True)
class UsageRecord:
    events: Tuple[float, ...] = ()
    cooldown_until: Optional[float] = None
    # document fields owned by other writers (e.g. ``tier``), passed through untouched
    extra: Mapping[str, Any] = field(default_factory=dict, hash=False)

    @classmethod
    def empty(cls) -> "UsageRecord":
        return cls()


def _timestamp(value: Any, field: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise UsageRecordError(f"{field} must be a number, got {type(value).__name__}")
    result = float(value)
    if not math.isfinite(result):
        raise UsageRecordError(f"{field} must be finite")
    return result


def record_from_mapping(raw: Optional[Mapping[str, Any]]) -> UsageRecord:
    # A missing document is a first-time user; anything else must decode cleanly.
    if raw is None:
        return UsageRecord.empty()
    if not isinstance(raw, Mapping):
        raise UsageRecordError("usage record must be a mapping")

    events_raw = raw.get("events", [])
    if not isinstance(events_raw, (list, tuple)):
        raise UsageRecordError("events must be a list of timestamps")
    events = tuple(
        sorted(_timestamp(ts, f"events[{idx}]") for idx, ts in enumerate(events_raw))
    )

    if "cooldownUntil" in raw:
        cooldown_raw = raw["cooldownUntil"]
    else:
        cooldown_raw = raw.get("cooldown_until")
    cooldown = None if cooldown_raw is None else _timestamp(cooldown_raw, "cooldownUntil")
    extra = {key: value for key, value in raw.items() if key not in _OWN_KEYS}
    return UsageRecord(events=events, cooldown_until=cooldown, extra=extra)


def record_to_mapping(record: UsageRecord) -> Dict[str, Any]:
    return {
        **record.extra,
        "events": list(record.events),
        "cooldownUntil": record.cooldown_until,
    }


__all__ = [
    "UsageRecord",
    "UsageRecordError",
    "record_from_mapping",
    "record_to_mapping",
]
