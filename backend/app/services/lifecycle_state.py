"""
Lifecycle State Reader - derives a tournament's phase and countdown from its timestamps.

Pure functions of (tournament, now): no store access and no side effects,
so any actor can call them. Deletion of expired tournaments belongs to the
cleanup agent, never to the reader.

Phases:
    scheduled    ttl unset, start not reached
    in-progress  ttl unset, start reached
    expiring     ttl set and still in the future
    expired      ttl reached; deletion candidate
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

SCHEDULED = "scheduled"
IN_PROGRESS = "in-progress"
EXPIRING = "expiring"
EXPIRED = "expired"

DELETION_WARNING_THRESHOLD = timedelta(minutes=30)


@dataclass(frozen=True)
class LifecycleState:
    phase: str
    time_remaining: Optional[timedelta]
    warning_message: Optional[str]
    formatted_time: str

    def to_dict(self) -> dict:
        return {
            "phase": self.phase,
            "time_remaining_seconds": (
                int(self.time_remaining.total_seconds()) if self.time_remaining is not None else None
            ),
            "warning_message": self.warning_message,
            "formatted_time": self.formatted_time,
        }


def format_remaining(remaining: timedelta) -> str:
    """
    Format a duration as "Xh Ym Zs", rounding down to whole seconds.

    Zero-valued leading units are left out. Seconds are shown when non-zero
    or when they are the only unit, so 2h exactly is "2h" and 0.4s is "0s".
    """
    total = max(0, int(remaining.total_seconds()))
    hours, rest = divmod(total, 3600)
    minutes, seconds = divmod(rest, 60)

    parts = []
    if hours > 0:
        parts.append(f"{hours}h")
    if minutes > 0:
        parts.append(f"{minutes}m")
    if seconds > 0 or (hours == 0 and minutes == 0):
        parts.append(f"{seconds}s")
    return " ".join(parts)


def derive_state(tournament, now: datetime) -> LifecycleState:
    """Derive the lifecycle phase, time left before deletion and any deletion warning."""
    ttl = tournament.ttl
    if ttl is None:
        if now >= tournament.start_time:
            return LifecycleState(IN_PROGRESS, None, None, "No expiration set")
        return LifecycleState(SCHEDULED, None, None, "No expiration set")

    if now >= ttl:
        return LifecycleState(EXPIRED, timedelta(0), None, "Expired")

    remaining = ttl - now
    formatted = format_remaining(remaining)
    warning = None
    if remaining < DELETION_WARNING_THRESHOLD:
        warning = f"This tournament will be automatically deleted in {formatted}."
    return LifecycleState(EXPIRING, remaining, warning, formatted)


def time_until_start(tournament, now: datetime) -> dict:
    """Countdown to the scheduled start; "Started" once it has been reached."""
    remaining = tournament.start_time - now
    if remaining <= timedelta(0):
        return {"time_remaining_seconds": 0, "has_started": True, "formatted_time": "Started"}
    return {
        "time_remaining_seconds": int(remaining.total_seconds()),
        "has_started": False,
        "formatted_time": format_remaining(remaining),
    }
