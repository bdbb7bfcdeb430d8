"""Who may be alerted about a request, and the advisory donation cooldown.

Notification eligibility is verified + available + opted in. The 90-day
cooldown since the last donation is reported to the donor but does not keep
them off emergency alerts.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Mapping

from ..database import settings


def candidate_filter() -> Dict[str, Any]:
    """Store filter fragment selecting only notifiable donors."""
    return {
        "status": "Verified",
        "is_available": True,
        "notifications_enabled": True,
    }


def is_candidate(donor: Mapping[str, Any]) -> bool:
    return (
        donor.get("status") == "Verified"
        and donor.get("is_available") is True
        and donor.get("notifications_enabled") is True
    )


def _last_donation(donor: Mapping[str, Any]) -> datetime | None:
    value = donor.get("last_donation")
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def next_eligible_date(donor: Mapping[str, Any], cooldown_days: int | None = None) -> datetime | None:
    last = _last_donation(donor)
    if last is None:
        return None
    return last + timedelta(days=cooldown_days if cooldown_days is not None else settings.donation_cooldown_days)


def days_until_eligible(
    donor: Mapping[str, Any], now: datetime | None = None, cooldown_days: int | None = None
) -> int:
    eligible_on = next_eligible_date(donor, cooldown_days)
    if eligible_on is None:
        return 0
    now = now or datetime.now(timezone.utc)
    remaining = eligible_on - now
    if remaining <= timedelta(0):
        return 0
    return remaining.days + (1 if remaining.seconds or remaining.microseconds else 0)


def is_eligible_to_donate(
    donor: Mapping[str, Any], now: datetime | None = None, cooldown_days: int | None = None
) -> bool:
    return days_until_eligible(donor, now, cooldown_days) == 0
