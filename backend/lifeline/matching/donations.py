from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from loguru import logger

from ..errors import DonorNotFoundError
from ..models.donation import LIVES_PER_DONATION
from ..stores.donations import DonationStore
from ..stores.donors import DonorStore


def certificate_number(donor_id: str, at: datetime) -> str:
    return f"CERT-{int(at.timestamp() * 1000)}-{str(donor_id)[-4:]}"


class DonationRecorder:
    """Writes donation history and keeps the donor's last-donation stats in step with it."""

    def __init__(self, donations: DonationStore, donors: DonorStore) -> None:
        self.donations = donations
        self.donors = donors

    async def record(
        self, donor_id: str, details: Dict[str, Any], request_id: Optional[str] = None
    ) -> Dict[str, Any]:
        donor = await self.donors.get(donor_id)
        if donor is None:
            raise DonorNotFoundError(donor_id)

        now = datetime.now(timezone.utc)
        status = details.get("status", "Completed")
        document = {
            **details,
            "donor": str(donor["_id"]),
            "blood_type": details.get("blood_type") or donor["blood_type"],
            "request": request_id or details.get("request"),
            "status": status,
            "certificate_number": certificate_number(str(donor["_id"]), now),
            "created_at": now,
        }
        donation = await self.donations.insert(document)
        if status == "Completed":
            await self.donors.record_donation(donor_id, now)
        logger.info(
            "Recorded {} donation {} for donor {}", status.lower(), donation.get("_id"), donor_id
        )
        return donation


STREAK_LOOKBACK_MONTHS = 24
SCORE_CAP = 1000

# (id, icon, title, description, measure, required)
ACHIEVEMENTS = (
    (1, "🎖️", "First Hero", "First donation completed", "donations", 1),
    (2, "💪", "Life Saver", "5 successful donations", "donations", 5),
    (3, "👑", "Legend", "10 donations completed", "donations", 10),
    (4, "🌟", "Community Hero", "Helped 50 people", "lives", 50),
    (5, "🏆", "Super Donor", "25 donations completed", "donations", 25),
    (6, "💎", "Platinum Donor", "50 donations completed", "donations", 50),
)


def _month_key(value: datetime) -> Tuple[int, int]:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.year, value.month


def _previous_month(year: int, month: int) -> Tuple[int, int]:
    return (year - 1, 12) if month == 1 else (year, month - 1)


def donations_this_month(dates: Iterable[datetime], now: Optional[datetime] = None) -> int:
    current = _month_key(now or datetime.now(timezone.utc))
    return sum(1 for date in dates if date is not None and _month_key(date) == current)


def month_streak(dates: Iterable[datetime], now: Optional[datetime] = None) -> int:
    """Consecutive calendar months with a completed donation.

    The run may end in the current month or, when nothing was given yet this
    month, in the previous one.
    """
    months = {_month_key(date) for date in dates if date is not None}
    if not months:
        return 0
    cursor = _month_key(now or datetime.now(timezone.utc))
    if cursor not in months:
        cursor = _previous_month(*cursor)
    streak = 0
    while streak < STREAK_LOOKBACK_MONTHS and cursor in months:
        streak += 1
        cursor = _previous_month(*cursor)
    return streak


def donor_score(completed: int, donor: Optional[Dict[str, Any]], streak: int) -> int:
    score = 100 + completed * 50
    if donor and donor.get("status") == "Verified":
        score += 100
    if donor and donor.get("is_available"):
        score += 50
    if streak >= 3:
        score += 100
    if streak >= 6:
        score += 200
    return min(score, SCORE_CAP)


def percentile_band(score: int) -> str:
    if score >= 800:
        return "Top 5%"
    if score >= 600:
        return "Top 10%"
    if score >= 400:
        return "Top 25%"
    return "Top 50%"


def achievement_progress(completed: int) -> List[Dict[str, Any]]:
    measures = {"donations": completed, "lives": completed * LIVES_PER_DONATION}
    badges = []
    for badge_id, icon, title, description, measure, required in ACHIEVEMENTS:
        value = measures[measure]
        badges.append(
            {
                "id": badge_id,
                "icon": icon,
                "title": title,
                "description": description,
                "unlocked": value >= required,
                "progress": min(value, required),
                "required": required,
            }
        )
    return badges
