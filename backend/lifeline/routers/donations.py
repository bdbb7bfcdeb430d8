from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Annotated

from fastapi import APIRouter, Depends, status

from ..database import settings
from ..errors import LifeLineError
from ..matching.donations import (
    achievement_progress,
    donations_this_month,
    donor_score,
    month_streak,
    percentile_band,
)
from ..models.donation import (
    LIVES_PER_DONATION,
    AchievementList,
    Donation,
    DonationCreate,
    DonationStats,
    DonationSummary,
)
from ..models.user import Principal
from ..services import Services, get_services
from ..utils.documents import serialize_id
from .auth import require_roles
from .common import http_error

router = APIRouter(prefix="/donations", tags=["donations"])
DonorUser = Annotated[Principal, Depends(require_roles("donor"))]


@router.post("/", response_model=Donation, status_code=status.HTTP_201_CREATED)
async def record_donation(
    payload: DonationCreate, donor: DonorUser, services: Services = Depends(get_services)
) -> Donation:
    details = payload.model_dump(exclude_none=True)
    try:
        document = await services.recorder.record(donor.id, details, request_id=payload.request)
    except LifeLineError as exc:
        raise http_error(exc) from exc
    return Donation(**serialize_id(document))


@router.get("/mine", response_model=DonationSummary)
async def my_donations(donor: DonorUser, services: Services = Depends(get_services)) -> DonationSummary:
    documents = await services.donations.for_donor(donor.id)
    donations = [Donation(**serialize_id(document)) for document in documents]
    completed = [donation for donation in donations if donation.status == "Completed"]
    dates = [donation.created_at for donation in completed]
    return DonationSummary(
        total_donations=len(completed),
        total_volume_ml=sum(donation.quantity for donation in completed),
        lives_impacted=sum(donation.lives_impacted for donation in completed),
        donations=donations,
        this_month=donations_this_month(dates),
        month_streak=month_streak(dates),
    )


@router.get("/stats", response_model=DonationStats)
async def donation_stats(donor: DonorUser, services: Services = Depends(get_services)) -> DonationStats:
    completed = await services.donations.for_donor(donor.id, status="Completed", limit=0)
    profile = await services.donors.get(donor.id)
    dates = [document.get("created_at") for document in completed]
    streak = month_streak(dates)
    score = donor_score(len(completed), profile, streak)

    last = dates[0] if dates else None
    if last is not None and last.tzinfo is None:
        last = last.replace(tzinfo=timezone.utc)
    if last is None:
        next_eligible = datetime.now(timezone.utc)
    else:
        next_eligible = last + timedelta(days=settings.donation_cooldown_days)
    return DonationStats(
        total_donations=len(completed),
        lives_impacted=len(completed) * LIVES_PER_DONATION,
        this_month_donations=donations_this_month(dates),
        donor_score=score,
        percentile=percentile_band(score),
        month_streak=streak,
        last_donation_date=last,
        next_eligible_date=next_eligible,
    )


@router.get("/achievements", response_model=AchievementList)
async def achievements(donor: DonorUser, services: Services = Depends(get_services)) -> AchievementList:
    completed = await services.donations.for_donor(donor.id, status="Completed", limit=0)
    badges = achievement_progress(len(completed))
    return AchievementList(
        achievements=badges,
        unlocked_count=sum(1 for badge in badges if badge["unlocked"]),
        total_count=len(badges),
    )
