from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from .base import MongoModel
from .donor import BloodType


DonationType = Literal["Emergency", "Scheduled", "Campaign", "Walk-in"]
DonationStatus = Literal["Scheduled", "Completed", "Cancelled", "No-show"]

DEFAULT_QUANTITY_ML = 450
LIVES_PER_DONATION = 3


class BloodPressure(BaseModel):
    systolic: int | None = None
    diastolic: int | None = None


class Screening(BaseModel):
    passed: bool = True
    notes: str | None = None


class DonationLocation(BaseModel):
    city: str | None = None
    address: str | None = None


class Donation(MongoModel):
    donor: str
    blood_type: BloodType
    quantity: int = DEFAULT_QUANTITY_ML
    donation_type: DonationType = "Scheduled"
    hospital: str
    location: DonationLocation | None = None
    request: str | None = None
    status: DonationStatus = "Completed"
    notes: str | None = None
    hemoglobin_level: float | None = None
    blood_pressure: BloodPressure | None = None
    temperature: float | None = None
    weight: float | None = None
    screening: Screening = Field(default_factory=Screening)
    collected_by: str | None = None
    certificate_number: str | None = None
    created_at: datetime | None = None

    @property
    def lives_impacted(self) -> int:
        return LIVES_PER_DONATION if self.status == "Completed" else 0


class DonationCreate(BaseModel):
    blood_type: BloodType | None = None
    quantity: int = Field(default=DEFAULT_QUANTITY_ML, gt=0)
    donation_type: DonationType = "Scheduled"
    hospital: str = Field(min_length=1)
    location: DonationLocation | None = None
    request: str | None = None
    notes: str | None = None
    hemoglobin_level: float | None = None
    blood_pressure: BloodPressure | None = None
    temperature: float | None = None
    weight: float | None = None
    screening: Screening = Field(default_factory=Screening)
    collected_by: str | None = None


class DonationSummary(BaseModel):
    total_donations: int
    total_volume_ml: int
    lives_impacted: int
    donations: list[Donation]
    this_month: int = 0
    month_streak: int = 0


class DonationStats(BaseModel):
    total_donations: int
    lives_impacted: int
    this_month_donations: int
    donor_score: int = Field(ge=0, le=1000)
    percentile: str
    month_streak: int
    last_donation_date: datetime | None = None
    next_eligible_date: datetime


class Achievement(BaseModel):
    id: int
    icon: str
    title: str
    description: str
    unlocked: bool
    progress: int
    required: int


class AchievementList(BaseModel):
    achievements: list[Achievement]
    unlocked_count: int
    total_count: int
