from __future__ import annotations

from datetime import datetime
from typing import List, Literal

from pydantic import BaseModel, EmailStr, Field, field_validator

from .base import MongoModel


BloodType = Literal["A+", "A-", "B+", "B-", "AB+", "AB-", "O+", "O-"]
VerificationStatus = Literal["Pending", "Verified", "Rejected"]


class GeoPoint(BaseModel):
    """GeoJSON point; coordinates are ``[longitude, latitude]``."""

    type: Literal["Point"] = "Point"
    coordinates: List[float] = Field(default_factory=lambda: [0.0, 0.0], min_length=2, max_length=2)

    @field_validator("coordinates")
    @classmethod
    def _check_range(cls, value: List[float]) -> List[float]:
        longitude, latitude = value
        if not -180.0 <= longitude <= 180.0:
            raise ValueError("longitude must be between -180 and 180")
        if not -90.0 <= latitude <= 90.0:
            raise ValueError("latitude must be between -90 and 90")
        return value

    @property
    def longitude(self) -> float:
        return self.coordinates[0]

    @property
    def latitude(self) -> float:
        return self.coordinates[1]

    @classmethod
    def from_lat_lng(cls, latitude: float, longitude: float) -> "GeoPoint":
        return cls(coordinates=[float(longitude), float(latitude)])


class EmergencyContact(BaseModel):
    name: str | None = None
    phone: str | None = None


class Donor(MongoModel):
    name: str
    email: EmailStr
    phone: str
    blood_type: BloodType
    city: str
    address: str | None = None
    location: GeoPoint = Field(default_factory=GeoPoint)
    status: VerificationStatus = "Pending"
    is_available: bool = True
    last_donation: datetime | None = None
    donation_count: int = 0
    notifications_enabled: bool = True
    push_token: str | None = None
    emergency_contact: EmergencyContact | None = None
    created_at: datetime | None = None


class DonorPublic(MongoModel):
    name: str
    blood_type: BloodType
    city: str
    location: GeoPoint = Field(default_factory=GeoPoint)
    status: VerificationStatus
    is_available: bool
    donation_count: int = 0
    distance_km: float | None = None


class DonorProfile(Donor):
    """A donor's own view of their record, with the advisory cooldown worked out."""

    eligible_to_donate: bool = True
    next_eligible_date: datetime | None = None
    days_until_eligible: int = 0
    can_donate_to: List[BloodType] = Field(default_factory=list)


class DonorCreate(BaseModel):
    name: str = Field(min_length=1)
    email: EmailStr
    password: str = Field(min_length=6, max_length=128)
    phone: str = Field(min_length=1)
    blood_type: BloodType
    city: str = Field(min_length=1)
    address: str | None = None
    location: GeoPoint | None = None
    emergency_contact: EmergencyContact | None = None


class DonorUpdate(BaseModel):
    name: str | None = None
    phone: str | None = None
    city: str | None = None
    address: str | None = None
    is_available: bool | None = None
    notifications_enabled: bool | None = None
    emergency_contact: EmergencyContact | None = None


class LocationUpdate(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)


class PushTokenUpdate(BaseModel):
    push_token: str | None = None
