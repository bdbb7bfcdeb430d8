from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, List, Literal

from pydantic import BaseModel, EmailStr, Field

from .base import MongoModel
from .donor import BloodType, GeoPoint


Urgency = Literal["Critical", "Urgent", "Normal"]
RequestStatus = Literal["Pending", "Fulfilled", "Cancelled", "Expired"]
ResponseStatus = Literal["Interested", "Confirmed", "Completed"]

TERMINAL_STATUSES: frozenset[str] = frozenset({"Fulfilled", "Cancelled", "Expired"})
RESPONSE_ORDER: tuple[str, ...] = ("Interested", "Confirmed", "Completed")


class RequestLocation(BaseModel):
    city: str = Field(min_length=1)
    address: str | None = None
    coordinates: GeoPoint | None = None


class DonorResponse(BaseModel):
    donor: str
    status: ResponseStatus = "Interested"
    responded_at: datetime
    updated_at: datetime | None = None


class BloodRequest(MongoModel):
    blood_type: BloodType
    units_needed: int = Field(default=1, ge=1)
    urgency: Urgency = "Urgent"
    patient_name: str
    hospital_name: str
    location: RequestLocation
    contact_phone: str
    contact_email: str | None = None
    description: str | None = None
    status: RequestStatus = "Pending"
    requested_by: str | None = None
    created_at: datetime
    expires_at: datetime
    responses: List[DonorResponse] = Field(default_factory=list)
    notified_donors: List[str] = Field(default_factory=list)

    def effective_status(self, now: datetime | None = None) -> str:
        """Stored status, except that a pending request past its expiry reads as ``Expired``."""
        now = now or datetime.now(timezone.utc)
        if self.status == "Pending" and now >= _aware(self.expires_at):
            return "Expired"
        return self.status

    def response_for(self, donor_id: str) -> DonorResponse | None:
        for response in self.responses:
            if response.donor == donor_id:
                return response
        return None


class BloodRequestCreate(BaseModel):
    blood_type: BloodType
    units_needed: int = Field(default=1, ge=1)
    urgency: Urgency = "Urgent"
    patient_name: str = Field(min_length=1)
    hospital_name: str = Field(min_length=1)
    location: RequestLocation
    contact_phone: str = Field(min_length=1)
    contact_email: EmailStr | None = None
    description: str | None = None


class StatusChange(BaseModel):
    status: Literal["Fulfilled", "Cancelled", "Expired"]


class ResponseAdvance(BaseModel):
    status: Literal["Confirmed", "Completed"]


class RequestCreated(BaseModel):
    success: bool = True
    message: str
    request: BloodRequest
    notified_donors_count: int
    delivery: Dict[str, int] = Field(default_factory=dict)


def _aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
