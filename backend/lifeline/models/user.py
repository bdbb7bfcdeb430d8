from __future__ import annotations

from datetime import datetime
from typing import Annotated, Literal, Union

from pydantic import BaseModel, EmailStr, Field

from .donor import BloodType, VerificationStatus


UserRole = Literal["donor", "patient", "admin", "hospital"]
AccountRole = Literal["patient", "admin", "hospital"]
StaffRole = Literal["admin", "hospital"]


class UserCreate(BaseModel):
    """Public self-registration; only patient accounts can be opened this way."""

    email: EmailStr
    password: str = Field(min_length=8, max_length=128)
    name: str
    phone: str | None = None
    role: Literal["patient"] = "patient"


class StaffCreate(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8, max_length=128)
    name: str
    phone: str | None = None
    role: StaffRole
    hospital_name: str | None = None


class DonorPrincipal(BaseModel):
    role: Literal["donor"] = "donor"
    id: str
    name: str
    email: EmailStr
    blood_type: BloodType
    status: VerificationStatus


class PatientPrincipal(BaseModel):
    role: Literal["patient"] = "patient"
    id: str
    name: str
    email: EmailStr


class StaffPrincipal(BaseModel):
    role: Literal["admin", "hospital"]
    id: str
    name: str
    email: EmailStr
    hospital_name: str | None = None


# Resolved once by the auth dependency and passed down as-is.
Principal = Union[DonorPrincipal, PatientPrincipal, StaffPrincipal]
TaggedPrincipal = Annotated[Principal, Field(discriminator="role")]


class UserPublic(BaseModel):
    id: str = Field(alias="_id")
    email: EmailStr
    name: str
    role: AccountRole
    created_at: datetime


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class AuthResponse(Token):
    user: TaggedPrincipal
    message: str = "Authenticated"


class TokenPayload(BaseModel):
    sub: str
    role: UserRole
    exp: int
