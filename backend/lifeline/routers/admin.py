from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from loguru import logger
from pymongo.errors import PyMongoError

from ..database import settings
from ..models.donor import DonorProfile
from ..models.user import Principal, StaffCreate, UserPublic
from ..realtime.channels import user_channel
from ..services import Services, get_services
from ..utils.security import hash_password
from .auth import create_account, require_roles, service_unavailable
from .donors import donor_profile

router = APIRouter(prefix="/admin", tags=["admin"])
StaffUser = Annotated[Principal, Depends(require_roles("admin", "hospital"))]
AdminUser = Annotated[Principal, Depends(require_roles("admin"))]

STATUS_MESSAGES = {
    "Verified": "Your account has been verified!",
    "Rejected": "Your account verification was rejected. Please contact support.",
}


async def _set_verification(donor_id: str, new_status: str, actor: Principal, services: Services) -> DonorProfile:
    document = await services.donors.set_status(donor_id, new_status)
    if not document:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Donor not found")
    logger.info("Donor {} marked {} by {} {}", donor_id, new_status, actor.role, actor.id)
    await services.channels.publish(
        user_channel(str(document["_id"])),
        "statusUpdate",
        {"status": new_status, "message": STATUS_MESSAGES[new_status]},
    )
    if new_status == "Verified":
        await services.fanout.notify_verification(document)
    return donor_profile(document)


@router.put("/donors/{donor_id}/verify", response_model=DonorProfile)
async def verify_donor(donor_id: str, actor: StaffUser, services: Services = Depends(get_services)) -> DonorProfile:
    return await _set_verification(donor_id, "Verified", actor, services)


@router.put("/donors/{donor_id}/reject", response_model=DonorProfile)
async def reject_donor(donor_id: str, actor: StaffUser, services: Services = Depends(get_services)) -> DonorProfile:
    return await _set_verification(donor_id, "Rejected", actor, services)


@router.post("/users", response_model=UserPublic, status_code=status.HTTP_201_CREATED)
async def create_staff_account(
    payload: StaffCreate, actor: AdminUser, services: Services = Depends(get_services)
) -> UserPublic:
    try:
        stored = await create_account(services.users, payload)
    except PyMongoError as exc:  # pragma: no cover - requires external service
        raise service_unavailable("create_staff_account", exc, "Account could not be created.") from exc
    logger.info("{} account {} created by admin {}", payload.role, stored["_id"], actor.id)
    return UserPublic(**stored)


async def ensure_admin_account(users) -> bool:
    """Seed the first admin from ``ADMIN_EMAIL``/``ADMIN_PASSWORD`` when both are set."""
    if not settings.admin_email or not settings.admin_password:
        return False
    email = settings.admin_email.lower()
    if await users.find_one({"email": email}):
        return False
    await users.insert_one(
        {
            "email": email,
            "name": settings.admin_name,
            "password": hash_password(settings.admin_password),
            "role": "admin",
            "created_at": datetime.now(timezone.utc),
        }
    )
    logger.info("Seeded admin account {}", email)
    return True
