from __future__ import annotations

from typing import Annotated, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ..errors import LifeLineError
from ..matching.compatibility import BLOOD_TYPES, compatible_recipients
from ..matching.eligibility import days_until_eligible, next_eligible_date
from ..models.donor import BloodType, DonorProfile, DonorPublic, DonorUpdate, GeoPoint, LocationUpdate, PushTokenUpdate
from ..models.user import Principal
from ..services import Services, get_services
from ..utils.documents import serialize_id
from .auth import require_roles
from .common import http_error

router = APIRouter(prefix="/donors", tags=["donors"])
DonorUser = Annotated[Principal, Depends(require_roles("donor"))]


def donor_profile(document: dict) -> DonorProfile:
    remaining = days_until_eligible(document)
    return DonorProfile(
        **serialize_id(dict(document)),
        eligible_to_donate=remaining == 0,
        next_eligible_date=next_eligible_date(document),
        days_until_eligible=remaining,
        can_donate_to=sorted(compatible_recipients(document["blood_type"]), key=BLOOD_TYPES.index),
    )


@router.get("/search", response_model=List[DonorPublic])
async def search_donors(
    services: Services = Depends(get_services),
    blood_type: Optional[BloodType] = None,
    city: Optional[str] = None,
    lat: Optional[float] = Query(default=None, ge=-90, le=90),
    lng: Optional[float] = Query(default=None, ge=-180, le=180),
    radius: float = Query(default=50, gt=0, le=500),
) -> List[DonorPublic]:
    point = GeoPoint.from_lat_lng(lat, lng) if lat is not None and lng is not None else None
    try:
        candidates = await services.locator.search(blood_type=blood_type, city=city, point=point, radius_km=radius)
    except LifeLineError as exc:
        raise http_error(exc) from exc
    return [
        DonorPublic(**serialize_id(dict(candidate.donor)), distance_km=candidate.distance_km)
        for candidate in candidates
    ]


@router.get("/me", response_model=DonorProfile)
async def get_my_profile(donor: DonorUser, services: Services = Depends(get_services)) -> DonorProfile:
    document = await services.donors.get(donor.id)
    if not document:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Donor not found")
    return donor_profile(document)


@router.put("/me", response_model=DonorProfile)
async def update_my_profile(
    payload: DonorUpdate, donor: DonorUser, services: Services = Depends(get_services)
) -> DonorProfile:
    updates = payload.model_dump(exclude_none=True)
    if not updates:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No fields to update")
    document = await services.donors.update(donor.id, updates)
    if not document:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Donor not found")
    return donor_profile(document)


@router.put("/location", response_model=DonorProfile)
async def update_location(
    payload: LocationUpdate, donor: DonorUser, services: Services = Depends(get_services)
) -> DonorProfile:
    document = await services.donors.set_location(donor.id, payload.latitude, payload.longitude)
    if not document:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Donor not found")
    return donor_profile(document)


@router.put("/push-token")
async def update_push_token(
    payload: PushTokenUpdate, donor: DonorUser, services: Services = Depends(get_services)
) -> dict:
    document = await services.donors.set_push_token(donor.id, payload.push_token)
    if not document:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Donor not found")
    return {"success": True, "message": "Push token updated"}
