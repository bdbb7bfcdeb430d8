from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pymongo.errors import PyMongoError

from ..errors import LifeLineError
from ..matching.proximity import city_pattern
from ..models.request import (
    BloodRequest,
    BloodRequestCreate,
    RequestCreated,
    RequestStatus,
    ResponseAdvance,
    StatusChange,
    Urgency,
)
from ..models.donor import BloodType
from ..models.user import Principal
from ..services import Services, get_services
from ..utils.logging import log_db_error
from .auth import get_current_user, get_optional_user, require_roles
from .common import http_error, present_request

router = APIRouter(prefix="/requests", tags=["requests"])
DonorUser = Annotated[Principal, Depends(require_roles("donor"))]
CurrentUser = Annotated[Principal, Depends(get_current_user)]

URGENCY_RANK = {"Critical": 0, "Urgent": 1, "Normal": 2}


@router.post("/", response_model=RequestCreated, status_code=status.HTTP_201_CREATED)
async def create_request(
    payload: BloodRequestCreate,
    user: Optional[Principal] = Depends(get_optional_user),
    services: Services = Depends(get_services),
) -> RequestCreated:
    try:
        result = await services.orchestrator.create_request(payload, requested_by=user.id if user else None)
    except PyMongoError as exc:  # pragma: no cover - requires external service
        log_db_error("create_request", exc)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Request could not be saved. Try again shortly.",
        ) from exc
    return RequestCreated(
        message="Request created successfully",
        request=present_request(result.request),
        notified_donors_count=result.notified_count,
        delivery=result.dispatch.as_dict(),
    )


@router.get("/", response_model=List[BloodRequest])
async def list_requests(
    services: Services = Depends(get_services),
    request_status: Optional[RequestStatus] = Query(default=None, alias="status"),
    blood_type: Optional[BloodType] = None,
    city: Optional[str] = None,
    urgency: Optional[Urgency] = None,
    limit: int = Query(default=100, ge=1, le=500),
) -> List[BloodRequest]:
    query: Dict[str, Any] = {"status": request_status or "Pending"}
    if query["status"] == "Pending":
        query["expires_at"] = {"$gt": datetime.now(timezone.utc)}
    if blood_type:
        query["blood_type"] = blood_type
    if city:
        query["location.city"] = city_pattern(city)
    if urgency:
        query["urgency"] = urgency
    documents = await services.requests.find(query, limit=limit)
    items = [present_request(document) for document in documents]
    # newest first within each urgency tier
    items.sort(key=lambda item: URGENCY_RANK.get(item.urgency, len(URGENCY_RANK)))
    return items


@router.get("/{request_id}", response_model=BloodRequest)
async def get_request(request_id: str, services: Services = Depends(get_services)) -> BloodRequest:
    document = await services.requests.get(request_id)
    if not document:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Request not found")
    return present_request(document)


@router.put("/{request_id}/respond", response_model=BloodRequest)
async def respond_to_request(
    request_id: str,
    donor: DonorUser,
    services: Services = Depends(get_services),
) -> BloodRequest:
    try:
        updated = await services.ledger.add_response(request_id, donor.id)
    except LifeLineError as exc:
        raise http_error(exc) from exc
    return present_request(updated)


@router.put("/{request_id}/status", response_model=BloodRequest)
async def update_request_status(
    request_id: str,
    payload: StatusChange,
    user: CurrentUser,
    services: Services = Depends(get_services),
) -> BloodRequest:
    try:
        updated = await services.ledger.update_status(request_id, payload.status, user.id, user.role)
    except LifeLineError as exc:
        raise http_error(exc) from exc
    return present_request(updated)


@router.put("/{request_id}/responses/{donor_id}", response_model=BloodRequest)
async def advance_response(
    request_id: str,
    donor_id: str,
    payload: ResponseAdvance,
    user: CurrentUser,
    services: Services = Depends(get_services),
) -> BloodRequest:
    if user.role in ("donor", "patient"):
        document = await services.requests.get(request_id)
        if not document:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Request not found")
        if document.get("requested_by") != user.id:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not authorized to update this request")
    try:
        updated = await services.ledger.advance_response(request_id, donor_id, payload.status)
    except LifeLineError as exc:
        raise http_error(exc) from exc
    return present_request(updated)
