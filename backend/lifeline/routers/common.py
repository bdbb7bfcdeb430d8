from __future__ import annotations

from typing import Any, Dict

from fastapi import HTTPException, status

from ..errors import (
    DonorNotFoundError,
    DuplicateResponseError,
    InvalidTransitionError,
    LifeLineError,
    LocatorUnavailableError,
    NotAuthorizedError,
    RequestNotFoundError,
    RequestNotPendingError,
)
from ..models.request import BloodRequest
from ..utils.documents import serialize_id

_STATUS_CODES = {
    RequestNotFoundError: status.HTTP_404_NOT_FOUND,
    DonorNotFoundError: status.HTTP_404_NOT_FOUND,
    DuplicateResponseError: status.HTTP_409_CONFLICT,
    RequestNotPendingError: status.HTTP_400_BAD_REQUEST,
    InvalidTransitionError: status.HTTP_400_BAD_REQUEST,
    NotAuthorizedError: status.HTTP_403_FORBIDDEN,
    LocatorUnavailableError: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def http_error(exc: LifeLineError) -> HTTPException:
    code = _STATUS_CODES.get(type(exc), status.HTTP_400_BAD_REQUEST)
    return HTTPException(status_code=code, detail=str(exc))


def present_request(document: Dict[str, Any]) -> BloodRequest:
    """Response model for a stored request, reporting overdue requests as expired."""
    request = BloodRequest(**serialize_id(dict(document)))
    return request.model_copy(update={"status": request.effective_status()})
