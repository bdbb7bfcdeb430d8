from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from loguru import logger
from pymongo.errors import PyMongoError

from ..errors import (
    DonorNotFoundError,
    DuplicateResponseError,
    InvalidTransitionError,
    NotAuthorizedError,
    RequestNotFoundError,
    RequestNotPendingError,
)
from ..models.request import RESPONSE_ORDER, TERMINAL_STATUSES, BloodRequest
from ..realtime.channels import ChannelRouter
from ..stores.donors import DonorStore
from ..stores.requests import RequestStore
from ..utils.documents import jsonable, serialize_id
from ..utils.notifications import NotificationFanout
from .donations import DonationRecorder


class ResponseLedger:
    """Donor responses to a request and the request's own status changes.

    Each donor gets at most one response per request and it only moves
    forward (Interested -> Confirmed -> Completed). Writes are single
    conditional updates so concurrent donors cannot lose or duplicate entries.
    """

    def __init__(
        self,
        requests: RequestStore,
        channels: ChannelRouter,
        recorder: DonationRecorder,
        donors: Optional[DonorStore] = None,
        fanout: Optional[NotificationFanout] = None,
    ) -> None:
        self.requests = requests
        self.channels = channels
        self.recorder = recorder
        self.donors = donors
        self.fanout = fanout

    async def _load(self, request_id: str) -> BloodRequest:
        document = await self.requests.get(request_id)
        if document is None:
            raise RequestNotFoundError(request_id)
        return BloodRequest(**serialize_id(document))

    async def add_response(self, request_id: str, donor_id: str) -> Dict[str, Any]:
        now = datetime.now(timezone.utc)
        updated = await self.requests.append_response(request_id, donor_id, now)
        if updated is None:
            request = await self._load(request_id)
            status = request.effective_status(now)
            if status != "Pending":
                raise RequestNotPendingError(request_id, status)
            if request.response_for(donor_id) is not None:
                raise DuplicateResponseError(request_id, donor_id)
            raise RequestNotPendingError(request_id, request.status)

        logger.info("Donor {} responded to request {}", donor_id, request_id)
        await self._broadcast(updated)
        await self._notify_requester(updated, donor_id)
        return updated

    async def advance_response(self, request_id: str, donor_id: str, status: str) -> Dict[str, Any]:
        if status not in RESPONSE_ORDER[1:]:
            raise InvalidTransitionError(None, status)
        earlier = list(RESPONSE_ORDER[: RESPONSE_ORDER.index(status)])
        if status == "Completed" and await self.recorder.donors.get(donor_id) is None:
            raise DonorNotFoundError(donor_id)
        now = datetime.now(timezone.utc)
        updated = await self.requests.advance_response(request_id, donor_id, status, earlier, now)
        if updated is None:
            request = await self._load(request_id)
            current = request.response_for(donor_id)
            raise InvalidTransitionError(current.status if current else None, status)

        logger.info("Response of donor {} to request {} is now {}", donor_id, request_id, status)
        if status == "Completed":
            await self._record_completion(updated, donor_id)
        await self._broadcast(updated)
        return updated

    async def update_status(self, request_id: str, status: str, actor_id: str, actor_role: str) -> Dict[str, Any]:
        if status not in TERMINAL_STATUSES:
            raise InvalidTransitionError("Pending", status)
        request = await self._load(request_id)
        if actor_role in ("donor", "patient") and request.requested_by != actor_id:
            raise NotAuthorizedError("Not authorized to update this request")

        now = datetime.now(timezone.utc)
        current = request.effective_status(now)
        # an overdue request may still have Expired written explicitly
        if request.status != "Pending" or (current == "Expired" and status != "Expired"):
            raise InvalidTransitionError(current, status)

        updated = await self.requests.close(request_id, status, now)
        if updated is None:
            latest = await self._load(request_id)
            raise InvalidTransitionError(latest.status, status)

        logger.info("Request {} moved to {} by {} {}", request_id, status, actor_role, actor_id)
        await self._broadcast(updated)
        return updated

    async def _record_completion(self, request: Dict[str, Any], donor_id: str) -> None:
        location = request.get("location") or {}
        try:
            await self.recorder.record(
                donor_id,
                {
                    "donation_type": "Emergency",
                    "hospital": request["hospital_name"],
                    "location": {"city": location.get("city"), "address": location.get("address")},
                    "blood_type": None,
                },
                request_id=str(request["_id"]),
            )
        except (DonorNotFoundError, PyMongoError) as exc:
            # the response is already Completed; the donation can be added through POST /donations
            logger.error(
                "Response of donor {} to request {} completed but donation not recorded: {}",
                donor_id,
                request.get("_id"),
                exc,
            )

    async def _broadcast(self, request: Dict[str, Any]) -> None:
        try:
            await self.channels.broadcast_all("requestUpdated", jsonable(request))
        except Exception as exc:
            logger.error("Broadcast of requestUpdated for {} failed: {}", request.get("_id"), exc)

    async def _notify_requester(self, request: Dict[str, Any], donor_id: str) -> None:
        requester_id = request.get("requested_by")
        if not requester_id or self.donors is None or self.fanout is None:
            return
        try:
            requester = await self.donors.get(requester_id)
            donor = await self.donors.get(donor_id)
        except PyMongoError as exc:
            logger.warning("Skipping requester notification for {}: {}", request.get("_id"), exc)
            return
        if requester is None or donor is None:
            return
        await self.fanout.notify_requester(requester, donor, request)
