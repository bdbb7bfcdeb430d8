from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Dict, List, Optional

from loguru import logger
from pymongo.errors import PyMongoError

from ..database import settings
from ..errors import LocatorUnavailableError
from ..models.request import BloodRequestCreate, RequestLocation
from ..realtime.channels import ChannelRouter, blood_type_channel, city_channel, user_channel
from ..stores.requests import RequestStore
from ..utils.documents import jsonable
from ..utils.notifications import DispatchResult, NotificationFanout
from .compatibility import compatible_donors
from .proximity import Candidate, ProximityLocator, SearchAnchor


@dataclass
class MatchResult:
    request: Dict[str, Any]
    notified_count: int = 0
    notified_donor_ids: List[str] = field(default_factory=list)
    dispatch: DispatchResult = field(default_factory=DispatchResult)
    errors: List[str] = field(default_factory=list)


class MatchOrchestrator:
    """Runs matching for a freshly persisted request.

    Nothing after persistence can fail the request: locator, fan-out and
    broadcast failures are logged and show up as fewer notified donors.
    """

    def __init__(
        self,
        requests: RequestStore,
        locator: ProximityLocator,
        fanout: NotificationFanout,
        channels: ChannelRouter,
        limit: int | None = None,
    ) -> None:
        self.requests = requests
        self.locator = locator
        self.fanout = fanout
        self.channels = channels
        self.limit = limit if limit is not None else settings.match_limit

    async def create_request(self, payload: BloodRequestCreate, requested_by: Optional[str] = None) -> MatchResult:
        request = await self.requests.create(payload.model_dump(), requested_by=requested_by)
        logger.info(
            "Created {} request {} for {} ({})",
            request["urgency"],
            request["_id"],
            request["blood_type"],
            request["location"]["city"],
        )
        return await self.on_request_created(request)

    async def on_request_created(self, request: Dict[str, Any]) -> MatchResult:
        result = MatchResult(request=request)
        request_id = str(request["_id"])
        allowed_types = compatible_donors(request["blood_type"])
        anchor = SearchAnchor.from_location(RequestLocation(**request["location"]))

        candidates: List[Candidate] = []
        try:
            candidates = await self.locator.find_candidates(anchor, allowed_types, self.limit)
        except LocatorUnavailableError as exc:
            logger.warning("No candidates located for request {}: {}", request_id, exc)
            result.errors.append("locator_unavailable")

        if candidates:
            donor_ids = [candidate.id for candidate in candidates]
            try:
                updated = await self.requests.set_notified_donors(request_id, donor_ids)
                if updated is not None:
                    result.request = updated
            except PyMongoError as exc:
                logger.error("Could not record notified donors on request {}: {}", request_id, exc)
                result.errors.append("notified_donors_not_saved")

            payload = jsonable(result.request)
            channels = [user_channel(donor_id) for donor_id in donor_ids]
            channels.append(city_channel(anchor.city))
            channels.extend(blood_type_channel(blood_type) for blood_type in sorted(allowed_types))
            dispatch, _ = await asyncio.gather(
                self.fanout.dispatch([candidate.donor for candidate in candidates], result.request),
                self._emit(self.channels.publish_many(channels, "emergencyAlert", payload), "emergencyAlert", result),
            )
            result.dispatch = dispatch
            result.notified_donor_ids = donor_ids
            result.notified_count = len(donor_ids)

        await self._emit(self.channels.broadcast_all("newRequest", jsonable(result.request)), "newRequest", result)
        logger.info(
            "Request {} matched {} donor(s): {} delivered, {} skipped, {} failed",
            request_id,
            result.notified_count,
            result.dispatch.delivered,
            result.dispatch.skipped,
            result.dispatch.failed,
        )
        return result

    @staticmethod
    async def _emit(publish: Awaitable[int], event: str, result: MatchResult) -> None:
        try:
            await publish
        except Exception as exc:
            logger.error("Broadcast of {} failed: {}", event, exc)
            result.errors.append(f"{event}_broadcast_failed")
