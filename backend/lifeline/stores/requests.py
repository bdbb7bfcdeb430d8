from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional

from motor.motor_asyncio import AsyncIOMotorCollection
from pymongo import DESCENDING, ReturnDocument

from ..database import db, settings
from ..utils.documents import to_object_id


class RequestStore:
    def __init__(self, collection: Optional[AsyncIOMotorCollection] = None) -> None:
        self.collection: AsyncIOMotorCollection = (
            collection if collection is not None else db.get_collection("requests")
        )

    async def create(self, data: Dict[str, Any], requested_by: Optional[str] = None) -> Dict[str, Any]:
        now = datetime.now(timezone.utc)
        document = {
            **data,
            "status": "Pending",
            "requested_by": requested_by,
            "created_at": now,
            "expires_at": now + timedelta(days=settings.request_ttl_days),
            "responses": [],
            "notified_donors": [],
        }
        result = await self.collection.insert_one(document)
        return await self.collection.find_one({"_id": result.inserted_id})

    async def get(self, request_id: str) -> Optional[Dict[str, Any]]:
        return await self.collection.find_one({"_id": to_object_id(request_id)})

    async def update(self, request_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return await self.collection.find_one_and_update(
            {"_id": to_object_id(request_id)},
            {"$set": {**fields, "updated_at": datetime.now(timezone.utc)}},
            return_document=ReturnDocument.AFTER,
        )

    async def set_notified_donors(self, request_id: str, donor_ids: Iterable[str]) -> Optional[Dict[str, Any]]:
        # overwrite, never $addToSet: one match per creation event
        return await self.update(request_id, {"notified_donors": list(dict.fromkeys(donor_ids))})

    async def append_response(self, request_id: str, donor_id: str, now: datetime) -> Optional[Dict[str, Any]]:
        """Push an ``Interested`` entry only if the request is open and the donor has none yet."""
        return await self.collection.find_one_and_update(
            {
                "_id": to_object_id(request_id),
                "status": "Pending",
                "expires_at": {"$gt": now},
                "responses.donor": {"$ne": donor_id},
            },
            {
                "$push": {"responses": {"donor": donor_id, "status": "Interested", "responded_at": now}},
                "$set": {"updated_at": now},
            },
            return_document=ReturnDocument.AFTER,
        )

    async def advance_response(
        self, request_id: str, donor_id: str, status: str, from_statuses: List[str], now: datetime
    ) -> Optional[Dict[str, Any]]:
        return await self.collection.find_one_and_update(
            {
                "_id": to_object_id(request_id),
                "responses": {"$elemMatch": {"donor": donor_id, "status": {"$in": from_statuses}}},
            },
            {"$set": {"responses.$.status": status, "responses.$.updated_at": now, "updated_at": now}},
            return_document=ReturnDocument.AFTER,
        )

    async def close(self, request_id: str, status: str, now: datetime) -> Optional[Dict[str, Any]]:
        """Move a pending request to a terminal status; ``None`` when it was not pending."""
        return await self.collection.find_one_and_update(
            {"_id": to_object_id(request_id), "status": "Pending"},
            {"$set": {"status": status, "updated_at": now}},
            return_document=ReturnDocument.AFTER,
        )

    async def find(self, query: Dict[str, Any], limit: int = 100) -> List[Dict[str, Any]]:
        cursor = self.collection.find(query).sort("created_at", DESCENDING).limit(limit)
        return [doc async for doc in cursor]
