from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorCollection
from pymongo import ReturnDocument

from ..database import db
from ..utils.documents import to_object_id


class DonorStore:
    def __init__(self, collection: Optional[AsyncIOMotorCollection] = None) -> None:
        self.collection: AsyncIOMotorCollection = collection if collection is not None else db.get_collection("donors")

    async def get(self, donor_id: str) -> Optional[Dict[str, Any]]:
        return await self.collection.find_one({"_id": to_object_id(donor_id)})

    async def get_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        return await self.collection.find_one({"email": email.lower()})

    async def create(self, document: Dict[str, Any]) -> Dict[str, Any]:
        document = {
            "status": "Pending",
            "is_available": True,
            "last_donation": None,
            "donation_count": 0,
            "notifications_enabled": True,
            "push_token": None,
            "location": {"type": "Point", "coordinates": [0.0, 0.0]},
            **document,
            "email": document["email"].lower(),
            "created_at": datetime.now(timezone.utc),
        }
        result = await self.collection.insert_one(document)
        return await self.collection.find_one({"_id": result.inserted_id})

    async def update(self, donor_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return await self.collection.find_one_and_update(
            {"_id": to_object_id(donor_id)},
            {"$set": {**fields, "updated_at": datetime.now(timezone.utc)}},
            return_document=ReturnDocument.AFTER,
        )

    async def find(self, query: Dict[str, Any], limit: int = 0) -> List[Dict[str, Any]]:
        cursor = self.collection.find(query)
        if limit:
            cursor = cursor.limit(limit)
        return [doc async for doc in cursor]

    async def set_push_token(self, donor_id: str, token: Optional[str]) -> Optional[Dict[str, Any]]:
        return await self.update(donor_id, {"push_token": token or None})

    async def set_location(self, donor_id: str, latitude: float, longitude: float) -> Optional[Dict[str, Any]]:
        return await self.update(
            donor_id, {"location": {"type": "Point", "coordinates": [float(longitude), float(latitude)]}}
        )

    async def set_status(self, donor_id: str, status: str) -> Optional[Dict[str, Any]]:
        return await self.update(donor_id, {"status": status})

    async def record_donation(self, donor_id: str, donated_at: datetime) -> Optional[Dict[str, Any]]:
        return await self.collection.find_one_and_update(
            {"_id": to_object_id(donor_id)},
            {"$set": {"last_donation": donated_at}, "$inc": {"donation_count": 1}},
            return_document=ReturnDocument.AFTER,
        )
