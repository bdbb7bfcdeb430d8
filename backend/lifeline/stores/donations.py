from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorCollection
from pymongo import DESCENDING

from ..database import db


class DonationStore:
    def __init__(self, collection: Optional[AsyncIOMotorCollection] = None) -> None:
        self.collection: AsyncIOMotorCollection = (
            collection if collection is not None else db.get_collection("donations")
        )

    async def insert(self, document: Dict[str, Any]) -> Dict[str, Any]:
        document = {"created_at": datetime.now(timezone.utc), **document}
        result = await self.collection.insert_one(document)
        return await self.collection.find_one({"_id": result.inserted_id})

    async def for_donor(
        self, donor_id: str, status: Optional[str] = None, limit: int = 100
    ) -> List[Dict[str, Any]]:
        """Newest first; ``limit=0`` returns the full history."""
        query: Dict[str, Any] = {"donor": donor_id}
        if status is not None:
            query["status"] = status
        cursor = self.collection.find(query).sort("created_at", DESCENDING).limit(limit)
        return [doc async for doc in cursor]
