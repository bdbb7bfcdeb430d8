from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from geopy.distance import geodesic
from loguru import logger
from pymongo.errors import PyMongoError

from ..database import settings
from ..errors import LocatorUnavailableError
from ..models.donor import GeoPoint
from ..models.request import RequestLocation
from ..stores.donors import DonorStore
from .eligibility import candidate_filter


@dataclass(frozen=True)
class SearchAnchor:
    """Where a request is: a point when the requester shared one, otherwise just a city."""

    city: str
    point: Optional[GeoPoint] = None

    @classmethod
    def from_location(cls, location: RequestLocation) -> "SearchAnchor":
        return cls(city=location.city, point=location.coordinates)

    @property
    def is_geographic(self) -> bool:
        return self.point is not None


@dataclass
class Candidate:
    donor: Dict[str, Any]
    distance_km: Optional[float] = None

    @property
    def id(self) -> str:
        return str(self.donor["_id"])

    @property
    def push_token(self) -> Optional[str]:
        return self.donor.get("push_token") or None


def distance_km(a: GeoPoint, b: GeoPoint) -> float:
    return geodesic((a.latitude, a.longitude), (b.latitude, b.longitude)).km


def city_pattern(city: str) -> Dict[str, str]:
    return {"$regex": re.escape(city.strip()), "$options": "i"}


def near_query(point: GeoPoint, radius_km: float) -> Dict[str, Any]:
    return {
        "$near": {
            "$geometry": {"type": "Point", "coordinates": [point.longitude, point.latitude]},
            "$maxDistance": radius_km * 1000,
        }
    }


class ProximityLocator:
    def __init__(self, donors: DonorStore, radius_km: float | None = None) -> None:
        self.donors = donors
        self.radius_km = radius_km if radius_km is not None else settings.match_radius_km

    async def find_candidates(
        self, anchor: SearchAnchor, allowed_types: Iterable[str], limit: int | None = None
    ) -> List[Candidate]:
        limit = limit if limit is not None else settings.match_limit
        allowed = sorted(set(allowed_types))
        if not allowed or limit <= 0:
            return []

        query: Dict[str, Any] = {"blood_type": {"$in": allowed}, **candidate_filter()}
        if anchor.is_geographic:
            query["location"] = near_query(anchor.point, self.radius_km)
        else:
            query["city"] = city_pattern(anchor.city)

        try:
            documents = await self.donors.find(query, limit=limit)
        except PyMongoError as exc:
            raise LocatorUnavailableError(f"Donor query failed: {exc}") from exc

        if anchor.is_geographic:
            candidates = self._within_radius(anchor.point, documents, self.radius_km)
        else:
            candidates = [Candidate(donor=document) for document in documents]
        logger.debug(
            "Located {} candidate(s) for {} ({} mode)",
            len(candidates),
            "/".join(allowed),
            "geo" if anchor.is_geographic else "city",
        )
        return candidates[:limit]

    async def search(
        self,
        blood_type: str | None = None,
        city: str | None = None,
        point: GeoPoint | None = None,
        radius_km: float | None = None,
        limit: int | None = None,
    ) -> List[Candidate]:
        """Public donor directory lookup; only verified, available donors are listed."""
        limit = limit if limit is not None else settings.match_limit
        radius_km = radius_km if radius_km is not None else self.radius_km
        query: Dict[str, Any] = {"status": "Verified", "is_available": True}
        if blood_type:
            query["blood_type"] = blood_type
        if city:
            query["city"] = city_pattern(city)
        if point is not None:
            query["location"] = near_query(point, radius_km)

        try:
            documents = await self.donors.find(query, limit=limit)
        except PyMongoError as exc:
            raise LocatorUnavailableError(f"Donor search failed: {exc}") from exc

        if point is not None:
            return self._within_radius(point, documents, radius_km)
        return [Candidate(donor=document) for document in documents]

    @staticmethod
    def _within_radius(origin: GeoPoint, documents: List[Dict[str, Any]], radius_km: float) -> List[Candidate]:
        nearby: List[Candidate] = []
        for document in documents:
            try:
                location = GeoPoint(**document["location"])
            except (KeyError, TypeError, ValueError):
                logger.warning("Skipping donor {} with unreadable location", document.get("_id"))
                continue
            distance = distance_km(origin, location)
            if distance <= radius_km:
                nearby.append(Candidate(donor=document, distance_km=round(distance, 3)))
        nearby.sort(key=lambda candidate: candidate.distance_km)
        return nearby
