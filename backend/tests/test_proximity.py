import pytest
from pymongo.errors import ServerSelectionTimeoutError

from lifeline.errors import LocatorUnavailableError
from lifeline.matching.proximity import ProximityLocator, SearchAnchor, city_pattern
from lifeline.models.donor import GeoPoint
from lifeline.stores.donors import DonorStore

from conftest import PUNE, FakeCollection, make_donor, offset_north


def _locator(collection, radius_km=50):
    return ProximityLocator(DonorStore(collection), radius_km=radius_km)


def _pune_anchor():
    return SearchAnchor(city="Pune", point=GeoPoint.from_lat_lng(*PUNE))


@pytest.mark.asyncio
async def test_geo_mode_keeps_donors_within_radius_nearest_first():
    """Donors at 1, 10 and 60 km: the two inside 50 km come back, nearest first."""
    donors = FakeCollection("donors")
    donors.documents = [
        make_donor("donor-60km", point=offset_north(PUNE, 60)),
        make_donor("donor-10km", point=offset_north(PUNE, 10)),
        make_donor("donor-1km", point=offset_north(PUNE, 1)),
    ]

    candidates = await _locator(donors).find_candidates(_pune_anchor(), {"O-"}, limit=50)

    assert [candidate.id for candidate in candidates] == ["donor-1km", "donor-10km"]
    assert candidates[0].distance_km < candidates[1].distance_km < 50
    assert "$near" in donors.queries[0]["location"]
    assert donors.queries[0]["location"]["$near"]["$maxDistance"] == 50_000


@pytest.mark.asyncio
async def test_ineligible_and_incompatible_donors_are_never_candidates():
    donors = FakeCollection("donors")
    donors.documents = [
        make_donor("donor-ok", point=offset_north(PUNE, 2)),
        make_donor("donor-pending", point=offset_north(PUNE, 2), status="Pending"),
        make_donor("donor-rejected", point=offset_north(PUNE, 2), status="Rejected"),
        make_donor("donor-away", point=offset_north(PUNE, 2), is_available=False),
        make_donor("donor-muted", point=offset_north(PUNE, 2), notifications_enabled=False),
        make_donor("donor-a-pos", blood_type="A+", point=offset_north(PUNE, 2)),
    ]

    candidates = await _locator(donors).find_candidates(_pune_anchor(), {"O-"}, limit=50)

    assert [candidate.id for candidate in candidates] == ["donor-ok"]


@pytest.mark.asyncio
async def test_city_mode_matches_city_case_insensitively():
    """Without coordinates only donors in the request's city are returned."""
    donors = FakeCollection("donors")
    donors.documents = [
        make_donor("donor-pune", city="pune"),
        make_donor("donor-mumbai", city="Mumbai"),
    ]

    candidates = await _locator(donors).find_candidates(SearchAnchor(city="Pune"), {"O-"}, limit=50)

    assert [candidate.id for candidate in candidates] == ["donor-pune"]
    assert candidates[0].distance_km is None


@pytest.mark.asyncio
async def test_limit_caps_candidates():
    donors = FakeCollection("donors")
    donors.documents = [make_donor(f"donor-{n}", point=offset_north(PUNE, n + 1)) for n in range(5)]

    candidates = await _locator(donors).find_candidates(_pune_anchor(), {"O-"}, limit=3)

    assert len(candidates) == 3


@pytest.mark.asyncio
async def test_store_failure_raises_locator_unavailable():
    donors = FakeCollection("donors")
    donors.fail_with = ServerSelectionTimeoutError("no servers")

    with pytest.raises(LocatorUnavailableError):
        await _locator(donors).find_candidates(SearchAnchor(city="Pune"), {"O-"}, limit=50)


@pytest.mark.asyncio
async def test_search_lists_verified_available_donors_only():
    donors = FakeCollection("donors")
    donors.documents = [
        make_donor("donor-listed", blood_type="B+"),
        make_donor("donor-unverified", blood_type="B+", status="Pending"),
        make_donor("donor-muted", blood_type="B+", notifications_enabled=False),
    ]

    found = await _locator(donors).search(blood_type="B+", city="Pune")

    assert {candidate.id for candidate in found} == {"donor-listed", "donor-muted"}


def test_city_pattern_escapes_regex_characters():
    assert city_pattern(" St. Louis ") == {"$regex": r"St\.\ Louis", "$options": "i"}
