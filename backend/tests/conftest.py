import asyncio
import copy
import re
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
from bson import ObjectId
from pymongo import ReturnDocument

from lifeline.realtime.channels import ChannelRouter
from lifeline.services import build_services
from lifeline.utils.notifications import BatchResult


PUNE = (18.5204, 73.8567)


def _resolve(value, parts):
    if not parts:
        return [value]
    if isinstance(value, list):
        found = []
        for item in value:
            found.extend(_resolve(item, parts))
        return found
    if isinstance(value, dict) and parts[0] in value:
        return _resolve(value[parts[0]], parts[1:])
    return []


def _flatten(values):
    flat = []
    for value in values:
        if isinstance(value, list):
            flat.extend(value)
        else:
            flat.append(value)
    return flat


def _compare(values, op, arg):
    present = [value for value in values if value is not None]
    if op == "$gt":
        return any(value > arg for value in present)
    if op == "$gte":
        return any(value >= arg for value in present)
    if op == "$lt":
        return any(value < arg for value in present)
    return any(value <= arg for value in present)


def _match_condition(raw_values, condition):
    values = _flatten(raw_values)
    if isinstance(condition, dict) and any(key.startswith("$") for key in condition):
        for op, arg in condition.items():
            if op in ("$options", "$near"):
                # distance filtering is done by the locator itself
                continue
            if op == "$in":
                ok = any(value in arg for value in values)
            elif op == "$ne":
                ok = all(value != arg for value in values)
            elif op in ("$gt", "$gte", "$lt", "$lte"):
                ok = _compare(values, op, arg)
            elif op == "$regex":
                flags = re.IGNORECASE if "i" in condition.get("$options", "") else 0
                ok = any(isinstance(value, str) and re.search(arg, value, flags) for value in values)
            elif op == "$elemMatch":
                ok = any(isinstance(value, dict) and matches(value, arg) for value in values)
            else:
                raise NotImplementedError(op)
            if not ok:
                return False
        return True
    if not raw_values:
        return condition is None
    return any(value == condition for value in values) or any(value == condition for value in raw_values)


def matches(document, query):
    return all(_match_condition(_resolve(document, key.split(".")), cond) for key, cond in query.items())


def _set_path(document, path, value):
    parts = path.split(".")
    target = document
    for part in parts[:-1]:
        target = target.setdefault(part, {})
    target[parts[-1]] = value


def _apply_update(document, update, query):
    for path, value in update.get("$set", {}).items():
        if ".$." in path:
            array_name, field = path.split(".$.")
            element_query = query[array_name]["$elemMatch"]
            for element in document[array_name]:
                if matches(element, element_query):
                    element[field] = value
                    break
        else:
            _set_path(document, path, value)
    for path, value in update.get("$push", {}).items():
        document.setdefault(path, []).append(value)
    for path, value in update.get("$inc", {}).items():
        document[path] = document.get(path, 0) + value


class FakeCursor:
    def __init__(self, documents):
        self.documents = documents

    def sort(self, key, direction=1):
        self.documents.sort(key=lambda doc: (doc.get(key) is not None, doc.get(key)), reverse=direction < 0)
        return self

    def limit(self, count):
        if count:
            self.documents = self.documents[:count]
        return self

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for document in self.documents:
            yield document


class FakeCollection:
    """In-memory stand-in for a motor collection; each call is atomic."""

    def __init__(self, name):
        self.name = name
        self.documents = []
        self.fail_with = None
        self.queries = []

    def _check(self):
        if self.fail_with is not None:
            raise self.fail_with

    async def insert_one(self, document):
        await asyncio.sleep(0)
        self._check()
        document = copy.deepcopy(document)
        document.setdefault("_id", ObjectId())
        self.documents.append(document)
        return SimpleNamespace(inserted_id=document["_id"])

    async def find_one(self, query):
        await asyncio.sleep(0)
        self._check()
        for document in self.documents:
            if matches(document, query):
                return copy.deepcopy(document)
        return None

    def find(self, query):
        self._check()
        self.queries.append(query)
        return FakeCursor([copy.deepcopy(doc) for doc in self.documents if matches(doc, query)])

    async def update_one(self, query, update):
        await asyncio.sleep(0)
        self._check()
        for document in self.documents:
            if matches(document, query):
                _apply_update(document, update, query)
                return SimpleNamespace(matched_count=1, modified_count=1)
        return SimpleNamespace(matched_count=0, modified_count=0)

    async def find_one_and_update(self, query, update, return_document=ReturnDocument.BEFORE):
        await asyncio.sleep(0)
        self._check()
        for document in self.documents:
            if matches(document, query):
                before = copy.deepcopy(document)
                _apply_update(document, update, query)
                return copy.deepcopy(document) if return_document == ReturnDocument.AFTER else before
        return None

    async def create_index(self, *args, **kwargs):
        return "index"


class FakeDatabase:
    def __init__(self):
        self.collections = {}

    def get_collection(self, name):
        return self.collections.setdefault(name, FakeCollection(name))


class FakePushProvider:
    def __init__(self, configured=True, failing_tokens=(), delay=0.0, error=None):
        self.configured = configured
        self.failing_tokens = set(failing_tokens)
        self.delay = delay
        self.error = error
        self.batches = []
        self.singles = []

    async def send_multicast(self, message, tokens):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        self.batches.append((message, list(tokens)))
        failed = [token for token in tokens if token in self.failing_tokens]
        return BatchResult(
            success_count=len(tokens) - len(failed), failure_count=len(failed), failed_tokens=failed
        )

    async def send(self, message, token):
        self.singles.append((message, token))
        return True


class FakeConnection:
    def __init__(self, connection_id, fail=False):
        self.id = connection_id
        self.fail = fail
        self.received = []

    async def send(self, event, payload):
        await asyncio.sleep(0)
        if self.fail:
            raise ConnectionError("socket closed")
        self.received.append((event, payload))

    def events(self, name=None):
        return [event for event, _ in self.received if name is None or event == name]


def offset_north(point, km):
    latitude, longitude = point
    return latitude + km / 110.6, longitude


def make_donor(donor_id, blood_type="O-", city="Pune", point=None, **overrides):
    latitude, longitude = point if point else (0.0, 0.0)
    donor = {
        "_id": donor_id,
        "name": donor_id.replace("-", " ").title(),
        "email": f"{donor_id}@lifeline.org",
        "password": "hashed",
        "phone": "+919800000000",
        "blood_type": blood_type,
        "city": city,
        "location": {"type": "Point", "coordinates": [longitude, latitude]},
        "status": "Verified",
        "is_available": True,
        "last_donation": None,
        "donation_count": 0,
        "notifications_enabled": True,
        "push_token": None,
        "created_at": datetime.now(timezone.utc),
    }
    donor.update(overrides)
    return donor


def make_request(request_id="request-1", blood_type="O-", city="Pune", coordinates=None, **overrides):
    now = datetime.now(timezone.utc)
    request = {
        "_id": request_id,
        "blood_type": blood_type,
        "units_needed": 1,
        "urgency": "Critical",
        "patient_name": "Asha Kulkarni",
        "hospital_name": "Ruby Hall Clinic",
        "location": {"city": city, "address": "Sassoon Road", "coordinates": coordinates},
        "contact_phone": "+919811111111",
        "contact_email": None,
        "description": None,
        "status": "Pending",
        "requested_by": None,
        "created_at": now,
        "expires_at": now + timedelta(days=7),
        "responses": [],
        "notified_donors": [],
    }
    request.update(overrides)
    return request


@pytest.fixture
def database():
    return FakeDatabase()


@pytest.fixture
def push_provider():
    return FakePushProvider()


@pytest.fixture
def channels():
    return ChannelRouter(heartbeat_interval=0.01, send_timeout=0.1)


@pytest.fixture
def services(database, push_provider, channels):
    return build_services(database=database, push_provider=push_provider, channels=channels)


@pytest.fixture
def donors_collection(database):
    return database.get_collection("donors")


@pytest.fixture
def requests_collection(database):
    return database.get_collection("requests")
