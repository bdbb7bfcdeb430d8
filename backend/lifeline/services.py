from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import Request
from motor.motor_asyncio import AsyncIOMotorCollection, AsyncIOMotorDatabase

from .database import db
from .matching.donations import DonationRecorder
from .matching.orchestrator import MatchOrchestrator
from .matching.proximity import ProximityLocator
from .matching.responses import ResponseLedger
from .realtime.channels import ChannelRouter
from .stores.donations import DonationStore
from .stores.donors import DonorStore
from .stores.requests import RequestStore
from .utils.notifications import FirebasePushProvider, NotificationFanout, PushProvider


@dataclass
class Services:
    users: AsyncIOMotorCollection
    donors: DonorStore
    requests: RequestStore
    donations: DonationStore
    channels: ChannelRouter
    fanout: NotificationFanout
    locator: ProximityLocator
    recorder: DonationRecorder
    orchestrator: MatchOrchestrator
    ledger: ResponseLedger


def build_services(
    database: AsyncIOMotorDatabase = db,
    push_provider: Optional[PushProvider] = None,
    channels: Optional[ChannelRouter] = None,
) -> Services:
    donors = DonorStore(database.get_collection("donors"))
    requests = RequestStore(database.get_collection("requests"))
    donations = DonationStore(database.get_collection("donations"))
    channels = channels or ChannelRouter()
    fanout = NotificationFanout(push_provider if push_provider is not None else FirebasePushProvider())
    locator = ProximityLocator(donors)
    recorder = DonationRecorder(donations, donors)
    return Services(
        users=database.get_collection("users"),
        donors=donors,
        requests=requests,
        donations=donations,
        channels=channels,
        fanout=fanout,
        locator=locator,
        recorder=recorder,
        orchestrator=MatchOrchestrator(requests, locator, fanout, channels),
        ledger=ResponseLedger(requests, channels, recorder, donors=donors, fanout=fanout),
    )


def get_services(request: Request) -> Services:
    return request.app.state.services
