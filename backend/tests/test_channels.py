import asyncio

import pytest

from lifeline.realtime.channels import ChannelRouter, blood_type_channel, city_channel, normalize_city, user_channel

from conftest import FakeConnection


def test_city_names_normalize_to_one_channel():
    assert normalize_city("New York") == normalize_city("  new   york ") == "new_york"
    assert city_channel("Pune") == "city:pune"
    assert blood_type_channel("o-") == "bloodType:O-"
    assert user_channel("donor-1") == "user:donor-1"


@pytest.mark.asyncio
async def test_subscribe_is_idempotent():
    router = ChannelRouter(heartbeat_interval=60)
    connection = FakeConnection("c1")
    await router.connect(connection)

    await router.subscribe(connection, "city:pune")
    await router.subscribe(connection, "city:pune")

    assert router.members("city:pune") == {"c1"}
    delivered = await router.publish("city:pune", "emergencyAlert", {"id": "r1"})
    assert delivered == 1
    assert connection.events() == ["emergencyAlert"]


@pytest.mark.asyncio
async def test_publish_reaches_only_subscribers():
    router = ChannelRouter(heartbeat_interval=60)
    pune, mumbai = FakeConnection("pune"), FakeConnection("mumbai")
    await router.join(pune, {"city": "Pune", "bloodType": "O-"})
    await router.join(mumbai, {"city": "Mumbai"})

    await router.publish(city_channel("PUNE"), "emergencyAlert", {})

    assert pune.events() == ["emergencyAlert"]
    assert mumbai.events() == []


@pytest.mark.asyncio
async def test_publish_many_delivers_once_per_connection():
    router = ChannelRouter(heartbeat_interval=60)
    connection = FakeConnection("c1")
    joined = await router.join(connection, {"userId": "donor-1", "city": "Pune", "bloodType": "O-"})

    delivered = await router.publish_many(joined, "emergencyAlert", {})

    assert joined == ["user:donor-1", "city:pune", "bloodType:O-"]
    assert delivered == 1
    assert connection.events() == ["emergencyAlert"]


@pytest.mark.asyncio
async def test_disconnect_removes_every_subscription():
    router = ChannelRouter(heartbeat_interval=60)
    connection = FakeConnection("c1")
    await router.connect(connection)
    await router.join(connection, {"userId": "donor-1", "city": "Pune"})

    await router.disconnect("c1")

    assert router.connection_count == 0
    assert router.members("city:pune") == set()
    assert router.subscriptions("c1") == set()
    assert await router.broadcast_all("newRequest", {}) == 0


@pytest.mark.asyncio
async def test_failed_send_drops_connection():
    router = ChannelRouter(heartbeat_interval=60)
    healthy, broken = FakeConnection("ok"), FakeConnection("broken", fail=True)
    for connection in (healthy, broken):
        await router.connect(connection)
        await router.subscribe(connection, "city:pune")

    delivered = await router.broadcast_all("newRequest", {})

    assert delivered == 1
    assert router.members("city:pune") == {"ok"}
    assert router.connection_count == 1


@pytest.mark.asyncio
async def test_unsubscribe_keeps_other_channels():
    router = ChannelRouter(heartbeat_interval=60)
    connection = FakeConnection("c1")
    await router.join(connection, {"city": "Pune", "bloodType": "A+"})

    await router.unsubscribe("c1", "city:pune")

    assert router.subscriptions("c1") == {"bloodType:A+"}


@pytest.mark.asyncio
async def test_heartbeat_pings_connected_clients():
    router = ChannelRouter(heartbeat_interval=0.01)
    connection = FakeConnection("c1")
    await router.connect(connection)

    router.start()
    await asyncio.sleep(0.05)
    await router.shutdown()

    pings = [payload for event, payload in connection.received if event == "ping"]
    assert pings
    assert isinstance(pings[0]["timestamp"], int)
    assert router.connection_count == 0


class StalledConnection(FakeConnection):
    async def send(self, event, payload):
        await asyncio.Event().wait()


class MeddlingConnection(FakeConnection):
    """Disconnects another client and admits a newcomer from inside its own send."""

    def __init__(self, connection_id, router, victim_id, newcomer):
        super().__init__(connection_id)
        self.router = router
        self.victim_id = victim_id
        self.newcomer = newcomer

    async def send(self, event, payload):
        await self.router.disconnect(self.victim_id)
        await self.router.subscribe(self.newcomer, "city:pune")
        await super().send(event, payload)


def _assert_consistent(router):
    for channel, members in router._channels.items():
        assert members
        for connection_id in members:
            assert connection_id in router._connections
            assert channel in router._memberships[connection_id]
    for connection_id, channels in router._memberships.items():
        assert connection_id in router._connections
        for channel in channels:
            assert connection_id in router._channels[channel]


@pytest.mark.asyncio
async def test_stalled_send_is_dropped_after_timeout():
    router = ChannelRouter(heartbeat_interval=60, send_timeout=0.05)
    healthy, stalled = FakeConnection("ok"), StalledConnection("stalled")
    for connection in (healthy, stalled):
        await router.connect(connection)
        await router.subscribe(connection, "city:pune")

    delivered = await asyncio.wait_for(router.broadcast_all("newRequest", {}), 2)

    assert delivered == 1
    assert healthy.events() == ["newRequest"]
    assert router.members("city:pune") == {"ok"}
    assert router.connection_count == 1


@pytest.mark.asyncio
async def test_membership_changes_during_broadcast_stay_consistent():
    router = ChannelRouter(heartbeat_interval=60)
    victim, newcomer = FakeConnection("victim"), FakeConnection("newcomer")
    meddler = MeddlingConnection("meddler", router, "victim", newcomer)
    for connection in (victim, meddler):
        await router.connect(connection)
        await router.join(connection, {"city": "Pune"})

    delivered = await router.broadcast_all("newRequest", {})

    # the victim was already a recipient when the broadcast started
    assert delivered == 2
    assert meddler.events() == ["newRequest"]
    assert newcomer.events() == []
    assert router.members("city:pune") == {"meddler", "newcomer"}
    assert router.subscriptions("victim") == set()
    _assert_consistent(router)

    assert await router.publish("city:pune", "emergencyAlert", {}) == 2
    assert newcomer.events() == ["emergencyAlert"]
    _assert_consistent(router)
