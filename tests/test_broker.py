"""Channel broker tests — rooms, fan-out and the Redis relay envelope.

Learn: The broker is pure in-memory bookkeeping, so these tests use fake
connections (anything with user_id + async send_json) and a fake Redis
that only records PUBLISH calls.
"""

import asyncio
import json
import uuid

import pytest

from helpmatch.realtime.broker import ChannelBroker
from helpmatch.realtime.pubsub import RELAY_CHANNEL, RedisRelay


class FakeConnection:
    def __init__(self, user_id=None):
        self.user_id = user_id or uuid.uuid4()
        self.received: list[dict] = []

    async def send_json(self, payload: dict) -> None:
        self.received.append(payload)


class DeadConnection(FakeConnection):
    async def send_json(self, payload: dict) -> None:
        raise RuntimeError("websocket is closed")


class FakeRedis:
    def __init__(self):
        self.published: list[tuple[str, str]] = []

    async def publish(self, channel: str, payload: str) -> None:
        self.published.append((channel, payload))


# ═══════════════════════════════════════════════════════════
# Rooms
# ═══════════════════════════════════════════════════════════


def test_join_and_leave_room(broker):
    a, b = FakeConnection(), FakeConnection()
    broker.join_room(1, a)
    broker.join_room(1, b)
    broker.join_room(2, a)
    assert broker.members(1) == {a, b}
    assert broker.rooms_of(a) == {1, 2}

    broker.leave_room(a, 1)
    assert broker.members(1) == {b}
    assert broker.rooms_of(a) == {2}


def test_join_twice_is_idempotent(broker):
    a = FakeConnection()
    broker.join_room(1, a)
    broker.join_room(1, a)
    assert broker.members(1) == {a}


def test_leave_unknown_is_noop(broker):
    a = FakeConnection()
    broker.leave_room(a, 1)
    broker.leave_room(a)
    broker.join_room(1, a)
    broker.leave_room(a, 99)
    assert broker.members(1) == {a}


def test_unregister_leaves_every_room(broker):
    a = FakeConnection()
    broker.register(a)
    broker.join_room(1, a)
    broker.join_room(2, a)

    broker.unregister(a)
    broker.unregister(a)  # second disconnect is harmless
    assert broker.members(1) == set()
    assert broker.members(2) == set()
    assert broker.connections_of(a.user_id) == set()


# ═══════════════════════════════════════════════════════════
# Fan-out
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_broadcast_reaches_room_only(broker):
    a, b, outsider = FakeConnection(), FakeConnection(), FakeConnection()
    broker.join_room(1, a)
    broker.join_room(1, b)
    broker.join_room(2, outsider)

    delivered = await broker.broadcast(1, {"type": "receive_message", "message": {"id": 1}})
    assert delivered == 2
    assert a.received == b.received == [{"type": "receive_message", "message": {"id": 1}}]
    assert outsider.received == []


@pytest.mark.asyncio
async def test_broadcast_to_empty_room(broker):
    assert await broker.broadcast(42, {"type": "receive_message"}) == 0


@pytest.mark.asyncio
async def test_dead_connection_is_dropped(broker):
    alive, dead = FakeConnection(), DeadConnection()
    for conn in (alive, dead):
        broker.register(conn)
        broker.join_room(1, conn)

    delivered = await broker.broadcast(1, {"type": "receive_message"})
    assert delivered == 1
    assert alive.received == [{"type": "receive_message"}]
    assert broker.members(1) == {alive}
    assert broker.connections_of(dead.user_id) == set()


@pytest.mark.asyncio
async def test_notify_user_reaches_every_tab(broker):
    user_id = uuid.uuid4()
    tab1, tab2, other = FakeConnection(user_id), FakeConnection(user_id), FakeConnection()
    for conn in (tab1, tab2, other):
        broker.register(conn)

    delivered = await broker.notify_user(user_id, {"type": "request_updated"})
    assert delivered == 2
    assert tab1.received == tab2.received == [{"type": "request_updated"}]
    assert other.received == []


def test_reset_clears_everything(broker):
    a = FakeConnection()
    broker.register(a)
    broker.join_room(1, a)
    broker.reset()
    assert broker.members(1) == set()
    assert broker.connections_of(a.user_id) == set()


# ═══════════════════════════════════════════════════════════
# Redis relay
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_broadcast_publishes_to_relay(broker):
    redis = FakeRedis()
    broker.relay = RedisRelay(redis, broker)

    await broker.broadcast(7, {"type": "receive_message"})

    assert len(redis.published) == 1
    channel, raw = redis.published[0]
    assert channel == RELAY_CHANNEL
    envelope = json.loads(raw)
    assert envelope == {
        "origin": broker.instance_id,
        "target": "room",
        "key": "7",
        "event": {"type": "receive_message"},
    }


@pytest.mark.asyncio
async def test_relay_delivers_from_other_instances():
    here = ChannelBroker(instance_id="here")
    relay = RedisRelay(FakeRedis(), here)
    conn = FakeConnection()
    here.register(conn)
    here.join_room(3, conn)

    await relay.handle(json.dumps({
        "origin": "elsewhere", "target": "room", "key": "3",
        "event": {"type": "receive_message"},
    }))
    await relay.handle(json.dumps({
        "origin": "elsewhere", "target": "user", "key": str(conn.user_id),
        "event": {"type": "request_updated"},
    }))

    assert conn.received == [{"type": "receive_message"}, {"type": "request_updated"}]


@pytest.mark.asyncio
async def test_relay_skips_own_echo_and_garbage():
    here = ChannelBroker(instance_id="here")
    redis = FakeRedis()
    relay = RedisRelay(redis, here)
    conn = FakeConnection()
    here.join_room(3, conn)

    await relay.handle(json.dumps({
        "origin": "here", "target": "room", "key": "3", "event": {"type": "x"},
    }))
    await relay.handle("not json")

    assert conn.received == []
    # Local delivery from the relay never re-publishes
    assert redis.published == []


@pytest.mark.asyncio
async def test_relay_publish_failure_is_not_fatal(broker):
    class BrokenRedis:
        async def publish(self, channel, payload):
            raise ConnectionError("redis down")

    conn = FakeConnection()
    broker.join_room(1, conn)
    broker.relay = RedisRelay(BrokenRedis(), broker)

    assert await broker.broadcast(1, {"type": "receive_message"}) == 1
    assert conn.received == [{"type": "receive_message"}]


class FakePubSub:
    """Yields the given frames, then either fails or idles until cancelled."""

    def __init__(self, frames, fail_with=None):
        self.frames = frames
        self.fail_with = fail_with
        self.drained = asyncio.Event()

    async def subscribe(self, channel):
        pass

    async def unsubscribe(self, channel):
        pass

    async def aclose(self):
        pass

    async def listen(self):
        for frame in self.frames:
            yield {"type": "message", "data": frame}
        self.drained.set()
        if self.fail_with is not None:
            raise self.fail_with
        await asyncio.Event().wait()


class ListeningRedis(FakeRedis):
    def __init__(self, pubsubs):
        super().__init__()
        self.pubsubs = list(pubsubs)

    def pubsub(self):
        return self.pubsubs.pop(0)


def _room_frame(key, event_type="receive_message"):
    return json.dumps({
        "origin": "elsewhere", "target": "room", "key": key, "event": {"type": event_type},
    })


@pytest.mark.asyncio
@pytest.mark.parametrize("envelope", [
    {"origin": "elsewhere", "target": "room", "key": "not-an-int", "event": {}},
    {"origin": "elsewhere", "target": "user", "key": "not-a-uuid", "event": {}},
    {"origin": "elsewhere", "target": "room", "event": {}},
    {"origin": "elsewhere", "target": "galaxy", "key": "1", "event": {}},
])
async def test_relay_drops_malformed_envelope(envelope):
    here = ChannelBroker(instance_id="here")
    conn = FakeConnection()
    here.join_room(3, conn)

    await RedisRelay(FakeRedis(), here).handle(json.dumps(envelope))
    await RedisRelay(FakeRedis(), here).handle(json.dumps(["not", "an", "object"]))
    assert conn.received == []


@pytest.mark.asyncio
async def test_relay_listener_survives_bad_envelope():
    here = ChannelBroker(instance_id="here")
    conn = FakeConnection()
    here.join_room(3, conn)
    pubsub = FakePubSub([_room_frame("not-an-int"), _room_frame("3")])
    relay = RedisRelay(ListeningRedis([pubsub]), here)

    task = asyncio.create_task(relay.run())
    await asyncio.wait_for(pubsub.drained.wait(), timeout=1)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert conn.received == [{"type": "receive_message"}]


@pytest.mark.asyncio
async def test_relay_listener_reconnects_after_connection_loss():
    here = ChannelBroker(instance_id="here")
    conn = FakeConnection()
    here.join_room(3, conn)
    dropped = FakePubSub([_room_frame("3", "first")], fail_with=ConnectionError("reset"))
    fresh = FakePubSub([_room_frame("3", "second")])
    relay = RedisRelay(ListeningRedis([dropped, fresh]), here)

    task = asyncio.create_task(relay.run(retry_delay=0))
    await asyncio.wait_for(fresh.drained.wait(), timeout=1)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert conn.received == [{"type": "first"}, {"type": "second"}]
