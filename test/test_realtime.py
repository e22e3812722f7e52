import asyncio
import json

import pytest
from fastapi import WebSocketDisconnect
from fastapi.testclient import TestClient

from restos import realtime, ws_bridge


class FakeSocket:
    def __init__(self, fail=False):
        self.fail = fail
        self.sent: list[str] = []

    async def send_text(self, data: str) -> None:
        if self.fail:
            raise WebSocketDisconnect(code=1006)
        self.sent.append(data)


@pytest.fixture(autouse=True)
def no_connections():
    ws_bridge.store_connections.clear()
    yield
    ws_bridge.store_connections.clear()


@pytest.mark.parametrize("channel, expected", [
    ("orders:store:7", 7),
    ("orders:store:abc", None),
    ("orders:table:7", None),
    ("orders:store", None),
])
def test_parse_store_channel(channel, expected):
    assert ws_bridge.parse_store_channel(channel) == expected


def test_store_channel_name_round_trips():
    assert ws_bridge.parse_store_channel(realtime.store_channel(12)) == 12


def test_broadcast_reaches_only_that_store_and_drops_dead_sockets():
    alive, dead, elsewhere = FakeSocket(), FakeSocket(fail=True), FakeSocket()
    ws_bridge.store_connections[1] = {alive, dead}
    ws_bridge.store_connections[2] = {elsewhere}

    sent = asyncio.run(ws_bridge.broadcast(1, '{"type": "new_order"}'))

    assert sent == 1
    assert alive.sent == ['{"type": "new_order"}']
    assert elsewhere.sent == []
    assert ws_bridge.store_connections[1] == {alive}


def test_store_entry_removed_when_last_socket_dies():
    ws_bridge.store_connections[1] = {FakeSocket(fail=True)}
    asyncio.run(ws_bridge.broadcast(1, "{}"))
    assert 1 not in ws_bridge.store_connections


def test_handle_message_decodes_redis_payload():
    socket = FakeSocket()
    ws_bridge.store_connections[3] = {socket}
    message = {"type": "pmessage", "channel": b"orders:store:3", "data": b'{"order_id": 5}'}

    asyncio.run(ws_bridge.handle_message(message))
    asyncio.run(ws_bridge.handle_message({"type": "psubscribe", "channel": b"orders:store:*", "data": 1}))

    assert [json.loads(m) for m in socket.sent] == [{"order_id": 5}]


def test_bridge_health():
    ws_bridge.store_connections[1] = {FakeSocket(), FakeSocket()}
    body = TestClient(ws_bridge.app).get("/health").json()
    assert body == {"status": "ok", "stores": 1, "total_connections": 2}


def test_publish_serializes_event(monkeypatch):
    class FakeRedis:
        def __init__(self):
            self.published = []

        def publish(self, channel, message):
            self.published.append((channel, message))

    fake = FakeRedis()
    monkeypatch.setattr(realtime, "get_redis", lambda: fake)

    realtime.publish_order_update(4, {"type": "order_paid", "order_id": 9})

    channel, message = fake.published[0]
    assert channel == "orders:store:4"
    assert json.loads(message) == {"type": "order_paid", "order_id": 9}


def test_publish_without_redis_is_a_no_op(monkeypatch):
    monkeypatch.setattr(realtime, "get_redis", lambda: None)
    realtime.publish_order_update(4, {"type": "new_order"})
