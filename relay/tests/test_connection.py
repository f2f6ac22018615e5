import json
from http import HTTPStatus

import pytest

from conftest import FakeConnection, FakeRequest
from handlers.connection import ConnectionHandler, client_address


def chat(text):
    return json.dumps({"msg_type": "chat_message", "payload": {"text": text}})


class Recorder:
    """Collects broadcasts instead of writing to sockets."""

    def __init__(self):
        self.calls = []

    def __call__(self, connections, message):
        self.calls.append((list(connections), json.loads(message)))


@pytest.fixture
def broadcasts():
    return Recorder()


@pytest.fixture
def handler(admission, broadcasts):
    return ConnectionHandler(admission, broadcaster=broadcasts, trust_proxy=False)


def test_health_check_bypasses_upgrade(handler):
    response = handler.process_request(FakeConnection(), FakeRequest("/"))
    assert response.status_code == HTTPStatus.OK
    assert "running" in response.body


def test_handshake_allowed_for_clean_address(handler):
    conn = FakeConnection()
    assert handler.process_request(conn, conn.request) is None


def test_handshake_refused_for_banned_address(handler, admission):
    admission.bans.ban("198.51.100.9", 120)
    conn = FakeConnection(ip="198.51.100.9")
    response = handler.process_request(conn, conn.request)
    assert response.status_code == HTTPStatus.FORBIDDEN
    assert json.loads(response.body)["error_code"] == "TEMP_BANNED"
    assert response.headers["Retry-After"] == "120"


def test_handshake_retry_after_agrees_with_body(handler, admission, clock):
    admission.bans.ban("198.51.100.9", 120)
    clock.advance(119.6)
    conn = FakeConnection(ip="198.51.100.9")
    response = handler.process_request(conn, conn.request)
    assert response.headers["Retry-After"] == "1"
    assert json.loads(response.body)["payload"]["retry_after"] == 1


def test_client_address_honours_proxy_flag():
    conn = FakeConnection(ip="10.1.1.1", headers={"X-Forwarded-For": "203.0.113.5, 10.0.0.1"})
    assert client_address(conn, conn.request.headers, trust_proxy=False) == "10.1.1.1"
    assert client_address(conn, conn.request.headers, trust_proxy=True) == "203.0.113.5"


@pytest.mark.asyncio
async def test_messages_are_sanitized_and_broadcast(handler, broadcasts, admission):
    conn = FakeConnection([chat("  <i>hi</i> ")])
    await handler.handle_connection(conn)

    assert len(broadcasts.calls) == 1
    recipients, message = broadcasts.calls[0]
    assert recipients == [conn]
    assert message["payload"]["text"] == "&lt;i&gt;hi&lt;/i&gt;"
    # state is released once the connection ends
    assert conn.id not in admission.limiter
    assert handler.connections == {}


@pytest.mark.asyncio
async def test_invalid_frames_are_dropped_silently(handler, broadcasts):
    conn = FakeConnection([b"\x00\x01", "garbage", "[" * 5000, chat("   "), chat(None), chat("still here")])
    await handler.handle_connection(conn)
    assert conn.sent == []
    assert conn.closed is None
    # the connection survives and keeps relaying
    [(_, message)] = broadcasts.calls
    assert message["payload"]["text"] == "still here"


@pytest.mark.asyncio
async def test_too_long_gets_notice_without_violation(handler, admission, broadcasts):
    conn = FakeConnection([chat("x" * 501)])
    await handler.handle_connection(conn)
    [notice] = [json.loads(m) for m in conn.sent]
    assert notice["error_code"] == "TOO_LONG"
    assert notice["payload"] == {}
    assert broadcasts.calls == []


@pytest.mark.asyncio
async def test_unknown_message_type(handler):
    conn = FakeConnection([json.dumps({"msg_type": "dance"})])
    await handler.handle_connection(conn)
    [reply] = [json.loads(m) for m in conn.sent]
    assert reply["error_code"] == "UNKNOWN_MESSAGE_TYPE"
    assert reply["msg_type"] == "dance"


@pytest.mark.asyncio
async def test_flood_is_rate_limited_then_banned(handler, admission, broadcasts):
    conn = FakeConnection([chat(f"msg {i}") for i in range(30)], ip="192.0.2.7")
    await handler.handle_connection(conn)

    assert len(broadcasts.calls) == 10
    errors = [json.loads(m) for m in conn.sent]
    codes = [e["error_code"] for e in errors]
    assert codes == ["RATE_LIMIT_EXCEEDED"] * 5 + ["TEMP_BANNED"]
    assert [e["payload"]["violation_count"] for e in errors[:5]] == [1, 2, 3, 4, 5]
    assert errors[-1]["payload"]["retry_after"] == 120
    assert conn.closed == (4008, "TEMP_BANNED")

    # the address can no longer connect
    again = FakeConnection(ip="192.0.2.7")
    response = handler.process_request(again, again.request)
    assert response.status_code == HTTPStatus.FORBIDDEN


@pytest.mark.asyncio
async def test_banned_address_slipping_past_handshake_is_closed(handler, admission):
    admission.bans.ban("192.0.2.8", 60)
    conn = FakeConnection([chat("hi")], ip="192.0.2.8")
    await handler.handle_connection(conn)
    assert conn.closed == (4008, "TEMP_BANNED")
    assert json.loads(conn.sent[0])["error_code"] == "TEMP_BANNED"
    assert conn.id not in admission.limiter


@pytest.mark.asyncio
async def test_missing_state_closes_with_internal_error(handler, admission):
    conn = FakeConnection([chat("one"), chat("two")])
    # state vanishes mid-session: a broken register/unregister pairing
    original = handler.chat_handler.handle_chat_message

    async def drop_then_handle(ws, client_id, payload):
        admission.unregister(client_id)
        return await original(ws, client_id, payload)

    handler.handlers["chat_message"] = drop_then_handle
    await handler.handle_connection(conn)
    assert conn.closed == (1011, "Internal error")
    assert handler.connections == {}


@pytest.mark.asyncio
async def test_broadcast_reaches_all_connections(handler, broadcasts):
    listener = FakeConnection()
    handler.connections["listener"] = listener
    conn = FakeConnection([chat("hello all")])
    await handler.handle_connection(conn)
    recipients, _ = broadcasts.calls[0]
    assert set(map(id, recipients)) == {id(listener), id(conn)}
