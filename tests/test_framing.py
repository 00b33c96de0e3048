"""Tests for JSON-RPC framing: correlation, deadlines, keepalive, and close."""

from __future__ import annotations

import asyncio

import pytest

from fakes import feed, make_pipes, wait_for_messages
from kspec.acp.errors import RemoteError, RequestTimeoutError, TransportClosedError
from kspec.acp.framing import JsonRpcFraming
from kspec.acp.types import INVALID_REQUEST, PARSE_ERROR, JsonRpcNotification, JsonRpcRequest


def _reply(reader, request_id, result) -> None:
    feed(reader, {"jsonrpc": "2.0", "id": request_id, "result": result})


@pytest.mark.asyncio
async def test_replies_settle_their_own_request_out_of_order() -> None:
    reader, writer = make_pipes()
    framing = JsonRpcFraming(reader, writer, timeout=5)
    framing.start()

    calls = [
        asyncio.create_task(framing.send_request("echo", {"n": n})) for n in range(3)
    ]
    sent = await wait_for_messages(writer, 3)
    assert [m["id"] for m in sent] == [1, 2, 3]

    for message in reversed(sent):
        _reply(reader, message["id"], {"n": message["params"]["n"]})

    results = await asyncio.gather(*calls)
    assert results == [{"n": 0}, {"n": 1}, {"n": 2}]
    assert framing.pending_count == 0
    framing.close()


@pytest.mark.asyncio
async def test_request_times_out_without_reply() -> None:
    reader, writer = make_pipes()
    framing = JsonRpcFraming(reader, writer, timeout=0.1)
    framing.start()

    with pytest.raises(RequestTimeoutError) as exc_info:
        await framing.send_request("slow")

    err = exc_info.value
    assert err.method == "slow"
    assert err.timeout == 0.1
    assert err.elapsed >= 0.09
    assert framing.pending_count == 0
    framing.close()


@pytest.mark.asyncio
async def test_agent_activity_extends_pending_deadlines() -> None:
    reader, writer = make_pipes()
    framing = JsonRpcFraming(reader, writer, timeout=0.3)
    framing.start()

    call = asyncio.create_task(framing.send_request("work"))
    await wait_for_messages(writer, 1)
    await asyncio.sleep(0.15)
    feed(reader, {"jsonrpc": "2.0", "method": "session/update", "params": {}})

    # Past the original deadline but inside the extended one.
    await asyncio.sleep(0.2)
    assert not call.done()

    with pytest.raises(RequestTimeoutError) as exc_info:
        await call
    assert exc_info.value.elapsed >= 0.44
    framing.close()


@pytest.mark.asyncio
async def test_responses_do_not_extend_other_deadlines() -> None:
    reader, writer = make_pipes()
    framing = JsonRpcFraming(reader, writer, timeout=0.3)
    framing.start()

    first = asyncio.create_task(framing.send_request("first"))
    second = asyncio.create_task(framing.send_request("second"))
    sent = await wait_for_messages(writer, 2)
    await asyncio.sleep(0.15)
    _reply(reader, sent[1]["id"], {"ok": True})

    assert await second == {"ok": True}
    with pytest.raises(RequestTimeoutError) as exc_info:
        await first
    assert 0.29 <= exc_info.value.elapsed < 0.42
    framing.close()


@pytest.mark.asyncio
async def test_method_timeouts_override_default() -> None:
    reader, writer = make_pipes()
    framing = JsonRpcFraming(reader, writer, timeout=1, method_timeouts={"quick": 0.05})
    assert framing.timeout_for("quick") == 0.05
    assert framing.timeout_for("session/prompt") == 300.0
    assert framing.timeout_for("other") == 1


@pytest.mark.asyncio
async def test_close_fails_pending_and_is_idempotent() -> None:
    reader, writer = make_pipes()
    framing = JsonRpcFraming(reader, writer, timeout=5)
    framing.start()

    call = asyncio.create_task(framing.send_request("never"))
    await wait_for_messages(writer, 1)

    framing.close("shutting down")
    framing.close("again")

    with pytest.raises(TransportClosedError, match="shutting down"):
        await call
    assert framing.is_closed
    assert framing.pending_count == 0
    assert await framing.receive() is None

    with pytest.raises(TransportClosedError):
        await framing.send_request("late")
    await asyncio.wait_for(framing.wait_closed(), timeout=1)


@pytest.mark.asyncio
async def test_eof_closes_and_fails_pending() -> None:
    reader, writer = make_pipes()
    framing = JsonRpcFraming(reader, writer, timeout=5)
    framing.start()

    call = asyncio.create_task(framing.send_request("work"))
    await wait_for_messages(writer, 1)
    reader.feed_eof()

    with pytest.raises(TransportClosedError):
        await call
    assert framing.is_closed


@pytest.mark.asyncio
async def test_write_failure_closes_transport() -> None:
    reader, writer = make_pipes()
    framing = JsonRpcFraming(reader, writer, timeout=5)
    framing.start()
    writer.broken = True

    with pytest.raises(TransportClosedError):
        await framing.send_request("work")
    assert framing.is_closed


@pytest.mark.asyncio
async def test_unparseable_line_gets_parse_error_reply() -> None:
    reader, writer = make_pipes()
    framing = JsonRpcFraming(reader, writer, timeout=5)
    framing.start()

    reader.feed_data(b"this is not json\n")
    [reply] = await wait_for_messages(writer, 1)

    assert reply["id"] is None
    assert reply["error"]["code"] == PARSE_ERROR
    assert reply["error"]["data"] == {"line": "this is not json"}
    assert not framing.is_closed
    framing.close()


@pytest.mark.asyncio
async def test_failed_error_reply_stops_reading() -> None:
    reader, writer = make_pipes()
    framing = JsonRpcFraming(reader, writer, timeout=5)
    framing.start()
    writer.broken = True

    reader.feed_data(b"this is not json\n")
    feed(reader, {"jsonrpc": "2.0", "method": "session/update", "params": {}})

    await asyncio.wait_for(framing.wait_closed(), timeout=1)
    await asyncio.wait_for(framing._reader_task, timeout=1)
    assert await framing.receive() is None


@pytest.mark.asyncio
async def test_invalid_message_gets_invalid_request_reply() -> None:
    reader, writer = make_pipes()
    framing = JsonRpcFraming(reader, writer, timeout=5)
    framing.start()

    bad = {"jsonrpc": "2.0", "id": True, "method": "x"}
    feed(reader, bad)
    [reply] = await wait_for_messages(writer, 1)

    assert reply["id"] is None
    assert reply["error"]["code"] == INVALID_REQUEST
    assert reply["error"]["data"] == bad
    framing.close()


@pytest.mark.asyncio
async def test_inbound_requests_and_notifications_are_queued() -> None:
    reader, writer = make_pipes()
    framing = JsonRpcFraming(reader, writer, timeout=5)
    framing.start()

    feed(reader, {"jsonrpc": "2.0", "method": "session/update", "params": {"a": 1}})
    feed(reader, {"jsonrpc": "2.0", "id": "r1", "method": "fs/read", "params": {}})

    first = await asyncio.wait_for(framing.receive(), timeout=1)
    second = await asyncio.wait_for(framing.receive(), timeout=1)
    assert first == JsonRpcNotification(method="session/update", params={"a": 1})
    assert second == JsonRpcRequest(id="r1", method="fs/read", params={})

    reader.feed_eof()
    assert [m async for m in framing.messages()] == []


@pytest.mark.asyncio
async def test_error_reply_raises_remote_error() -> None:
    reader, writer = make_pipes()
    framing = JsonRpcFraming(reader, writer, timeout=5)
    framing.start()

    call = asyncio.create_task(framing.send_request("session/cancel", silent_method_not_found=True))
    [sent] = await wait_for_messages(writer, 1)
    feed(
        reader,
        {"jsonrpc": "2.0", "id": sent["id"], "error": {"code": -32601, "message": "nope"}},
    )

    with pytest.raises(RemoteError) as exc_info:
        await call
    assert exc_info.value.is_method_not_found
    assert exc_info.value.method == "session/cancel"
    framing.close()


@pytest.mark.asyncio
async def test_reply_for_unknown_id_is_ignored() -> None:
    reader, writer = make_pipes()
    framing = JsonRpcFraming(reader, writer, timeout=5)
    framing.start()

    _reply(reader, 99, "stray")
    call = asyncio.create_task(framing.send_request("ping"))
    [sent] = await wait_for_messages(writer, 1)
    _reply(reader, sent["id"], "pong")

    assert await asyncio.wait_for(call, timeout=1) == "pong"
    framing.close()
