# cuprite/tests/browser/test_dispatcher.py
"""
Unit tests for command/response correlation and event routing.
"""
import asyncio
from unittest.mock import AsyncMock

import pytest

from conftest import wait_sent
from cuprite.browser.dispatcher import Dispatcher
from cuprite.exceptions import (
    ConnectionClosedError,
    ObsoleteNodeError,
    ProtocolError,
    WaitTimeoutError,
)


@pytest.mark.asyncio
async def test_send_returns_result_payload(transport, dispatcher):
    transport.on("Runtime.evaluate", {"result": {"value": 42}})
    result = await dispatcher.send("Runtime.evaluate", {"expression": "6*7"})
    assert result == {"result": {"value": 42}}
    assert transport.sent[0] == {
        "id": 1,
        "method": "Runtime.evaluate",
        "params": {"expression": "6*7"},
    }


@pytest.mark.asyncio
async def test_ids_are_unique_and_strictly_increasing(transport, dispatcher):
    await asyncio.gather(*(dispatcher.send("Page.enable") for _ in range(5)))
    await dispatcher.send("DOM.enable")
    ids = [m["id"] for m in transport.sent]
    assert ids == sorted(set(ids))
    assert ids == [1, 2, 3, 4, 5, 6]


@pytest.mark.asyncio
async def test_concurrent_commands_are_correlated_out_of_order(
    manual_transport, manual_dispatcher
):
    first = asyncio.create_task(manual_dispatcher.send("A.one"))
    second = asyncio.create_task(manual_dispatcher.send("B.two"))
    await wait_sent(manual_transport, 2)

    ids = {m["method"]: m["id"] for m in manual_transport.sent}
    manual_transport.respond(ids["B.two"], {"which": "two"})
    manual_transport.respond(ids["A.one"], {"which": "one"})

    assert await first == {"which": "one"}
    assert await second == {"which": "two"}


@pytest.mark.asyncio
async def test_session_id_is_attached_when_given(transport, dispatcher):
    await dispatcher.send("Page.enable", session_id="SESSION-9")
    assert transport.sent[0]["sessionId"] == "SESSION-9"


@pytest.mark.asyncio
async def test_error_response_raises_protocol_error(transport, dispatcher):
    transport.on("DOM.resolveNode", error={"code": -32000, "message": "Boom"})
    with pytest.raises(ProtocolError) as excinfo:
        await dispatcher.send("DOM.resolveNode", {"nodeId": 3})
    assert excinfo.value.code == -32000
    assert excinfo.value.message == "Boom"
    assert excinfo.value.method == "DOM.resolveNode"


@pytest.mark.asyncio
async def test_missing_node_is_not_translated_at_dispatch_level(transport, dispatcher):
    transport.on(
        "DOM.resolveNode",
        error={"code": -32000, "message": "No node with given id found"},
    )
    with pytest.raises(ProtocolError) as excinfo:
        await dispatcher.send("DOM.resolveNode", {"nodeId": 3})
    assert not isinstance(excinfo.value, ObsoleteNodeError)
    assert excinfo.value.is_missing_node


@pytest.mark.asyncio
async def test_unknown_response_is_dropped(manual_transport, manual_dispatcher):
    manual_transport.respond(999, {"stray": True})
    task = asyncio.create_task(manual_dispatcher.send("Page.enable"))
    await wait_sent(manual_transport, 1)
    manual_transport.respond(manual_transport.sent[0]["id"], {"ok": True})
    assert await task == {"ok": True}
    assert not manual_dispatcher.closed


@pytest.mark.asyncio
async def test_transport_close_fails_pending_commands(manual_transport, manual_dispatcher):
    task = asyncio.create_task(manual_dispatcher.send("Page.navigate", {"url": "x"}))
    await wait_sent(manual_transport, 1)
    manual_transport.drop()

    with pytest.raises(ConnectionClosedError):
        await task
    assert manual_dispatcher.closed
    assert manual_dispatcher.pending_count == 0
    with pytest.raises(ConnectionClosedError):
        await manual_dispatcher.send("Page.enable")


@pytest.mark.asyncio
async def test_transport_close_fails_pending_waiters(manual_transport, manual_dispatcher):
    waiter = manual_dispatcher.waiters.expect("Page.loadEventFired")
    manual_transport.drop()
    with pytest.raises(ConnectionClosedError):
        await manual_dispatcher.waiters.wait(waiter, timeout=1)


@pytest.mark.asyncio
async def test_callback_registers_before_next_frame(transport, dispatcher):
    transport.on(
        "Page.navigate",
        {"frameId": "F1"},
        events=[("Page.frameStoppedLoading", {"frameId": "F1"})],
    )

    def expect_load(result):
        return dispatcher.waiters.expect(
            "Page.frameStoppedLoading", {"frameId": result["frameId"]}
        )

    waiter = await dispatcher.send("Page.navigate", {"url": "x"}, callback=expect_load)
    # The event was queued right behind the response and must not be lost.
    params = await dispatcher.waiters.wait(waiter, timeout=1)
    assert params == {"frameId": "F1"}


@pytest.mark.asyncio
async def test_callback_exception_fails_only_that_command(transport, dispatcher):
    def explode(result):
        raise ValueError("bad result")

    with pytest.raises(ValueError):
        await dispatcher.send("Page.navigate", callback=explode)
    assert await dispatcher.send("Page.enable") == {}


@pytest.mark.asyncio
async def test_command_timeout_drops_late_response(manual_transport, manual_dispatcher):
    with pytest.raises(WaitTimeoutError):
        await manual_dispatcher.send("Page.enable", timeout=0.05)
    assert manual_dispatcher.pending_count == 0

    manual_transport.respond(manual_transport.sent[0]["id"], {})
    task = asyncio.create_task(manual_dispatcher.send("DOM.enable"))
    await wait_sent(manual_transport, 2)
    manual_transport.respond(manual_transport.sent[1]["id"], {"ok": 1})
    assert await task == {"ok": 1}


@pytest.mark.asyncio
async def test_default_command_timeout_applies(manual_transport):
    d = Dispatcher(manual_transport, command_timeout=0.05)
    d.start()
    try:
        with pytest.raises(WaitTimeoutError):
            await d.send("Page.enable")
    finally:
        await d.close()


@pytest.mark.asyncio
async def test_subscribers_receive_events_in_order(transport, dispatcher):
    seen = []
    unsubscribe = dispatcher.subscribe(
        "Network.requestWillBeSent", lambda params, session: seen.append(params["n"])
    )
    for n in range(3):
        transport.emit("Network.requestWillBeSent", {"n": n})
    await dispatcher.send("Page.enable")
    assert seen == [0, 1, 2]

    unsubscribe()
    transport.emit("Network.requestWillBeSent", {"n": 3})
    await dispatcher.send("Page.enable")
    assert seen == [0, 1, 2]


@pytest.mark.asyncio
async def test_failing_subscriber_does_not_stop_routing(transport, dispatcher):
    seen = []

    def broken(params, session):
        raise RuntimeError("handler bug")

    dispatcher.subscribe("Target.targetCreated", broken)
    dispatcher.subscribe("Target.targetCreated", lambda p, s: seen.append(p))
    transport.emit("Target.targetCreated", {"targetInfo": {}})
    await dispatcher.send("Page.enable")
    assert seen == [{"targetInfo": {}}]


@pytest.mark.asyncio
async def test_close_fails_pending_and_closes_transport(manual_transport):
    d = Dispatcher(manual_transport)
    d.start()
    task = asyncio.create_task(d.send("Page.enable"))
    await wait_sent(manual_transport, 1)
    await d.close()
    with pytest.raises(ConnectionClosedError):
        await task
    assert manual_transport.closed


@pytest.mark.asyncio
async def test_failed_write_does_not_leave_pending_command(transport, dispatcher, monkeypatch):
    monkeypatch.setattr(
        transport, "send", AsyncMock(side_effect=TypeError("not JSON serializable"))
    )
    for _ in range(3):
        with pytest.raises(TypeError):
            await dispatcher.send("Runtime.evaluate", {"expression": object()})
    assert dispatcher.pending_count == 0
    assert not dispatcher.closed


@pytest.mark.asyncio
async def test_cancelled_write_does_not_leave_pending_command(transport, dispatcher, monkeypatch):
    started = asyncio.Event()

    async def stalled_send(message):
        started.set()
        await asyncio.Event().wait()

    monkeypatch.setattr(transport, "send", stalled_send)
    task = asyncio.create_task(dispatcher.send("Page.enable"))
    await started.wait()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert dispatcher.pending_count == 0
