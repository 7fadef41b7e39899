# cuprite/tests/conftest.py
"""
Shared fixtures: an in-memory transport that records outbound commands and
answers them from a script, plus a started dispatcher and browser on top.
"""
import asyncio
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union

import pytest
import pytest_asyncio

from cuprite.browser.dispatcher import Dispatcher
from cuprite.browser.session import Browser
from cuprite.exceptions import ConnectionClosedError
from cuprite.schemas.settings import BrowserSettings

_CLOSED = object()

Result = Union[Dict[str, Any], Callable[[Dict[str, Any]], Dict[str, Any]]]
Events = Union[
    Iterable[Tuple[str, Dict[str, Any]]],
    Callable[[Dict[str, Any]], Iterable[Tuple[str, Dict[str, Any]]]],
]


class FakeTransport:
    """Scripted stand-in for the websocket transport.

    ``on(method, ...)`` scripts the reply to a command. Unscripted commands
    get an empty result unless ``auto_respond`` is off, in which case the
    test answers by hand with ``respond``.
    """

    def __init__(self, auto_respond: bool = True):
        self.auto_respond = auto_respond
        self.sent: List[Dict[str, Any]] = []
        self.closed = False
        self._inbox: "asyncio.Queue[Any]" = asyncio.Queue()
        self._script: Dict[str, Tuple[Optional[Result], Optional[dict], Events]] = {}

    def on(
        self,
        method: str,
        result: Optional[Result] = None,
        *,
        error: Optional[Dict[str, Any]] = None,
        events: Events = (),
    ) -> None:
        self._script[method] = (result, error, events)

    async def send(self, message: Dict[str, Any]) -> None:
        if self.closed:
            raise ConnectionClosedError("fake transport closed")
        self.sent.append(message)
        method = message["method"]
        if method not in self._script:
            if self.auto_respond:
                self.respond(message["id"], {})
            return

        result, error, events = self._script[method]
        params = message.get("params", {})
        if error is not None:
            self.feed({"id": message["id"], "error": error})
        else:
            payload = result(params) if callable(result) else (result or {})
            self.respond(message["id"], payload)
        for event, event_params in events(params) if callable(events) else events:
            self.emit(event, event_params, message.get("sessionId"))

    async def receive(self) -> Dict[str, Any]:
        item = await self._inbox.get()
        if item is _CLOSED:
            raise ConnectionClosedError("fake transport closed")
        return item

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._inbox.put_nowait(_CLOSED)

    def feed(self, message: Dict[str, Any]) -> None:
        self._inbox.put_nowait(message)

    def respond(self, command_id: int, result: Dict[str, Any]) -> None:
        self.feed({"id": command_id, "result": result})

    def emit(
        self, method: str, params: Dict[str, Any], session_id: Optional[str] = None
    ) -> None:
        message: Dict[str, Any] = {"method": method, "params": params}
        if session_id is not None:
            message["sessionId"] = session_id
        self.feed(message)

    def drop(self) -> None:
        """Simulates the remote end going away."""
        self._inbox.put_nowait(_CLOSED)

    def methods(self) -> List[str]:
        return [m["method"] for m in self.sent]

    def sent_for(self, method: str) -> List[Dict[str, Any]]:
        return [m for m in self.sent if m["method"] == method]


async def wait_sent(transport: FakeTransport, count: int) -> None:
    """Yields to the loop until ``count`` frames have been written."""
    for _ in range(200):
        if len(transport.sent) >= count:
            return
        await asyncio.sleep(0)
    raise AssertionError(f"expected {count} frames, got {len(transport.sent)}")


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def manual_transport() -> FakeTransport:
    return FakeTransport(auto_respond=False)


@pytest_asyncio.fixture
async def dispatcher(transport):
    d = Dispatcher(transport)
    d.start()
    yield d
    await d.close()


@pytest_asyncio.fixture
async def manual_dispatcher(manual_transport):
    d = Dispatcher(manual_transport)
    d.start()
    yield d
    await d.close()


@pytest_asyncio.fixture
async def browser(dispatcher):
    settings = BrowserSettings(navigation_timeout=0.2)
    b = Browser(dispatcher, "TARGET-1", "SESSION-1", settings)
    yield b
    await b.close()
