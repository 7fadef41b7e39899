# cuprite/browser/transport.py
"""
Message channel to the controlled browser.

The session core only needs three things from a transport: push a JSON
message out, pull the next JSON message in, and close. `WebSocketTransport`
provides them over the browser's remote debugging websocket; tests plug in
an in-memory implementation of the same `Transport` protocol.
"""

from __future__ import annotations

import json
from typing import Any, Dict, Optional, Protocol

import httpx
from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed

from cuprite.exceptions import ConnectionClosedError, DiscoveryError
from cuprite.utils.logger import setup_logger

logger = setup_logger(__name__)

DISCOVERY_TIMEOUT = httpx.Timeout(connect=5.0, read=10.0, write=10.0, pool=5.0)


class Transport(Protocol):
    async def send(self, message: Dict[str, Any]) -> None: ...

    async def receive(self) -> Dict[str, Any]:
        """Returns the next inbound message, raising `ConnectionClosedError`
        once the channel is gone."""
        ...

    async def close(self) -> None: ...


async def discover_ws_url(
    host: str,
    port: int,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> str:
    """Asks the browser's HTTP endpoint for its browser-level websocket URL.

    :param host: Host of the remote debugging endpoint.
    :type host: str
    :param port: Port of the remote debugging endpoint.
    :type port: int
    :param transport: Optional httpx transport, used by tests.
    :type transport: Optional[httpx.AsyncBaseTransport]
    :return: The ``webSocketDebuggerUrl`` advertised by ``/json/version``.
    :rtype: str
    :raises DiscoveryError: If the endpoint is unreachable or malformed.
    """
    url = f"http://{host}:{port}/json/version"
    try:
        async with httpx.AsyncClient(
            timeout=DISCOVERY_TIMEOUT, transport=transport
        ) as client:
            resp = await client.get(url)
            resp.raise_for_status()
            payload = resp.json()
    except httpx.HTTPError as e:
        raise DiscoveryError(f"Failed to query {url}: {e}") from e
    except json.JSONDecodeError as e:
        raise DiscoveryError(f"Malformed discovery response from {url}") from e

    ws_url = payload.get("webSocketDebuggerUrl") if isinstance(payload, dict) else None
    if not ws_url:
        raise DiscoveryError(f"No webSocketDebuggerUrl advertised at {url}")
    logger.debug(f"Discovered browser endpoint {ws_url}")
    return ws_url


class WebSocketTransport:
    """JSON-over-websocket transport built on the ``websockets`` client."""

    def __init__(self, ws_url: str):
        self.ws_url = ws_url
        self._ws: Optional[ClientConnection] = None
        self._log = logger.bind(endpoint=ws_url)

    async def connect(self) -> "WebSocketTransport":
        try:
            # Screenshots easily exceed the default 1 MiB frame limit.
            self._ws = await connect(self.ws_url, max_size=None)
        except (OSError, ConnectionClosed) as e:
            raise ConnectionClosedError(
                f"Failed to connect to {self.ws_url}: {e}"
            ) from e
        self._log.info("Connected")
        return self

    async def send(self, message: Dict[str, Any]) -> None:
        if self._ws is None:
            raise ConnectionClosedError("Transport is not connected")
        try:
            await self._ws.send(json.dumps(message))
        except ConnectionClosed as e:
            raise ConnectionClosedError(f"Websocket closed: {e}") from e

    async def receive(self) -> Dict[str, Any]:
        if self._ws is None:
            raise ConnectionClosedError("Transport is not connected")
        try:
            raw = await self._ws.recv()
        except ConnectionClosed as e:
            raise ConnectionClosedError(f"Websocket closed: {e}") from e
        return json.loads(raw)

    async def close(self) -> None:
        if self._ws is not None:
            await self._ws.close()
            self._ws = None
            self._log.debug("Closed")
