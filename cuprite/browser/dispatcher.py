# cuprite/browser/dispatcher.py
"""
Command/response correlation over an asynchronous transport.

`Dispatcher.send` gives each command a fresh, strictly increasing id,
writes it to the transport and suspends only the calling task until the
response bearing that id arrives. A single reader task drains the
transport: responses resolve their pending command, events go to the
`EventWaiters` registry and then to persistent subscribers.
"""

from __future__ import annotations

import asyncio
import itertools
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional

from cuprite.browser.transport import Transport
from cuprite.browser.waiter import EventWaiters
from cuprite.exceptions import (
    ConnectionClosedError,
    ProtocolError,
    WaitTimeoutError,
)
from cuprite.utils.logger import setup_logger
from cuprite.utils.redact import redact_for_log

logger = setup_logger(__name__)

ResponseCallback = Callable[[Dict[str, Any]], Any]
EventHandler = Callable[[Dict[str, Any], Optional[str]], Any]


@dataclass
class PendingCommand:
    id: int
    method: str
    params: Dict[str, Any]
    future: "asyncio.Future[Any]"
    callback: Optional[ResponseCallback] = None
    session_id: Optional[str] = None


@dataclass
class _Subscription:
    event: str
    handler: EventHandler
    session_id: Optional[str] = None
    active: bool = field(default=True)


class Dispatcher:
    """Owns the command id counter, the pending map and the reader task."""

    def __init__(
        self,
        transport: Transport,
        command_timeout: Optional[float] = None,
    ):
        self.transport = transport
        self.command_timeout = command_timeout
        self.waiters = EventWaiters()
        self._ids = itertools.count(1)
        self._pending: Dict[int, PendingCommand] = {}
        self._subscriptions: List[_Subscription] = []
        self._write_lock = asyncio.Lock()
        self._reader: Optional[asyncio.Task] = None
        self._closed: Optional[ConnectionClosedError] = None

    @property
    def closed(self) -> bool:
        return self._closed is not None

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def start(self) -> None:
        if self._reader is None:
            self._reader = asyncio.create_task(self._read_loop())

    async def close(self) -> None:
        """Stops reading, closes the transport and fails everything pending."""
        reader, self._reader = self._reader, None
        if reader is not None and not reader.done():
            reader.cancel()
            try:
                await reader
            except asyncio.CancelledError:
                pass
        self._shutdown(ConnectionClosedError("Session closed"))
        await self.transport.close()

    async def send(
        self,
        method: str,
        params: Optional[Mapping[str, Any]] = None,
        *,
        session_id: Optional[str] = None,
        callback: Optional[ResponseCallback] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        """Sends one command and returns its result payload.

        When ``callback`` is given it runs inside the reader task with the
        raw result, before any later inbound frame is routed, and its
        return value is what `send` returns.

        :param method: Protocol method, e.g. ``Page.navigate``.
        :type method: str
        :param params: Command parameters.
        :type params: Optional[Mapping[str, Any]]
        :param session_id: Flattened target session to address.
        :type session_id: Optional[str]
        :param callback: Continuation run on the raw result.
        :type callback: Optional[ResponseCallback]
        :param timeout: Seconds to wait for the response; defaults to
            ``command_timeout``.
        :type timeout: Optional[float]
        :return: The result payload, or the callback's return value.
        :raises ProtocolError: If the response carries an error payload.
        :raises ConnectionClosedError: If the transport closes first.
        :raises WaitTimeoutError: If the response does not arrive in time.
        """
        if self._closed is not None:
            raise ConnectionClosedError(f"Cannot send {method}: {self._closed}")

        command_id = next(self._ids)
        payload = dict(params or {})
        future = asyncio.get_running_loop().create_future()
        self._pending[command_id] = PendingCommand(
            command_id, method, payload, future, callback, session_id
        )

        message: Dict[str, Any] = {"id": command_id, "method": method, "params": payload}
        if session_id is not None:
            message["sessionId"] = session_id
        logger.debug(
            f"-> {method} #{command_id}",
            extra={"params": redact_for_log(payload), "session": session_id},
        )

        try:
            async with self._write_lock:
                await self.transport.send(message)
        except ConnectionClosedError as e:
            self._pending.pop(command_id, None)
            self._shutdown(e)
            raise
        except BaseException:
            # Unwritten commands (bad params, cancellation) never get a reply.
            self._pending.pop(command_id, None)
            raise

        timeout = self.command_timeout if timeout is None else timeout
        try:
            return await asyncio.wait_for(future, timeout)
        except asyncio.TimeoutError as e:
            raise WaitTimeoutError(
                f"No response to {method} #{command_id} within {timeout}s"
            ) from e
        finally:
            self._pending.pop(command_id, None)

    def subscribe(
        self,
        event: str,
        handler: EventHandler,
        session_id: Optional[str] = None,
    ) -> Callable[[], None]:
        """Registers a persistent handler for every ``event`` frame.

        :return: A callable that removes the subscription.
        """
        subscription = _Subscription(event, handler, session_id)
        self._subscriptions.append(subscription)

        def unsubscribe() -> None:
            subscription.active = False
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

        return unsubscribe

    async def _read_loop(self) -> None:
        try:
            while True:
                message = await self.transport.receive()
                self.dispatch(message)
        except ConnectionClosedError as e:
            logger.info(f"Transport closed: {e}")
            self._shutdown(e)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Reader stopped on unexpected error: {e}", exc_info=True)
            self._shutdown(ConnectionClosedError(f"Reader failed: {e}"))

    def dispatch(self, message: Mapping[str, Any]) -> None:
        """Routes one inbound frame. Called by the reader task."""
        if "id" in message:
            self._handle_response(message)
        elif "method" in message:
            self._handle_event(message)
        else:
            logger.warning("Dropping frame with neither id nor method")

    def _handle_response(self, message: Mapping[str, Any]) -> None:
        command = self._pending.pop(message["id"], None)
        if command is None or command.future.done():
            logger.warning(f"Dropping response for unknown command #{message['id']}")
            return

        if "error" in message:
            error = message["error"] or {}
            logger.debug(f"<- {command.method} #{command.id} error: {error}")
            command.future.set_exception(
                ProtocolError.from_response(error, method=command.method)
            )
            return

        result = message.get("result") or {}
        if command.callback is None:
            command.future.set_result(result)
            return
        try:
            value = command.callback(result)
        except Exception as e:
            command.future.set_exception(e)
        else:
            command.future.set_result(value)

    def _handle_event(self, message: Mapping[str, Any]) -> None:
        event = message["method"]
        params = message.get("params") or {}
        session_id = message.get("sessionId")
        self.waiters.notify(event, params, session_id)
        for subscription in list(self._subscriptions):
            if not subscription.active or subscription.event != event:
                continue
            if subscription.session_id is not None and subscription.session_id != session_id:
                continue
            try:
                subscription.handler(params, session_id)
            except Exception as e:
                logger.error(f"Handler for {event} raised: {e}", exc_info=True)

    def _shutdown(self, exc: ConnectionClosedError) -> None:
        if self._closed is None:
            self._closed = exc
        for command in self._pending.values():
            if not command.future.done():
                command.future.set_exception(exc)
        self._pending.clear()
        self.waiters.fail_all(exc)
