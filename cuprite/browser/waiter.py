# cuprite/browser/waiter.py
"""
One-shot event waits.

A caller registers interest in an event name (optionally narrowed by a
params subset, a predicate and a target session) and gets back a `Waiter`
whose future resolves with the params of the first matching event.
Registration is synchronous so it can happen inside a command's response
callback, before any later frame is routed. Events that fired before
registration are never replayed.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Dict, List, Mapping, Optional

from cuprite.exceptions import ConnectionClosedError, WaitTimeoutError
from cuprite.utils.logger import setup_logger

logger = setup_logger(__name__)

Predicate = Callable[[Mapping[str, Any]], bool]


class Waiter:
    """A registered, not yet fulfilled interest in one event."""

    def __init__(
        self,
        event: str,
        future: "asyncio.Future[Dict[str, Any]]",
        params: Optional[Mapping[str, Any]] = None,
        predicate: Optional[Predicate] = None,
        session_id: Optional[str] = None,
    ):
        self.event = event
        self.future = future
        self.params = dict(params or {})
        self.predicate = predicate
        self.session_id = session_id

    @property
    def done(self) -> bool:
        return self.future.done()

    def matches(
        self, event: str, params: Mapping[str, Any], session_id: Optional[str]
    ) -> bool:
        if event != self.event:
            return False
        if self.session_id is not None and session_id != self.session_id:
            return False
        for key, expected in self.params.items():
            if params.get(key) != expected:
                return False
        if self.predicate is not None:
            return bool(self.predicate(params))
        return True

    def __repr__(self) -> str:
        return f"Waiter(event={self.event!r}, params={self.params!r})"


class EventWaiters:
    """Registry of pending `Waiter` objects for one dispatcher."""

    def __init__(self) -> None:
        self._waiters: List[Waiter] = []
        self._closed: Optional[BaseException] = None

    def __len__(self) -> int:
        return len(self._waiters)

    def expect(
        self,
        event: str,
        params: Optional[Mapping[str, Any]] = None,
        predicate: Optional[Predicate] = None,
        session_id: Optional[str] = None,
    ) -> Waiter:
        """Registers a waiter without suspending.

        :param event: Event method name, e.g. ``Page.frameStoppedLoading``.
        :type event: str
        :param params: Key/value pairs the event params must contain.
        :type params: Optional[Mapping[str, Any]]
        :param predicate: Extra filter over the event params.
        :type predicate: Optional[Predicate]
        :param session_id: Only accept events from this target session.
        :type session_id: Optional[str]
        :return: The registered waiter.
        :rtype: Waiter
        :raises ConnectionClosedError: If the registry has been shut down.
        """
        if self._closed is not None:
            raise ConnectionClosedError(f"Cannot wait for {event}: {self._closed}")
        future = asyncio.get_running_loop().create_future()
        waiter = Waiter(event, future, params, predicate, session_id)
        self._waiters.append(waiter)
        return waiter

    def notify(
        self,
        event: str,
        params: Mapping[str, Any],
        session_id: Optional[str] = None,
    ) -> int:
        """Fulfils and removes every waiter matching this event.

        :return: How many waiters were fulfilled.
        :rtype: int
        """
        fulfilled = 0
        for waiter in list(self._waiters):
            if waiter.done:
                self._discard(waiter)
                continue
            try:
                matched = waiter.matches(event, params, session_id)
            except Exception as e:
                logger.warning(f"Predicate for {waiter!r} raised: {e}")
                waiter.future.set_exception(e)
                self._discard(waiter)
                continue
            if matched:
                waiter.future.set_result(dict(params))
                self._discard(waiter)
                fulfilled += 1
        return fulfilled

    async def wait(
        self, waiter: Waiter, timeout: Optional[float] = None
    ) -> Dict[str, Any]:
        """Suspends until ``waiter`` is fulfilled.

        :raises WaitTimeoutError: If nothing matched within ``timeout``.
        """
        try:
            return await asyncio.wait_for(waiter.future, timeout)
        except asyncio.TimeoutError as e:
            raise WaitTimeoutError(
                f"Timed out after {timeout}s waiting for {waiter.event}",
                event=waiter.event,
            ) from e
        finally:
            self._discard(waiter)

    async def wait_for(
        self,
        event: str,
        params: Optional[Mapping[str, Any]] = None,
        predicate: Optional[Predicate] = None,
        timeout: Optional[float] = None,
        session_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        waiter = self.expect(event, params, predicate, session_id)
        return await self.wait(waiter, timeout)

    def cancel(self, waiter: Waiter) -> None:
        if not waiter.done:
            waiter.future.cancel()
        self._discard(waiter)

    def fail_all(self, exc: BaseException) -> None:
        """Fails every pending waiter and refuses new ones."""
        self._closed = exc
        for waiter in self._waiters:
            if not waiter.done:
                waiter.future.set_exception(exc)
        self._waiters.clear()

    def _discard(self, waiter: Waiter) -> None:
        try:
            self._waiters.remove(waiter)
        except ValueError:
            pass
