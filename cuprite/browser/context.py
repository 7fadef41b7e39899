# cuprite/browser/context.py
"""
Addressing state for a session: which window and which frame commands
are aimed at.

Both structures are single-writer; only the `Browser` facade mutates them.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional

from cuprite.exceptions import NoSuchWindowError
from cuprite.schemas.protocol import ContextFrame
from cuprite.utils.logger import setup_logger

logger = setup_logger(__name__)


class ContextStack:
    """Ordered frames, last is current. The root sentinel is never popped."""

    def __init__(self) -> None:
        self._frames: List[ContextFrame] = [ContextFrame.top()]

    def __len__(self) -> int:
        return len(self._frames)

    @property
    def depth(self) -> int:
        """Number of frames entered below the top-level document."""
        return len(self._frames) - 1

    @property
    def is_top(self) -> bool:
        return self.depth == 0

    def current(self) -> ContextFrame:
        return self._frames[-1]

    def push(self, frame: ContextFrame) -> None:
        self._frames.append(frame)

    def pop(self, to_top: bool = False) -> ContextFrame:
        """Leaves the current frame, or every frame when ``to_top`` is set.

        Popping at the root is a no-op.

        :return: The frame that is current afterwards.
        :rtype: ContextFrame
        """
        if self.is_top:
            logger.debug("Ignoring frame pop at the top-level document")
        elif to_top:
            del self._frames[1:]
        else:
            self._frames.pop()
        return self.current()

    def reset(self) -> None:
        del self._frames[1:]

    @contextmanager
    def scoped(self, frame: ContextFrame) -> Iterator[ContextFrame]:
        """Pushes ``frame`` for the duration of the block."""
        self.push(frame)
        try:
            yield frame
        finally:
            self.pop()


@dataclass
class _Window:
    handle: str
    session_id: Optional[str]
    frames: ContextStack = field(default_factory=ContextStack)


class WindowRegistry:
    """Known window handles plus the selected one.

    The selected handle is always a member, falling back to the default
    window when the selected one is removed.
    """

    def __init__(self, default_handle: str, default_session: Optional[str] = None):
        self.default_handle = default_handle
        self._windows: Dict[str, _Window] = {
            default_handle: _Window(default_handle, default_session)
        }
        self._selected = default_handle

    def __contains__(self, handle: object) -> bool:
        return handle in self._windows

    def __len__(self) -> int:
        return len(self._windows)

    @property
    def handles(self) -> List[str]:
        return list(self._windows)

    @property
    def selected(self) -> str:
        return self._selected

    @property
    def session_id(self) -> Optional[str]:
        return self._windows[self._selected].session_id

    @property
    def frames(self) -> ContextStack:
        return self._windows[self._selected].frames

    def add(self, handle: str, session_id: Optional[str] = None) -> None:
        if handle in self._windows:
            self._windows[handle].session_id = session_id or self._windows[handle].session_id
            return
        self._windows[handle] = _Window(handle, session_id)

    def session_for(self, handle: str) -> Optional[str]:
        if handle not in self._windows:
            raise NoSuchWindowError(handle)
        return self._windows[handle].session_id

    def select(self, handle: str) -> None:
        if handle not in self._windows:
            raise NoSuchWindowError(handle)
        self._selected = handle

    def remove(self, handle: str) -> None:
        if handle not in self._windows:
            raise NoSuchWindowError(handle)
        if len(self._windows) == 1:
            # The last window stays as the bottom-level fallback.
            self._windows[handle].session_id = None
            self._windows[handle].frames.reset()
            return
        del self._windows[handle]
        if handle == self.default_handle:
            self.default_handle = next(iter(self._windows))
        if self._selected == handle:
            self._selected = self.default_handle
