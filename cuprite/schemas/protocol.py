# cuprite/schemas/protocol.py
"""
Pydantic models for the remote objects the session layer hands around.

These are thin, typed views over protocol payloads. They never talk to the
browser themselves.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

ELEMENT_NODE = 1


class RemoteNode(BaseModel):
    """An opaque handle on a DOM node produced by `Browser.find`.

    Staleness is only detected when the remote engine reports that the node
    id is gone.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow", frozen=True)

    node_id: int = Field(..., alias="nodeId")
    node_type: int = Field(ELEMENT_NODE, alias="nodeType")
    node_name: str = Field("", alias="nodeName")
    selector: Optional[str] = None
    frame_id: Optional[str] = Field(None, alias="frameId")

    @property
    def is_element(self) -> bool:
        return self.node_type == ELEMENT_NODE


class ContextFrame(BaseModel):
    """One entry of a `ContextStack`.

    The root sentinel has neither a frame id nor a document node; nested
    frames carry the engine's frame id and the node id of their content
    document so DOM queries can be rooted there.
    """

    model_config = ConfigDict(frozen=True)

    frame_id: Optional[str] = None
    document_node_id: Optional[int] = None

    @classmethod
    def top(cls) -> "ContextFrame":
        return cls()

    @property
    def is_top(self) -> bool:
        return self.frame_id is None and self.document_node_id is None


class Cookie(BaseModel):
    """A browser cookie as reported by the network domain."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    name: str
    value: str
    domain: Optional[str] = None
    path: str = "/"
    secure: bool = False
    http_only: bool = Field(False, alias="httpOnly")
    same_site: Optional[str] = Field(None, alias="sameSite")
    # Seconds since the epoch; -1 marks a session cookie.
    expires_at: Optional[float] = Field(None, alias="expires")

    @property
    def expires(self) -> Optional[datetime]:
        if self.expires_at is None or self.expires_at < 0:
            return None
        return datetime.fromtimestamp(self.expires_at, tz=timezone.utc)

    @property
    def is_session(self) -> bool:
        return self.expires is None

    def to_protocol(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)
