# cuprite/browser/session.py
"""
The `Browser` facade: page and element operations built on the dispatcher,
the event waiters, the frame stack and the window registry.

Every page-scoped command is addressed to the flattened target session of
the selected window. Frame-scoped operations (DOM queries, script
evaluation) are additionally rooted at the current entry of that window's
frame stack.
"""

from __future__ import annotations

import base64
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Set, Union

from cuprite.browser.context import WindowRegistry
from cuprite.browser.dispatcher import Dispatcher
from cuprite.browser.geometry import (
    Point,
    is_visible,
    quads_from_protocol,
    target_point,
)
from cuprite.browser.transport import WebSocketTransport, discover_ws_url
from cuprite.exceptions import (
    CupriteError,
    NoSuchWindowError,
    ObsoleteNodeError,
    ProtocolError,
)
from cuprite.schemas.protocol import ContextFrame, Cookie, RemoteNode
from cuprite.schemas.settings import BrowserSettings
from cuprite.utils.log_sinks import session_id_context
from cuprite.utils.logger import setup_logger

logger = setup_logger(__name__)

FrameHandle = Union[RemoteNode, ContextFrame, str]

PAGE_DOMAINS = ("Page", "DOM", "CSS", "Runtime")
FRAME_STOPPED_LOADING = "Page.frameStoppedLoading"
ISOLATED_WORLD = "cuprite"
OBJECT_GROUP = "cuprite"
LOSSY_FORMATS = ("jpeg", "webp")


class Browser:
    """Page-automation verbs for one controlled browser."""

    def __init__(
        self,
        dispatcher: Dispatcher,
        target_id: str,
        session_id: Optional[str] = None,
        settings: Optional[BrowserSettings] = None,
    ):
        self.dispatcher = dispatcher
        self.settings = settings or BrowserSettings()
        self.windows = WindowRegistry(target_id, session_id)
        self._headers: Dict[str, str] = {}
        self._enabled: Set[tuple] = set()
        self._unsubscribe = [
            dispatcher.subscribe("Target.targetCreated", self._on_target_created),
            dispatcher.subscribe("Target.targetDestroyed", self._on_target_destroyed),
        ]

    @classmethod
    async def connect(cls, settings: Optional[BrowserSettings] = None) -> "Browser":
        """Attaches to an already running browser.

        The endpoint comes from ``settings.ws_url`` or, failing that, from
        HTTP discovery on ``settings.host``/``settings.port``.
        """
        settings = settings or BrowserSettings.from_config()
        ws_url = settings.ws_url or await discover_ws_url(settings.host, settings.port)
        transport = await WebSocketTransport(ws_url).connect()
        dispatcher = Dispatcher(transport, command_timeout=settings.command_timeout)
        dispatcher.start()
        try:
            await dispatcher.send("Target.setDiscoverTargets", {"discover": True})
            targets = await dispatcher.send("Target.getTargets")
            page = next(
                (t for t in targets.get("targetInfos", []) if t.get("type") == "page"),
                None,
            )
            if page is None:
                created = await dispatcher.send(
                    "Target.createTarget", {"url": "about:blank"}
                )
                target_id = created["targetId"]
            else:
                target_id = page["targetId"]
            attached = await dispatcher.send(
                "Target.attachToTarget", {"targetId": target_id, "flatten": True}
            )
            browser = cls(dispatcher, target_id, attached["sessionId"], settings)
            await browser.resize(*settings.window_size)
        except CupriteError:
            await dispatcher.close()
            raise
        logger.info("Attached to target", extra={"target": target_id})
        return browser

    async def close(self) -> None:
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        await self.dispatcher.close()

    async def __aenter__(self) -> "Browser":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # ------------------------- Commands -------------------------

    async def command(
        self, method: str, params: Optional[Mapping[str, Any]] = None, **kwargs: Any
    ) -> Any:
        """Sends a command to the selected window's target session."""
        session_id = await self._ensure_attached()
        token = session_id_context.set(session_id)
        try:
            return await self.dispatcher.send(
                method, params, session_id=session_id, **kwargs
            )
        finally:
            session_id_context.reset(token)

    async def _ensure_attached(self, handle: Optional[str] = None) -> Optional[str]:
        handle = handle or self.windows.selected
        session_id = self.windows.session_for(handle)
        if session_id is None:
            attached = await self.dispatcher.send(
                "Target.attachToTarget", {"targetId": handle, "flatten": True}
            )
            session_id = attached["sessionId"]
            self.windows.add(handle, session_id)
        return session_id

    async def _enable(self, domain: str) -> None:
        key = (self.windows.selected, domain)
        if key not in self._enabled:
            await self.command(f"{domain}.enable")
            self._enabled.add(key)

    async def _node_command(self, method: str, params: Mapping[str, Any]) -> Any:
        try:
            return await self.command(method, params)
        except ProtocolError as e:
            if e.is_missing_node:
                raise ObsoleteNodeError.from_protocol_error(e) from e
            raise

    # ------------------------- Navigation -------------------------

    async def visit(self, url: str, timeout: Optional[float] = None) -> None:
        """Navigates the selected window and waits for its frame to stop loading.

        The waiter is registered from the navigate response callback, so the
        load event cannot slip in between the response and the registration.

        :param url: Address to load.
        :type url: str
        :param timeout: Seconds to wait for the load, defaulting to
            ``settings.navigation_timeout``.
        :type timeout: Optional[float]
        :raises ProtocolError: If the engine rejects the navigation.
        :raises WaitTimeoutError: If the frame does not finish loading in time.
        """
        for domain in PAGE_DOMAINS:
            await self.command(f"{domain}.enable")
            self._enabled.add((self.windows.selected, domain))

        session_id = self.windows.session_id

        def expect_load(result: Dict[str, Any]):
            if result.get("errorText"):
                raise ProtocolError(
                    f"Navigation to {url} failed: {result['errorText']}",
                    response=result,
                    method="Page.navigate",
                )
            return self.dispatcher.waiters.expect(
                FRAME_STOPPED_LOADING,
                {"frameId": result["frameId"]},
                session_id=session_id,
            )

        waiter = await self.command("Page.navigate", {"url": url}, callback=expect_load)
        self.windows.frames.reset()
        await self.dispatcher.waiters.wait(
            waiter, timeout if timeout is not None else self.settings.navigation_timeout
        )

    async def _main_frame_id(self) -> str:
        tree = await self.command("Page.getFrameTree")
        return tree["frameTree"]["frame"]["id"]

    async def _reload_and_wait(self, method: str, params: Mapping[str, Any]) -> None:
        # Frame id is known up front, so registering before sending is race free.
        await self._enable("Page")
        frame_id = await self._main_frame_id()
        waiter = self.dispatcher.waiters.expect(
            FRAME_STOPPED_LOADING, {"frameId": frame_id}, session_id=self.windows.session_id
        )
        try:
            await self.command(method, params)
        except CupriteError:
            self.dispatcher.waiters.cancel(waiter)
            raise
        self.windows.frames.reset()
        await self.dispatcher.waiters.wait(waiter, self.settings.navigation_timeout)

    async def refresh(self) -> None:
        await self._reload_and_wait("Page.reload", {})

    async def go_back(self) -> None:
        await self._go_history(-1)

    async def go_forward(self) -> None:
        await self._go_history(1)

    async def _go_history(self, delta: int) -> None:
        history = await self.command("Page.getNavigationHistory")
        index = history["currentIndex"] + delta
        entries = history["entries"]
        if not 0 <= index < len(entries):
            return
        await self._reload_and_wait(
            "Page.navigateToHistoryEntry", {"entryId": entries[index]["id"]}
        )

    async def current_url(self) -> str:
        return await self._evaluate("location.href", top=True)

    async def title(self) -> str:
        return await self._evaluate("document.title", top=True)

    async def frame_url(self) -> str:
        return await self._evaluate("location.href")

    async def frame_title(self) -> str:
        return await self._evaluate("document.title")

    async def body(self) -> str:
        """Outer HTML of the current frame's document."""
        root = await self._document_node_id()
        response = await self.command("DOM.getOuterHTML", {"nodeId": root})
        return response["outerHTML"]

    async def source(self) -> str:
        """Serialized current frame document, doctype included."""
        return await self._evaluate("new XMLSerializer().serializeToString(document)")

    # ------------------------- DOM -------------------------

    async def _document_node_id(self) -> int:
        frame = self.windows.frames.current()
        if frame.document_node_id is not None:
            return frame.document_node_id
        response = await self.command("DOM.getDocument", {"depth": 0})
        return response["root"]["nodeId"]

    async def find(self, selector: str) -> List[RemoteNode]:
        """Finds element nodes matching ``selector`` in the current frame.

        At the top level this uses the engine's document search, which
        accepts CSS selectors, XPath and plain text. Inside a frame the
        query is a CSS selector rooted at the frame's document.
        """
        frames = self.windows.frames
        if frames.is_top:
            node_ids = await self._search(selector)
        else:
            response = await self._node_command(
                "DOM.querySelectorAll",
                {"nodeId": frames.current().document_node_id, "selector": selector},
            )
            node_ids = response["nodeIds"]

        results = []
        for node_id in node_ids:
            described = await self._node_command("DOM.describeNode", {"nodeId": node_id})
            node = dict(described["node"], nodeId=node_id, selector=selector)
            remote = RemoteNode.model_validate(node)
            # Text and comment nodes can match text searches.
            if remote.is_element:
                results.append(remote)
        return results

    async def _search(self, selector: str) -> List[int]:
        # Search doesn't work without a document request first.
        await self.command("DOM.getDocument", {"depth": 0})
        response = await self.command("DOM.performSearch", {"query": selector})
        search_id, count = response["searchId"], response["resultCount"]
        try:
            if count == 0:
                return []
            response = await self.command(
                "DOM.getSearchResults",
                {"searchId": search_id, "fromIndex": 0, "toIndex": count},
            )
            return response["nodeIds"]
        finally:
            await self.command("DOM.discardSearchResults", {"searchId": search_id})

    async def _resolve_node(self, node: RemoteNode) -> str:
        resolved = await self._node_command(
            "DOM.resolveNode", {"nodeId": node.node_id, "objectGroup": OBJECT_GROUP}
        )
        return resolved["object"]["objectId"]

    async def _call_on_node(
        self, node: RemoteNode, declaration: str, *args: Any
    ) -> Any:
        object_id = await self._resolve_node(node)
        response = await self.command(
            "Runtime.callFunctionOn",
            {
                "objectId": object_id,
                "functionDeclaration": declaration,
                "arguments": [{"value": arg} for arg in args],
                "returnByValue": True,
                "awaitPromise": True,
            },
        )
        return _unwrap_remote_result(response, "Runtime.callFunctionOn")

    async def visible_text(self, node: RemoteNode) -> str:
        return await self._call_on_node(node, "function () { return this.innerText; }")

    async def all_text(self, node: RemoteNode) -> str:
        return await self._call_on_node(node, "function () { return this.textContent; }")

    async def attribute(self, node: RemoteNode, name: str) -> Optional[str]:
        return await self._call_on_node(
            node, "function (name) { return this.getAttribute(name); }", str(name)
        )

    async def property_value(self, node: RemoteNode, name: str) -> Any:
        return await self._call_on_node(
            node, "function (name) { return this[name]; }", str(name)
        )

    async def value(self, node: RemoteNode) -> Any:
        return await self._call_on_node(node, "function () { return this.value; }")

    async def is_disabled(self, node: RemoteNode) -> bool:
        return bool(
            await self._call_on_node(node, "function () { return !!this.disabled; }")
        )

    async def tag_name(self, node: RemoteNode) -> str:
        described = await self._node_command("DOM.describeNode", {"nodeId": node.node_id})
        return described["node"]["nodeName"].lower()

    async def is_visible(self, node: RemoteNode) -> bool:
        response = await self._node_command(
            "CSS.getComputedStyleForNode", {"nodeId": node.node_id}
        )
        return is_visible(response["computedStyle"])

    async def set_value(self, node: RemoteNode, value: str) -> None:
        """Replaces the node's value the way typing would."""
        await self._node_command("DOM.focus", {"nodeId": node.node_id})
        await self._call_on_node(node, "function () { this.value = ''; }")
        await self.command("Input.insertText", {"text": str(value)})

    # ------------------------- Script -------------------------

    async def _execution_context(self) -> Optional[int]:
        frame = self.windows.frames.current()
        if frame.is_top:
            return None
        world = await self.command(
            "Page.createIsolatedWorld",
            {"frameId": frame.frame_id, "worldName": ISOLATED_WORLD},
        )
        return world["executionContextId"]

    async def _evaluate(
        self, expression: str, top: bool = False, by_value: bool = True
    ) -> Any:
        params: Dict[str, Any] = {
            "expression": expression,
            "returnByValue": by_value,
            "awaitPromise": True,
        }
        context_id = None if top else await self._execution_context()
        if context_id is not None:
            params["contextId"] = context_id
        response = await self.command("Runtime.evaluate", params)
        return _unwrap_remote_result(response, "Runtime.evaluate")

    async def evaluate(self, expression: str) -> Any:
        """Evaluates ``expression`` in the current frame and returns its value."""
        return await self._evaluate(expression)

    async def execute(self, expression: str) -> None:
        """Runs ``expression`` in the current frame for its side effects."""
        await self._evaluate(expression, by_value=False)

    # ------------------------- Input -------------------------

    async def _node_point(self, node: RemoteNode) -> Point:
        response = await self._node_command("DOM.getContentQuads", {"nodeId": node.node_id})
        return target_point(quads_from_protocol(response["quads"]))

    async def _mouse(self, event_type: str, x: float, y: float, **extra: Any) -> None:
        params = {"type": event_type, "x": x, "y": y}
        params.update(extra)
        await self.command("Input.dispatchMouseEvent", params)

    async def _click_at(
        self, x: float, y: float, button: str = "left", count: int = 1
    ) -> None:
        await self._mouse("mouseMoved", x, y)
        for click_count in range(1, count + 1):
            await self._mouse("mousePressed", x, y, button=button, clickCount=click_count)
            await self._mouse("mouseReleased", x, y, button=button, clickCount=click_count)

    async def click(self, node: RemoteNode) -> None:
        """Moves to the centre of the node's first box and clicks.

        Nothing waits for the page to react.

        :raises NotRenderableError: If the node has no layout boxes.
        """
        x, y = await self._node_point(node)
        await self._click_at(x, y)

    async def right_click(self, node: RemoteNode) -> None:
        x, y = await self._node_point(node)
        await self._click_at(x, y, button="right")

    async def double_click(self, node: RemoteNode) -> None:
        x, y = await self._node_point(node)
        await self._click_at(x, y, count=2)

    async def hover(self, node: RemoteNode) -> None:
        x, y = await self._node_point(node)
        await self._mouse("mouseMoved", x, y)

    async def click_coordinates(self, x: float, y: float) -> None:
        await self._click_at(x, y)

    async def scroll_to(self, left: float, top: float) -> None:
        await self.execute(f"window.scrollTo({float(left)}, {float(top)})")

    # ------------------------- Frames -------------------------

    async def _frame_for(self, handle: FrameHandle) -> ContextFrame:
        if isinstance(handle, ContextFrame):
            return handle
        if isinstance(handle, str):
            return await self._frame_by_id(handle)
        described = await self._node_command("DOM.describeNode", {"nodeId": handle.node_id})
        frame_id = described["node"].get("frameId")
        if not frame_id:
            raise CupriteError(f"Node {handle.node_id} is not a frame element")
        document = await self._call_on_node_object(
            handle, "function () { return this.contentDocument; }"
        )
        requested = await self.command("DOM.requestNode", {"objectId": document})
        return ContextFrame(frame_id=frame_id, document_node_id=requested["nodeId"])

    async def _frame_by_id(self, frame_id: str) -> ContextFrame:
        owner = await self.command("DOM.getFrameOwner", {"frameId": frame_id})
        return await self._frame_for(RemoteNode(nodeId=owner["nodeId"]))

    async def _call_on_node_object(self, node: RemoteNode, declaration: str) -> str:
        object_id = await self._resolve_node(node)
        response = await self.command(
            "Runtime.callFunctionOn",
            {"objectId": object_id, "functionDeclaration": declaration},
        )
        remote = response.get("result") or {}
        if "objectId" not in remote:
            raise CupriteError("Frame document is not accessible")
        return remote["objectId"]

    @asynccontextmanager
    async def within_frame(self, handle: FrameHandle) -> AsyncIterator[ContextFrame]:
        """Scopes frame-aware operations to ``handle`` for the block.

        ``handle`` is an iframe element, an engine frame id, or a
        `ContextFrame`. The frame is left again however the block exits.
        """
        frame = await self._frame_for(handle)
        with self.windows.frames.scoped(frame):
            yield frame

    async def switch_to_frame(self, handle: Union[FrameHandle, str]) -> None:
        """Enters a frame, or leaves with ``"parent"`` or ``"top"``."""
        if handle == "parent":
            self.windows.frames.pop()
        elif handle == "top":
            self.windows.frames.pop(to_top=True)
        else:
            self.windows.frames.push(await self._frame_for(handle))

    # ------------------------- Windows -------------------------

    @property
    def window_handle(self) -> str:
        return self.windows.selected

    @property
    def window_handles(self) -> List[str]:
        return self.windows.handles

    def _on_target_created(self, params: Dict[str, Any], _session: Optional[str]) -> None:
        info = params.get("targetInfo") or {}
        if info.get("type") == "page" and info.get("targetId"):
            self.windows.add(info["targetId"])

    def _on_target_destroyed(self, params: Dict[str, Any], _session: Optional[str]) -> None:
        target_id = params.get("targetId")
        if target_id in self.windows:
            self.windows.remove(target_id)

    async def open_new_window(self) -> str:
        created = await self.dispatcher.send("Target.createTarget", {"url": "about:blank"})
        handle = created["targetId"]
        attached = await self.dispatcher.send(
            "Target.attachToTarget", {"targetId": handle, "flatten": True}
        )
        self.windows.add(handle, attached["sessionId"])
        return handle

    async def close_window(self, handle: str) -> None:
        if handle not in self.windows:
            raise NoSuchWindowError(handle)
        await self.dispatcher.send("Target.closeTarget", {"targetId": handle})
        if handle in self.windows:
            self.windows.remove(handle)

    async def find_window_handle(self, locator: str) -> str:
        """Resolves a handle, title or URL to a window handle.

        :raises NoSuchWindowError: If nothing matches.
        """
        if locator in self.windows:
            return locator
        targets = await self.dispatcher.send("Target.getTargets")
        for info in targets.get("targetInfos", []):
            if info.get("type") != "page":
                continue
            if locator in (info.get("targetId"), info.get("title"), info.get("url")):
                handle = info["targetId"]
                self.windows.add(handle)
                return handle
        raise NoSuchWindowError(locator)

    async def switch_to_window(self, locator: str) -> None:
        handle = await self.find_window_handle(locator)
        # Only a window with a live session may become the selected one.
        await self._ensure_attached(handle)
        self.windows.select(handle)
        await self.dispatcher.send("Target.activateTarget", {"targetId": handle})

    @asynccontextmanager
    async def within_window(self, locator: str) -> AsyncIterator[str]:
        """Runs the block against another window, then switches back."""
        original = self.window_handle
        try:
            handle = await self.find_window_handle(locator)
            await self.switch_to_window(handle)
            yield handle
        finally:
            await self.switch_to_window(original)

    # ------------------------- Cookies & headers -------------------------

    async def cookies(self) -> Dict[str, Cookie]:
        await self._enable("Network")
        response = await self.command("Network.getCookies")
        return {c["name"]: Cookie.model_validate(c) for c in response["cookies"]}

    async def set_cookie(
        self,
        name: str,
        value: str,
        *,
        domain: Optional[str] = None,
        path: str = "/",
        secure: bool = False,
        http_only: bool = False,
        expires: Union[datetime, float, None] = None,
    ) -> None:
        await self._enable("Network")
        params: Dict[str, Any] = {
            "name": name,
            "value": value,
            "path": path,
            "secure": secure,
            "httpOnly": http_only,
        }
        if domain:
            params["domain"] = domain
        else:
            params["url"] = await self.current_url()
        if isinstance(expires, datetime):
            params["expires"] = expires.timestamp()
        elif expires is not None:
            params["expires"] = float(expires)
        await self.command("Network.setCookie", params)

    async def remove_cookie(self, name: str) -> None:
        await self._enable("Network")
        await self.command(
            "Network.deleteCookies", {"name": name, "url": await self.current_url()}
        )

    async def clear_cookies(self) -> None:
        await self._enable("Network")
        await self.command("Network.clearBrowserCookies")

    @property
    def headers(self) -> Dict[str, str]:
        return dict(self._headers)

    async def set_headers(self, headers: Mapping[str, str]) -> None:
        self._headers = {str(k): str(v) for k, v in headers.items()}
        await self._push_headers()

    async def add_headers(self, headers: Mapping[str, str]) -> None:
        self._headers.update({str(k): str(v) for k, v in headers.items()})
        await self._push_headers()

    async def add_header(self, name: str, value: str) -> None:
        await self.add_headers({name: value})

    async def _push_headers(self) -> None:
        await self._enable("Network")
        await self.command("Network.setExtraHTTPHeaders", {"headers": self._headers})

    # ------------------------- Rendering -------------------------

    async def render_base64(
        self, format: str = "png", quality: Optional[int] = None, full: bool = False
    ) -> str:
        params: Dict[str, Any] = {"format": format}
        if quality is not None and format in LOSSY_FORMATS:
            params["quality"] = quality
        if full:
            metrics = await self.command("Page.getLayoutMetrics")
            size = metrics.get("cssContentSize") or metrics["contentSize"]
            params["clip"] = {
                "x": 0,
                "y": 0,
                "width": size["width"],
                "height": size["height"],
                "scale": 1,
            }
            params["captureBeyondViewport"] = True
        response = await self.command("Page.captureScreenshot", params)
        return response["data"]

    async def render(self, path: Union[str, Path], **options: Any) -> Path:
        """Writes a screenshot to ``path`` and returns it."""
        data = base64.b64decode(await self.render_base64(**options))
        target = Path(path)
        target.write_bytes(data)
        return target

    async def resize(self, width: int, height: int) -> None:
        await self.command(
            "Emulation.setDeviceMetricsOverride",
            {"width": width, "height": height, "deviceScaleFactor": 0, "mobile": False},
        )

    async def reset(self) -> None:
        """Back to a blank default window with no cookies or extra headers."""
        for handle in self.window_handles:
            if handle != self.windows.default_handle:
                await self.close_window(handle)
        self.windows.select(self.windows.default_handle)
        await self.clear_cookies()
        await self.set_headers({})
        await self.visit("about:blank")


def _unwrap_remote_result(response: Mapping[str, Any], method: str) -> Any:
    details = response.get("exceptionDetails")
    if details:
        exception = details.get("exception") or {}
        message = exception.get("description") or details.get("text", "Script error")
        raise ProtocolError(message, response=details, method=method)
    return (response.get("result") or {}).get("value")
