"""Wire protocol for patchright-daemon.

Each request is one UTF-8 JSON object terminated by a single ``\\n``.  The
object always carries a string ``command`` plus command-specific fields::

    {"command": "click", "pageId": "3f9c1a2b", "selector": "#submit"}

Each response is one JSON object (an *envelope*), written once, after which
the server closes the connection::

    {"success": true, "result": "clicked"}
    {"success": false, "error": "Page not found: 3f9c1a2b"}
"""

from __future__ import annotations

import json
from enum import Enum
from typing import Any


class Command(str, Enum):
    # Session lifecycle
    NEW_BROWSER = "newBrowser"
    CLOSE_BROWSER = "closeBrowser"
    LIST_BROWSERS = "listBrowsers"

    # Page lifecycle
    NEW_PAGE = "newPage"
    CLOSE_PAGE = "closePage"
    LIST_PAGES = "listPages"

    # Navigation
    GOTO = "goto"
    BACK = "back"
    FORWARD = "forward"
    RELOAD = "reload"

    # Interaction
    CLICK = "click"
    DBLCLICK = "dblclick"
    FILL = "fill"
    TYPE = "type"
    PRESS = "press"
    HOVER = "hover"
    CHECK = "check"
    UNCHECK = "uncheck"
    SELECT = "select"
    SCROLL = "scroll"
    SCREENSHOT = "screenshot"

    # Info getters
    GET_TEXT = "getText"
    GET_HTML = "getHtml"
    GET_VALUE = "getValue"
    GET_TITLE = "getTitle"
    GET_URL = "getUrl"

    # Waits
    WAIT = "wait"

    # State checks
    IS_VISIBLE = "isVisible"
    IS_ENABLED = "isEnabled"
    IS_CHECKED = "isChecked"

    # Accessibility snapshot
    SNAPSHOT = "snapshot"

    # Code evaluation
    EXEC = "exec"

    # Control
    PING = "ping"
    STOP = "stop"


class WaitType(str, Enum):
    SELECTOR = "selector"
    TIMEOUT = "timeout"
    TEXT = "text"
    URL = "url"
    LOAD = "load"


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class DaemonError(Exception):
    """Base class for errors reported to clients as failure envelopes."""


class NotFoundError(DaemonError):
    pass


class PageNotFoundError(NotFoundError):
    def __init__(self, page_id: str) -> None:
        super().__init__(f"Page not found: {page_id}")
        self.page_id = page_id


class SessionNotFoundError(NotFoundError):
    def __init__(self, session_id: str) -> None:
        super().__init__(f"Browser not found: {session_id}")
        self.session_id = session_id


class MissingFieldError(DaemonError):
    def __init__(self, field: str, hint: str | None = None) -> None:
        message = f"{field} is required"
        if hint:
            message = f"{message}. {hint}"
        super().__init__(message)
        self.field = field


class InvalidRequestError(DaemonError):
    def __init__(self, detail: str) -> None:
        super().__init__(f"Invalid request: {detail}")


class UnknownCommandError(DaemonError):
    def __init__(self, command: str) -> None:
        super().__init__(f"Unknown command: {command}")
        self.command = command


# ---------------------------------------------------------------------------
# Envelopes
# ---------------------------------------------------------------------------


_NO_RESULT: Any = object()


def ok(result: Any = _NO_RESULT, **fields: Any) -> dict[str, Any]:
    """Build a success envelope.

    ``result`` is only omitted when not passed at all, so a getter that
    legitimately returns ``None`` still produces ``"result": null``.
    """
    envelope: dict[str, Any] = {"success": True}
    if result is not _NO_RESULT:
        envelope["result"] = result
    envelope.update(fields)
    return envelope


def fail(error: str | BaseException) -> dict[str, Any]:
    """Build a failure envelope from a message or an exception."""
    if isinstance(error, BaseException):
        error = error_message(error)
    return {"success": False, "error": error}


def error_message(exc: BaseException) -> str:
    """Return the human-readable message of *exc*.

    Engine errors carry their text in ``message``; everything else falls
    back to ``str(exc)`` and, when that is empty, the exception class name.
    """
    message = getattr(exc, "message", None)
    if not isinstance(message, str) or not message:
        message = str(exc)
    return message or type(exc).__name__


# ---------------------------------------------------------------------------
# Encoding / decoding
# ---------------------------------------------------------------------------


def decode_request(data: bytes | str) -> tuple[Command, dict[str, Any]]:
    """Parse one framed message into its command and the full request object.

    Raises ``InvalidRequestError`` for malformed input and
    ``UnknownCommandError`` for a command outside the closed set.
    """
    try:
        if isinstance(data, bytes):
            data = data.decode("utf-8")
        request = json.loads(data)
    except (UnicodeDecodeError, ValueError, RecursionError) as exc:
        raise InvalidRequestError(str(exc)) from exc

    if not isinstance(request, dict):
        raise InvalidRequestError("expected a JSON object")

    name = request.get("command")
    if not isinstance(name, str) or not name:
        raise InvalidRequestError("missing 'command' field")

    try:
        command = Command(name)
    except ValueError:
        raise UnknownCommandError(name) from None
    return command, request


def encode_response(envelope: dict[str, Any]) -> bytes:
    """Serialize an envelope for the wire (JSON followed by a newline)."""
    return json.dumps(envelope, default=str).encode("utf-8") + b"\n"


def encode_request(command: str, **fields: Any) -> bytes:
    """Serialize a request for the wire; the client-side counterpart of ``decode_request``."""
    return json.dumps({"command": command, **fields}).encode("utf-8") + b"\n"
