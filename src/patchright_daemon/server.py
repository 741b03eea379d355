"""Asyncio daemon server for patchright-daemon.

One process launches a single patchright browser and serves any number of
isolated sessions (browser contexts) and pages over a Unix domain socket.
Every connection carries exactly one newline-terminated JSON request and
receives exactly one JSON response, after which the server closes it.

``CommandDispatcher`` routes a decoded request to its ``cmd_*`` handler;
``Daemon`` owns the engine, the ``SessionRegistry`` and the socket server,
and runs the shutdown sequence exactly once whether it is triggered by the
``stop`` command or by SIGINT/SIGTERM.

A client that disconnects before sending a newline is dropped without a
response.
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

from patchright.async_api import async_playwright

from patchright_daemon.config import DaemonConfig, get_version, load_config
from patchright_daemon.evaluator import Evaluator
from patchright_daemon.protocol import (
    Command,
    DaemonError,
    MissingFieldError,
    WaitType,
    decode_request,
    encode_response,
    fail,
    ok,
)
from patchright_daemon.registry import LocatedPage, SessionRegistry
from patchright_daemon.runtime import get_socket_path, remove_stale_socket
from patchright_daemon.snapshot import format_snapshot, take_snapshot, validate_max_depth

logger = logging.getLogger(__name__)

Handler = Callable[[dict[str, Any]], Awaitable[dict[str, Any]]]

DEFAULT_SCROLL_AMOUNT = 300
_SCROLL_DELTAS = {
    "up": (0, -1),
    "down": (0, 1),
    "left": (-1, 0),
    "right": (1, 0),
}


def _require(request: dict[str, Any], field: str, hint: str | None = None) -> Any:
    """Return ``request[field]``, raising ``MissingFieldError`` when absent."""
    value = request.get(field)
    if value is None:
        raise MissingFieldError(field, hint)
    return value


# ---------------------------------------------------------------------------
# Command dispatcher
# ---------------------------------------------------------------------------


class CommandDispatcher:
    """Routes requests to handlers and turns every outcome into an envelope."""

    def __init__(
        self,
        registry: SessionRegistry,
        browser: Any,
        evaluator: Evaluator | None = None,
    ) -> None:
        self.registry = registry
        self.browser = browser
        self.evaluator = evaluator or Evaluator()
        self.stop_requested = False

        self._handlers: dict[Command, Handler] = {
            Command.NEW_BROWSER: self.cmd_new_browser,
            Command.CLOSE_BROWSER: self.cmd_close_browser,
            Command.LIST_BROWSERS: self.cmd_list_browsers,
            Command.NEW_PAGE: self.cmd_new_page,
            Command.CLOSE_PAGE: self.cmd_close_page,
            Command.LIST_PAGES: self.cmd_list_pages,
            Command.GOTO: self.cmd_goto,
            Command.BACK: self.cmd_back,
            Command.FORWARD: self.cmd_forward,
            Command.RELOAD: self.cmd_reload,
            Command.CLICK: self.cmd_click,
            Command.DBLCLICK: self.cmd_dblclick,
            Command.FILL: self.cmd_fill,
            Command.TYPE: self.cmd_type,
            Command.PRESS: self.cmd_press,
            Command.HOVER: self.cmd_hover,
            Command.CHECK: self.cmd_check,
            Command.UNCHECK: self.cmd_uncheck,
            Command.SELECT: self.cmd_select,
            Command.SCROLL: self.cmd_scroll,
            Command.SCREENSHOT: self.cmd_screenshot,
            Command.GET_TEXT: self.cmd_get_text,
            Command.GET_HTML: self.cmd_get_html,
            Command.GET_VALUE: self.cmd_get_value,
            Command.GET_TITLE: self.cmd_get_title,
            Command.GET_URL: self.cmd_get_url,
            Command.WAIT: self.cmd_wait,
            Command.IS_VISIBLE: self.cmd_is_visible,
            Command.IS_ENABLED: self.cmd_is_enabled,
            Command.IS_CHECKED: self.cmd_is_checked,
            Command.SNAPSHOT: self.cmd_snapshot,
            Command.EXEC: self.cmd_exec,
            Command.PING: self.cmd_ping,
            Command.STOP: self.cmd_stop,
        }
        missing = [c.value for c in Command if c not in self._handlers]
        if missing:
            raise RuntimeError(f"No handler registered for: {', '.join(missing)}")

    @property
    def handlers(self) -> dict[Command, Handler]:
        return dict(self._handlers)

    async def handle_message(self, data: bytes | str) -> dict[str, Any]:
        """Decode one framed message and dispatch it."""
        try:
            command, request = decode_request(data)
        except DaemonError as exc:
            logger.warning(f"Rejected request: {exc}")
            return fail(exc)
        return await self.handle_command(command, request)

    async def handle_command(
        self, command: Command | str, request: dict[str, Any]
    ) -> dict[str, Any]:
        """Run the handler for *command*; failures become failure envelopes."""
        command = Command(command)
        handler = self._handlers[command]
        logger.debug(f"Received command: {command.value} request={request}")
        try:
            result = await handler(request)
        except Exception as exc:
            result = fail(exc)

        if not result.get("success", False):
            logger.warning(f"Command '{command.value}' failed: {result.get('error')}")
        else:
            logger.debug(f"Command '{command.value}' succeeded")
        return result

    def _locate(self, request: dict[str, Any]) -> LocatedPage:
        page_id = request.get("pageId")
        if not page_id:
            raise MissingFieldError(
                "pageId", "Create a page first with the newPage command"
            )
        return self.registry.locate_page(page_id)

    # -----------------------------------------------------------------------
    # Command handlers
    # -----------------------------------------------------------------------

    # -- Sessions ------------------------------------------------------------

    async def cmd_new_browser(self, request: dict[str, Any]) -> dict[str, Any]:
        """Create an isolated session."""
        session_id = await self.registry.create_session()
        return ok(browserId=session_id)

    async def cmd_close_browser(self, request: dict[str, Any]) -> dict[str, Any]:
        """Close a session together with all of its pages."""
        session_id = request.get("browserId")
        if not session_id:
            raise MissingFieldError("browserId")
        errors = await self.registry.close_session(session_id)
        if errors:
            return ok("Browser closed", warnings=errors)
        return ok("Browser closed")

    async def cmd_list_browsers(self, request: dict[str, Any]) -> dict[str, Any]:
        return ok(browsers=self.registry.list_sessions())

    # -- Pages ---------------------------------------------------------------

    async def cmd_new_page(self, request: dict[str, Any]) -> dict[str, Any]:
        """Open a blank page in ``browserId`` or the default session."""
        located = await self.registry.create_page(request.get("browserId") or None)
        return ok(pageId=located.page_id, browserId=located.session_id)

    async def cmd_close_page(self, request: dict[str, Any]) -> dict[str, Any]:
        page_id = request.get("pageId")
        if not page_id:
            raise MissingFieldError("pageId")
        await self.registry.close_page(page_id)
        return ok("Page closed")

    async def cmd_list_pages(self, request: dict[str, Any]) -> dict[str, Any]:
        return ok(pages=self.registry.list_pages())

    # -- Navigation ----------------------------------------------------------

    async def cmd_goto(self, request: dict[str, Any]) -> dict[str, Any]:
        """Navigate to ``url`` and answer with the resulting URL."""
        located = self._locate(request)
        url = _require(request, "url")
        await located.page.goto(url)
        return ok(located.page.url)

    async def cmd_back(self, request: dict[str, Any]) -> dict[str, Any]:
        located = self._locate(request)
        await located.page.go_back()
        return ok(located.page.url)

    async def cmd_forward(self, request: dict[str, Any]) -> dict[str, Any]:
        located = self._locate(request)
        await located.page.go_forward()
        return ok(located.page.url)

    async def cmd_reload(self, request: dict[str, Any]) -> dict[str, Any]:
        located = self._locate(request)
        await located.page.reload()
        return ok("Reloaded")

    # -- Interaction ---------------------------------------------------------

    async def cmd_click(self, request: dict[str, Any]) -> dict[str, Any]:
        located = self._locate(request)
        await located.page.click(_require(request, "selector"))
        return ok("clicked")

    async def cmd_dblclick(self, request: dict[str, Any]) -> dict[str, Any]:
        located = self._locate(request)
        await located.page.dblclick(_require(request, "selector"))
        return ok("double-clicked")

    async def cmd_fill(self, request: dict[str, Any]) -> dict[str, Any]:
        """Replace the value of an input with ``text``."""
        located = self._locate(request)
        selector = _require(request, "selector")
        text = _require(request, "text")
        await located.page.fill(selector, text)
        return ok("filled")

    async def cmd_type(self, request: dict[str, Any]) -> dict[str, Any]:
        """Type ``text`` into an element keystroke by keystroke."""
        located = self._locate(request)
        selector = _require(request, "selector")
        text = _require(request, "text")
        await located.page.type(selector, text)
        return ok("typed")

    async def cmd_press(self, request: dict[str, Any]) -> dict[str, Any]:
        """Press a key (e.g. ``Enter``, ``Tab``, ``Control+A``)."""
        located = self._locate(request)
        await located.page.keyboard.press(_require(request, "key"))
        return ok("pressed")

    async def cmd_hover(self, request: dict[str, Any]) -> dict[str, Any]:
        located = self._locate(request)
        await located.page.hover(_require(request, "selector"))
        return ok("hovered")

    async def cmd_check(self, request: dict[str, Any]) -> dict[str, Any]:
        located = self._locate(request)
        await located.page.check(_require(request, "selector"))
        return ok("checked")

    async def cmd_uncheck(self, request: dict[str, Any]) -> dict[str, Any]:
        located = self._locate(request)
        await located.page.uncheck(_require(request, "selector"))
        return ok("unchecked")

    async def cmd_select(self, request: dict[str, Any]) -> dict[str, Any]:
        """Select an option by ``value`` in a ``<select>`` element."""
        located = self._locate(request)
        selector = _require(request, "selector")
        value = _require(request, "value")
        await located.page.select_option(selector, value)
        return ok("selected")

    async def cmd_scroll(self, request: dict[str, Any]) -> dict[str, Any]:
        """Scroll with the mouse wheel; 300px down unless told otherwise."""
        located = self._locate(request)
        amount = request.get("amount") or DEFAULT_SCROLL_AMOUNT
        direction = request.get("direction") or "down"
        dx, dy = _SCROLL_DELTAS.get(direction, _SCROLL_DELTAS["down"])
        await located.page.mouse.wheel(dx * amount, dy * amount)
        return ok(f"scrolled {direction} {amount}px")

    async def cmd_screenshot(self, request: dict[str, Any]) -> dict[str, Any]:
        """Capture the viewport, saving it to ``path`` when one is given."""
        located = self._locate(request)
        path = request.get("path")
        if path:
            await located.page.screenshot(path=path)
            return ok(f"Screenshot saved to {path}")
        data = await located.page.screenshot()
        return ok(f"Screenshot captured ({len(data)} bytes)")

    # -- Info ----------------------------------------------------------------

    async def cmd_get_text(self, request: dict[str, Any]) -> dict[str, Any]:
        located = self._locate(request)
        return ok(await located.page.text_content(_require(request, "selector")))

    async def cmd_get_html(self, request: dict[str, Any]) -> dict[str, Any]:
        located = self._locate(request)
        return ok(await located.page.inner_html(_require(request, "selector")))

    async def cmd_get_value(self, request: dict[str, Any]) -> dict[str, Any]:
        located = self._locate(request)
        return ok(await located.page.input_value(_require(request, "selector")))

    async def cmd_get_title(self, request: dict[str, Any]) -> dict[str, Any]:
        located = self._locate(request)
        return ok(await located.page.title())

    async def cmd_get_url(self, request: dict[str, Any]) -> dict[str, Any]:
        located = self._locate(request)
        return ok(located.page.url)

    # -- Waits ---------------------------------------------------------------

    async def cmd_wait(self, request: dict[str, Any]) -> dict[str, Any]:
        """Wait for a selector, a duration, some text, a URL or a load state."""
        located = self._locate(request)
        wait_type = _require(request, "waitType")
        page = located.page

        if wait_type == WaitType.SELECTOR:
            selector = _require(request, "selector")
            await page.wait_for_selector(selector, state="visible")
            return ok("Element visible")
        if wait_type == WaitType.TIMEOUT:
            ms = _require(request, "ms")
            await page.wait_for_timeout(ms)
            return ok(f"Waited {ms}ms")
        if wait_type == WaitType.TEXT:
            text = _require(request, "text")
            await page.wait_for_selector(f"text={text}", state="visible")
            return ok("Text found")
        if wait_type == WaitType.URL:
            pattern = _require(request, "pattern")
            await page.wait_for_url(pattern)
            return ok("URL matched")
        if wait_type == WaitType.LOAD:
            state = request.get("state") or "load"
            await page.wait_for_load_state(state)
            return ok(f"Load state: {state}")
        return fail(f"Invalid wait type: {wait_type}")

    # -- State checks --------------------------------------------------------

    async def cmd_is_visible(self, request: dict[str, Any]) -> dict[str, Any]:
        located = self._locate(request)
        return ok(await located.page.is_visible(_require(request, "selector")))

    async def cmd_is_enabled(self, request: dict[str, Any]) -> dict[str, Any]:
        located = self._locate(request)
        return ok(await located.page.is_enabled(_require(request, "selector")))

    async def cmd_is_checked(self, request: dict[str, Any]) -> dict[str, Any]:
        located = self._locate(request)
        return ok(await located.page.is_checked(_require(request, "selector")))

    # -- Snapshot ------------------------------------------------------------

    async def cmd_snapshot(self, request: dict[str, Any]) -> dict[str, Any]:
        """Accessibility outline with ``@eN`` refs, optionally depth-limited/compact."""
        located = self._locate(request)
        max_depth = validate_max_depth(request.get("maxDepth"))
        raw = await take_snapshot(located.page)
        text = format_snapshot(
            raw, max_depth=max_depth, compact=bool(request.get("compact"))
        )
        return ok(text)

    # -- Eval ----------------------------------------------------------------

    async def cmd_exec(self, request: dict[str, Any]) -> dict[str, Any]:
        """Evaluate a Python expression with ``page``, ``context`` and ``browser`` bound."""
        located = self._locate(request)
        code = _require(request, "code")
        outcome = await self.evaluator.evaluate(
            code,
            page=located.page,
            context=located.session.context,
            browser=self.browser,
        )
        if not outcome.ok:
            return fail(outcome.error or "Evaluation failed")
        return ok(outcome.value)

    # -- Control -------------------------------------------------------------

    async def cmd_ping(self, request: dict[str, Any]) -> dict[str, Any]:
        return ok("pong")

    async def cmd_stop(self, request: dict[str, Any]) -> dict[str, Any]:
        """Acknowledge; the daemon shuts down once this response is written."""
        self.stop_requested = True
        return ok("stopping")


# ---------------------------------------------------------------------------
# Daemon
# ---------------------------------------------------------------------------


class Daemon:
    """Owns the engine, the session registry and the Unix socket server."""

    def __init__(self, config: DaemonConfig) -> None:
        self.config = config
        self.socket_path: Path = get_socket_path(config.socket_path)

        self.playwright: Any = None
        self.browser: Any = None
        self.registry: SessionRegistry | None = None
        self.dispatcher: CommandDispatcher | None = None

        self._server: asyncio.AbstractServer | None = None
        self._stop_event = asyncio.Event()
        self._shutdown_started = False

    # -- Lifecycle -----------------------------------------------------------

    async def launch_engine(self) -> None:
        """Start the patchright driver and launch the shared browser."""
        bcfg = self.config.browser
        self.playwright = await async_playwright().start()
        browser_type = getattr(self.playwright, bcfg.browser_name)
        self.browser = await browser_type.launch(**self.config.launch_kwargs())
        logger.info(
            f"Launched {bcfg.browser_name} (headless={str(bcfg.headless).lower()})"
        )

    async def start(self) -> None:
        """Remove a stale socket, launch the engine and start listening."""
        if remove_stale_socket(self.socket_path):
            logger.info(f"Removed stale socket {self.socket_path}")
        self.socket_path.parent.mkdir(parents=True, exist_ok=True)

        await self.launch_engine()
        bcfg = self.config.browser
        self.registry = SessionRegistry(
            self.browser,
            context_options=bcfg.context_options,
            blank_url=bcfg.blank_url,
        )
        self.dispatcher = CommandDispatcher(self.registry, self.browser)

        self._server = await asyncio.start_unix_server(
            self._handle_client,
            path=str(self.socket_path),
            limit=self.config.max_message_bytes,
        )
        logger.info(f"Server listening on {self.socket_path}")

    def install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, self.request_shutdown)

    def request_shutdown(self) -> None:
        self._stop_event.set()

    async def wait_for_shutdown_request(self) -> None:
        await self._stop_event.wait()

    async def shutdown(self) -> None:
        """Release everything, in order, exactly once.

        Sessions (pages, then contexts) are closed before the browser and the
        driver; the socket file goes last.  Individual failures are logged and
        skipped.
        """
        if self._shutdown_started:
            return
        self._shutdown_started = True
        self._stop_event.set()
        logger.info("Shutting down")

        if self._server is not None:
            self._server.close()

        if self.registry is not None:
            for error in await self.registry.close_all():
                logger.warning(f"Error during session teardown: {error}")

        if self.browser is not None:
            try:
                await self.browser.close()
            except Exception:
                logger.warning("Failed to close browser", exc_info=True)

        if self.playwright is not None:
            try:
                await self.playwright.stop()
            except Exception:
                logger.warning("Failed to stop playwright driver", exc_info=True)

        remove_stale_socket(self.socket_path)
        logger.info("Shutdown complete")

    # -- Connections ---------------------------------------------------------

    async def _handle_client(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        try:
            try:
                data = await reader.readline()
            except ValueError:
                # Line longer than the stream limit.
                response = fail(
                    f"Invalid request: message exceeds {self.config.max_message_bytes} bytes"
                )
            else:
                if not data.endswith(b"\n"):
                    # EOF before a complete message: nothing to answer.
                    return
                assert self.dispatcher is not None
                response = await self.dispatcher.handle_message(data)

            writer.write(encode_response(response))
            await writer.drain()
        except Exception:
            logger.exception("Unhandled error in handle_client")
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except Exception:
                pass

        if self.dispatcher is not None and self.dispatcher.stop_requested:
            logger.info("Stop command received, shutting down server")
            self.request_shutdown()


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------


async def run_server(config: DaemonConfig) -> None:
    """Run the daemon until ``stop`` or a termination signal."""
    daemon = Daemon(config)
    try:
        await daemon.start()
        daemon.install_signal_handlers()
        await daemon.wait_for_shutdown_request()
    finally:
        await daemon.shutdown()


def _setup_logging(config: DaemonConfig) -> None:
    """Configure root logging to ``config.log_file`` or stderr."""
    if config.log_file:
        log_path = Path(config.log_file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handler: logging.Handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
    else:
        handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    root = logging.getLogger()
    root.setLevel(config.log_level)
    root.addHandler(handler)


def main() -> None:
    """Console entry point: run the daemon in the foreground."""
    config = load_config(os.environ.get("PATCHRIGHT_DAEMON_CONFIG"))
    _setup_logging(config)
    logger.info(f"patchright-daemon {get_version()} starting (pid={os.getpid()})")
    try:
        asyncio.run(run_server(config))
    except Exception:
        logger.exception("Daemon crashed")
        raise


if __name__ == "__main__":
    main()
