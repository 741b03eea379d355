"""Shared fixtures for patchright-daemon tests."""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from patchright_daemon.config import DaemonConfig
from patchright_daemon.registry import SessionRegistry
from patchright_daemon.server import CommandDispatcher


def make_mock_page(url: str = "about:blank") -> MagicMock:
    """A MagicMock standing in for a patchright Page."""
    page = MagicMock()
    page.url = url

    async def _goto(target, *args, **kwargs):
        page.url = target

    page.goto = AsyncMock(side_effect=_goto)
    page.close = AsyncMock()
    page.title = AsyncMock(return_value="Example")
    page.go_back = AsyncMock()
    page.go_forward = AsyncMock()
    page.reload = AsyncMock()
    page.click = AsyncMock()
    page.dblclick = AsyncMock()
    page.fill = AsyncMock()
    page.type = AsyncMock()
    page.hover = AsyncMock()
    page.check = AsyncMock()
    page.uncheck = AsyncMock()
    page.select_option = AsyncMock(return_value=["red"])
    page.screenshot = AsyncMock(return_value=b"\x89PNG....")
    page.text_content = AsyncMock(return_value="Hello")
    page.inner_html = AsyncMock(return_value="<b>Hello</b>")
    page.input_value = AsyncMock(return_value="typed value")
    page.is_visible = AsyncMock(return_value=True)
    page.is_enabled = AsyncMock(return_value=True)
    page.is_checked = AsyncMock(return_value=False)
    page.wait_for_selector = AsyncMock()
    page.wait_for_timeout = AsyncMock()
    page.wait_for_url = AsyncMock()
    page.wait_for_load_state = AsyncMock()
    page.evaluate = AsyncMock(return_value=None)

    # Keyboard / mouse
    page.keyboard = MagicMock()
    page.keyboard.press = AsyncMock()
    page.mouse = MagicMock()
    page.mouse.wheel = AsyncMock()

    # Locator (used by take_snapshot)
    locator = MagicMock()
    locator.aria_snapshot = AsyncMock(
        return_value='- heading "Test Page" [level=1]\n- navigation:\n  - link "About"'
    )
    page.locator = MagicMock(return_value=locator)
    return page


def make_mock_context() -> MagicMock:
    """A MagicMock standing in for a patchright BrowserContext.

    Every ``new_page`` call returns a fresh page mock.
    """
    ctx = MagicMock()
    ctx.created_pages = []

    async def _new_page():
        page = make_mock_page()
        ctx.created_pages.append(page)
        return page

    ctx.new_page = AsyncMock(side_effect=_new_page)
    ctx.close = AsyncMock()
    return ctx


@pytest.fixture
def mock_page():
    return make_mock_page("https://example.com")


@pytest.fixture
def mock_browser():
    """A MagicMock standing in for a patchright Browser."""
    browser = MagicMock()
    browser.created_contexts = []

    async def _new_context(**kwargs):
        ctx = make_mock_context()
        browser.created_contexts.append(ctx)
        return ctx

    browser.new_context = AsyncMock(side_effect=_new_context)
    browser.close = AsyncMock()
    return browser


@pytest.fixture
def registry(mock_browser):
    return SessionRegistry(mock_browser)


@pytest.fixture
def dispatcher(registry, mock_browser):
    return CommandDispatcher(registry, mock_browser)


@pytest.fixture
async def page_id(dispatcher):
    """Id of a page created in the default session."""
    response = await dispatcher.handle_command("newPage", {"command": "newPage"})
    return response["pageId"]


@pytest.fixture
def default_config():
    return DaemonConfig()


@pytest.fixture
def config_file(tmp_path):
    """Write a config JSON file and return its path."""
    config = {
        "browser": {
            "browser_name": "firefox",
            "headless": False,
        },
        "log_level": "debug",
    }
    path = tmp_path / "test-config.json"
    path.write_text(json.dumps(config), encoding="utf-8")
    return path


@pytest.fixture
def home_dir(tmp_path, monkeypatch):
    """Patch Path.home() so the default socket lives under tmp_path."""
    monkeypatch.setattr(Path, "home", lambda: tmp_path)
    monkeypatch.delenv("PATCHRIGHT_DAEMON_SOCKET", raising=False)
    return tmp_path
