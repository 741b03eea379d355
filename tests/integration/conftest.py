"""Shared fixtures for patchright-daemon integration tests.

These launch a real headless Chromium via patchright and run the daemon
in-process over a real Unix socket.
"""

from __future__ import annotations

import asyncio
import json
import shutil
import tempfile
import urllib.parse
from pathlib import Path

import pytest

from patchright_daemon.config import BrowserConfig, DaemonConfig
from patchright_daemon.server import run_server

# ---------------------------------------------------------------------------
# Test HTML page served via data: URL (no external HTTP server needed)
# ---------------------------------------------------------------------------

TEST_HTML = "data:text/html," + urllib.parse.quote(
    """<html><head><title>Fixture</title></head><body>
<h1>Test Page</h1>
<nav><a href="#about" id="about">About</a></nav>
<form>
  <input type="text" name="username" id="username" placeholder="Enter username">
  <input type="checkbox" name="agree" id="agree-cb">
  <button type="button" id="submit-btn" disabled>Submit</button>
</form>
<select id="color"><option value="red">Red</option><option value="blue">Blue</option></select>
</body></html>"""
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def wait_for_socket(socket_path: Path, timeout: float = 15) -> bool:
    """Poll until the Unix socket file appears on disk."""
    for _ in range(int(timeout * 10)):
        if socket_path.exists():
            return True
        await asyncio.sleep(0.1)
    return False


async def send_json(socket_path: Path, command: str, **fields) -> dict:
    """Open a new connection, send a single request, return the response."""
    reader, writer = await asyncio.open_unix_connection(str(socket_path))
    payload = json.dumps({"command": command, **fields}).encode() + b"\n"
    writer.write(payload)
    await writer.drain()
    data = await reader.readline()
    writer.close()
    await writer.wait_closed()
    return json.loads(data)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def short_home(monkeypatch: pytest.MonkeyPatch):
    """Provide a short temp dir as HOME so Unix socket paths stay under 108 chars."""
    home = Path(tempfile.mkdtemp(prefix="prt-"))
    monkeypatch.setattr(Path, "home", lambda: home)
    monkeypatch.delenv("PATCHRIGHT_DAEMON_SOCKET", raising=False)
    yield home
    shutil.rmtree(home, ignore_errors=True)


@pytest.fixture
def integration_config(short_home: Path) -> DaemonConfig:
    """Headless Chromium without the sandbox."""
    return DaemonConfig(
        socket_path=str(short_home / "d.sock"),
        browser=BrowserConfig(
            headless=True,
            launch_options={"chromium_sandbox": False},
        ),
    )


@pytest.fixture
async def running_daemon(integration_config: DaemonConfig):
    """Run the daemon as a task; yield its socket path; stop it afterwards."""
    socket_path = Path(integration_config.socket_path)
    task = asyncio.create_task(run_server(integration_config))
    assert await wait_for_socket(socket_path), "daemon socket never appeared"
    try:
        yield socket_path
    finally:
        if not task.done():
            try:
                await send_json(socket_path, "stop")
            except OSError:
                pass
        await asyncio.wait_for(task, timeout=30)


@pytest.fixture
def send(running_daemon: Path):
    """``await send("goto", pageId=..., url=...)`` against the running daemon."""

    async def _send(command: str, **fields) -> dict:
        return await send_json(running_daemon, command, **fields)

    return _send


@pytest.fixture
async def fixture_page(send) -> str:
    """Id of a page in the default session showing TEST_HTML."""
    page_id = (await send("newPage"))["pageId"]
    response = await send("goto", pageId=page_id, url=TEST_HTML)
    assert response["success"], response
    return page_id
