"""End-to-end tests against a real headless Chromium."""

from __future__ import annotations

import asyncio

import pytest

pytestmark = pytest.mark.integration


# ---------------------------------------------------------------------------
# Sessions and pages
# ---------------------------------------------------------------------------


class TestLifecycle:
    async def test_ping(self, send):
        assert await send("ping") == {"success": True, "result": "pong"}

    async def test_new_page_is_blank(self, send):
        created = await send("newPage")
        assert created["browserId"] == "default"
        url = await send("getUrl", pageId=created["pageId"])
        assert url == {"success": True, "result": "about:blank"}

    async def test_sessions_have_separate_contexts(self, send):
        browser_id = (await send("newBrowser"))["browserId"]
        first = (await send("newPage", browserId=browser_id))["pageId"]
        await send("newPage", browserId=browser_id)
        default_page = (await send("newPage"))["pageId"]

        in_session = await send("exec", pageId=first, code="len(context.pages)")
        in_default = await send("exec", pageId=default_page, code="len(context.pages)")

        assert in_session["result"] == "2"
        assert in_default["result"] == "1"

    async def test_close_browser_removes_its_pages(self, send):
        browser_id = (await send("newBrowser"))["browserId"]
        page_id = (await send("newPage", browserId=browser_id))["pageId"]

        assert (await send("closeBrowser", browserId=browser_id))["result"] == "Browser closed"

        listing = await send("listPages")
        assert page_id not in [p["pageId"] for p in listing["pages"]]
        gone = await send("getUrl", pageId=page_id)
        assert gone == {"success": False, "error": f"Page not found: {page_id}"}

    async def test_list_browsers(self, send, fixture_page):
        listing = await send("listBrowsers")
        assert listing["browsers"] == [
            {"browserId": "default", "pageCount": 1, "isDefault": True}
        ]


# ---------------------------------------------------------------------------
# Page commands
# ---------------------------------------------------------------------------


class TestPageCommands:
    async def test_title(self, send, fixture_page):
        assert (await send("getTitle", pageId=fixture_page))["result"] == "Fixture"

    async def test_fill_then_read_back(self, send, fixture_page):
        await send("fill", pageId=fixture_page, selector="#username", text="alice")
        value = await send("getValue", pageId=fixture_page, selector="#username")
        assert value == {"success": True, "result": "alice"}

    async def test_check(self, send, fixture_page):
        assert (await send("check", pageId=fixture_page, selector="#agree-cb"))["result"] == "checked"
        state = await send("isChecked", pageId=fixture_page, selector="#agree-cb")
        assert state == {"success": True, "result": True}

    async def test_disabled_button(self, send, fixture_page):
        state = await send("isEnabled", pageId=fixture_page, selector="#submit-btn")
        assert state == {"success": True, "result": False}

    async def test_select(self, send, fixture_page):
        await send("select", pageId=fixture_page, selector="#color", value="blue")
        value = await send("getValue", pageId=fixture_page, selector="#color")
        assert value["result"] == "blue"

    async def test_wait_for_text(self, send, fixture_page):
        response = await send("wait", pageId=fixture_page, waitType="text", text="Test Page")
        assert response == {"success": True, "result": "Text found"}

    async def test_in_memory_screenshot(self, send, fixture_page):
        response = await send("screenshot", pageId=fixture_page)
        assert response["success"] is True
        assert response["result"].startswith("Screenshot captured (")

    async def test_invalid_url_reports_engine_error(self, send, fixture_page):
        response = await send("goto", pageId=fixture_page, url="not a url")
        assert response["success"] is False
        assert response["error"]


# ---------------------------------------------------------------------------
# Snapshot and exec
# ---------------------------------------------------------------------------


class TestSnapshotAndExec:
    async def test_snapshot_refs(self, send, fixture_page):
        result = (await send("snapshot", pageId=fixture_page))["result"]
        lines = result.split("\n")
        assert lines[0].startswith("@e0 ")
        assert any('heading "Test Page"' in line for line in lines)

    async def test_compact_depth_limited_snapshot(self, send, fixture_page):
        result = (await send("snapshot", pageId=fixture_page, maxDepth=1, compact=True))["result"]
        assert "\n" not in result
        assert 'heading "Test Page"' in result
        assert 'link "About"' not in result

    async def test_exec_await(self, send, fixture_page):
        response = await send("exec", pageId=fixture_page, code="await page.evaluate('1 + 2')")
        assert response == {"success": True, "result": "3"}

    async def test_exec_error(self, send, fixture_page):
        response = await send("exec", pageId=fixture_page, code="page.no_such_method()")
        assert response["success"] is False
        assert "no_such_method" in response["error"]


# ---------------------------------------------------------------------------
# Stop
# ---------------------------------------------------------------------------


async def test_stop_removes_socket(running_daemon, send):
    assert (await send("stop"))["result"] == "stopping"
    for _ in range(100):
        if not running_daemon.exists():
            break
        await asyncio.sleep(0.1)
    assert not running_daemon.exists()
