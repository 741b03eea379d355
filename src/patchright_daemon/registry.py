"""In-memory registry of browser sessions and their pages.

A *session* is one engine browser context (its own cookies, storage and
credentials) holding any number of pages.  The registry is the single source
of truth for which sessions and pages exist; every page-scoped command
resolves its target through ``locate_page`` at the start of the request.

Mutations of the session and page maps are plain dict operations that never
straddle an ``await``, so two in-flight handlers cannot interleave halfway
through a mutation on the single event loop.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

from patchright_daemon.protocol import (
    PageNotFoundError,
    SessionNotFoundError,
    error_message,
)
from patchright_daemon.runtime import generate_id

logger = logging.getLogger(__name__)

DEFAULT_SESSION_ID = "default"
UNKNOWN_URL = "unknown"


@dataclass
class BrowserSession:
    session_id: str
    context: Any
    pages: dict[str, Any] = field(default_factory=dict)

    @property
    def is_default(self) -> bool:
        return self.session_id == DEFAULT_SESSION_ID


@dataclass(frozen=True)
class LocatedPage:
    session_id: str
    page_id: str
    page: Any
    session: BrowserSession


class SessionRegistry:
    """Owns every ``BrowserSession`` created against one engine browser."""

    def __init__(
        self,
        browser: Any,
        context_options: dict[str, Any] | None = None,
        blank_url: str = "about:blank",
    ) -> None:
        self.browser = browser
        self.context_options: dict[str, Any] = dict(context_options or {})
        self.blank_url = blank_url
        self._sessions: dict[str, BrowserSession] = {}
        self._default_lock = asyncio.Lock()

    # -- Queries -------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def get_session(self, session_id: str) -> BrowserSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def locate_page(self, page_id: str) -> LocatedPage:
        """Find the session owning *page_id* by scanning every session."""
        for session_id, session in self._sessions.items():
            page = session.pages.get(page_id)
            if page is not None:
                return LocatedPage(session_id, page_id, page, session)
        raise PageNotFoundError(page_id)

    def page_ids(self) -> set[str]:
        return {page_id for s in self._sessions.values() for page_id in s.pages}

    def list_pages(self) -> list[dict[str, Any]]:
        pages: list[dict[str, Any]] = []
        for session_id, session in self._sessions.items():
            for page_id, page in session.pages.items():
                try:
                    url = page.url
                except Exception:
                    url = UNKNOWN_URL
                pages.append({"pageId": page_id, "browserId": session_id, "url": url})
        return pages

    def list_sessions(self) -> list[dict[str, Any]]:
        return [
            {
                "browserId": session_id,
                "pageCount": len(session.pages),
                "isDefault": session.is_default,
            }
            for session_id, session in self._sessions.items()
        ]

    # -- Sessions ------------------------------------------------------------

    async def create_session(self) -> str:
        """Create an isolated session and return its id."""
        context = await self.browser.new_context(**self.context_options)
        session_id = generate_id(taken=self._reserved_session_ids())
        self._sessions[session_id] = BrowserSession(session_id, context)
        logger.info(f"Created session {session_id}")
        return session_id

    async def get_or_create_default_session(self) -> BrowserSession:
        """Return the default session, creating its context on first use."""
        session = self._sessions.get(DEFAULT_SESSION_ID)
        if session is not None:
            return session
        async with self._default_lock:
            session = self._sessions.get(DEFAULT_SESSION_ID)
            if session is None:
                context = await self.browser.new_context(**self.context_options)
                session = BrowserSession(DEFAULT_SESSION_ID, context)
                self._sessions[DEFAULT_SESSION_ID] = session
                logger.info("Created default session")
            return session

    async def close_session(self, session_id: str) -> list[str]:
        """Close *session_id* with all of its pages.

        The session leaves the registry before anything is awaited, so no
        lookup can reach it once closing has begun.  A page that fails to
        close does not stop the remaining pages or the context from being
        closed; the collected error messages are returned.
        """
        session = self._sessions.pop(session_id, None)
        if session is None:
            raise SessionNotFoundError(session_id)

        errors: list[str] = []
        pages = list(session.pages.items())
        session.pages.clear()
        for page_id, page in pages:
            try:
                await page.close()
            except Exception as exc:
                message = f"page {page_id}: {error_message(exc)}"
                logger.warning(f"Failed to close {message} in session {session_id}")
                errors.append(message)

        try:
            await session.context.close()
        except Exception as exc:
            message = f"context of session {session_id}: {error_message(exc)}"
            logger.warning(f"Failed to close {message}")
            errors.append(message)

        logger.info(f"Closed session {session_id} ({len(pages)} pages)")
        return errors

    async def close_all(self) -> list[str]:
        """Close every session, accumulating errors instead of aborting."""
        errors: list[str] = []
        for session_id in list(self._sessions):
            try:
                errors.extend(await self.close_session(session_id))
            except SessionNotFoundError:
                # Closed concurrently by another handler.
                continue
        return errors

    # -- Pages ---------------------------------------------------------------

    async def create_page(self, session_id: str | None = None) -> LocatedPage:
        """Open a blank page in *session_id* (default session when ``None``)."""
        if session_id is None or session_id == DEFAULT_SESSION_ID:
            session = await self.get_or_create_default_session()
        else:
            session = self.get_session(session_id)

        page = await session.context.new_page()
        try:
            await page.goto(self.blank_url)
        except Exception:
            await _close_quietly(page)
            raise

        if self._sessions.get(session.session_id) is not session:
            # The session was closed while the page was being created.
            await _close_quietly(page)
            raise SessionNotFoundError(session.session_id)

        page_id = generate_id(taken=self.page_ids())
        session.pages[page_id] = page
        logger.debug(f"Created page {page_id} in session {session.session_id}")
        return LocatedPage(session.session_id, page_id, page, session)

    async def close_page(self, page_id: str) -> None:
        located = self.locate_page(page_id)
        await located.page.close()
        located.session.pages.pop(page_id, None)
        logger.debug(f"Closed page {page_id} in session {located.session_id}")

    # -- Helpers -------------------------------------------------------------

    def _reserved_session_ids(self) -> set[str]:
        return set(self._sessions) | {DEFAULT_SESSION_ID}


async def _close_quietly(page: Any) -> None:
    try:
        await page.close()
    except Exception as exc:
        logger.debug(f"Ignoring error closing orphaned page: {error_message(exc)}")
