"""Server-side page sessions.

A page session stands in for one open browser page: it owns a backend client,
the session gate and the sync controller, and it is the controller's view.
View changes are fanned out to any number of event-stream listeners.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional, Set

from .backend import BackendFactory, BookmarkBackend
from .schemas import Bookmark, BookmarkForm, BookmarkOut
from .sync import BookmarkSyncController, SessionGate


logger = logging.getLogger(__name__)

LISTENER_QUEUE_SIZE = 100


def serialize_bookmarks(bookmarks: List[Bookmark]) -> List[Dict[str, Any]]:
    return [
        BookmarkOut(id=b.id, title=b.title, url=b.url, created_at=b.created_at).model_dump(mode="json")
        for b in bookmarks
    ]


class PageSession:
    def __init__(
        self,
        page_id: str,
        backend: BookmarkBackend,
        *,
        callback_url: str,
        provider: str = "google",
    ) -> None:
        self.page_id = page_id
        self.backend = backend
        self.csrf_token = secrets.token_urlsafe(32)
        self.location = "/"
        self.form = BookmarkForm()
        self.last_seen = time.monotonic()
        self.controller = BookmarkSyncController(backend, view=self)
        self.gate = SessionGate(
            backend,
            self.controller,
            navigator=self,
            callback_url=callback_url,
            provider=provider,
        )
        self._listeners: Set[asyncio.Queue] = set()

    def touch(self) -> None:
        self.last_seen = time.monotonic()

    # view

    def render(self, bookmarks: List[Bookmark]) -> None:
        self._publish({"type": "bookmarks", "items": serialize_bookmarks(bookmarks)})

    def alert(self, message: str) -> None:
        self._publish({"type": "alert", "message": message})

    def clear_form(self) -> None:
        self.form = BookmarkForm()
        self._publish({"type": "clear_form"})

    def navigate(self, path: str) -> None:
        self.location = path
        self._publish({"type": "navigate", "to": path})

    # listeners

    @asynccontextmanager
    async def listen(self) -> AsyncIterator[asyncio.Queue]:
        queue: asyncio.Queue = asyncio.Queue(maxsize=LISTENER_QUEUE_SIZE)
        self._listeners.add(queue)
        try:
            yield queue
        finally:
            self._listeners.discard(queue)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def _publish(self, event: Dict[str, Any]) -> None:
        for queue in list(self._listeners):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning("Dropping %s event for slow listener page=%s", event.get("type"), self.page_id)

    async def close(self) -> None:
        await self.gate.teardown()


class PageRegistry:
    """Creates page sessions on first sight of a page id and tears idle ones down."""

    def __init__(
        self,
        backend_factory: BackendFactory,
        *,
        callback_url: str,
        provider: str = "google",
        idle_timeout: float = 3600.0,
    ) -> None:
        self._backend_factory = backend_factory
        self._callback_url = callback_url
        self._provider = provider
        self._idle_timeout = idle_timeout
        self._pages: Dict[str, PageSession] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._pages)

    def get(self, page_id: str) -> Optional[PageSession]:
        return self._pages.get(page_id)

    async def get_or_create(self, page_id: str) -> PageSession:
        await self.evict_idle(exclude=page_id)
        async with self._lock:
            page = self._pages.get(page_id)
            if page is None:
                backend = await self._backend_factory()
                page = PageSession(
                    page_id,
                    backend,
                    callback_url=self._callback_url,
                    provider=self._provider,
                )
                self._pages[page_id] = page
                logger.info("Created page session page=%s", page_id)
        page.touch()
        return page

    async def discard(self, page_id: str) -> None:
        async with self._lock:
            page = self._pages.pop(page_id, None)
        if page is not None:
            await page.close()

    async def evict_idle(self, *, exclude: Optional[str] = None) -> int:
        now = time.monotonic()
        async with self._lock:
            stale = [
                page
                for pid, page in self._pages.items()
                if pid != exclude and page.listener_count == 0 and now - page.last_seen > self._idle_timeout
            ]
            for page in stale:
                self._pages.pop(page.page_id, None)
        for page in stale:
            logger.info("Evicting idle page session page=%s", page.page_id)
            try:
                await page.close()
            except Exception:  # noqa: BLE001
                logger.exception("Failed to tear down idle page session page=%s", page.page_id)
        return len(stale)

    async def close_all(self) -> None:
        async with self._lock:
            pages = list(self._pages.values())
            self._pages.clear()
        for page in pages:
            try:
                await page.close()
            except Exception:  # noqa: BLE001
                logger.exception("Failed to tear down page session page=%s", page.page_id)
