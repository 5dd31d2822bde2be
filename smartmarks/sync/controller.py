from __future__ import annotations

import asyncio
import logging
from typing import Coroutine, List, Optional, Protocol, Set

from ..backend import BookmarkBackend, ChangeSubscription
from ..errors import AppError, ControllerStateError
from ..observability.metrics import ACTIVE_SUBSCRIPTIONS, BOOKMARK_MUTATIONS, BOOKMARK_READS
from ..schemas import Bookmark, ChangeEvent, SyncState


logger = logging.getLogger(__name__)


def _describe(exc: Exception) -> str:
    if isinstance(exc, AppError) and exc.message:
        return exc.message
    return str(exc) or type(exc).__name__


class SyncView(Protocol):
    def render(self, bookmarks: List[Bookmark]) -> None: ...

    def alert(self, message: str) -> None: ...

    def clear_form(self) -> None: ...


class SyncHandle:
    """Lifetime of one ``activate`` call; closing it deactivates the controller once."""

    def __init__(self, controller: "BookmarkSyncController", generation: int) -> None:
        self._controller = controller
        self._generation = generation

    @property
    def closed(self) -> bool:
        return self._controller.generation != self._generation

    async def close(self) -> None:
        if self.closed:
            return
        await self._controller.deactivate()

    async def __aenter__(self) -> "SyncHandle":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()


class BookmarkSyncController:
    """Keeps one user's bookmark list in step with the backend.

    The list is only ever replaced by a full read. Reads run once on
    activation and again for every change notification; notifications are
    triggers, their payload is never applied. Overlapping reads are not
    ordered, so the view holds whichever read finished last.
    """

    def __init__(self, backend: BookmarkBackend, view: SyncView) -> None:
        self._backend = backend
        self._view = view
        self.state = SyncState.INACTIVE
        self.user_id: Optional[str] = None
        self.bookmarks: List[Bookmark] = []
        self.generation = 0
        self._subscription: Optional[ChangeSubscription] = None
        self._tasks: Set[asyncio.Task] = set()

    @property
    def active(self) -> bool:
        return self.state is not SyncState.INACTIVE

    async def activate(self, user_id: str) -> SyncHandle:
        if not user_id:
            raise ValueError("user_id is required")
        if self.active:
            raise ControllerStateError(f"Sync already active for user {self.user_id}")

        self.generation += 1
        generation = self.generation
        self.user_id = user_id
        self.state = SyncState.LOADING
        logger.info("Activating bookmark sync user=%s", user_id)

        def on_change(event: ChangeEvent) -> None:
            self._on_change(generation, event)

        read_result, subscribed = await asyncio.gather(
            self.refetch(),
            self._backend.subscribe_bookmarks(user_id, on_change),
            return_exceptions=True,
        )
        failure = next((r for r in (subscribed, read_result) if isinstance(r, BaseException)), None)
        if failure is not None:
            if not isinstance(subscribed, BaseException):
                await self._close_subscription(subscribed)
            if generation == self.generation:
                self._reset()
            raise failure
        subscription = subscribed

        if generation != self.generation:
            # deactivated while the subscription was being opened
            await self._close_subscription(subscription)
            return SyncHandle(self, generation)

        self._subscription = subscription
        ACTIVE_SUBSCRIPTIONS.inc()
        return SyncHandle(self, generation)

    async def deactivate(self) -> None:
        if not self.active:
            return
        logger.info("Deactivating bookmark sync user=%s", self.user_id)
        subscription = self._subscription
        self._reset()
        if subscription is None:
            return
        ACTIVE_SUBSCRIPTIONS.dec()
        await self._close_subscription(subscription)

    async def refetch(self) -> None:
        user_id, generation = self.user_id, self.generation
        if user_id is None:
            return
        try:
            bookmarks = await self._backend.list_bookmarks(user_id)
        except Exception as exc:  # noqa: BLE001
            BOOKMARK_READS.labels("error").inc()
            logger.error("Error fetching bookmarks user=%s: %s", user_id, exc)
            return
        if generation != self.generation:
            BOOKMARK_READS.labels("discarded").inc()
            logger.debug("Discarding bookmark read for closed sync user=%s", user_id)
            return
        BOOKMARK_READS.labels("ok").inc()
        self.bookmarks = bookmarks
        self.state = SyncState.SYNCED
        self._view.render(list(bookmarks))

    async def add(self, title: str, url: str, user_id: Optional[str]) -> bool:
        """Insert a bookmark; returns ``True`` when the backend accepted it."""

        title = (title or "").strip()
        url = (url or "").strip()
        if not user_id or not title or not url:
            return False
        try:
            await self._backend.insert_bookmark(user_id=user_id, title=title, url=url)
        except Exception as exc:  # noqa: BLE001
            BOOKMARK_MUTATIONS.labels("insert", "error").inc()
            logger.error("Error adding bookmark user=%s: %s", user_id, exc)
            self._view.alert(f"Failed to add bookmark: {_describe(exc)}")
            return False
        BOOKMARK_MUTATIONS.labels("insert", "ok").inc()
        self._view.clear_form()
        return True

    async def remove(self, bookmark_id: str) -> bool:
        try:
            await self._backend.delete_bookmark(bookmark_id)
        except Exception as exc:  # noqa: BLE001
            BOOKMARK_MUTATIONS.labels("delete", "error").inc()
            logger.error("Error deleting bookmark %s: %s", bookmark_id, exc)
            self._view.alert(f"Failed to delete bookmark: {_describe(exc)}")
            return False
        BOOKMARK_MUTATIONS.labels("delete", "ok").inc()
        return True

    async def settle(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _on_change(self, generation: int, event: ChangeEvent) -> None:
        if generation != self.generation:
            logger.debug("Ignoring %s notification for closed sync", event.kind)
            return
        logger.info("Realtime change kind=%s user=%s", event.kind, self.user_id)
        self._spawn(self.refetch())

    def _spawn(self, coro: Coroutine) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Bookmark refetch crashed", exc_info=exc)

    async def _close_subscription(self, subscription: ChangeSubscription) -> None:
        try:
            await subscription.close()
        except Exception:  # noqa: BLE001
            logger.exception("Failed to close bookmark change subscription")

    def _reset(self) -> None:
        self.generation += 1
        self._subscription = None
        self.state = SyncState.INACTIVE
        self.user_id = None
        self.bookmarks = []
