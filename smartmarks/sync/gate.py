from __future__ import annotations

import asyncio
import logging
from typing import Coroutine, Optional, Protocol, Set

from ..backend import BookmarkBackend, ListenerHandle
from ..errors import LOGIN_PATH, SignInFailed
from ..observability.metrics import SESSION_EVENTS
from ..schemas import Session, SignInResult
from .controller import BookmarkSyncController, SyncHandle


logger = logging.getLogger(__name__)


class Navigator(Protocol):
    def navigate(self, path: str) -> None: ...


class SessionGate:
    """Decides whether the page may show bookmarks and owns the sync lifecycle.

    ``activate`` runs once per page: it registers the session-change listener
    and reads the current session. Any error from that read counts as "no
    session". From then on each notification either routes to the login view
    (and releases the sync) or (re)activates the sync for the new user.
    """

    def __init__(
        self,
        backend: BookmarkBackend,
        controller: BookmarkSyncController,
        navigator: Navigator,
        *,
        callback_url: str,
        provider: str = "google",
    ) -> None:
        self._backend = backend
        self._controller = controller
        self._navigator = navigator
        self.callback_url = callback_url
        self.provider = provider
        self.session: Optional[Session] = None
        self.ready = False
        self._listener: Optional[ListenerHandle] = None
        self._handle: Optional[SyncHandle] = None
        self._torn_down = False
        self._lock = asyncio.Lock()
        self._tasks: Set[asyncio.Task] = set()

    @property
    def user_id(self) -> Optional[str]:
        return self.session.user_id if self.session is not None else None

    async def activate(self) -> Optional[Session]:
        if self._listener is not None or self._torn_down:
            return self.session
        self._listener = self._backend.on_session_change(self._on_session_change)
        try:
            session = await self._backend.get_session()
        except Exception:  # noqa: BLE001
            logger.exception("Session query failed; treating as signed out")
            session = None
        self.ready = True
        await self._apply(session)
        return self.session

    async def teardown(self) -> None:
        self._torn_down = True
        listener, self._listener = self._listener, None
        if listener is not None:
            listener.unsubscribe()
        async with self._lock:
            await self._release()

    async def sign_in(self, provider: Optional[str] = None) -> SignInResult:
        provider = provider or self.provider
        try:
            url = await self._backend.sign_in_with_oauth(provider, self.callback_url)
        except SignInFailed as exc:
            logger.warning("OAuth sign-in request failed provider=%s: %s", provider, exc.message)
            return SignInResult(error=exc.message)
        return SignInResult(url=url)

    async def sign_out(self) -> None:
        await self._backend.sign_out()

    async def settle(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        await self._controller.settle()

    def _on_session_change(self, event: str, session: Optional[Session]) -> None:
        SESSION_EVENTS.labels(event).inc()
        logger.info("Session change event=%s signed_in=%s", event, session is not None)
        if self._torn_down:
            return
        if session is None:
            # route in the notifying turn; releasing the sync can follow later
            self._route_to_login()
        self._spawn(self._apply(session, routed=session is None))

    def _route_to_login(self) -> None:
        self.session = None
        self._navigator.navigate(LOGIN_PATH)

    async def _apply(self, session: Optional[Session], *, routed: bool = False) -> None:
        if session is None and not routed:
            self._route_to_login()
        async with self._lock:
            if self._torn_down:
                return
            self.session = session
            if session is None:
                await self._release()
                return
            if self._handle is not None and not self._handle.closed and self._controller.user_id == session.user_id:
                return
            await self._release()
            try:
                self._handle = await self._controller.activate(session.user_id)
            except Exception as exc:  # noqa: BLE001
                logger.error("Could not start bookmark sync user=%s: %s", session.user_id, exc)

    async def _release(self) -> None:
        handle, self._handle = self._handle, None
        if handle is not None:
            await handle.close()

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
            logger.error("Session change handling crashed", exc_info=exc)
