"""Client-side contract to the managed backend, plus its Supabase implementation.

The application never touches the SDK directly outside this module. Each page
session owns one ``SupabaseBackend`` created by :func:`create_backend`, so auth
state (including the PKCE code verifier) never leaks between browsers.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, List, Optional, Protocol

import httpx
from supabase import (
    AsyncClient,
    AsyncClientOptions,
    AuthError,
    PostgrestAPIError,
    acreate_client,
)

from .config import get_supabase_anon_key, get_supabase_url
from .errors import MalformedRecord, QueryFailed, SessionExchangeFailed, SignInFailed
from .schemas import Bookmark, ChangeEvent, Session


logger = logging.getLogger(__name__)

BOOKMARKS_TABLE = "bookmarks"
BOOKMARKS_SCHEMA = "public"

SessionListener = Callable[[str, Optional[Session]], None]
ChangeListener = Callable[[ChangeEvent], None]


class ListenerHandle(Protocol):
    def unsubscribe(self) -> None:  # noqa: D401
        """Stop delivering session-change notifications."""


class ChangeSubscription(Protocol):
    async def close(self) -> None:  # noqa: D401
        """Detach the change feed; no notification is delivered afterwards."""


class BookmarkBackend(Protocol):
    async def get_session(self) -> Optional[Session]: ...

    def on_session_change(self, listener: SessionListener) -> ListenerHandle: ...

    async def sign_in_with_oauth(self, provider: str, redirect_to: str) -> str: ...

    async def exchange_code_for_session(self, code: str) -> Session: ...

    async def sign_out(self) -> None: ...

    async def list_bookmarks(self, user_id: str) -> List[Bookmark]: ...

    async def insert_bookmark(self, *, user_id: str, title: str, url: str) -> None: ...

    async def delete_bookmark(self, bookmark_id: str) -> None: ...

    async def subscribe_bookmarks(self, user_id: str, on_change: ChangeListener) -> ChangeSubscription: ...


BackendFactory = Callable[[], Awaitable[BookmarkBackend]]


def _query_failed(exc: Exception) -> QueryFailed:
    if isinstance(exc, httpx.HTTPError):
        # transport failures never reach PostgREST, so there is no error code
        return QueryFailed(f"Network error: {str(exc) or type(exc).__name__}")
    message = getattr(exc, "message", None) or str(exc)
    return QueryFailed(message, code=getattr(exc, "code", None))


def _auth_message(exc: AuthError) -> str:
    return getattr(exc, "message", None) or str(exc)


class _RealtimeSubscription:
    def __init__(self, client: AsyncClient, channel: Any, topic: str) -> None:
        self._client = client
        self._channel = channel
        self.topic = topic
        self._closed = False

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._client.remove_channel(self._channel)
        logger.info("Closed change subscription %s", self.topic)


class SupabaseBackend:
    def __init__(self, client: AsyncClient) -> None:
        self.client = client

    async def get_session(self) -> Optional[Session]:
        raw = await self.client.auth.get_session()
        if raw is None:
            return None
        return Session.from_auth(raw)

    def on_session_change(self, listener: SessionListener) -> ListenerHandle:
        def relay(event: Any, raw: Any) -> None:
            name = str(getattr(event, "value", event))
            session = None
            if raw is not None:
                try:
                    session = Session.from_auth(raw)
                except MalformedRecord as exc:
                    # treated as signed out
                    logger.error("Unusable session in %s notification: %s", name, exc)
            listener(name, session)

        return self.client.auth.on_auth_state_change(relay)

    async def sign_in_with_oauth(self, provider: str, redirect_to: str) -> str:
        try:
            response = await self.client.auth.sign_in_with_oauth(
                {"provider": provider, "options": {"redirect_to": redirect_to}}
            )
        except AuthError as exc:
            raise SignInFailed(_auth_message(exc)) from exc
        if not response.url:
            raise SignInFailed(f"Provider {provider} returned no authorization URL")
        return response.url

    async def exchange_code_for_session(self, code: str) -> Session:
        try:
            response = await self.client.auth.exchange_code_for_session({"auth_code": code})
        except AuthError as exc:
            logger.error(
                "Session exchange failed: %s (%s)",
                _auth_message(exc),
                getattr(exc, "code", None),
            )
            raise SessionExchangeFailed(_auth_message(exc)) from exc
        if response.session is None:
            raise SessionExchangeFailed("Provider returned no session")
        return Session.from_auth(response.session)

    async def sign_out(self) -> None:
        await self.client.auth.sign_out()

    async def list_bookmarks(self, user_id: str) -> List[Bookmark]:
        try:
            response = await (
                self.client.table(BOOKMARKS_TABLE)
                .select("*")
                .eq("user_id", user_id)
                .order("created_at", desc=True)
                .execute()
            )
        except (PostgrestAPIError, httpx.HTTPError) as exc:
            raise _query_failed(exc) from exc
        return [Bookmark.from_record(row) for row in response.data or []]

    async def insert_bookmark(self, *, user_id: str, title: str, url: str) -> None:
        try:
            await (
                self.client.table(BOOKMARKS_TABLE)
                .insert({"url": url, "title": title, "user_id": user_id})
                .execute()
            )
        except (PostgrestAPIError, httpx.HTTPError) as exc:
            raise _query_failed(exc) from exc

    async def delete_bookmark(self, bookmark_id: str) -> None:
        try:
            await self.client.table(BOOKMARKS_TABLE).delete().eq("id", bookmark_id).execute()
        except (PostgrestAPIError, httpx.HTTPError) as exc:
            raise _query_failed(exc) from exc

    async def subscribe_bookmarks(self, user_id: str, on_change: ChangeListener) -> ChangeSubscription:
        topic = f"bookmarks:user_{user_id}"
        channel = self.client.channel(topic)

        def relay(payload: Any) -> None:
            on_change(ChangeEvent.from_payload(payload))

        def report(status: Any, err: Optional[Exception]) -> None:
            if err is not None:
                logger.warning("Subscription %s status=%s error=%s", topic, status, err)
            else:
                logger.info("Subscription %s status=%s", topic, status)

        channel.on_postgres_changes(
            "*",
            relay,
            table=BOOKMARKS_TABLE,
            schema=BOOKMARKS_SCHEMA,
            filter=f"user_id=eq.{user_id}",
        )
        try:
            await channel.subscribe(report)
        except Exception as exc:  # noqa: BLE001
            await self.client.remove_channel(channel)
            raise QueryFailed(f"Could not subscribe to {topic}: {exc}") from exc
        return _RealtimeSubscription(self.client, channel, topic)


async def create_backend() -> SupabaseBackend:
    """Create one backend client for a new page session."""

    client = await acreate_client(
        get_supabase_url(),
        get_supabase_anon_key(),
        options=AsyncClientOptions(flow_type="pkce", auto_refresh_token=True, persist_session=True),
    )
    return SupabaseBackend(client)
