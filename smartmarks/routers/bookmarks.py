import asyncio
import json
import logging
from typing import Any, AsyncGenerator, Dict

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import HTMLResponse, RedirectResponse, StreamingResponse

from ..deps import get_page, get_signed_in_page
from ..errors import LOGIN_PATH
from ..pages import PageSession, serialize_bookmarks
from ..schemas import (
    AddBookmarkResult,
    BookmarkCreate,
    BookmarkForm,
    BookmarkOut,
    BookmarksView,
    DeleteBookmarkResult,
)
from ..security.csrf import csrf_protect
from ..views import render_bookmarks


logger = logging.getLogger(__name__)

router = APIRouter(tags=["bookmarks"])

KEEPALIVE_SECONDS = 15.0


def _encode_event(payload: Dict[str, Any]) -> str:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


@router.get("/", response_class=HTMLResponse, summary="Bookmarks view")
async def home(page: PageSession = Depends(get_page)):
    session = await page.gate.activate()
    if session is None:
        return RedirectResponse(LOGIN_PATH, status_code=status.HTTP_303_SEE_OTHER)
    await page.gate.settle()
    page.location = "/"
    return HTMLResponse(render_bookmarks(page.controller.bookmarks, page.form, csrf_token=page.csrf_token))


@router.get("/bookmarks", response_model=BookmarksView, summary="Current bookmark list")
async def list_bookmarks(page: PageSession = Depends(get_signed_in_page)) -> BookmarksView:
    await page.gate.settle()
    items = [
        BookmarkOut(id=b.id, title=b.title, url=b.url, created_at=b.created_at)
        for b in page.controller.bookmarks
    ]
    return BookmarksView(state=page.controller.state, items=items)


@router.post(
    "/bookmarks",
    response_model=AddBookmarkResult,
    summary="Add a bookmark",
    dependencies=[Depends(csrf_protect)],
)
async def add_bookmark(
    payload: BookmarkCreate,
    page: PageSession = Depends(get_signed_in_page),
) -> AddBookmarkResult:
    page.form = BookmarkForm(title=payload.title, url=payload.url)
    submitted = await page.controller.add(payload.title, payload.url, page.gate.user_id)
    return AddBookmarkResult(submitted=submitted)


@router.delete(
    "/bookmarks/{bookmark_id}",
    response_model=DeleteBookmarkResult,
    summary="Delete a bookmark",
    dependencies=[Depends(csrf_protect)],
)
async def delete_bookmark(
    bookmark_id: str,
    page: PageSession = Depends(get_signed_in_page),
) -> DeleteBookmarkResult:
    deleted = await page.controller.remove(bookmark_id)
    return DeleteBookmarkResult(deleted=deleted)


@router.get("/events", summary="Page events", description="Server-sent events stream of view updates.")
async def page_events(request: Request, page: PageSession = Depends(get_page)):
    session = await page.gate.activate()

    async def event_generator() -> AsyncGenerator[str, None]:
        async with page.listen() as queue:
            if session is None:
                yield _encode_event({"type": "navigate", "to": LOGIN_PATH})
            else:
                yield _encode_event({"type": "bookmarks", "items": serialize_bookmarks(page.controller.bookmarks)})
            while True:
                if await request.is_disconnected():
                    logger.info("Event stream closed page=%s", page.page_id)
                    return
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=KEEPALIVE_SECONDS)
                except asyncio.TimeoutError:
                    yield ": keepalive\n\n"
                    continue
                page.touch()
                yield _encode_event(event)

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
