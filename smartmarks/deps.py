from fastapi import HTTPException, Request, status

from .observability.logging import bind_page_id
from .pages import PageSession, PageRegistry


def get_registry(request: Request) -> PageRegistry:
    return request.app.state.pages


async def get_page(request: Request) -> PageSession:
    """Return the page session for this browser, creating it on first use."""

    page_id = getattr(request.state, "page_id", None)
    if not page_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing page identifier")
    bind_page_id(page_id)
    return await get_registry(request).get_or_create(page_id)


async def get_signed_in_page(request: Request) -> PageSession:
    page = await get_page(request)
    await page.gate.activate()
    if page.gate.session is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not signed in")
    return page
