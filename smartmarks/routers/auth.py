import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import HTMLResponse, RedirectResponse

from ..deps import get_page
from ..errors import NoAuthCode, ServerError, SessionExchangeFailed
from ..pages import PageSession
from ..security.csrf import csrf_protect
from ..views import login_error_text, render_login


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


@router.get("", response_class=HTMLResponse, summary="Login view")
async def login_view(
    error: Optional[str] = Query(None, description="Error code set by the OAuth callback"),
    message: Optional[str] = Query(None, description="Provider error message"),
    page: PageSession = Depends(get_page),
):
    page.location = "/auth"
    return HTMLResponse(render_login(error=login_error_text(error, message), csrf_token=page.csrf_token))


@router.post("/sign-in", summary="Start OAuth sign-in", dependencies=[Depends(csrf_protect)])
async def sign_in(page: PageSession = Depends(get_page)):
    result = await page.gate.sign_in()
    if result.error:
        return HTMLResponse(
            render_login(error=result.error, csrf_token=page.csrf_token),
            status_code=status.HTTP_400_BAD_REQUEST,
        )
    return RedirectResponse(result.url, status_code=status.HTTP_303_SEE_OTHER)


@router.get("/callback", summary="OAuth callback")
async def auth_callback(
    code: Optional[str] = Query(None),
    page: PageSession = Depends(get_page),
):
    if not code:
        logger.warning("No code provided in callback")
        raise NoAuthCode("No code provided")
    try:
        session = await page.backend.exchange_code_for_session(code)
    except SessionExchangeFailed:
        raise
    except Exception as exc:  # noqa: BLE001
        logger.exception("Callback handler error")
        raise ServerError(str(exc)) from exc
    await page.gate.settle()
    logger.info("Session created successfully user=%s", session.user_id)
    return RedirectResponse("/", status_code=status.HTTP_303_SEE_OTHER)


@router.post("/logout", summary="Sign out", dependencies=[Depends(csrf_protect)])
async def logout(page: PageSession = Depends(get_page)):
    await page.gate.activate()
    await page.gate.sign_out()
    await page.gate.settle()
    return RedirectResponse("/auth", status_code=status.HTTP_303_SEE_OTHER)
