import hmac

from fastapi import Depends, HTTPException, Request, status

from ..config import is_csrf_enabled
from ..deps import get_page
from ..pages import PageSession


async def csrf_protect(request: Request, page: PageSession = Depends(get_page)) -> None:
    """Require the page's CSRF token on mutating requests when CSRF_ENABLED=1.

    Script calls send it as ``X-CSRF-Token``; the plain login/logout forms
    post it as a ``csrf_token`` field.
    """
    if not is_csrf_enabled():
        return
    token = request.headers.get("X-CSRF-Token")
    if not token and request.headers.get("content-type", "").startswith("application/x-www-form-urlencoded"):
        form = await request.form()
        value = form.get("csrf_token")
        token = value if isinstance(value, str) else None
    if not token:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Missing CSRF token")
    if not hmac.compare_digest(token.encode(), page.csrf_token.encode()):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid CSRF token")
