import logging
import os
import re
import secrets
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from .backend import BackendFactory, create_backend
from .config import (
    get_callback_url,
    get_oauth_provider,
    get_page_cookie_name,
    get_page_idle_timeout,
    is_cookie_secure,
)
from .errors import register_error_handlers
from .observability.logging import bind_page_id, bind_request_id, setup_logging
from .observability.metrics import metrics_endpoint, request_metrics_middleware
from .observability.sentry import init_sentry
from .pages import PageRegistry
from .routers import auth, bookmarks, status


logger = logging.getLogger(__name__)

_PAGE_ID_PATTERN = re.compile(r"[A-Za-z0-9_-]{16,64}")


def create_app(backend_factory: Optional[BackendFactory] = None) -> FastAPI:
    tags_metadata = [
        {"name": "status", "description": "Service health"},
        {"name": "auth", "description": "Login view, OAuth sign-in and callback"},
        {"name": "bookmarks", "description": "Bookmark view, mutations and live events"},
    ]

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        logger.info("Tearing down %d page sessions", len(app.state.pages))
        await app.state.pages.close_all()

    app = FastAPI(title="Smartmarks", version="0.1.0", openapi_tags=tags_metadata, lifespan=lifespan)
    app.state.pages = PageRegistry(
        backend_factory or create_backend,
        callback_url=get_callback_url(),
        provider=get_oauth_provider(),
        idle_timeout=get_page_idle_timeout(),
    )

    register_error_handlers(app)
    setup_logging()
    init_sentry()

    origins = os.getenv("CORS_ALLOW_ORIGINS", "")
    allow_origins = [o.strip() for o in origins.split(",") if o.strip()]
    if allow_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=allow_origins,
            allow_credentials=True,
            allow_methods=["GET", "POST", "DELETE"],
            allow_headers=["Content-Type", "X-CSRF-Token", "X-Request-Id"],
        )
    app.middleware("http")(request_metrics_middleware)

    @app.middleware("http")
    async def bind_page(request: Request, call_next):
        cookie_name = get_page_cookie_name()
        page_id = request.cookies.get(cookie_name)
        issued = False
        if not page_id or not _PAGE_ID_PATTERN.fullmatch(page_id):
            page_id = secrets.token_urlsafe(24)
            issued = True
        request.state.page_id = page_id
        bind_page_id(page_id)
        response = await call_next(request)
        if issued:
            response.set_cookie(
                cookie_name,
                page_id,
                httponly=True,
                samesite="lax",
                secure=is_cookie_secure(),
            )
        return response

    @app.middleware("http")
    async def add_request_id(request: Request, call_next):
        rid = request.headers.get("X-Request-Id")
        bind_request_id(rid)
        response = await call_next(request)
        if rid:
            response.headers["X-Request-Id"] = rid
        return response

    app.include_router(status.router)
    app.include_router(auth.router)
    app.include_router(bookmarks.router)
    app.add_api_route("/metrics", metrics_endpoint, include_in_schema=False)

    return app


app = create_app()
