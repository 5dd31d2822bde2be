import logging
import os
import uuid
from contextvars import ContextVar

from pythonjsonlogger import jsonlogger


LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s %(request_id)s %(page_id)s"

request_id_ctx: ContextVar[str | None] = ContextVar("request_id", default=None)
page_id_ctx: ContextVar[str | None] = ContextVar("page_id", default=None)


class ContextFilter(logging.Filter):
    """Stamp every record with the request and browser page it belongs to.

    Realtime and auth callbacks from the SDK fire outside any request, so
    both fields fall back to an empty string there.
    """

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: D401
        record.request_id = request_id_ctx.get() or ""
        record.page_id = page_id_ctx.get() or ""
        return True


def setup_logging() -> None:
    root = logging.getLogger()
    root.setLevel(os.getenv("LOG_LEVEL", "INFO").upper())
    root.handlers = []
    handler = logging.StreamHandler()
    handler.setFormatter(jsonlogger.JsonFormatter(LOG_FORMAT))
    handler.addFilter(ContextFilter())
    root.addHandler(handler)


def bind_request_id(req_id: str | None = None) -> str:
    rid = req_id or str(uuid.uuid4())
    request_id_ctx.set(rid)
    return rid


def bind_page_id(page_id: str | None) -> None:
    """Attach the page cookie value to logs emitted by the current request."""

    page_id_ctx.set(page_id)
