from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import MalformedRecord


def _read(source: Any, name: str) -> Any:
    if isinstance(source, Mapping):
        return source.get(name)
    return getattr(source, name, None)


class SyncState(str, Enum):
    INACTIVE = "inactive"
    LOADING = "loading"
    SYNCED = "synced"


class Session(BaseModel):
    """Authenticated identity as seen by this application."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    access_token: Optional[str] = None
    email: Optional[str] = None
    expires_at: Optional[int] = None

    @classmethod
    def from_auth(cls, raw: Any) -> "Session":
        """Build a session from the SDK's session object (or a mapping).

        Raises ``MalformedRecord`` when the session has no user id.
        """

        user = _read(raw, "user")
        user_id = _read(user, "id") if user is not None else None
        if not user_id:
            raise MalformedRecord("session", "user.id")
        return cls(
            user_id=str(user_id),
            access_token=_read(raw, "access_token"),
            email=_read(user, "email"),
            expires_at=_read(raw, "expires_at"),
        )


BOOKMARK_FIELDS = ("id", "user_id", "title", "url", "created_at")


class Bookmark(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str
    title: str
    url: str
    created_at: datetime

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "Bookmark":
        for field in BOOKMARK_FIELDS:
            if record.get(field) in (None, ""):
                raise MalformedRecord("bookmark", field)
        try:
            return cls(
                id=str(record["id"]),
                user_id=str(record["user_id"]),
                title=record["title"],
                url=record["url"],
                created_at=record["created_at"],
            )
        except ValidationError as exc:
            field = ".".join(str(part) for part in exc.errors()[0]["loc"]) or "record"
            raise MalformedRecord("bookmark", field) from exc


ChangeKind = Literal["INSERT", "UPDATE", "DELETE", "*"]


class ChangeEvent(BaseModel):
    kind: ChangeKind = "*"
    table: Optional[str] = None
    record: Optional[Dict[str, Any]] = None

    @classmethod
    def from_payload(cls, payload: Any) -> "ChangeEvent":
        """Parse a realtime payload; anything unrecognised becomes a ``*`` event."""

        data = payload.get("data", payload) if isinstance(payload, Mapping) else {}
        if not isinstance(data, Mapping):
            data = {}
        kind = str(data.get("type") or data.get("eventType") or "*").upper()
        if kind not in ("INSERT", "UPDATE", "DELETE"):
            kind = "*"
        record = data.get("record") or data.get("new")
        return cls(
            kind=kind,
            table=data.get("table"),
            record=dict(record) if isinstance(record, Mapping) else None,
        )


class BookmarkForm(BaseModel):
    title: str = ""
    url: str = ""


class BookmarkCreate(BaseModel):
    title: str = Field("", max_length=500)
    url: str = Field("", max_length=2048)


class BookmarkOut(BaseModel):
    id: str
    title: str
    url: str
    created_at: datetime


class BookmarksView(BaseModel):
    state: SyncState
    items: List[BookmarkOut]


class AddBookmarkResult(BaseModel):
    submitted: bool


class DeleteBookmarkResult(BaseModel):
    deleted: bool


class SignInResult(BaseModel):
    url: Optional[str] = None
    error: Optional[str] = None


class StatusResponse(BaseModel):
    status: str = "ok"
    pages: int = 0
