"""Environment-backed configuration helpers."""

from __future__ import annotations

import os
from functools import lru_cache

from .errors import ConfigError

_TRUE_VALUES = {"1", "true", "yes", "on"}

__all__ = [
    "get_supabase_url",
    "get_supabase_anon_key",
    "get_site_url",
    "get_callback_url",
    "get_oauth_provider",
    "get_page_cookie_name",
    "get_page_idle_timeout",
    "is_cookie_secure",
    "is_csrf_enabled",
    "cache_clear_all",
]


def _read_flag(name: str) -> bool | None:
    """Return the parsed boolean value for ``name`` if explicitly set."""

    value = os.getenv(name)
    if value is None:
        return None
    normalized = value.strip()
    if not normalized:
        return None
    return normalized.lower() in _TRUE_VALUES


def _require(name: str) -> str:
    value = (os.getenv(name) or "").strip()
    if not value:
        raise ConfigError(f"{name} must be set")
    return value


@lru_cache(maxsize=1)
def get_supabase_url() -> str:
    """Return the managed backend's project URL."""

    return _require("SUPABASE_URL").rstrip("/")


@lru_cache(maxsize=1)
def get_supabase_anon_key() -> str:
    """Return the public (anon) API key used by page clients."""

    return _require("SUPABASE_ANON_KEY")


@lru_cache(maxsize=1)
def get_site_url() -> str:
    """Return the public origin of this application, without a trailing slash."""

    value = (os.getenv("SITE_URL") or "").strip()
    return (value or "http://localhost:8000").rstrip("/")


def get_callback_url() -> str:
    return f"{get_site_url()}/auth/callback"


@lru_cache(maxsize=1)
def get_oauth_provider() -> str:
    value = (os.getenv("OAUTH_PROVIDER") or "").strip()
    return value or "google"


@lru_cache(maxsize=1)
def get_page_cookie_name() -> str:
    value = (os.getenv("PAGE_COOKIE_NAME") or "").strip()
    return value or "smartmarks_page"


@lru_cache(maxsize=1)
def get_page_idle_timeout() -> float:
    """Return how long an unused page session lives, in seconds.

    Values that are not positive numbers fall back to one hour.
    """

    raw = (os.getenv("PAGE_IDLE_TIMEOUT") or "").strip()
    try:
        value = float(raw) if raw else 3600.0
    except ValueError:
        return 3600.0
    return value if value > 0 else 3600.0


@lru_cache(maxsize=1)
def is_cookie_secure() -> bool:
    """Return ``True`` when the page cookie should carry the ``Secure`` flag.

    Defaults to whether ``SITE_URL`` is served over https.
    """

    flag = _read_flag("COOKIE_SECURE")
    if flag is None:
        return get_site_url().startswith("https://")
    return flag


@lru_cache(maxsize=1)
def is_csrf_enabled() -> bool:
    flag = _read_flag("CSRF_ENABLED")
    if flag is None:
        return False
    return flag


def cache_clear_all() -> None:
    for helper in (
        get_supabase_url,
        get_supabase_anon_key,
        get_site_url,
        get_oauth_provider,
        get_page_cookie_name,
        get_page_idle_timeout,
        is_cookie_secure,
        is_csrf_enabled,
    ):
        helper.cache_clear()
