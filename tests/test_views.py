from __future__ import annotations

import pytest

from tests.fakes import make_row
from smartmarks.schemas import Bookmark, BookmarkForm
from smartmarks.views import is_safe_link, login_error_text, render_bookmarks, render_login


def _bookmark(**overrides) -> Bookmark:
    row = make_row(id="b1", user_id="u1", title="Docs", url="https://docs.example")
    row.update(overrides)
    return Bookmark.from_record(row)


@pytest.mark.parametrize(
    ("url", "expected"),
    [
        ("https://docs.example/page", True),
        ("http://docs.example", True),
        ("javascript:alert(1)", False),
        ("data:text/html,hi", False),
        ("docs.example", False),
    ],
)
def test_is_safe_link(url, expected):
    assert is_safe_link(url) is expected


def test_unsafe_urls_are_not_rendered_as_links():
    html = render_bookmarks([_bookmark(url="javascript:alert(1)")], BookmarkForm(), csrf_token="tok")

    assert "javascript:alert(1)" not in html
    assert "<span>Docs</span>" in html


def test_bookmark_fields_are_escaped():
    html = render_bookmarks(
        [_bookmark(title="<script>x</script>")],
        BookmarkForm(title='"quoted"', url="https://a.example/?q=<1>"),
        csrf_token="tok",
    )

    assert "<script>x</script>" not in html
    assert "&lt;script&gt;x&lt;/script&gt;" in html
    assert 'value="&quot;quoted&quot;"' in html
    assert 'value="https://a.example/?q=&lt;1&gt;"' in html


def test_empty_list_shows_placeholder():
    html = render_bookmarks([], BookmarkForm(), csrf_token="tok")

    assert "No bookmarks yet. Add one!" in html
    assert "<ul>" not in html


def test_login_error_text():
    assert login_error_text(None, None) is None
    assert login_error_text("no_code", None).startswith("Sign-in was cancelled")
    assert login_error_text("login_failed", "Invalid code") == "Sign-in failed. Invalid code"
    assert login_error_text("mystery", None) == "Sign-in failed."


def test_login_view_carries_csrf_token():
    html = render_login(csrf_token="tok-123")

    assert 'name="csrf_token" value="tok-123"' in html
    assert "Smart Bookmark App" in html
