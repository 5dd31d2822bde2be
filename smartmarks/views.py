"""HTML for the login and bookmarks views."""

from __future__ import annotations

import json
from html import escape
from typing import List, Optional
from urllib.parse import urlparse

from .schemas import Bookmark, BookmarkForm


APP_TITLE = "Smart Bookmark App"

LOGIN_ERROR_MESSAGES = {
    "no_code": "Sign-in was cancelled or did not return an authorization code.",
    "login_failed": "Sign-in failed.",
    "server_error": "Something went wrong while signing you in. Please try again.",
}

_PAGE = """<!doctype html>
<html lang="en">
<head>
<meta charset="utf-8">
<meta name="viewport" content="width=device-width, initial-scale=1">
<title>{title}</title>
</head>
<body>
{body}
</body>
</html>
"""

# Applies page events pushed over /events and posts mutations with the
# page's CSRF token. The form keeps its values unless a clear_form arrives.
_MAIN_SCRIPT = """<script>
(function () {
  var csrf = %(csrf)s;
  var list = document.getElementById("bookmarks");
  var title = document.getElementById("title");
  var url = document.getElementById("url");
  function safeHref(value) {
    try {
      var parsed = new URL(value);
      return parsed.protocol === "http:" || parsed.protocol === "https:" ? value : null;
    } catch (e) { return null; }
  }
  function render(items) {
    list.innerHTML = "";
    if (!items.length) {
      var empty = document.createElement("p");
      empty.id = "empty";
      empty.textContent = "No bookmarks yet. Add one!";
      list.appendChild(empty);
      return;
    }
    var ul = document.createElement("ul");
    items.forEach(function (bm) {
      var li = document.createElement("li");
      var href = safeHref(bm.url);
      var link = document.createElement(href ? "a" : "span");
      if (href) { link.href = href; link.target = "_blank"; link.rel = "noopener noreferrer"; }
      link.textContent = bm.title;
      var del = document.createElement("button");
      del.textContent = "Delete";
      del.onclick = function () { send("DELETE", "/bookmarks/" + encodeURIComponent(bm.id)); };
      li.appendChild(link);
      li.appendChild(del);
      ul.appendChild(li);
    });
    list.appendChild(ul);
  }
  function send(method, path, body) {
    return fetch(path, {
      method: method,
      headers: {"Content-Type": "application/json", "X-CSRF-Token": csrf},
      body: body ? JSON.stringify(body) : undefined,
      credentials: "same-origin"
    });
  }
  Array.prototype.forEach.call(document.querySelectorAll("[data-delete]"), function (btn) {
    btn.onclick = function () { send("DELETE", "/bookmarks/" + encodeURIComponent(btn.getAttribute("data-delete"))); };
  });
  document.getElementById("add").onclick = function () {
    send("POST", "/bookmarks", {title: title.value, url: url.value});
  };
  var events = new EventSource("/events");
  events.onmessage = function (message) {
    var event = JSON.parse(message.data);
    if (event.type === "bookmarks") { render(event.items); }
    else if (event.type === "alert") { window.alert(event.message); }
    else if (event.type === "clear_form") { title.value = ""; url.value = ""; }
    else if (event.type === "navigate") { window.location.assign(event.to); }
  };
})();
</script>"""


def is_safe_link(url: str) -> bool:
    parsed = urlparse(url)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def login_error_text(error: Optional[str], message: Optional[str]) -> Optional[str]:
    if not error and not message:
        return None
    text = LOGIN_ERROR_MESSAGES.get(error or "", "Sign-in failed.")
    if message:
        text = f"{text} {message}"
    return text


def render_login(*, error: Optional[str] = None, csrf_token: str = "") -> str:
    parts = [
        f"<h1>{escape(APP_TITLE)}</h1>",
        '<form method="post" action="/auth/sign-in">',
        f'<input type="hidden" name="csrf_token" value="{escape(csrf_token)}">',
        '<button id="sign-in" type="submit">Sign in with Google</button>',
        "</form>",
    ]
    if error:
        parts.append(f'<p id="error" class="error">{escape(error)}</p>')
    return _PAGE.format(title=escape(APP_TITLE), body="\n".join(parts))


def _render_item(bookmark: Bookmark) -> str:
    title = escape(bookmark.title)
    if is_safe_link(bookmark.url):
        link = f'<a href="{escape(bookmark.url)}" target="_blank" rel="noopener noreferrer">{title}</a>'
    else:
        link = f"<span>{title}</span>"
    return (
        f'<li data-id="{escape(bookmark.id)}">{link}'
        f'<button type="button" data-delete="{escape(bookmark.id)}">Delete</button></li>'
    )


def render_bookmarks(bookmarks: List[Bookmark], form: BookmarkForm, *, csrf_token: str) -> str:
    if bookmarks:
        items = "<ul>" + "".join(_render_item(b) for b in bookmarks) + "</ul>"
    else:
        items = '<p id="empty">No bookmarks yet. Add one!</p>'
    parts = [
        "<header><h1>My Bookmarks</h1>",
        '<form method="post" action="/auth/logout">',
        f'<input type="hidden" name="csrf_token" value="{escape(csrf_token)}">',
        '<button id="logout" type="submit">Logout</button></form></header>',
        '<div id="add-form">',
        f'<input id="title" type="text" placeholder="Title" value="{escape(form.title)}">',
        f'<input id="url" type="url" placeholder="https://example.com" value="{escape(form.url)}">',
        '<button id="add" type="button">Add Bookmark</button>',
        "</div>",
        f'<div id="bookmarks">{items}</div>',
        _MAIN_SCRIPT % {"csrf": json.dumps(csrf_token)},
    ]
    return _PAGE.format(title="My Bookmarks", body="\n".join(parts))
