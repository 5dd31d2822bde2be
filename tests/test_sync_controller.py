from __future__ import annotations

import asyncio
import logging

import pytest

from tests.fakes import FakeBackend, RecordingView, make_row
from smartmarks.errors import ControllerStateError, QueryFailed
from smartmarks.schemas import ChangeEvent, SyncState
from smartmarks.sync import BookmarkSyncController


def _rows():
    return [
        make_row(id="b1", user_id="u1", title="Older", url="https://older.example", minutes=1),
        make_row(id="b2", user_id="u1", title="Newer", url="https://newer.example", minutes=2),
        make_row(id="x1", user_id="u2", title="Someone else", minutes=3),
    ]


def _controller(backend: FakeBackend):
    view = RecordingView()
    return BookmarkSyncController(backend, view), view


def test_activate_reads_newest_first_and_subscribes_once():
    backend = FakeBackend(rows=_rows())
    controller, view = _controller(backend)

    async def exercise():
        handle = await controller.activate("u1")
        assert not handle.closed

    asyncio.run(exercise())

    assert controller.state is SyncState.SYNCED
    assert [b.title for b in controller.bookmarks] == ["Newer", "Older"]
    assert [b.id for b in view.renders[-1]] == ["b2", "b1"]
    assert len(backend.open_subscriptions) == 1
    assert backend.open_subscriptions[0].user_id == "u1"
    assert backend.count("list") == 1


def test_activate_twice_is_rejected():
    backend = FakeBackend(rows=_rows())
    controller, _ = _controller(backend)

    async def exercise():
        await controller.activate("u1")
        with pytest.raises(ControllerStateError):
            await controller.activate("u1")

    asyncio.run(exercise())
    assert len(backend.subscriptions) == 1


def test_insert_then_notification_settles_to_backend_set():
    backend = FakeBackend(rows=_rows())
    controller, view = _controller(backend)
    results = {}

    async def exercise():
        await controller.activate("u1")
        results["added"] = await controller.add("Newest", "https://newest.example", "u1")
        await controller.settle()
        results["expected"] = [b.id for b in await backend.list_bookmarks("u1")]

    asyncio.run(exercise())

    assert results["added"] is True
    assert view.cleared == 1
    assert [b.id for b in controller.bookmarks] == results["expected"]
    assert controller.bookmarks[0].title == "Newest"
    assert [b.title for b in controller.bookmarks] == ["Newest", "Newer", "Older"]


def test_remove_drops_exactly_one_entry():
    rows = _rows() + [make_row(id="b3", user_id="u1", title="Third", minutes=5)]
    backend = FakeBackend(rows=rows)
    controller, _ = _controller(backend)

    async def exercise():
        await controller.activate("u1")
        before = [b.id for b in controller.bookmarks]
        assert await controller.remove("b2") is True
        await controller.settle()
        return before

    before = asyncio.run(exercise())

    after = [b.id for b in controller.bookmarks]
    assert before == ["b3", "b2", "b1"]
    assert after == ["b3", "b1"]


@pytest.mark.parametrize(
    ("title", "url", "user_id"),
    [
        ("", "https://x.com", "u1"),
        ("Title", "", "u1"),
        ("   ", "https://x.com", "u1"),
        ("Title", "https://x.com", None),
    ],
)
def test_add_validates_locally_before_calling_backend(title, url, user_id):
    backend = FakeBackend(rows=_rows())
    controller, view = _controller(backend)

    async def exercise():
        return await controller.add(title, url, user_id)

    assert asyncio.run(exercise()) is False
    assert backend.count("insert") == 0
    assert view.alerts == []


def test_add_failure_alerts_and_keeps_form_and_view():
    backend = FakeBackend(rows=_rows())
    controller, view = _controller(backend)

    async def exercise():
        await controller.activate("u1")
        backend.insert_error = QueryFailed("duplicate url", code="23505")
        result = await controller.add("Title", "https://newer.example", "u1")
        await controller.settle()
        return result

    assert asyncio.run(exercise()) is False
    assert view.alerts == ["Failed to add bookmark: duplicate url"]
    assert view.cleared == 0
    assert len(view.renders) == 1
    assert [b.id for b in controller.bookmarks] == ["b2", "b1"]


def test_remove_failure_alerts_without_local_removal():
    backend = FakeBackend(rows=_rows())
    controller, view = _controller(backend)

    async def exercise():
        await controller.activate("u1")
        backend.delete_error = QueryFailed("permission denied")
        return await controller.remove("b1")

    assert asyncio.run(exercise()) is False
    assert view.alerts == ["Failed to delete bookmark: permission denied"]
    assert [b.id for b in controller.bookmarks] == ["b2", "b1"]


def test_deactivate_detaches_subscription_completely():
    backend = FakeBackend(rows=_rows())
    controller, _ = _controller(backend)
    counts = {}

    async def exercise():
        await controller.activate("u1")
        subscription = backend.subscriptions[0]
        await controller.deactivate()
        counts["before"] = backend.count("list")
        # a late delivery from the SDK after close must not trigger a read
        subscription.on_change(ChangeEvent(kind="INSERT"))
        backend.emit_change("u1")
        await controller.settle()
        counts["after"] = backend.count("list")

    asyncio.run(exercise())

    assert counts["after"] == counts["before"]
    assert backend.open_subscriptions == []
    assert controller.state is SyncState.INACTIVE
    assert controller.bookmarks == []


def test_every_notification_triggers_an_independent_read():
    backend = FakeBackend(rows=_rows())
    controller, _ = _controller(backend)

    async def exercise():
        await controller.activate("u1")
        for kind in ("INSERT", "UPDATE", "DELETE", "*"):
            backend.emit_change("u1", kind)
        await controller.settle()

    asyncio.run(exercise())
    assert backend.count("list") == 5
    assert controller.state is SyncState.SYNCED


def test_failed_read_keeps_previous_view(caplog):
    backend = FakeBackend(rows=_rows())
    controller, view = _controller(backend)

    async def exercise():
        await controller.activate("u1")
        backend.read_error = QueryFailed("timeout")
        backend.emit_change("u1")
        await controller.settle()

    with caplog.at_level(logging.ERROR, logger="smartmarks.sync.controller"):
        asyncio.run(exercise())

    assert "Error fetching bookmarks" in caplog.text
    assert controller.state is SyncState.SYNCED
    assert [b.id for b in controller.bookmarks] == ["b2", "b1"]
    assert len(view.renders) == 1
    assert view.alerts == []


def test_failed_first_read_stays_loading_until_a_read_succeeds():
    backend = FakeBackend(rows=_rows())
    backend.read_error = QueryFailed("timeout")
    controller, view = _controller(backend)
    states = []

    async def exercise():
        await controller.activate("u1")
        states.append(controller.state)
        backend.read_error = None
        backend.emit_change("u1")
        await controller.settle()
        states.append(controller.state)

    asyncio.run(exercise())
    assert states == [SyncState.LOADING, SyncState.SYNCED]
    assert len(view.renders) == 1


def test_subscribe_failure_returns_to_inactive():
    backend = FakeBackend(rows=_rows())
    backend.subscribe_error = QueryFailed("realtime unavailable")
    controller, _ = _controller(backend)

    async def exercise():
        with pytest.raises(QueryFailed):
            await controller.activate("u1")

    asyncio.run(exercise())
    assert controller.state is SyncState.INACTIVE
    assert controller.user_id is None
    assert backend.open_subscriptions == []


def test_read_finishing_after_deactivate_is_discarded():
    backend = FakeBackend(rows=_rows())
    controller, view = _controller(backend)

    async def exercise():
        await controller.activate("u1")
        backend.read_gate = asyncio.Event()
        backend.emit_change("u1")
        await asyncio.sleep(0)
        await controller.deactivate()
        backend.read_gate.set()
        await controller.settle()

    asyncio.run(exercise())
    assert len(view.renders) == 1
    assert controller.bookmarks == []


def test_deactivate_while_subscribing_closes_the_late_subscription():
    backend = FakeBackend(rows=_rows())
    controller, _ = _controller(backend)

    async def exercise():
        backend.subscribe_gate = asyncio.Event()
        task = asyncio.create_task(controller.activate("u1"))
        for _ in range(5):
            await asyncio.sleep(0)
        assert controller.active
        await controller.deactivate()
        backend.subscribe_gate.set()
        return await task

    handle = asyncio.run(exercise())
    assert handle.closed
    assert len(backend.subscriptions) == 1
    assert backend.open_subscriptions == []
    assert controller.state is SyncState.INACTIVE


def test_handle_closes_once_and_never_touches_a_newer_activation():
    backend = FakeBackend(rows=_rows())
    controller, _ = _controller(backend)

    async def exercise():
        async with await controller.activate("u1") as first:
            assert controller.active
        assert first.closed
        second = await controller.activate("u1")
        await first.close()
        assert not second.closed
        assert controller.active
        await second.close()
        await second.close()

    asyncio.run(exercise())
    assert controller.state is SyncState.INACTIVE
    assert backend.open_subscriptions == []
    assert len(backend.subscriptions) == 2


def test_first_read_network_failure_keeps_sync_recoverable():
    backend = FakeBackend(rows=_rows())
    backend.read_error = ConnectionError("network down")
    controller, view = _controller(backend)
    seen = {}

    async def exercise():
        handle = await controller.activate("u1")
        seen["state"] = controller.state
        seen["open"] = len(backend.open_subscriptions)
        await handle.close()
        seen["after_close"] = len(backend.open_subscriptions)
        backend.read_error = None
        await controller.activate("u1")

    asyncio.run(exercise())
    assert seen == {"state": SyncState.LOADING, "open": 1, "after_close": 0}
    assert controller.state is SyncState.SYNCED
    assert [b.id for b in controller.bookmarks] == ["b2", "b1"]
    assert len(backend.open_subscriptions) == 1
    assert view.alerts == []


def test_unexpected_subscribe_error_resets_and_allows_reactivation():
    backend = FakeBackend(rows=_rows())
    backend.subscribe_error = ConnectionError("socket closed")
    controller, _ = _controller(backend)

    async def exercise():
        with pytest.raises(ConnectionError):
            await controller.activate("u1")
        assert controller.state is SyncState.INACTIVE
        backend.subscribe_error = None
        await controller.activate("u1")

    asyncio.run(exercise())
    assert controller.state is SyncState.SYNCED
    assert len(backend.open_subscriptions) == 1


def test_mutation_network_failures_alert_and_keep_form():
    backend = FakeBackend(rows=_rows())
    controller, view = _controller(backend)

    async def exercise():
        await controller.activate("u1")
        backend.insert_error = ConnectionError("connection reset")
        backend.delete_error = ConnectionError()
        added = await controller.add("Title", "https://x.com", "u1")
        removed = await controller.remove("b1")
        return added, removed

    added, removed = asyncio.run(exercise())
    assert (added, removed) == (False, False)
    assert view.alerts == [
        "Failed to add bookmark: connection reset",
        "Failed to delete bookmark: ConnectionError",
    ]
    assert view.cleared == 0
    assert [b.id for b in controller.bookmarks] == ["b2", "b1"]
