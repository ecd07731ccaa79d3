import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from shelfmark.client.coordinator import FORM_ADD, LEFT, RIGHT, ViewStateCoordinator
from shelfmark.client.notifications import ERROR, SUCCESS, WARNING, Notifier
from shelfmark.client.preferences import STRICT_MODE, PreferenceStore
from shelfmark.client.store import StoreError
from shelfmark.client.types import (
    Bookmark,
    ChangeEvent,
    PagePreview,
    PreviewFailure,
    ProbeOutcome,
)

OWNER = 7
EPOCH = datetime(2026, 1, 1, tzinfo=timezone.utc)


def _bookmark(bookmark_id, title=None, owner=OWNER):
    return Bookmark(
        id=bookmark_id,
        user_id=owner,
        url=f"https://site{bookmark_id}.example.com",
        title=title or f"Bookmark {bookmark_id}",
        created_at=EPOCH + timedelta(minutes=bookmark_id),
    )


class FakeStore:
    def __init__(self, rows=None):
        self.rows = {row.id: row for row in rows or []}
        self.calls = []
        self.failures = {}
        self.list_gate = None
        self._next_id = 100

    def _maybe_fail(self, operation):
        if operation in self.failures:
            raise StoreError(self.failures[operation])

    async def whoami(self):
        return OWNER

    async def list(self):
        self.calls.append(("list",))
        if self.list_gate is not None:
            await self.list_gate.wait()
        self._maybe_fail("list")
        return sorted(self.rows.values(), key=lambda row: row.created_at, reverse=True)

    async def insert(self, title, url):
        self.calls.append(("insert", title, url))
        self._maybe_fail("insert")
        self._next_id += 1
        row = Bookmark(
            id=self._next_id,
            user_id=OWNER,
            url=url,
            title=title,
            created_at=datetime.now(timezone.utc),
        )
        self.rows[row.id] = row
        return row

    async def update(self, bookmark_id, fields):
        self.calls.append(("update", bookmark_id, fields))
        self._maybe_fail("update")
        row = self.rows[bookmark_id]
        for key, value in fields.items():
            setattr(row, key, value)
        return row

    async def delete(self, bookmark_id):
        self.calls.append(("delete", bookmark_id))
        self._maybe_fail("delete")
        self.rows.pop(bookmark_id, None)

    def operations(self, name):
        return [call for call in self.calls if call[0] == name]


class FakeProber:
    def __init__(self, outcome=None):
        self.outcome = outcome or ProbeOutcome(reachable=True, message="URL is reachable")
        self.calls = []
        self.gate = None

    async def probe(self, url):
        self.calls.append(url)
        if self.gate is not None:
            await self.gate.wait()
        return self.outcome


class FakePreviewer:
    def __init__(self, result=None):
        self.result = result or PagePreview(title="Card", image="https://img")
        self.calls = []

    async def fetch(self, url):
        self.calls.append(url)
        return self.result


class FakeTransport:
    def __init__(self):
        self.started = []
        self.stopped = []

    def start(self, owner_id, on_event, on_ready=None):
        handle = {"owner_id": owner_id, "on_event": on_event, "on_ready": on_ready}
        self.started.append(handle)
        return handle

    def stop(self, handle):
        self.stopped.append(handle)


def _view(store=None, prober=None, previewer=None, preferences=None, **kwargs):
    return ViewStateCoordinator(
        store=store or FakeStore(),
        prober=prober or FakeProber(),
        previewer=previewer or FakePreviewer(),
        preferences=preferences or PreferenceStore(),
        **kwargs,
    )


@pytest.mark.asyncio
async def test_invalid_input_never_reaches_the_network():
    store, prober = FakeStore(), FakeProber()
    view = _view(store=store, prober=prober)

    assert await view.add("", "https://example.com") is None
    assert view.field_errors == {"title": "Title is required"}
    assert await view.add("Example", "example.com") is None
    assert "url" in view.field_errors

    assert store.calls == []
    assert prober.calls == []


@pytest.mark.asyncio
async def test_strict_mode_blocks_unreachable_urls():
    preferences = PreferenceStore()
    preferences.set(STRICT_MODE, True)
    store = FakeStore([_bookmark(1)])
    prober = FakeProber(ProbeOutcome(reachable=False, message="Server returned 404"))
    view = _view(store=store, prober=prober, preferences=preferences)
    await view.start()
    before = list(view.bookmarks)

    result = await view.add("Example", "https://example.com")

    assert result is None
    assert store.operations("insert") == []
    assert view.bookmarks == before
    assert view.verifying is False
    assert view.field_errors["url"] == "URL may not be reachable: Server returned 404"
    assert view.notifier.current.level == ERROR
    assert view.notifier.current.message == "URL verification failed: Server returned 404"


@pytest.mark.asyncio
async def test_strict_mode_fails_closed_on_ambiguous_probe():
    preferences = PreferenceStore()
    preferences.set(STRICT_MODE, True)
    store = FakeStore([_bookmark(1)])
    prober = FakeProber(
        ProbeOutcome(reachable=False, message="Could not verify URL", ambiguous=True)
    )
    view = _view(store=store, prober=prober, preferences=preferences)
    await view.start()

    assert await view.edit(1, "Renamed", "https://renamed.example.com") is None
    assert store.operations("update") == []
    assert view.find(1).title == "Bookmark 1"


@pytest.mark.asyncio
async def test_strict_mode_saves_after_successful_probe_without_background_check():
    preferences = PreferenceStore()
    preferences.set(STRICT_MODE, True)
    store, prober, previewer = FakeStore(), FakeProber(), FakePreviewer()
    view = _view(store=store, prober=prober, previewer=previewer, preferences=preferences)

    bookmark = await view.add("Example", "https://example.com")
    await view.wait_for_background()

    assert bookmark is not None
    assert prober.calls == ["https://example.com"]
    assert previewer.calls == ["https://example.com"]
    updates = store.operations("update")
    assert len(updates) == 1
    assert "preview_title" in updates[0][2]


@pytest.mark.asyncio
async def test_passive_add_persists_first_and_verifies_in_background():
    store, prober, previewer = FakeStore(), FakeProber(), FakePreviewer()
    prober.outcome = ProbeOutcome(reachable=False, message="Server returned 500")
    prober.gate = asyncio.Event()
    view = _view(store=store, prober=prober, previewer=previewer)
    view.open_add()

    bookmark = await view.add("Example", "https://example.com")

    assert store.operations("insert") == [("insert", "Example", "https://example.com")]
    assert view.bookmarks[0] is bookmark
    assert view.form is None
    assert view.notifier.current.message == "Bookmark added successfully"
    assert view.pending_jobs(bookmark.id) == 2

    prober.gate.set()
    await view.wait_for_background()

    assert prober.calls == ["https://example.com"]
    verification = [
        call for call in store.operations("update") if "verified" in call[2]
    ]
    assert len(verification) == 1
    fields = verification[0][2]
    assert fields["verified"] is False
    assert fields["verification_message"] == "Server returned 500"
    assert isinstance(fields["verified_at"], datetime)
    assert view.find(bookmark.id).verified is False
    assert view.pending_jobs(bookmark.id) == 0


@pytest.mark.asyncio
async def test_persistence_error_is_reported_verbatim():
    store = FakeStore()
    store.failures["insert"] = "duplicate key value violates unique constraint"
    view = _view(store=store)
    view.open_add()

    assert await view.add("Example", "https://example.com") is None

    assert view.form == FORM_ADD
    assert view.notifier.current.level == ERROR
    assert view.notifier.current.message == (
        "Error adding bookmark: duplicate key value violates unique constraint"
    )
    assert view.bookmarks == []


@pytest.mark.asyncio
async def test_background_failures_never_fail_the_mutation():
    store = FakeStore()
    previewer = FakePreviewer(PreviewFailure(message="Failed to fetch: 403"))
    view = _view(store=store, previewer=previewer)

    bookmark = await view.add("Example", "https://example.com")
    store.failures["update"] = "row level security violation"
    await view.wait_for_background()

    assert bookmark is not None
    assert store.rows[bookmark.id].verified is None
    assert view.notifier.current.level == WARNING
    assert view.notifier.current.message == "Failed to fetch: 403"


@pytest.mark.asyncio
async def test_edit_replaces_row_without_fetching_preview():
    store = FakeStore([_bookmark(1)])
    previewer = FakePreviewer()
    view = _view(store=store, previewer=previewer)
    await view.start()
    view.open_edit(1)

    updated = await view.edit(1, "Renamed", "https://renamed.example.com")
    await view.wait_for_background()

    assert updated.title == "Renamed"
    assert view.find(1).url == "https://renamed.example.com"
    assert view.form is None
    assert previewer.calls == []
    assert view.notifier.current.message == "Bookmark updated successfully"


@pytest.mark.asyncio
async def test_submission_is_rejected_while_verifying():
    preferences = PreferenceStore()
    preferences.set(STRICT_MODE, True)
    store, prober = FakeStore(), FakeProber()
    prober.gate = asyncio.Event()
    view = _view(store=store, prober=prober, preferences=preferences)

    first = asyncio.create_task(view.add("Example", "https://example.com"))
    await asyncio.sleep(0)
    assert view.verifying is True
    assert await view.add("Example", "https://example.com") is None

    prober.gate.set()
    assert await first is not None
    assert len(store.operations("insert")) == 1
    await view.wait_for_background()


@pytest.mark.asyncio
async def test_remove_requires_confirmation_naming_the_title():
    store = FakeStore([_bookmark(1, title="Docs")])
    prompts = []
    view = _view(store=store, confirm=lambda prompt: prompts.append(prompt) or False)
    await view.start()

    assert await view.remove(1) is False
    assert prompts == ['Delete "Docs"?']
    assert store.operations("delete") == []


@pytest.mark.asyncio
async def test_remove_leaves_list_to_the_reload():
    store = FakeStore([_bookmark(1, title="Docs"), _bookmark(2)])

    async def confirm(prompt):
        return True

    view = _view(store=store, confirm=confirm)
    await view.start()

    assert await view.remove(1) is True
    assert view.notifier.current.message == "Deleted: Docs"
    assert view.find(1) is not None

    await view.request_reload()
    assert view.find(1) is None


@pytest.mark.asyncio
async def test_remove_failure_shows_error():
    store = FakeStore([_bookmark(1, title="Docs")])
    store.failures["delete"] = "permission denied"
    view = _view(store=store, confirm=lambda prompt: True)
    await view.start()

    assert await view.remove(1) is False
    assert view.notifier.current.message == "Error deleting bookmark: permission denied"


@pytest.mark.asyncio
async def test_selection_wraps_in_both_directions():
    view = _view(store=FakeStore([_bookmark(i) for i in range(1, 6)]))
    await view.start()

    assert view.selected_index == 0
    assert view.navigate(LEFT) == 4
    assert view.navigate(RIGHT) == 0
    view.selected_index = 4
    assert view.navigate(RIGHT) == 0


@pytest.mark.asyncio
async def test_selection_is_clamped_when_last_item_is_deleted():
    store = FakeStore([_bookmark(1)])
    view = _view(store=store, confirm=lambda prompt: True)
    await view.start()
    assert view.selected.id == 1

    await view.remove(1)
    await view.request_reload()

    assert view.bookmarks == []
    assert view.selected_index == 0
    assert view.selected is None
    assert view.navigate(LEFT) == 0


@pytest.mark.asyncio
async def test_selection_is_clamped_when_list_shrinks():
    store = FakeStore([_bookmark(i) for i in range(1, 4)])
    view = _view(store=store)
    await view.start()
    view.selected_index = 2

    store.rows.pop(1)
    await view.load()

    assert view.selected_index == 1


@pytest.mark.asyncio
async def test_start_subscribes_once_and_close_tears_down():
    transport = FakeTransport()
    store = FakeStore([_bookmark(1)])
    view = _view(store=store, transport=transport)

    await view.start()
    assert [handle["owner_id"] for handle in transport.started] == [OWNER]
    assert len(store.operations("list")) == 1

    await view.start()
    assert len(transport.started) == 2
    assert transport.stopped == [transport.started[0]]

    view.close()
    assert transport.stopped == transport.started
    assert view.feed.subscription is None


@pytest.mark.asyncio
async def test_delete_event_from_feed_triggers_single_reload():
    transport = FakeTransport()
    store = FakeStore([_bookmark(1)])
    view = _view(store=store, transport=transport)
    await view.start()
    on_event = transport.started[0]["on_event"]

    await on_event(ChangeEvent(event_type="delete", old={"id": 1}))
    assert len(store.operations("list")) == 2

    await on_event(ChangeEvent(event_type="insert", new={"id": 5, "user_id": 99}))
    assert len(store.operations("list")) == 2


@pytest.mark.asyncio
async def test_concurrent_reload_requests_are_coalesced():
    store = FakeStore([_bookmark(1)])
    view = _view(store=store)
    store.list_gate = asyncio.Event()

    first = asyncio.create_task(view.request_reload())
    await asyncio.sleep(0)
    await view.request_reload()
    await view.request_reload()
    store.list_gate.set()
    await first

    assert len(store.operations("list")) == 2


@pytest.mark.asyncio
async def test_background_job_after_close_has_no_view_effect():
    store, prober = FakeStore(), FakeProber()
    prober.gate = asyncio.Event()
    view = _view(store=store, prober=prober)

    bookmark = await view.add("Example", "https://example.com")
    view.close()
    prober.gate.set()
    await view.wait_for_background()

    assert store.rows[bookmark.id].verified is True
    assert view.pending_jobs(bookmark.id) == 0
    assert view.notifier.current is None


@pytest.mark.asyncio
async def test_theme_toggle_reaches_other_open_views(tmp_path):
    preferences = PreferenceStore(tmp_path / "prefs.json")
    first = _view(preferences=preferences)
    second = _view(preferences=preferences)
    await first.start()
    await second.start()

    first.toggle_dark_mode()

    assert second.dark_mode is True
    assert first.dark_mode is True

    second.close()
    first.toggle_dark_mode()
    assert first.dark_mode is False
    assert second.dark_mode is True


@pytest.mark.asyncio
async def test_strict_mode_toggle_is_announced():
    view = _view()
    await view.start()

    assert view.toggle_strict_mode() is True
    assert view.strict_mode is True
    assert view.notifier.current.message == "Strict mode enabled"
    assert view.notifier.current.level == SUCCESS


def test_url_field_is_checked_on_every_keystroke():
    view = _view()

    assert view.validate_url_field("h") != ""
    assert "url" in view.field_errors
    assert view.validate_url_field("https://example.com") == ""
    assert "url" not in view.field_errors
    assert view.validate_url_field("") == ""


@pytest.mark.asyncio
async def test_latest_toast_replaces_and_auto_dismisses():
    notifier = Notifier(duration=0.01)

    notifier.show("first")
    notifier.show("second", ERROR)
    assert notifier.current.message == "second"

    await asyncio.sleep(0.05)
    assert notifier.current is None
    assert [toast.message for toast in notifier.history] == ["first", "second"]


@pytest.mark.asyncio
async def test_change_committed_before_feed_is_ready_is_picked_up():
    transport = FakeTransport()
    store = FakeStore([_bookmark(1)])
    view = _view(store=store, transport=transport)
    await view.start()

    store.rows[1] = _bookmark(1, title="Edited elsewhere")
    assert view.find(1).title == "Bookmark 1"

    await transport.started[0]["on_ready"]()

    assert view.find(1).title == "Edited elsewhere"
    assert len(store.operations("list")) == 2


@pytest.mark.asyncio
async def test_load_picks_up_preferences_written_by_another_process(tmp_path):
    path = tmp_path / "prefs.json"
    view = _view(preferences=PreferenceStore(path))
    await view.start()
    assert view.dark_mode is False

    PreferenceStore(path).set("darkMode", True)
    await view.load()

    assert view.dark_mode is True


def test_toast_history_is_bounded():
    notifier = Notifier()

    for index in range(100):
        notifier.show(f"toast {index}")

    assert len(notifier.history) < 100
    assert notifier.history[-1].message == "toast 99"
    assert notifier.current.message == "toast 99"
