from __future__ import annotations

import asyncio
import inspect
import logging
from datetime import datetime, timezone

from shelfmark.client.feed import ChangeFeedListener
from shelfmark.client.notifications import ERROR, SUCCESS, WARNING, Notifier
from shelfmark.client.preferences import DARK_MODE, STRICT_MODE
from shelfmark.client.store import StoreError
from shelfmark.client.types import Bookmark, PreviewFailure
from shelfmark.services.urls import INVALID_URL_FIELD_MESSAGE, is_well_formed

logger = logging.getLogger(__name__)

FORM_ADD = "add"
FORM_EDIT = "edit"

LEFT = "left"
RIGHT = "right"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _decline(prompt: str) -> bool:
    logger.info("No confirmation hook installed; declining %r", prompt)
    return False


class ViewStateCoordinator:
    """Owns one view's bookmark list and drives every mutation.

    Writes go through ``store``; the displayed list is refreshed from the
    store whenever the change feed reports a relevant event. Reachability
    and preview enrichment run as background tasks after a write and never
    fail the write itself.
    """

    def __init__(
        self,
        store,
        prober,
        previewer,
        preferences,
        transport=None,
        notifier: Notifier | None = None,
        confirm=None,
    ):
        self.store = store
        self.prober = prober
        self.previewer = previewer
        self.preferences = preferences
        self.notifier = notifier or Notifier()
        self.confirm = confirm or _decline
        self.feed = (
            ChangeFeedListener(transport, self.request_reload) if transport else None
        )

        self.owner_id = None
        self.bookmarks: list[Bookmark] = []
        self.selected_index = 0
        self.verifying = False
        self.form: str | None = None
        self.editing_id: int | None = None
        self.field_errors: dict[str, str] = {}
        self.dark_mode = preferences.get(DARK_MODE)
        self.strict_mode = preferences.get(STRICT_MODE)

        self._closed = False
        self._unsubscribe = None
        self._reloading = False
        self._reload_pending = False
        self._jobs: dict[int, set[asyncio.Task]] = {}
        self._tasks: set[asyncio.Task] = set()

    # ---------- lifecycle ----------

    async def start(self) -> None:
        """Resolve the session owner, load the list and open the change feed.

        A :class:`StoreError` from resolving the owner propagates; without an
        owner there is no session to show.
        """
        self._closed = False
        self.dark_mode = self.preferences.get(DARK_MODE)
        self.strict_mode = self.preferences.get(STRICT_MODE)
        if self._unsubscribe is None:
            self._unsubscribe = self.preferences.subscribe(self._on_preference)

        self.owner_id = await self.store.whoami()
        await self.load()
        if self.feed is not None:
            self.feed.activate(self.owner_id)

    def close(self) -> None:
        self._closed = True
        if self.feed is not None:
            self.feed.deactivate()
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._jobs.clear()
        self.notifier.dismiss()

    async def wait_for_background(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ---------- list state ----------

    async def load(self) -> bool:
        # Picks up flags written by views in other processes.
        self.preferences.sync()
        try:
            items = await self.store.list()
        except StoreError as exc:
            self.notifier.show(f"Error loading bookmarks: {exc.message}", ERROR)
            return False
        if self._closed:
            return False
        self.bookmarks = items
        self._clamp_selection()
        return True

    async def request_reload(self) -> None:
        # Requests that arrive during a reload collapse into one follow-up load.
        if self._reloading:
            self._reload_pending = True
            return
        self._reloading = True
        try:
            while True:
                self._reload_pending = False
                await self.load()
                if not self._reload_pending or self._closed:
                    break
        finally:
            self._reloading = False

    def find(self, bookmark_id: int) -> Bookmark | None:
        for bookmark in self.bookmarks:
            if bookmark.id == bookmark_id:
                return bookmark
        return None

    @property
    def selected(self) -> Bookmark | None:
        if not self.bookmarks:
            return None
        return self.bookmarks[self.selected_index]

    def navigate(self, direction: str) -> int:
        count = len(self.bookmarks)
        if not count:
            self.selected_index = 0
        elif direction == LEFT:
            self.selected_index = (self.selected_index - 1) % count
        elif direction == RIGHT:
            self.selected_index = (self.selected_index + 1) % count
        else:
            raise ValueError(f"unknown direction: {direction}")
        return self.selected_index

    def _clamp_selection(self) -> None:
        if not self.bookmarks:
            self.selected_index = 0
        elif self.selected_index >= len(self.bookmarks):
            self.selected_index = len(self.bookmarks) - 1
        elif self.selected_index < 0:
            self.selected_index = 0

    def _replace_local(self, bookmark: Bookmark) -> None:
        for index, existing in enumerate(self.bookmarks):
            if existing.id == bookmark.id:
                self.bookmarks[index] = bookmark
                return

    # ---------- preferences ----------

    def _on_preference(self, key: str, value: bool) -> None:
        if key == DARK_MODE:
            self.dark_mode = value
        elif key == STRICT_MODE:
            self.strict_mode = value

    def toggle_dark_mode(self) -> bool:
        return self.preferences.toggle(DARK_MODE)

    def toggle_strict_mode(self) -> bool:
        enabled = self.preferences.toggle(STRICT_MODE)
        self.notifier.show(f"Strict mode {'enabled' if enabled else 'disabled'}")
        return enabled

    # ---------- input surface ----------

    def open_add(self) -> None:
        self.form = FORM_ADD
        self.editing_id = None
        self.field_errors.clear()

    def open_edit(self, bookmark_id: int) -> Bookmark | None:
        bookmark = self.find(bookmark_id)
        if bookmark is None:
            return None
        self.form = FORM_EDIT
        self.editing_id = bookmark_id
        self.field_errors.clear()
        return bookmark

    def close_form(self) -> None:
        self.form = None
        self.editing_id = None
        self.field_errors.clear()

    def validate_url_field(self, value: str) -> str:
        """Re-check the URL field as it is typed; returns the inline error."""
        if not value.strip() or is_well_formed(value):
            self.field_errors.pop("url", None)
            return ""
        self.field_errors["url"] = INVALID_URL_FIELD_MESSAGE
        return INVALID_URL_FIELD_MESSAGE

    # ---------- mutations ----------

    def _check_fields(self, title: str, url: str) -> bool:
        self.field_errors.clear()
        if not title:
            self.field_errors["title"] = "Title is required"
        if not url:
            self.field_errors["url"] = "URL is required"
        elif not is_well_formed(url):
            self.field_errors["url"] = INVALID_URL_FIELD_MESSAGE
        return not self.field_errors

    async def _verify_before_save(self, url: str) -> bool:
        self.verifying = True
        try:
            outcome = await self.prober.probe(url)
        finally:
            self.verifying = False
        if outcome.reachable:
            return True
        # Ambiguous failures block too; strict mode fails closed.
        self.field_errors["url"] = f"URL may not be reachable: {outcome.message}"
        self.notifier.show(f"URL verification failed: {outcome.message}", ERROR)
        return False

    async def add(self, title: str, url: str) -> Bookmark | None:
        if self.verifying:
            return None
        title, url = title.strip(), url.strip()
        strict = self.strict_mode
        if not self._check_fields(title, url):
            return None
        if strict and not await self._verify_before_save(url):
            return None

        try:
            bookmark = await self.store.insert(title, url)
        except StoreError as exc:
            self.notifier.show(f"Error adding bookmark: {exc.message}", ERROR)
            return None

        self.close_form()
        if self.find(bookmark.id) is None:
            self.bookmarks.insert(0, bookmark)
        self.notifier.show("Bookmark added successfully", SUCCESS)

        self._spawn(bookmark.id, self._fetch_preview(bookmark.id, url))
        if not strict:
            self._spawn(bookmark.id, self._verify_in_background(bookmark.id, url))
        return bookmark

    async def edit(self, bookmark_id: int, title: str, url: str) -> Bookmark | None:
        if self.verifying:
            return None
        title, url = title.strip(), url.strip()
        strict = self.strict_mode
        if not self._check_fields(title, url):
            return None
        if strict and not await self._verify_before_save(url):
            return None

        try:
            bookmark = await self.store.update(bookmark_id, {"title": title, "url": url})
        except StoreError as exc:
            self.notifier.show(f"Error updating bookmark: {exc.message}", ERROR)
            return None

        self.close_form()
        self._replace_local(bookmark)
        self.notifier.show("Bookmark updated successfully", SUCCESS)

        if not strict:
            self._spawn(bookmark_id, self._verify_in_background(bookmark_id, url))
        return bookmark

    async def remove(self, bookmark_id: int) -> bool:
        bookmark = self.find(bookmark_id)
        title = bookmark.title if bookmark else f"#{bookmark_id}"

        confirmed = self.confirm(f'Delete "{title}"?')
        if inspect.isawaitable(confirmed):
            confirmed = await confirmed
        if not confirmed:
            return False

        try:
            await self.store.delete(bookmark_id)
        except StoreError as exc:
            self.notifier.show(f"Error deleting bookmark: {exc.message}", ERROR)
            return False

        self.notifier.show(f"Deleted: {title}", SUCCESS)
        return True

    # ---------- background enrichment ----------

    def _spawn(self, bookmark_id: int, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        self._jobs.setdefault(bookmark_id, set()).add(task)
        task.add_done_callback(lambda done: self._job_done(bookmark_id, done))
        return task

    def _job_done(self, bookmark_id: int, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        jobs = self._jobs.get(bookmark_id)
        if jobs is None:
            return
        jobs.discard(task)
        if not jobs:
            del self._jobs[bookmark_id]

    def pending_jobs(self, bookmark_id: int) -> int:
        return len(self._jobs.get(bookmark_id, ()))

    def _view_alive(self, bookmark_id: int) -> bool:
        return not self._closed and bookmark_id in self._jobs

    async def _verify_in_background(self, bookmark_id: int, url: str) -> None:
        outcome = await self.prober.probe(url)
        try:
            updated = await self.store.update(
                bookmark_id,
                {
                    "verified": outcome.reachable,
                    "verification_message": outcome.message,
                    "verified_at": _utcnow(),
                },
            )
        except StoreError as exc:
            logger.warning(
                "Could not record verification for bookmark %s: %s",
                bookmark_id,
                exc.message,
            )
            return
        if self._view_alive(bookmark_id):
            self._replace_local(updated)

    async def _fetch_preview(self, bookmark_id: int, url: str) -> None:
        result = await self.previewer.fetch(url)
        if isinstance(result, PreviewFailure):
            logger.info("Preview unavailable for %s: %s", url, result.message)
            if self._view_alive(bookmark_id):
                self.notifier.show(result.message, WARNING)
            return

        try:
            updated = await self.store.update(
                bookmark_id,
                {
                    "preview_image": result.image or None,
                    "preview_title": result.title or None,
                    "preview_description": result.description or None,
                    "favicon": result.favicon or None,
                    "last_preview_fetch": _utcnow(),
                },
            )
        except StoreError as exc:
            logger.warning(
                "Could not save preview for bookmark %s: %s", bookmark_id, exc.message
            )
            if self._view_alive(bookmark_id):
                self.notifier.show("Error saving preview", WARNING)
            return
        if self._view_alive(bookmark_id):
            self._replace_local(updated)
