from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum

import httpx

from shelfmark.client.store import API_PREFIX
from shelfmark.client.types import ChangeEvent
from shelfmark.config import ClientConfig

logger = logging.getLogger(__name__)

EVENT_INSERT = "insert"
EVENT_UPDATE = "update"
EVENT_DELETE = "delete"


class FeedState(str, Enum):
    UNSUBSCRIBED = "unsubscribed"
    SUBSCRIBING = "subscribing"
    ACTIVE = "active"


@dataclass
class Subscription:
    owner_id: int
    channel: str
    task: asyncio.Task | None = None


class LongPollChangeTransport:
    """Delivers change events by long-polling ``/changes`` past a cursor.

    A subscription starts at the current head of the feed, so only changes
    made after ``start`` are delivered. ``on_ready`` is awaited once that head
    is known; anything committed before it is only visible to a fresh load.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        wait: float = ClientConfig.CHANGE_FEED_WAIT,
        reconnect_delay: float = ClientConfig.RECONNECT_DELAY,
    ):
        self.http = http
        self.wait = wait
        self.reconnect_delay = reconnect_delay

    def start(self, owner_id, on_event, on_ready=None) -> Subscription:
        subscription = Subscription(owner_id=owner_id, channel=f"bookmarks_{owner_id}")
        subscription.task = asyncio.get_running_loop().create_task(
            self._run(on_event, on_ready), name=subscription.channel
        )
        return subscription

    def stop(self, subscription: Subscription) -> None:
        task = subscription.task
        if task is not None and not task.done():
            task.cancel()
        subscription.task = None

    async def _poll(self, since: int | None) -> dict:
        params = {}
        if since is not None:
            params = {"since": since, "wait": self.wait}
        response = await self.http.get(
            f"{API_PREFIX}/changes", params=params, timeout=self.wait + 10
        )
        response.raise_for_status()
        payload = response.json()
        if not isinstance(payload, dict):
            raise ValueError(f"unexpected change feed payload: {payload!r}")
        events = payload.get("events") or []
        if not isinstance(events, list):
            raise ValueError(f"unexpected change feed events: {events!r}")
        return {"events": events, "cursor": int(payload.get("cursor") or 0)}

    async def _run(self, on_event, on_ready=None) -> None:
        cursor = None
        while True:
            try:
                payload = await self._poll(cursor)
            except (httpx.HTTPError, ValueError, TypeError) as exc:
                logger.warning("Change feed poll failed: %s", exc)
                await asyncio.sleep(self.reconnect_delay)
                continue

            if cursor is None:
                cursor = payload["cursor"]
                if on_ready is not None:
                    try:
                        await on_ready()
                    except Exception:
                        logger.exception("Change feed ready handler failed")
                continue

            for item in payload["events"]:
                try:
                    await on_event(ChangeEvent.from_dict(item))
                except Exception:
                    logger.exception("Change feed handler failed")
            cursor = payload["cursor"]


class ChangeFeedListener:
    def __init__(self, transport, reload):
        self.transport = transport
        self.reload = reload
        self.state = FeedState.UNSUBSCRIBED
        self.owner_id = None
        self._subscription = None

    @property
    def subscription(self):
        return self._subscription

    def activate(self, owner_id) -> None:
        if self._subscription is not None:
            self.deactivate()
        self.state = FeedState.SUBSCRIBING
        self.owner_id = owner_id
        self._subscription = self.transport.start(
            owner_id, self.handle_event, self.handle_ready
        )
        self.state = FeedState.ACTIVE
        logger.debug("Subscribed to change feed for owner %s", owner_id)

    def deactivate(self) -> None:
        if self._subscription is not None:
            self.transport.stop(self._subscription)
            self._subscription = None
        self.state = FeedState.UNSUBSCRIBED
        self.owner_id = None

    def is_relevant(self, event: ChangeEvent) -> bool:
        if event.event_type == EVENT_DELETE:
            # Removed rows carry no owner; the reload filters them anyway.
            return True
        if event.event_type in {EVENT_INSERT, EVENT_UPDATE}:
            owner = (event.new or {}).get("user_id")
            return owner is not None and str(owner) == str(self.owner_id)
        return False

    async def handle_ready(self) -> None:
        # Changes committed between the initial load and the head cursor
        # never arrive as events.
        if self.state is FeedState.ACTIVE:
            await self.reload()

    async def handle_event(self, event: ChangeEvent) -> None:
        if self.state is not FeedState.ACTIVE:
            return
        if not self.is_relevant(event):
            logger.debug("Ignoring %s event for another owner", event.event_type)
            return
        await self.reload()
