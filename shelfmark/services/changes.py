from __future__ import annotations

from shelfmark.extensions import db
from shelfmark.models import Bookmark, ChangeEvent

EVENT_INSERT = "insert"
EVENT_UPDATE = "update"
EVENT_DELETE = "delete"


def record_change(bookmark: Bookmark, event_type: str) -> ChangeEvent:
    """Queue a change event for ``bookmark`` in the current transaction.

    Delete events only carry the row id; the owner is implied by the channel.
    """
    if event_type == EVENT_DELETE:
        payload = {"id": bookmark.id}
    else:
        payload = bookmark.as_dict()
    event = ChangeEvent(
        user_id=bookmark.user_id,
        bookmark_id=bookmark.id,
        event_type=event_type,
        payload=payload,
    )
    db.session.add(event)
    return event


def latest_cursor(user_id: int) -> int:
    return (
        db.session.query(db.func.max(ChangeEvent.id)).filter_by(user_id=user_id).scalar()
        or 0
    )


def changes_since(user_id: int, cursor: int, limit: int = 200) -> list[ChangeEvent]:
    return (
        ChangeEvent.query.filter_by(user_id=user_id)
        .filter(ChangeEvent.id > cursor)
        .order_by(ChangeEvent.id.asc())
        .limit(limit)
        .all()
    )


def serialize_change(event: ChangeEvent) -> dict:
    payload = {"cursor": event.id, "eventType": event.event_type}
    if event.event_type == EVENT_DELETE:
        payload["old"] = event.payload
    else:
        payload["new"] = event.payload
    return payload
