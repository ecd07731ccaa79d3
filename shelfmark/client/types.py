from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from dateutil import parser as dt_parser


def _parse_datetime(value) -> datetime | None:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    return dt_parser.isoparse(str(value))


@dataclass
class Bookmark:
    id: int
    user_id: int
    url: str
    title: str
    created_at: datetime | None = None
    verified: bool | None = None
    verification_message: str | None = None
    verified_at: datetime | None = None
    preview_image: str | None = None
    preview_title: str | None = None
    preview_description: str | None = None
    favicon: str | None = None
    last_preview_fetch: datetime | None = None

    @classmethod
    def from_dict(cls, payload: dict) -> "Bookmark":
        return cls(
            id=int(payload["id"]),
            user_id=payload.get("user_id"),
            url=payload.get("url") or "",
            title=payload.get("title") or "",
            created_at=_parse_datetime(payload.get("created_at")),
            verified=payload.get("verified"),
            verification_message=payload.get("verification_message"),
            verified_at=_parse_datetime(payload.get("verified_at")),
            preview_image=payload.get("preview_image"),
            preview_title=payload.get("preview_title"),
            preview_description=payload.get("preview_description"),
            favicon=payload.get("favicon"),
            last_preview_fetch=_parse_datetime(payload.get("last_preview_fetch")),
        )


@dataclass
class ProbeOutcome:
    reachable: bool
    message: str
    ambiguous: bool = False


@dataclass
class PagePreview:
    title: str = ""
    description: str = ""
    image: str = ""
    favicon: str = ""


@dataclass
class PreviewFailure:
    message: str
    status_code: int | None = None


@dataclass
class ChangeEvent:
    event_type: str
    new: dict | None = None
    old: dict | None = None
    cursor: int | None = None

    @classmethod
    def from_dict(cls, payload: dict) -> "ChangeEvent":
        return cls(
            event_type=str(payload.get("eventType") or "").lower(),
            new=payload.get("new"),
            old=payload.get("old"),
            cursor=payload.get("cursor"),
        )
