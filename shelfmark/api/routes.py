from __future__ import annotations

import time

from dateutil import parser as dt_parser
from flask import current_app, g, jsonify, request

from shelfmark.api import api_bp
from shelfmark.extensions import db
from shelfmark.models import Bookmark
from shelfmark.services.changes import (
    EVENT_DELETE,
    EVENT_INSERT,
    EVENT_UPDATE,
    changes_since,
    latest_cursor,
    record_change,
    serialize_change,
)
from shelfmark.services.preview import PreviewError, fetch_preview
from shelfmark.services.reachability import probe_url
from shelfmark.services.security import api_auth_required
from shelfmark.services.urls import INVALID_URL_MESSAGE, is_well_formed

TEXT_FIELDS = {
    "verification_message",
    "preview_image",
    "preview_title",
    "preview_description",
    "favicon",
}
TIMESTAMP_FIELDS = {"verified_at", "last_preview_fetch"}


def _request_url():
    payload = request.get_json(silent=True) or {}
    return (payload.get("url") or "").strip()


def _get_user_bookmark_or_404(user_id: int, bookmark_id: int):
    bookmark = Bookmark.query.filter_by(id=bookmark_id, user_id=user_id).first()
    if not bookmark:
        return None, (jsonify({"error": "bookmark not found"}), 404)
    return bookmark, None


def _parse_timestamp(value):
    if value in (None, ""):
        return None
    return dt_parser.isoparse(str(value))


def _apply_fields(bookmark: Bookmark, payload: dict):
    """Copy writable fields from ``payload`` onto ``bookmark``.

    Returns an error message when a field is rejected; nothing is applied in
    that case.
    """
    updates = {}
    if "title" in payload:
        title = (payload.get("title") or "").strip()
        if not title:
            return "title is required"
        updates["title"] = title
    if "url" in payload:
        url = (payload.get("url") or "").strip()
        if not is_well_formed(url):
            return INVALID_URL_MESSAGE
        updates["url"] = url
    if "verified" in payload:
        verified = payload.get("verified")
        if verified is not None and not isinstance(verified, bool):
            return "verified must be a boolean or null"
        updates["verified"] = verified
    for field in TEXT_FIELDS & payload.keys():
        updates[field] = payload.get(field) or None
    for field in TIMESTAMP_FIELDS & payload.keys():
        try:
            updates[field] = _parse_timestamp(payload.get(field))
        except (ValueError, OverflowError):
            return f"{field} must be an ISO 8601 timestamp"

    for field, value in updates.items():
        setattr(bookmark, field, value)
    return None


@api_bp.route("/health")
def health():
    return jsonify({"status": "ok", "service": "Shelfmark"})


@api_bp.route("/verify-url", methods=["POST"])
@api_auth_required()
def verify_url():
    url = _request_url()
    if not url:
        return jsonify({"error": "URL required"}), 400
    result = probe_url(url, timeout=current_app.config["VERIFY_TIMEOUT"])
    return jsonify(result.as_dict())


@api_bp.route("/fetch-preview", methods=["POST"])
@api_auth_required()
def fetch_preview_api():
    url = _request_url()
    if not url:
        return jsonify({"error": "URL required"}), 400
    try:
        preview = fetch_preview(
            url,
            timeout=current_app.config["PREVIEW_TIMEOUT"],
            fallback_image_url=current_app.config["PREVIEW_FALLBACK_IMAGE_URL"],
        )
    except PreviewError as exc:
        current_app.logger.warning("Preview fetch failed for %s: %s", url, exc)
        return jsonify({"error": exc.message}), exc.status_code
    return jsonify(preview.as_dict())


@api_bp.route("/bookmarks", methods=["GET"])
@api_auth_required()
def bookmarks_list_api():
    user = g.api_user
    items = (
        Bookmark.query.filter_by(user_id=user.id)
        .order_by(Bookmark.created_at.desc(), Bookmark.id.desc())
        .all()
    )
    return jsonify({"items": [item.as_dict() for item in items]})


@api_bp.route("/bookmarks", methods=["POST"])
@api_auth_required()
def bookmarks_create_api():
    user = g.api_user
    payload = request.get_json(silent=True) or {}
    title = (payload.get("title") or "").strip()
    url = (payload.get("url") or "").strip()
    if not title or not url:
        return jsonify({"error": "title and url are required"}), 400
    if not is_well_formed(url):
        return jsonify({"error": INVALID_URL_MESSAGE}), 400

    bookmark = Bookmark(user_id=user.id, title=title, url=url)
    db.session.add(bookmark)
    db.session.flush()
    record_change(bookmark, EVENT_INSERT)
    db.session.commit()
    return jsonify(bookmark.as_dict()), 201


@api_bp.route("/bookmarks/<int:bookmark_id>", methods=["GET"])
@api_auth_required()
def bookmarks_get_api(bookmark_id: int):
    user = g.api_user
    bookmark, error = _get_user_bookmark_or_404(user.id, bookmark_id)
    if error:
        return error
    return jsonify(bookmark.as_dict())


@api_bp.route("/bookmarks/<int:bookmark_id>", methods=["PATCH"])
@api_auth_required()
def bookmarks_update_api(bookmark_id: int):
    user = g.api_user
    bookmark, error = _get_user_bookmark_or_404(user.id, bookmark_id)
    if error:
        return error

    payload = request.get_json(silent=True) or {}
    message = _apply_fields(bookmark, payload)
    if message:
        return jsonify({"error": message}), 400

    db.session.flush()
    record_change(bookmark, EVENT_UPDATE)
    db.session.commit()
    return jsonify(bookmark.as_dict())


@api_bp.route("/bookmarks/<int:bookmark_id>", methods=["DELETE"])
@api_auth_required()
def bookmarks_delete_api(bookmark_id: int):
    user = g.api_user
    bookmark, error = _get_user_bookmark_or_404(user.id, bookmark_id)
    if error:
        return error

    record_change(bookmark, EVENT_DELETE)
    db.session.delete(bookmark)
    db.session.commit()
    return jsonify({"status": "deleted", "id": bookmark_id})


@api_bp.route("/changes", methods=["GET"])
@api_auth_required()
def changes_api():
    user_id = g.api_user.id
    since = request.args.get("since", type=int)
    if since is None:
        return jsonify({"events": [], "cursor": latest_cursor(user_id)})

    max_wait = float(current_app.config["CHANGE_FEED_MAX_WAIT"])
    wait = min(max(request.args.get("wait", default=0.0, type=float), 0.0), max_wait)
    interval = float(current_app.config["CHANGE_FEED_POLL_INTERVAL"])
    limit = request.args.get("limit", default=200, type=int)
    deadline = time.monotonic() + wait

    events = changes_since(user_id, since, limit=limit)
    while not events and time.monotonic() < deadline:
        time.sleep(interval)
        # End the read transaction so rows committed by other requests show up.
        db.session.rollback()
        events = changes_since(user_id, since, limit=limit)

    cursor = events[-1].id if events else since
    return jsonify(
        {"events": [serialize_change(event) for event in events], "cursor": cursor}
    )
