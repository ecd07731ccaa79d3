import os
from datetime import timedelta

from apscheduler.schedulers.background import BackgroundScheduler

from shelfmark.extensions import db
from shelfmark.models import Bookmark, utcnow
from shelfmark.services.changes import EVENT_UPDATE, record_change
from shelfmark.services.reachability import probe_url


scheduler = BackgroundScheduler()


def run_verification_sweep(app):
    """Re-probe bookmarks that were never verified or whose check went stale."""
    with app.app_context():
        stale_before = utcnow() - timedelta(days=app.config["VERIFY_SWEEP_STALE_DAYS"])
        bookmarks = (
            Bookmark.query.filter(
                (Bookmark.verified_at.is_(None)) | (Bookmark.verified_at < stale_before)
            )
            .order_by(Bookmark.verified_at.is_not(None), Bookmark.verified_at.asc())
            .limit(app.config["VERIFY_SWEEP_BATCH"])
            .all()
        )

        checked = 0
        for bookmark in bookmarks:
            result = probe_url(bookmark.url, timeout=app.config["VERIFY_TIMEOUT"])
            try:
                bookmark.verified = result.reachable
                bookmark.verification_message = result.message
                bookmark.verified_at = utcnow()
                db.session.flush()
                record_change(bookmark, EVENT_UPDATE)
                db.session.commit()
                checked += 1
            except Exception as exc:
                db.session.rollback()
                app.logger.warning(
                    "Failed to store verification for bookmark %s: %s",
                    bookmark.id,
                    exc,
                )
        return checked


def start_scheduler(app):
    if not app.config.get("SCHEDULER_ENABLED", True):
        return
    if os.environ.get("WERKZEUG_RUN_MAIN") == "false":
        return

    interval_minutes = app.config["VERIFY_SWEEP_INTERVAL_MINUTES"]
    if not scheduler.get_jobs():
        scheduler.add_job(
            run_verification_sweep,
            "interval",
            minutes=interval_minutes,
            kwargs={"app": app},
            id="verification_sweep",
            replace_existing=True,
        )
        scheduler.start()
