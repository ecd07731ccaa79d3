import os
from pathlib import Path


BASE_DIR = Path(__file__).resolve().parent.parent


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "default-secret-key")
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", f"sqlite:///{BASE_DIR / 'shelfmark.db'}"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SCHEDULER_ENABLED = os.environ.get("SCHEDULER_ENABLED", "1") == "1"
    VERIFY_TIMEOUT = float(os.environ.get("VERIFY_TIMEOUT", "3"))
    PREVIEW_TIMEOUT = float(os.environ.get("PREVIEW_TIMEOUT", "5"))
    PREVIEW_FALLBACK_IMAGE_URL = os.environ.get("PREVIEW_FALLBACK_IMAGE_URL", "")
    CHANGE_FEED_MAX_WAIT = float(os.environ.get("CHANGE_FEED_MAX_WAIT", "25"))
    CHANGE_FEED_POLL_INTERVAL = float(
        os.environ.get("CHANGE_FEED_POLL_INTERVAL", "0.5")
    )
    VERIFY_SWEEP_INTERVAL_MINUTES = int(
        os.environ.get("VERIFY_SWEEP_INTERVAL_MINUTES", "1440")
    )
    VERIFY_SWEEP_STALE_DAYS = int(os.environ.get("VERIFY_SWEEP_STALE_DAYS", "7"))
    VERIFY_SWEEP_BATCH = int(os.environ.get("VERIFY_SWEEP_BATCH", "50"))


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SCHEDULER_ENABLED = False
    CHANGE_FEED_POLL_INTERVAL = 0.01


class ClientConfig:
    BASE_URL = os.environ.get("SHELFMARK_URL", "http://127.0.0.1:8072")
    API_TOKEN = os.environ.get("SHELFMARK_TOKEN", "")
    PREFERENCES_PATH = Path(
        os.environ.get(
            "SHELFMARK_PREFERENCES", str(Path.home() / ".shelfmark" / "prefs.json")
        )
    )
    REQUEST_TIMEOUT = float(os.environ.get("SHELFMARK_REQUEST_TIMEOUT", "10"))
    CHANGE_FEED_WAIT = float(os.environ.get("SHELFMARK_FEED_WAIT", "20"))
    RECONNECT_DELAY = float(os.environ.get("SHELFMARK_RECONNECT_DELAY", "2"))
    TOAST_SECONDS = float(os.environ.get("SHELFMARK_TOAST_SECONDS", "4"))
