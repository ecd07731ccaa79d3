from __future__ import annotations

import json
import logging
from pathlib import Path

logger = logging.getLogger(__name__)

DARK_MODE = "darkMode"
STRICT_MODE = "strictMode"
PREFERENCE_KEYS = (DARK_MODE, STRICT_MODE)


def _encode(value: bool) -> str:
    return "true" if value else "false"


def _decode(value) -> bool:
    return str(value).strip().lower() == "true"


class PreferenceStore:
    """Profile-wide boolean flags shared by every open view.

    Views holding the same store see each other's writes immediately through
    the subscriber registry. When the store is backed by a file, ``sync``
    picks up writes made by other processes and announces the keys that
    changed. The last writer wins.
    """

    def __init__(self, path: Path | None = None):
        self.path = Path(path) if path else None
        self._values = {key: False for key in PREFERENCE_KEYS}
        self._subscribers = []
        self._read()

    def get(self, key: str) -> bool:
        return self._values[key]

    def set(self, key: str, value: bool) -> None:
        if key not in self._values:
            raise KeyError(key)
        self._values[key] = bool(value)
        self._write()
        self._notify(key)

    def toggle(self, key: str) -> bool:
        self.set(key, not self.get(key))
        return self.get(key)

    def subscribe(self, callback):
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def sync(self) -> list[str]:
        before = dict(self._values)
        self._read()
        changed = [key for key in PREFERENCE_KEYS if before[key] != self._values[key]]
        for key in changed:
            self._notify(key)
        return changed

    def _notify(self, key: str) -> None:
        value = self._values[key]
        for callback in list(self._subscribers):
            try:
                callback(key, value)
            except Exception:
                logger.exception("Preference subscriber failed for %s", key)

    def _read(self) -> None:
        if not self.path or not self.path.exists():
            return
        try:
            stored = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("Could not read preferences from %s: %s", self.path, exc)
            return
        if not isinstance(stored, dict):
            return
        for key in PREFERENCE_KEYS:
            if key in stored:
                self._values[key] = _decode(stored[key])

    def _write(self) -> None:
        if not self.path:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        encoded = {key: _encode(value) for key, value in self._values.items()}
        self.path.write_text(json.dumps(encoded, indent=2), encoding="utf-8")
