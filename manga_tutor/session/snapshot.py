"""Versioned client session snapshots with expiry.

Purpose of this abstraction:
    Keep the state of an in-progress generation (question, level, run id,
    current step, images) across client restarts so an interrupted poll can
    be resumed. The state is an explicit snapshot object, saved and loaded
    through an injected `KeyValueStorage` rather than ambient globals.

Discard rules on load:
    - version differs from `SNAPSHOT_VERSION`
    - older than `max_age_seconds` (24 hours by default)
    - not decodable, or with a non-numeric `saved_at`
    Discarded snapshots are deleted from storage.
"""

import json
import logging
import os
import threading
import time
from dataclasses import asdict, dataclass, field
from typing import Protocol

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1
SNAPSHOT_KEY = "manga-tutor-state"
SNAPSHOT_MAX_AGE_SECONDS = 24 * 60 * 60

STEPS = ("intro", "form", "generating", "result")


class KeyValueStorage(Protocol):
    """Minimal string key/value interface used by `SnapshotStore`."""

    def get(self, key: str) -> str | None:
        ...

    def set(self, key: str, value: str) -> None:
        ...

    def delete(self, key: str) -> None:
        ...


class MemoryStorage:
    """Process-local storage."""

    def __init__(self):
        self._data: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileStorage:
    """Storage backed by one JSON object file on disk."""

    def __init__(self, path: str):
        self.path = path
        self._lock = threading.Lock()

    def _read(self) -> dict[str, str]:
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError):
            logger.exception("Failed to read session storage from %s", self.path)
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: dict[str, str]) -> None:
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, indent=2)

    def get(self, key: str) -> str | None:
        with self._lock:
            value = self._read().get(key)
        return value if isinstance(value, str) else None

    def set(self, key: str, value: str) -> None:
        with self._lock:
            data = self._read()
            data[key] = value
            self._write(data)

    def delete(self, key: str) -> None:
        with self._lock:
            data = self._read()
            if key in data:
                del data[key]
                self._write(data)


@dataclass
class SessionSnapshot:
    """Persisted client state.

    Attributes:
        question: Submitted question.
        level: Submitted level.
        run_id: Run being generated or last finished.
        step: One of `STEPS`.
        image_urls: Result images, when finished.
        is_generating: Whether a poll should be resumed on load.
        saved_at: Epoch seconds of the last save (set by `SnapshotStore`).
        version: Snapshot schema version.
    """

    question: str = ""
    level: str = ""
    run_id: str | None = None
    step: str = "intro"
    image_urls: list[str] = field(default_factory=list)
    is_generating: bool = False
    saved_at: float = 0.0
    version: int = SNAPSHOT_VERSION

    def __post_init__(self):
        if self.step not in STEPS:
            raise ValueError(f"unknown step: {self.step}")
        if isinstance(self.saved_at, bool) or not isinstance(self.saved_at, (int, float)):
            raise ValueError(f"saved_at must be epoch seconds, got {self.saved_at!r}")


class SnapshotStore:
    """Load/save `SessionSnapshot` values through injected storage."""

    def __init__(self, storage: KeyValueStorage, clock=time.time,
                 max_age_seconds: float = SNAPSHOT_MAX_AGE_SECONDS, key: str = SNAPSHOT_KEY):
        self.storage = storage
        self.clock = clock
        self.max_age_seconds = max_age_seconds
        self.key = key

    def save(self, snapshot: SessionSnapshot) -> SessionSnapshot:
        snapshot.saved_at = self.clock()
        snapshot.version = SNAPSHOT_VERSION
        self.storage.set(self.key, json.dumps(asdict(snapshot), ensure_ascii=False))
        logger.debug("Saved session snapshot (step=%s, run=%s)", snapshot.step, snapshot.run_id)
        return snapshot

    def load(self) -> SessionSnapshot | None:
        raw = self.storage.get(self.key)
        if raw is None:
            return None

        try:
            data = json.loads(raw)
            snapshot = SessionSnapshot(**data)
        except (json.JSONDecodeError, TypeError, ValueError):
            logger.warning("Discarding corrupted session snapshot")
            self.clear()
            return None

        if snapshot.version != SNAPSHOT_VERSION:
            logger.info("Discarding session snapshot with version %s", snapshot.version)
            self.clear()
            return None

        if self.clock() - snapshot.saved_at > self.max_age_seconds:
            logger.info("Discarding expired session snapshot")
            self.clear()
            return None

        return snapshot

    def clear(self) -> None:
        self.storage.delete(self.key)
