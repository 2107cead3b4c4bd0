"""Relational persistence for the manga library and run bookkeeping.

Architectural role:
    Owns the `manga_library` table (one row per finished generation) and the
    `workflow_runs` table (one row per started remote run). The generation
    flow only inserts library rows; browsing, editing and deletion go through
    the HTTP adapter.

Storage:
    SQLite via `sqlite3`. A short-lived connection is opened per operation so
    the store can be shared by FastAPI worker threads.

Failure model:
    - `sqlite3.Error` is wrapped into `PersistenceError`.
    - Missing rows on update/delete raise `NotFoundError` without writing.
    - Update payloads are validated by `clean_update_fields` before any store
      call; a payload with no valid field raises `ValidationError`.
"""

import json
import logging
import os
import sqlite3
from contextlib import closing, contextmanager
from datetime import datetime, timezone
from typing import Iterator

from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError

from manga_tutor.core.errors import NotFoundError, PersistenceError, ValidationError
from manga_tutor.core.types import LibraryEntry

logger = logging.getLogger(__name__)

LIBRARY_DB_PATH = os.getenv("LIBRARY_DB_PATH", "manga_library.db")

EDITABLE_FIELDS = ("title", "question", "level")

RUN_PROCESSING = "processing"
RUN_COMPLETED = "completed"
RUN_FAILED = "failed"
RUN_STATUSES = (RUN_PROCESSING, RUN_COMPLETED, RUN_FAILED)


class LibraryUpdate(BaseModel):
    """Editable subset of a library entry; unknown keys are ignored."""

    model_config = ConfigDict(extra="ignore")

    title: str | None = None
    question: str | None = None
    level: str | None = None


def clean_update_fields(payload) -> dict[str, str]:
    """Reduce an edit payload to the fields that pass validation.

    A field passes when it is a string that is non-empty after stripping.

    Raises:
        ValidationError: When the payload is not an object, has a wrongly
            typed field, or no field passes.
    """
    if not isinstance(payload, dict):
        raise ValidationError("update body must be a JSON object")

    try:
        update = LibraryUpdate.model_validate(payload)
    except PydanticValidationError as err:
        raise ValidationError(f"invalid update payload: {err.errors()[0]['msg']}") from err

    fields = {}
    for name in EDITABLE_FIELDS:
        value = getattr(update, name)
        if isinstance(value, str) and value.strip():
            fields[name] = value.strip()

    if not fields:
        raise ValidationError("at least one of title, question or level must be a non-empty string")

    return fields


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _row_to_entry(row: sqlite3.Row) -> LibraryEntry:
    return LibraryEntry(
        id=row["id"],
        title=row["title"],
        question=row["question"],
        level=row["level"],
        image_urls=json.loads(row["image_urls"]),
        run_id=row["workflow_run_id"],
        created_at=row["created_at"],
    )


class LibraryStore:
    """CRUD over library entries plus run-status bookkeeping."""

    def __init__(self, db_path: str = LIBRARY_DB_PATH):
        self.db_path = db_path
        self.init_schema()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        try:
            with closing(sqlite3.connect(self.db_path)) as conn:
                conn.row_factory = sqlite3.Row
                with conn:
                    yield conn
        except sqlite3.Error as err:
            logger.exception("Library store operation failed")
            raise PersistenceError(str(err)) from err

    def init_schema(self) -> None:
        """Idempotent: create missing tables and indexes."""
        directory = os.path.dirname(self.db_path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS manga_library (
                  id TEXT PRIMARY KEY,
                  title TEXT NOT NULL,
                  question TEXT NOT NULL,
                  level TEXT NOT NULL,
                  image_urls TEXT NOT NULL,
                  workflow_run_id TEXT NOT NULL,
                  created_at TEXT NOT NULL
                );
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_manga_library_created_at "
                "ON manga_library (created_at);"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_manga_library_run "
                "ON manga_library (workflow_run_id);"
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS workflow_runs (
                  workflow_run_id TEXT PRIMARY KEY,
                  status TEXT NOT NULL,
                  created_at TEXT NOT NULL,
                  updated_at TEXT NOT NULL
                );
                """
            )

    # ------------------------------------------------------------
    # Library entries
    # ------------------------------------------------------------

    def insert(self, entry: LibraryEntry) -> LibraryEntry:
        if not entry.image_urls:
            raise ValidationError("a library entry needs at least one image")

        with self._connect() as conn:
            conn.execute(
                "INSERT INTO manga_library "
                "(id, title, question, level, image_urls, workflow_run_id, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                (
                    entry.id,
                    entry.title,
                    entry.question,
                    entry.level,
                    json.dumps(entry.image_urls, ensure_ascii=False),
                    entry.run_id,
                    entry.created_at,
                ),
            )

        logger.info("Saved library entry %s (%s images)", entry.id, len(entry.image_urls))
        return entry

    def list_entries(self) -> list[LibraryEntry]:
        """All entries, newest first."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM manga_library ORDER BY created_at DESC, rowid DESC"
            ).fetchall()
        return [_row_to_entry(row) for row in rows]

    def get(self, entry_id: str) -> LibraryEntry | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM manga_library WHERE id = ?", (entry_id,)
            ).fetchone()
        return _row_to_entry(row) if row else None

    def get_by_run_id(self, run_id: str) -> LibraryEntry | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM manga_library WHERE workflow_run_id = ? "
                "ORDER BY created_at ASC LIMIT 1",
                (run_id,),
            ).fetchone()
        return _row_to_entry(row) if row else None

    def update(self, entry_id: str, fields: dict[str, str]) -> LibraryEntry:
        """Apply already-validated editable fields to one entry.

        Raises:
            ValidationError: If `fields` is empty or names a non-editable column.
            NotFoundError: If the entry does not exist.
        """
        if not fields or any(name not in EDITABLE_FIELDS for name in fields):
            raise ValidationError("only title, question and level can be edited")

        assignments = ", ".join(f"{name} = ?" for name in fields)
        with self._connect() as conn:
            cursor = conn.execute(
                f"UPDATE manga_library SET {assignments} WHERE id = ?",
                (*fields.values(), entry_id),
            )
            if cursor.rowcount == 0:
                raise NotFoundError(f"library entry {entry_id} not found")

        return self.get(entry_id)

    def delete(self, entry_id: str) -> None:
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM manga_library WHERE id = ?", (entry_id,))
            if cursor.rowcount == 0:
                raise NotFoundError(f"library entry {entry_id} not found")
        logger.info("Deleted library entry %s", entry_id)

    # ------------------------------------------------------------
    # Run bookkeeping
    # ------------------------------------------------------------

    def record_run(self, run_id: str, status: str = RUN_PROCESSING) -> None:
        if status not in RUN_STATUSES:
            raise ValueError(f"unknown run status: {status}")
        now = _now()
        with self._connect() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO workflow_runs "
                "(workflow_run_id, status, created_at, updated_at) VALUES (?, ?, ?, ?)",
                (run_id, status, now, now),
            )

    def update_run_status(self, run_id: str, status: str) -> bool:
        """Set the status of a recorded run; `False` when the run is unknown."""
        if status not in RUN_STATUSES:
            raise ValueError(f"unknown run status: {status}")
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE workflow_runs SET status = ?, updated_at = ? WHERE workflow_run_id = ?",
                (status, _now(), run_id),
            )
            return cursor.rowcount > 0

    def get_run_status(self, run_id: str) -> str | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT status FROM workflow_runs WHERE workflow_run_id = ?", (run_id,)
            ).fetchone()
        return row["status"] if row else None
