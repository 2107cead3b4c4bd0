"""Polling-variant status resolver.

Architectural role:
    Performs one idempotent status query for a run and reconciles the remote
    result into one of the `ResolutionStatus` values. Repetition, interval and
    attempt ceiling belong to the caller (`manga_tutor.core.polling` or an
    HTTP client).

Success path:
    1. Normalize the output payload into an ordered list of image URLs.
    2. Empty list -> `succeeded_but_empty`; unparsable -> `succeeded_but_unreadable`.
    3. Cache every image in the object store concurrently; failures keep the
       remote URL at the same position.
    4. Persist one library entry per run id (best effort) and mark the run
       `completed`.

Idempotency:
    A run that already has a library entry returns that entry's image list,
    so repeated checks of a finished run yield the same URLs and never insert
    a second row.

Degraded runs:
    `mock_...` run ids are never sent to the remote service; they resolve to
    the fixed placeholder panels with `degraded=True` and are not persisted.
"""

import asyncio
import json
import logging
from typing import Any

from manga_tutor.core.errors import PersistenceError
from manga_tutor.core.placeholders import mock_image_urls
from manga_tutor.core.types import (
    LibraryEntry,
    ResolutionStatus,
    RunHandle,
    StatusResult,
    is_placeholder_run_id,
    make_title,
)
from manga_tutor.library.store import RUN_COMPLETED, RUN_FAILED
from manga_tutor.storage.object_store import image_key

logger = logging.getLogger(__name__)

REMOTE_SUCCEEDED = "succeeded"
REMOTE_FAILED = ("failed", "stopped")

UNKNOWN_QUESTION = "Unknown question"
UNKNOWN_LEVEL = "Unknown level"

EMPTY_MESSAGE = (
    "The manga was generated but the workflow returned no images. "
    "Check the workflow configuration."
)
UNREADABLE_MESSAGE = "The manga was generated but its image data could not be read."
FAILED_MESSAGE = "The workflow run failed."


class UnreadableOutputError(ValueError):
    """Raised when a succeeded run's output cannot be parsed into images."""


def normalize_image_output(outputs: Any) -> list[str]:
    """Turn a run's output payload into an ordered list of image URLs.

    Accepted shapes:
        - `outputs` as a JSON-encoded string or a dict.
        - `outputs["text"]` as a JSON-encoded list or an actual list.
        - List items are `{"url": ...}` dicts or lists of them (one level).

    Raises:
        UnreadableOutputError: For malformed JSON, a missing `text` field or a
            `text` value that is not a list.
    """
    if isinstance(outputs, str):
        try:
            outputs = json.loads(outputs)
        except json.JSONDecodeError as err:
            raise UnreadableOutputError("outputs is not valid JSON") from err

    if not isinstance(outputs, dict):
        raise UnreadableOutputError("outputs is missing")

    text = outputs.get("text")
    if text is None or text == "":
        raise UnreadableOutputError('"outputs.text" is missing')

    if isinstance(text, str):
        try:
            parsed = json.loads(text)
        except json.JSONDecodeError as err:
            raise UnreadableOutputError('"outputs.text" is not valid JSON') from err
    else:
        parsed = text

    if not isinstance(parsed, list):
        raise UnreadableOutputError('"outputs.text" is not a list')

    flat = []
    for item in parsed:
        if isinstance(item, list):
            flat.extend(item)
        else:
            flat.append(item)

    return [
        item["url"]
        for item in flat
        if isinstance(item, dict) and isinstance(item.get("url"), str) and item["url"]
    ]


def extract_output_title(outputs: Any) -> str | None:
    """Best-effort title from a run's output payload."""
    if isinstance(outputs, str):
        try:
            outputs = json.loads(outputs)
        except json.JSONDecodeError:
            return None

    if not isinstance(outputs, dict):
        return None

    for name in ("title", "question"):
        value = outputs.get(name)
        if isinstance(value, str) and value.strip():
            return make_title(value)

    text = outputs.get("text")
    if not isinstance(text, str) or not text.strip():
        return None

    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        return make_title(text)

    if isinstance(parsed, list) and parsed and isinstance(parsed[0], dict):
        value = parsed[0].get("question") or parsed[0].get("title")
        if isinstance(value, str) and value.strip():
            return make_title(value)

    return None


def parse_run_inputs(inputs: Any) -> dict:
    if isinstance(inputs, str):
        try:
            inputs = json.loads(inputs)
        except json.JSONDecodeError:
            return {}
    return inputs if isinstance(inputs, dict) else {}


def persist_entry(library, entry: LibraryEntry) -> LibraryEntry | None:
    """Insert a library entry; failures are logged, never raised."""
    if library is None:
        return None
    try:
        return library.insert(entry)
    except PersistenceError:
        logger.error("Library save failed for run %s", entry.run_id)
        return None


def mark_run(library, run_id: str, status: str) -> None:
    if library is None:
        return
    try:
        library.update_run_status(run_id, status)
    except PersistenceError:
        logger.warning("Could not mark run %s as %s", run_id, status)


class StatusResolver:
    """Single-shot status resolution for a run identifier."""

    def __init__(self, client, object_store=None, library=None):
        self.client = client
        self.object_store = object_store
        self.library = library

    async def resolve(self, handle: RunHandle | str) -> StatusResult:
        """Query the remote run once and reconcile its state.

        Raises:
            RemoteServiceError: The status call itself failed.
        """
        run_id = handle.run_id if isinstance(handle, RunHandle) else handle

        if is_placeholder_run_id(run_id):
            return StatusResult(
                run_id=run_id,
                status=ResolutionStatus.SUCCEEDED,
                image_urls=mock_image_urls(),
                degraded=True,
            )

        document = await asyncio.to_thread(self.client.get_run, run_id)
        data = document.get("data") if isinstance(document.get("data"), dict) else {}

        remote_status = document.get("status") or data.get("status")
        outputs = document.get("outputs") or data.get("outputs")

        logger.info("Run %s remote status: %s", run_id, remote_status)

        if remote_status == REMOTE_SUCCEEDED:
            inputs = document.get("inputs") or data.get("inputs")
            return await self._resolve_succeeded(run_id, outputs, inputs)

        if remote_status in REMOTE_FAILED:
            await asyncio.to_thread(mark_run, self.library, run_id, RUN_FAILED)
            return StatusResult(
                run_id=run_id,
                status=ResolutionStatus.FAILED,
                message=document.get("error") or data.get("error") or FAILED_MESSAGE,
                remote_status=remote_status,
            )

        return StatusResult(
            run_id=run_id,
            status=ResolutionStatus.PENDING,
            remote_status=remote_status,
        )

    async def _resolve_succeeded(self, run_id: str, outputs: Any, inputs: Any) -> StatusResult:
        try:
            remote_urls = normalize_image_output(outputs)
        except UnreadableOutputError as err:
            logger.error("Run %s output could not be parsed: %s", run_id, err)
            return StatusResult(
                run_id=run_id,
                status=ResolutionStatus.SUCCEEDED_BUT_UNREADABLE,
                message=UNREADABLE_MESSAGE,
                remote_status=REMOTE_SUCCEEDED,
            )

        if not remote_urls:
            logger.error("Run %s succeeded without any image URL", run_id)
            return StatusResult(
                run_id=run_id,
                status=ResolutionStatus.SUCCEEDED_BUT_EMPTY,
                message=EMPTY_MESSAGE,
                remote_status=REMOTE_SUCCEEDED,
            )

        existing = await asyncio.to_thread(self._existing_entry, run_id)
        if existing is not None:
            return StatusResult(
                run_id=run_id,
                status=ResolutionStatus.SUCCEEDED,
                image_urls=list(existing.image_urls),
                remote_status=REMOTE_SUCCEEDED,
            )

        image_urls = await self.cache_images(run_id, remote_urls)
        logger.info("Run %s resolved with %s images", run_id, len(image_urls))

        run_inputs = parse_run_inputs(inputs)
        question = run_inputs.get("user_question")
        entry = LibraryEntry.new(
            question=question or UNKNOWN_QUESTION,
            level=run_inputs.get("user_level") or UNKNOWN_LEVEL,
            image_urls=image_urls,
            run_id=run_id,
            title=question or extract_output_title(outputs),
        )
        await asyncio.to_thread(persist_entry, self.library, entry)
        await asyncio.to_thread(mark_run, self.library, run_id, RUN_COMPLETED)

        return StatusResult(
            run_id=run_id,
            status=ResolutionStatus.SUCCEEDED,
            image_urls=image_urls,
            remote_status=REMOTE_SUCCEEDED,
        )

    async def cache_images(self, run_id: str, urls: list[str]) -> list[str]:
        """Copy images into the object store concurrently.

        Returns a list of the same length and order as `urls`; positions whose
        upload failed keep the remote URL.
        """
        if self.object_store is None or not self.object_store.enabled:
            return list(urls)

        tasks = [
            asyncio.to_thread(self.object_store.cache_image, url, image_key(run_id, index))
            for index, url in enumerate(urls)
        ]
        results = await asyncio.gather(*tasks, return_exceptions=True)

        cached = []
        for url, result in zip(urls, results):
            if isinstance(result, Exception):
                logger.error("Caching %s failed, keeping remote URL: %s", url, result)
                cached.append(url)
            else:
                cached.append(result or url)
        return cached

    def _existing_entry(self, run_id: str) -> LibraryEntry | None:
        if self.library is None:
            return None
        try:
            return self.library.get_by_run_id(run_id)
        except PersistenceError:
            return None
