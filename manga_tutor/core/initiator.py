"""Generation initiator: submit a run and capture its run identifier.

Control flow:
    1. Validation happens before this module (`GenerationRequest.from_payload`).
    2. Mock configuration (no key, or key `mock`) short-circuits to degraded.
    3. `WorkflowClient.start_run` submits the run.
    4. A JSON body is read directly; a streamed body is scanned for the
       `workflow_started` event over at most `stream_read_attempts` fragments.
    5. The run is recorded as `processing` in the library store (best effort).

Degraded mode:
    Remote rejection (non-2xx), transport failure before or while reading,
    and missing credentials all produce an `InitiateResult` with
    `degraded=True`, a `mock_...` run id and a message naming the reason.
    A stream that ends without a run id is not degraded: it raises
    `NoRunIdError`.
"""

import codecs
import itertools
import logging
import time
from typing import Iterable

import requests

from manga_tutor.core.errors import NoRunIdError, PersistenceError, RemoteServiceError
from manga_tutor.core.types import (
    GenerationRequest,
    InitiateResult,
    RunHandle,
    generate_placeholder_run_id,
)
from manga_tutor.workflow.client import WorkflowClient, parse_sse_line
from manga_tutor.workflow.provider_config import WorkflowConfig

logger = logging.getLogger(__name__)

RUN_STARTED_EVENT = "workflow_started"

MOCK_MODE_MESSAGE = "Workflow run started (mock mode)"
API_ERROR_MESSAGE = "Workflow run started (mock mode - workflow service unavailable)"
STREAM_ERROR_MESSAGE = "Workflow run started (mock mode - error while reading the run)"


def _run_id_from_event(event: dict) -> RunHandle | None:
    data = event.get("data") if isinstance(event.get("data"), dict) else {}
    run_id = event.get("workflow_run_id") or data.get("workflow_run_id") or data.get("id")
    if not run_id:
        return None
    return RunHandle(run_id=str(run_id), task_id=event.get("task_id") or data.get("task_id"))


def scan_for_run_started(chunks: Iterable, max_reads: int) -> RunHandle | None:
    """Scan streamed fragments for the run-started event.

    Fragments are accumulated and the whole buffer is re-split into lines on
    each read, so an event split across fragments is still found.

    Args:
        chunks: Raw fragments (`bytes` or `str`) in arrival order.
        max_reads: Upper bound on fragments consumed.

    Returns:
        The run handle, or `None` when no identifier appeared in time.
    """
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    buffer = ""

    for attempt, chunk in enumerate(itertools.islice(chunks, max(1, max_reads)), start=1):
        if not chunk:
            continue

        buffer += decoder.decode(chunk) if isinstance(chunk, bytes) else chunk
        logger.debug("Run stream fragment %s: %r", attempt, chunk)

        for line in buffer.split("\n"):
            event = parse_sse_line(line)
            if event is None or event.get("event") != RUN_STARTED_EVENT:
                continue
            handle = _run_id_from_event(event)
            if handle is not None:
                return handle

    return None


class GenerationInitiator:
    """Starts remote runs and falls back to placeholder runs when degraded."""

    def __init__(self, config: WorkflowConfig, client: WorkflowClient | None = None,
                 library=None, sleep=time.sleep):
        self.config = config
        self.client = client or WorkflowClient(config)
        self.library = library
        self._sleep = sleep

    def initiate(self, request: GenerationRequest) -> InitiateResult:
        """Start a generation run.

        Returns:
            A real `InitiateResult`, or a degraded one carrying a placeholder id.

        Raises:
            NoRunIdError: The remote run started but never announced its id.
        """
        if self.config.is_mock:
            logger.info("Using mock workflow run (level=%s)", request.level)
            return self._degraded(MOCK_MODE_MESSAGE)

        try:
            response = self.client.start_run(request)
        except RemoteServiceError as err:
            logger.warning("Falling back to mock mode due to workflow service error: %s", err)
            return self._degraded(API_ERROR_MESSAGE)

        try:
            handle = self._extract_handle(response)
        except requests.exceptions.RequestException as err:
            logger.warning("Falling back to mock mode due to stream read error: %s", err)
            return self._degraded(STREAM_ERROR_MESSAGE)
        finally:
            response.close()

        if handle is None:
            logger.error("Could not extract workflow_run_id from the run response")
            raise NoRunIdError("could not obtain a workflow run id")

        logger.info("Workflow run started: %s", handle.run_id)
        self._record_run(handle.run_id)
        return InitiateResult(handle=handle)

    def _extract_handle(self, response: requests.Response) -> RunHandle | None:
        content_type = response.headers.get("content-type", "")

        if "application/json" in content_type:
            try:
                data = response.json()
            except ValueError:
                return None
            return _run_id_from_event(data) if isinstance(data, dict) else None

        return scan_for_run_started(
            response.iter_content(chunk_size=None),
            self.config.stream_read_attempts,
        )

    def _record_run(self, run_id: str) -> None:
        if self.library is None:
            return
        try:
            self.library.record_run(run_id)
        except PersistenceError:
            logger.warning("Run %s started but could not be recorded", run_id)

    def _degraded(self, message: str) -> InitiateResult:
        if self.config.mock_delay_seconds > 0:
            self._sleep(self.config.mock_delay_seconds)
        run_id = generate_placeholder_run_id()
        return InitiateResult(
            handle=RunHandle(run_id=run_id, task_id=f"task_{run_id}"),
            degraded=True,
            message=message,
        )
