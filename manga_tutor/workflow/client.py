"""HTTP transport for the remote generation workflow service.

Architectural role:
    Executes the two remote calls the generation flow depends on and maps
    transport failures onto `RemoteServiceError`:
        - `start_run`: `POST /workflows/run` (streaming response mode).
        - `get_run`: `GET /workflows/run/{run_id}`.

Streaming:
    `start_run` returns the open `requests.Response` so callers can read a
    bounded number of fragments (initiator) or consume the whole event stream
    (streaming resolver). Callers own closing it; `iter_events` is the shared
    line-level SSE parser.

Retry behavior:
    No retry loop is implemented here. Each call is attempted once.

Security considerations:
    Error messages include upstream status codes and truncated bodies, never
    the API key.
"""

import json
import logging
from typing import Any, Iterable, Iterator

import requests

from manga_tutor.core.errors import RemoteServiceError
from manga_tutor.core.types import GenerationRequest
from manga_tutor.workflow.provider_config import WorkflowConfig


logger = logging.getLogger(__name__)

SSE_DATA_PREFIX = "data:"
ERROR_BODY_MAX_CHARS = 500


def parse_sse_line(line: str) -> dict[str, Any] | None:
    """Decode one `data: {...}` line into a dict.

    Returns `None` for blank lines, non-data fields (`event:`, `id:`,
    comments), the `[DONE]` sentinel and malformed JSON.
    """
    if not line:
        return None

    line = line.strip()
    if not line.startswith(SSE_DATA_PREFIX):
        return None

    raw = line[len(SSE_DATA_PREFIX):].strip()
    if not raw or raw == "[DONE]":
        return None

    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        return None

    return data if isinstance(data, dict) else None


def iter_events(lines: Iterable[str]) -> Iterator[dict[str, Any]]:
    """Yield decoded event payloads from an iterable of SSE text lines."""
    for line in lines:
        if isinstance(line, bytes):
            line = line.decode("utf-8", errors="replace")
        event = parse_sse_line(line)
        if event is not None:
            yield event


class WorkflowClient:
    """Thin client over the workflow-run endpoints."""

    def __init__(self, config: WorkflowConfig):
        self.config = config

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.config.api_key}",
            "Content-Type": "application/json",
        }

    def start_run(self, request: GenerationRequest, user: str | None = None) -> requests.Response:
        """Submit a generation run and return the open streamed response.

        Args:
            request: Validated question/level pair.
            user: Remote end-user label; defaults to `config.user`.

        Returns:
            Open `requests.Response` (`stream=True`) with a 2xx status.

        Raises:
            RemoteServiceError: Non-2xx status (with `status_code`) or
                transport failure (`status_code=None`).
        """
        payload = {
            "inputs": request.to_inputs(),
            "response_mode": "streaming",
            "user": user or self.config.user,
        }

        logger.info("Starting workflow run (level=%s)", request.level)

        try:
            response = requests.post(
                self.config.run_url,
                headers=self._headers(),
                json=payload,
                stream=True,
                timeout=self.config.timeout_seconds,
                allow_redirects=True,
            )
        except requests.exceptions.RequestException as err:
            raise RemoteServiceError(f"Workflow service unreachable: {err}") from err

        if not response.ok:
            body = response.text[:ERROR_BODY_MAX_CHARS]
            response.close()
            logger.error("Workflow run rejected: status=%s body=%s", response.status_code, body)
            raise RemoteServiceError(
                f"Workflow service error: {response.status_code} {response.reason}",
                status_code=response.status_code,
            )

        return response

    def get_run(self, run_id: str) -> dict[str, Any]:
        """Fetch the current status document of a run.

        Raises:
            RemoteServiceError: Non-2xx status, transport failure, or a body
                that is not a JSON object.
        """
        try:
            response = requests.get(
                self.config.status_url(run_id),
                headers=self._headers(),
                timeout=self.config.timeout_seconds,
            )
        except requests.exceptions.RequestException as err:
            raise RemoteServiceError(f"Workflow service unreachable: {err}") from err

        if not response.ok:
            logger.error(
                "Workflow status check failed: run=%s status=%s body=%s",
                run_id,
                response.status_code,
                response.text[:ERROR_BODY_MAX_CHARS],
            )
            raise RemoteServiceError(
                f"Workflow service error: {response.status_code} {response.reason}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as err:
            raise RemoteServiceError("Workflow status response was not JSON") from err

        if not isinstance(data, dict):
            raise RemoteServiceError("Workflow status response was not a JSON object")

        return data
