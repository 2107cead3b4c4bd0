"""Streaming-variant resolver: one connection, a fixed vocabulary of events.

Event flow (normal completion):
    start -> planning -> plan_complete -> (panel_generating ->
    panel_complete | panel_error)* -> complete

Real mode:
    Opens one streamed workflow run and reads it to `workflow_finished`,
    collecting image files reported by `node_finished` events and the run id
    from `workflow_started`. Events are relayed in the order the remote
    service produced them; panel ordering is not enforced or corrected here.

Empty plans:
    When the planning output is missing, empty or unparsable, a fixed
    placeholder plan (see `manga_tutor.core.placeholders`) is used so the
    stream still completes.

Mock mode:
    Without a usable API key a five-panel simulated run is produced with
    placeholder images; its `complete` event carries `degraded: true`.

Failure handling:
    Any unrecoverable error emits a single `error` event and ends the stream.
    Nothing is retried. Library persistence failures are logged only.
"""

import json
import logging
import time
from typing import Any, Iterator
from urllib.parse import urlparse

from manga_tutor.core.errors import RemoteServiceError
from manga_tutor.core.placeholders import (
    PLACEHOLDER_MIN_PANELS,
    mock_panels,
    placeholder_plan,
)
from manga_tutor.core.status_resolver import normalize_image_output, persist_entry
from manga_tutor.core.types import (
    PLACEHOLDER_IMAGE_URL,
    EventType,
    GenerationRequest,
    LibraryEntry,
    StreamEvent,
    generate_placeholder_run_id,
)
from manga_tutor.storage.object_store import image_key
from manga_tutor.storage.proxy import proxy_path
from manga_tutor.workflow.client import WorkflowClient, iter_events
from manga_tutor.workflow.provider_config import WorkflowConfig

logger = logging.getLogger(__name__)

STREAM_RUN_PREFIX = "stream_"


def _event(event_type: EventType, data: dict) -> StreamEvent:
    return StreamEvent(type=event_type, data=data)


def _is_http_url(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def build_plan(outputs: Any, images: list[str]) -> dict:
    """Interpret the planning output, falling back to the placeholder plan.

    Args:
        outputs: `workflow_finished.data.outputs` from the remote run.
        images: Image URLs collected from `node_finished` events.

    Returns:
        Plan dict with `total_panels`, `story_arc`, `main_characters` and
        `generated_images`.
    """
    text = outputs.get("text") if isinstance(outputs, dict) else None
    if not text:
        logger.info("Planning output empty, using placeholder plan")
        return placeholder_plan(images)

    try:
        parsed = json.loads(text) if isinstance(text, str) else text
    except json.JSONDecodeError:
        logger.warning("Planning output is not JSON, using placeholder plan")
        return placeholder_plan(images)

    if isinstance(parsed, list):
        found = images or normalize_image_output({"text": parsed})
        if not found:
            return placeholder_plan(images)
        return {
            "total_panels": len(found),
            "story_arc": None,
            "main_characters": None,
            "generated_images": found,
        }

    if not isinstance(parsed, dict):
        return placeholder_plan(images)

    plan = dict(parsed)
    plan["generated_images"] = list(images)
    return plan


def _total_panels(plan: dict) -> int:
    try:
        total = int(plan.get("total_panels") or PLACEHOLDER_MIN_PANELS)
    except (TypeError, ValueError):
        total = PLACEHOLDER_MIN_PANELS
    return max(total, 1)


class StreamingResolver:
    """Relays generation progress for one request as `StreamEvent` values."""

    def __init__(self, config: WorkflowConfig, client: WorkflowClient | None = None,
                 object_store=None, library=None, sleep=time.sleep):
        self.config = config
        self.client = client or WorkflowClient(config)
        self.object_store = object_store
        self.library = library
        self._sleep = sleep

    def stream(self, request: GenerationRequest) -> Iterator[StreamEvent]:
        """Yield the full event sequence for one generation request.

        The generator never raises for generation failures; they are reported
        as a final `error` event.
        """
        yield _event(EventType.START, {"message": "Starting manga generation..."})

        try:
            if self.config.is_mock:
                logger.info("Using mock streaming generation (level=%s)", request.level)
                yield from self._simulate(request)
            else:
                yield from self._generate(request)
        except Exception as err:
            logger.exception("Streaming manga generation failed")
            yield _event(EventType.ERROR, {"error": str(err) or "Unknown error"})

    # ------------------------------------------------------------
    # Real workflow run
    # ------------------------------------------------------------

    def _generate(self, request: GenerationRequest) -> Iterator[StreamEvent]:
        yield _event(EventType.PLANNING, {"message": "Planning the manga..."})

        response = self.client.start_run(request, user=self.config.streaming_user)
        try:
            run_id, images, result = self._consume_run(response)
        finally:
            response.close()

        if result is None:
            raise RemoteServiceError("The planning phase returned no result")

        logger.info("Planning finished: %s images collected", len(images))

        plan = build_plan(result.get("outputs"), images)
        total_panels = _total_panels(plan)

        yield _event(EventType.PLAN_COMPLETE, {
            "total_panels": total_panels,
            "story_arc": plan.get("story_arc"),
            "characters": plan.get("main_characters"),
        })

        generated = plan.get("generated_images") or []
        panel_count = min(total_panels, max(len(generated), 1))
        run_id = run_id or generate_placeholder_run_id(STREAM_RUN_PREFIX)

        panels = []
        for index in range(panel_count):
            panel_id = index + 1
            yield _event(EventType.PANEL_GENERATING, {
                "panel_id": panel_id,
                "progress": round(panel_id / panel_count * 100),
                "message": f"Generating panel {panel_id}/{panel_count}...",
            })

            source = generated[index] if index < len(generated) else None
            if source is not None and not _is_http_url(source):
                logger.error("Panel %s has an unusable image reference: %r", panel_id, source)
                yield _event(EventType.PANEL_ERROR, {
                    "panel_id": panel_id,
                    "error": f"Panel {panel_id} could not be generated",
                })
                continue

            panel = {
                "panel_id": panel_id,
                "image_url": self._panel_image(run_id, index, source),
                "title": f"Panel {panel_id}",
                "description": f"{request.question} ({request.level}) - panel {panel_id}",
            }
            panels.append(panel)
            yield _event(EventType.PANEL_COMPLETE, panel)

            if self.config.panel_delay_seconds > 0:
                self._sleep(self.config.panel_delay_seconds)

        if not panels:
            raise RemoteServiceError("No panel could be generated")

        self._save(request, panels, run_id)

        yield _event(EventType.COMPLETE, {
            "message": "Manga generation complete!",
            "panels": panels,
            "total_panels": len(panels),
            "degraded": False,
        })

    def _consume_run(self, response) -> tuple[str | None, list[str], dict | None]:
        """Read the remote run stream until `workflow_finished`.

        Returns:
            `(run_id, image_urls, finished_data)`; `finished_data` is `None`
            when the stream ended early.
        """
        response.encoding = "utf-8"
        run_id = None
        images: list[str] = []

        for event in iter_events(response.iter_lines(decode_unicode=True)):
            name = event.get("event")
            data = event.get("data") if isinstance(event.get("data"), dict) else {}
            logger.debug("Workflow event: %s %s", name, data.get("node_type"))

            if name == "workflow_started":
                run_id = event.get("workflow_run_id") or data.get("id") or run_id

            elif name == "node_finished":
                outputs = data.get("outputs") if isinstance(data.get("outputs"), dict) else {}
                files = outputs.get("files")
                if isinstance(files, list):
                    for item in files:
                        if isinstance(item, dict) and item.get("url"):
                            images.append(item["url"])

            elif name == "workflow_finished":
                return run_id, images, data

            elif name == "error":
                raise RemoteServiceError(event.get("message") or "The workflow reported an error")

        return run_id, images, None

    def _panel_image(self, run_id: str, index: int, source: str | None) -> str:
        if source is None:
            return PLACEHOLDER_IMAGE_URL

        if self.object_store is not None and self.object_store.enabled:
            cached = self.object_store.cache_image(source, image_key(run_id, index))
            if cached:
                return cached

        return proxy_path(source)

    # ------------------------------------------------------------
    # Mock run
    # ------------------------------------------------------------

    def _simulate(self, request: GenerationRequest) -> Iterator[StreamEvent]:
        step_delay = self.config.mock_step_delay_seconds

        yield _event(EventType.PLANNING, {"message": "Planning the manga..."})
        if step_delay > 0:
            self._sleep(step_delay)

        outline = mock_panels(request.question)
        plan = placeholder_plan([])
        yield _event(EventType.PLAN_COMPLETE, {
            "total_panels": len(outline),
            "story_arc": plan["story_arc"],
            "characters": plan["main_characters"],
            "panels": outline,
        })

        panels = []
        for item in outline:
            panel_id = item["panel_id"]
            yield _event(EventType.PANEL_GENERATING, {
                "panel_id": panel_id,
                "progress": round(panel_id / len(outline) * 100),
                "message": f"Generating panel {panel_id}...",
            })
            if step_delay > 0:
                self._sleep(step_delay)

            panel = dict(item, image_url=PLACEHOLDER_IMAGE_URL)
            panels.append(panel)
            yield _event(EventType.PANEL_COMPLETE, panel)

        self._save(request, panels, generate_placeholder_run_id())

        yield _event(EventType.COMPLETE, {
            "message": "Manga generation complete!",
            "panels": panels,
            "total_panels": len(panels),
            "degraded": True,
        })

    def _save(self, request: GenerationRequest, panels: list[dict], run_id: str) -> None:
        entry = LibraryEntry.new(
            question=request.question,
            level=request.level,
            image_urls=[panel["image_url"] for panel in panels],
            run_id=run_id,
        )
        persist_entry(self.library, entry)
