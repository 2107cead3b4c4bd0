"""Tests for the streaming-variant resolver."""

import json
from unittest.mock import MagicMock

import pytest

from manga_tutor.core.errors import PersistenceError, RemoteServiceError
from manga_tutor.core.streaming import StreamingResolver, build_plan
from manga_tutor.core.types import PLACEHOLDER_IMAGE_URL, EventType, GenerationRequest

DIFY_A = "https://upload.dify.ai/files/a.png"
DIFY_B = "https://upload.dify.ai/files/b.png"


@pytest.fixture
def request_obj():
    return GenerationRequest(question="What is gravity?", level="小学生")


def types_of(events):
    return [event.type for event in events]


def run_lines(sse_line, files, outputs=None, run_id="run-s"):
    return [
        sse_line({"event": "workflow_started", "workflow_run_id": run_id, "data": {"id": run_id}}),
        "",
        sse_line({"event": "node_finished", "data": {"node_type": "tool", "outputs": {"files": files}}}),
        sse_line({"event": "workflow_finished", "data": {"status": "succeeded", "outputs": outputs or {}}}),
    ]


class TestBuildPlan:
    def test_missing_text_uses_placeholder_plan(self):
        plan = build_plan({}, [DIFY_A, DIFY_B])

        assert plan["total_panels"] == 20
        assert [c["name"] for c in plan["main_characters"]] == ["学び君", "知識先生"]
        assert plan["generated_images"] == [DIFY_A, DIFY_B]

    def test_unparsable_text_uses_placeholder_plan(self):
        assert build_plan({"text": "plan: four panels"}, [])["total_panels"] == 20

    def test_object_plan_is_kept(self):
        text = json.dumps({"total_panels": 4, "story_arc": {"phase_overview": "arc"}, "main_characters": []})

        plan = build_plan({"text": text}, [DIFY_A])

        assert plan["total_panels"] == 4
        assert plan["story_arc"] == {"phase_overview": "arc"}
        assert plan["generated_images"] == [DIFY_A]

    def test_image_list_text(self):
        plan = build_plan({"text": json.dumps([{"url": DIFY_A}])}, [])

        assert plan["total_panels"] == 1
        assert plan["generated_images"] == [DIFY_A]


class TestMockStream:
    def test_event_order_and_degraded_completion(self, mock_config, request_obj, library):
        events = list(StreamingResolver(mock_config, client=MagicMock(), library=library).stream(request_obj))

        assert types_of(events) == (
            [EventType.START, EventType.PLANNING, EventType.PLAN_COMPLETE]
            + [EventType.PANEL_GENERATING, EventType.PANEL_COMPLETE] * 5
            + [EventType.COMPLETE]
        )
        complete = events[-1].data
        assert complete["degraded"] is True
        assert complete["total_panels"] == 5
        assert "What is gravity?" in events[4].data["description"]

        entries = library.list_entries()
        assert len(entries) == 1
        assert entries[0].image_urls == [PLACEHOLDER_IMAGE_URL] * 5
        assert entries[0].run_id.startswith("mock_")

    def test_library_failure_still_completes(self, mock_config, request_obj):
        library = MagicMock()
        library.insert.side_effect = PersistenceError("database is locked")

        events = list(StreamingResolver(mock_config, client=MagicMock(), library=library).stream(request_obj))

        assert events[-1].type is EventType.COMPLETE
        assert EventType.ERROR not in types_of(events)
        library.insert.assert_called_once()


class TestRealStream:
    def test_relays_panels_through_proxy(self, live_config, request_obj, library, stream_response, sse_line):
        client = MagicMock()
        response = stream_response(lines=run_lines(sse_line, [{"url": DIFY_A}, {"url": DIFY_B}]))
        client.start_run.return_value = response

        events = list(StreamingResolver(live_config, client=client, library=library).stream(request_obj))

        assert types_of(events) == [
            EventType.START, EventType.PLANNING, EventType.PLAN_COMPLETE,
            EventType.PANEL_GENERATING, EventType.PANEL_COMPLETE,
            EventType.PANEL_GENERATING, EventType.PANEL_COMPLETE,
            EventType.COMPLETE,
        ]
        assert events[2].data["total_panels"] == 20
        assert events[4].data["image_url"].startswith("/api/proxy-image?url=https%3A%2F%2Fupload.dify.ai")
        assert events[-1].data["degraded"] is False
        assert events[-1].data["total_panels"] == 2
        assert response.closed
        client.start_run.assert_called_once_with(request_obj, user=live_config.streaming_user)

        entry = library.get_by_run_id("run-s")
        assert entry is not None
        assert len(entry.image_urls) == 2

    def test_cached_images_are_preferred(self, live_config, request_obj, stream_response, sse_line):
        client = MagicMock()
        client.start_run.return_value = stream_response(lines=run_lines(sse_line, [{"url": DIFY_A}]))
        object_store = MagicMock()
        object_store.enabled = True
        object_store.cache_image.return_value = "https://cdn.test/mangas/run-s_1.png"

        events = list(StreamingResolver(live_config, client=client, object_store=object_store).stream(request_obj))

        panel = next(e for e in events if e.type is EventType.PANEL_COMPLETE)
        assert panel.data["image_url"] == "https://cdn.test/mangas/run-s_1.png"
        object_store.cache_image.assert_called_once_with(DIFY_A, "mangas/run-s_1.png")

    def test_no_images_yields_single_placeholder_panel(self, live_config, request_obj, stream_response, sse_line):
        client = MagicMock()
        client.start_run.return_value = stream_response(lines=run_lines(sse_line, []))

        events = list(StreamingResolver(live_config, client=client).stream(request_obj))

        panels = [e for e in events if e.type is EventType.PANEL_COMPLETE]
        assert len(panels) == 1
        assert panels[0].data["image_url"] == PLACEHOLDER_IMAGE_URL

    def test_unusable_image_reference_emits_panel_error(self, live_config, request_obj, stream_response, sse_line):
        client = MagicMock()
        client.start_run.return_value = stream_response(
            lines=run_lines(sse_line, [{"url": "file-ref-123"}, {"url": DIFY_B}])
        )

        events = list(StreamingResolver(live_config, client=client).stream(request_obj))

        assert EventType.PANEL_ERROR in types_of(events)
        assert events[-1].type is EventType.COMPLETE
        assert events[-1].data["total_panels"] == 1

    def test_start_failure_emits_one_error_event(self, live_config, request_obj):
        client = MagicMock()
        client.start_run.side_effect = RemoteServiceError("Workflow service unreachable")

        events = list(StreamingResolver(live_config, client=client).stream(request_obj))

        assert types_of(events) == [EventType.START, EventType.PLANNING, EventType.ERROR]
        assert events[-1].data["error"] == "Workflow service unreachable"

    def test_remote_error_event(self, live_config, request_obj, stream_response, sse_line):
        client = MagicMock()
        response = stream_response(lines=[sse_line({"event": "error", "message": "quota exceeded"})])
        client.start_run.return_value = response

        events = list(StreamingResolver(live_config, client=client).stream(request_obj))

        assert events[-1].type is EventType.ERROR
        assert events[-1].data["error"] == "quota exceeded"
        assert response.closed

    def test_stream_ending_early_is_an_error(self, live_config, request_obj, stream_response, sse_line):
        client = MagicMock()
        client.start_run.return_value = stream_response(
            lines=[sse_line({"event": "workflow_started", "workflow_run_id": "run-x"})]
        )

        events = list(StreamingResolver(live_config, client=client).stream(request_obj))

        assert types_of(events)[-1] is EventType.ERROR

    def test_library_failure_still_completes(self, live_config, request_obj, stream_response, sse_line):
        client = MagicMock()
        client.start_run.return_value = stream_response(lines=run_lines(sse_line, [{"url": DIFY_A}]))
        library = MagicMock()
        library.insert.side_effect = PersistenceError("database is locked")

        events = list(StreamingResolver(live_config, client=client, library=library).stream(request_obj))

        assert events[-1].type is EventType.COMPLETE
        assert events[-1].data["total_panels"] == 1
        library.insert.assert_called_once()
