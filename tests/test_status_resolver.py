"""Tests for single-shot status resolution."""

import asyncio
import json
from unittest.mock import MagicMock

import pytest

from manga_tutor.core.errors import PersistenceError, RemoteServiceError
from manga_tutor.core.status_resolver import (
    StatusResolver,
    UnreadableOutputError,
    extract_output_title,
    normalize_image_output,
)
from manga_tutor.core.types import PLACEHOLDER_IMAGE_URL, ResolutionStatus, RunHandle

INPUTS = {"user_question": "What is gravity?", "user_level": "小学生"}


def succeeded(text, inputs=INPUTS):
    return {"id": "run-1", "status": "succeeded", "outputs": {"text": text}, "inputs": inputs}


def resolve(resolver, run_id="run-1"):
    return asyncio.run(resolver.resolve(RunHandle(run_id=run_id)))


@pytest.fixture
def client():
    return MagicMock()


@pytest.fixture
def object_store():
    store = MagicMock()
    store.enabled = True
    store.cache_image.side_effect = lambda url, key: f"https://cdn.test/{key}"
    return store


class TestNormalizeImageOutput:
    def test_flattens_one_level_and_drops_items_without_url(self):
        text = json.dumps([
            [{"url": "https://a/1.png"}, {"url": "https://a/2.png"}],
            {"url": "https://a/3.png"},
            {"name": "no url"},
            "stray",
        ])

        urls = normalize_image_output({"text": text})

        assert urls == ["https://a/1.png", "https://a/2.png", "https://a/3.png"]

    def test_outputs_as_json_string(self):
        outputs = json.dumps({"text": [{"url": "https://a/1.png"}]})
        assert normalize_image_output(outputs) == ["https://a/1.png"]

    def test_empty_list(self):
        assert normalize_image_output({"text": "[]"}) == []

    @pytest.mark.parametrize("outputs", [None, {"text": ""}, {"text": "not json"}, {"text": '{"url": "x"}'}, "{bad"])
    def test_unreadable(self, outputs):
        with pytest.raises(UnreadableOutputError):
            normalize_image_output(outputs)


def test_extract_output_title():
    assert extract_output_title({"title": "Gravity"}) == "Gravity"
    assert extract_output_title({"text": json.dumps([{"question": "Why?", "url": "u"}])}) == "Why?"
    assert extract_output_title(None) is None


class TestStatusResolver:
    def test_empty_success_is_distinct_and_not_persisted(self, client, library):
        client.get_run.return_value = succeeded("[]")

        result = resolve(StatusResolver(client, library=library))

        assert result.status is ResolutionStatus.SUCCEEDED_BUT_EMPTY
        assert result.message
        assert library.list_entries() == []

    def test_unreadable_output(self, client, library):
        client.get_run.return_value = succeeded("{{not json")

        result = resolve(StatusResolver(client, library=library))

        assert result.status is ResolutionStatus.SUCCEEDED_BUT_UNREADABLE
        assert library.list_entries() == []

    def test_success_caches_and_persists(self, client, object_store, library):
        client.get_run.return_value = succeeded(json.dumps([{"url": "https://a/1.png"}, {"url": "https://a/2.png"}]))
        library.record_run("run-1")

        result = resolve(StatusResolver(client, object_store=object_store, library=library))

        assert result.status is ResolutionStatus.SUCCEEDED
        assert result.image_urls == ["https://cdn.test/mangas/run-1_1.png", "https://cdn.test/mangas/run-1_2.png"]

        entries = library.list_entries()
        assert len(entries) == 1
        assert entries[0].question == "What is gravity?"
        assert entries[0].level == "小学生"
        assert entries[0].title == "What is gravity?"
        assert entries[0].image_urls == result.image_urls
        assert library.get_run_status("run-1") == "completed"

    def test_cache_failure_keeps_remote_url_in_place(self, client, object_store, library):
        client.get_run.return_value = succeeded(json.dumps([
            {"url": "https://a/1.png"}, {"url": "https://a/2.png"}, {"url": "https://a/3.png"},
        ]))

        def cache(url, key):
            if url.endswith("2.png"):
                return None
            if url.endswith("3.png"):
                raise RuntimeError("boom")
            return f"https://cdn.test/{key}"

        object_store.cache_image.side_effect = cache

        result = resolve(StatusResolver(client, object_store=object_store, library=library))

        assert result.image_urls == ["https://cdn.test/mangas/run-1_1.png", "https://a/2.png", "https://a/3.png"]

    def test_repeated_resolution_is_idempotent(self, client, object_store, library):
        client.get_run.return_value = succeeded(json.dumps([{"url": "https://a/1.png"}]))
        resolver = StatusResolver(client, object_store=object_store, library=library)

        first = resolve(resolver)
        second = resolve(resolver)

        assert first.image_urls == second.image_urls
        assert len(library.list_entries()) == 1
        assert object_store.cache_image.call_count == 1

    def test_missing_inputs_use_unknown_labels(self, client, library):
        client.get_run.return_value = succeeded(json.dumps([{"url": "https://a/1.png"}]), inputs=None)

        resolve(StatusResolver(client, library=library))

        entry = library.get_by_run_id("run-1")
        assert entry.question == "Unknown question"
        assert entry.level == "Unknown level"

    def test_failed_run(self, client, library):
        library.record_run("run-1")
        client.get_run.return_value = {"status": "failed", "error": "node crashed"}

        result = resolve(StatusResolver(client, library=library))

        assert result.status is ResolutionStatus.FAILED
        assert result.message == "node crashed"
        assert library.get_run_status("run-1") == "failed"

    def test_running_is_pending(self, client):
        client.get_run.return_value = {"status": "running"}

        result = resolve(StatusResolver(client))

        assert result.status is ResolutionStatus.PENDING
        assert result.to_dict() == {"status": "pending", "degraded": False, "remote_status": "running"}

    def test_nested_data_document(self, client):
        client.get_run.return_value = {"data": {"status": "succeeded", "outputs": {"text": "[]"}}}

        result = resolve(StatusResolver(client))

        assert result.status is ResolutionStatus.SUCCEEDED_BUT_EMPTY

    def test_null_top_level_fields_fall_back_to_data(self, client, library):
        client.get_run.return_value = {
            "status": "succeeded",
            "outputs": None,
            "inputs": None,
            "data": {
                "outputs": {"text": json.dumps([{"url": "https://a/1.png"}])},
                "inputs": INPUTS,
            },
        }

        result = resolve(StatusResolver(client, library=library))

        assert result.status is ResolutionStatus.SUCCEEDED
        assert result.image_urls == ["https://a/1.png"]
        assert library.get_by_run_id("run-1").question == "What is gravity?"

    def test_library_failure_is_not_fatal(self, client):
        client.get_run.return_value = succeeded(json.dumps([{"url": "https://a/1.png"}]))
        library = MagicMock()
        library.get_by_run_id.side_effect = PersistenceError("database is locked")
        library.insert.side_effect = PersistenceError("database is locked")
        library.update_run_status.side_effect = PersistenceError("database is locked")

        result = resolve(StatusResolver(client, library=library))

        assert result.status is ResolutionStatus.SUCCEEDED
        assert result.image_urls == ["https://a/1.png"]
        library.insert.assert_called_once()
        library.update_run_status.assert_called_once_with("run-1", "completed")

    def test_failed_run_bookkeeping_failure_is_not_fatal(self, client):
        client.get_run.return_value = {"status": "stopped"}
        library = MagicMock()
        library.update_run_status.side_effect = PersistenceError("database is locked")

        result = resolve(StatusResolver(client, library=library))

        assert result.status is ResolutionStatus.FAILED

    def test_placeholder_run_never_queries_remote(self, client, library):
        result = resolve(StatusResolver(client, library=library), run_id="mock_1700000000000_abcdefghi")

        assert result.status is ResolutionStatus.SUCCEEDED
        assert result.degraded is True
        assert result.image_urls == [PLACEHOLDER_IMAGE_URL] * 5
        client.get_run.assert_not_called()
        assert library.list_entries() == []

    def test_remote_error_propagates(self, client):
        client.get_run.side_effect = RemoteServiceError("Workflow service error: 404", status_code=404)

        with pytest.raises(RemoteServiceError):
            resolve(StatusResolver(client))
