"""Shared fixtures for manga_tutor tests."""

import json

import pytest

from manga_tutor.library.store import LibraryStore
from manga_tutor.storage.object_store import StorageConfig
from manga_tutor.workflow.provider_config import WorkflowConfig


class FakeStreamResponse:
    """Stand-in for a streamed `requests.Response`."""

    def __init__(self, lines=None, chunks=None, headers=None, json_body=None):
        self.lines = list(lines or [])
        self.chunks = list(chunks or [])
        self.headers = headers or {"content-type": "text/event-stream"}
        self.json_body = json_body
        self.encoding = None
        self.closed = False
        self.chunks_read = 0

    def iter_lines(self, decode_unicode=False):
        yield from self.lines

    def iter_content(self, chunk_size=None):
        for chunk in self.chunks:
            self.chunks_read += 1
            yield chunk

    def json(self):
        if self.json_body is None:
            raise ValueError("no json body")
        return self.json_body

    def close(self):
        self.closed = True


def sse(payload: dict) -> str:
    return "data: " + json.dumps(payload, ensure_ascii=False)


@pytest.fixture
def stream_response():
    return FakeStreamResponse


@pytest.fixture
def sse_line():
    return sse


@pytest.fixture
def live_config():
    """Config with a real-looking key and no artificial delays."""
    return WorkflowConfig(
        api_key="app-test-key",
        api_base="https://workflow.test/v1",
        stream_read_attempts=5,
        mock_delay_seconds=0,
        mock_step_delay_seconds=0,
        panel_delay_seconds=0,
    )


@pytest.fixture
def mock_config():
    return WorkflowConfig(
        api_key="",
        mock_delay_seconds=0,
        mock_step_delay_seconds=0,
        panel_delay_seconds=0,
    )


@pytest.fixture
def no_storage_config():
    return StorageConfig(endpoint_url="", access_key_id="", secret_access_key="")


@pytest.fixture
def library(tmp_path):
    return LibraryStore(str(tmp_path / "library.db"))
