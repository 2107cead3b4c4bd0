"""Runtime configuration for the remote workflow service and generation flow.

Architectural role:
    Centralizes endpoint, credential and timing settings consumed by
    `manga_tutor.workflow.client` and the `manga_tutor.core` orchestration.

Resolution:
    Values are read from the process environment (after `load_dotenv()`) when
    this module is imported. Tests construct `WorkflowConfig(...)` directly
    with explicit values instead of mutating the environment.

Degraded mode switch:
    An empty `DIFY_API_KEY` or the literal value `mock` selects the simulated
    generation path in the initiator and the streaming resolver.
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


MOCK_API_KEY = "mock"

GENERATION_MODES = ("polling", "streaming")
GENERATION_MODE = os.getenv("GENERATION_MODE", "streaming").strip().lower()

# Caller-side poll loop (terminal client); the resolver itself never sleeps.
POLL_MAX_ATTEMPTS = int(os.getenv("POLL_MAX_ATTEMPTS", "60"))
POLL_INTERVAL_SECONDS = float(os.getenv("POLL_INTERVAL_SECONDS", "10"))
POLL_INITIAL_DELAY_SECONDS = float(os.getenv("POLL_INITIAL_DELAY_SECONDS", "5"))


@dataclass(frozen=True)
class WorkflowConfig:
    """Remote workflow-service settings.

    Relevant environment variables:
        - `DIFY_API_KEY`
        - `DIFY_API_BASE`
        - `DIFY_USER`
        - `DIFY_STREAMING_USER`
        - `WORKFLOW_TIMEOUT_SECONDS`
        - `WORKFLOW_STREAM_READ_ATTEMPTS`
        - `MOCK_DELAY_SECONDS`
        - `MOCK_STEP_DELAY_SECONDS`
        - `STREAM_PANEL_DELAY_SECONDS`
    """

    api_key: str = os.getenv("DIFY_API_KEY", "").strip()
    api_base: str = os.getenv("DIFY_API_BASE", "https://api.dify.ai/v1").rstrip("/")
    user: str = os.getenv("DIFY_USER", "manga-tutor-polling")
    streaming_user: str = os.getenv("DIFY_STREAMING_USER", "manga-tutor-streaming")
    timeout_seconds: float = float(os.getenv("WORKFLOW_TIMEOUT_SECONDS", "120"))
    stream_read_attempts: int = int(os.getenv("WORKFLOW_STREAM_READ_ATTEMPTS", "5"))
    mock_delay_seconds: float = float(os.getenv("MOCK_DELAY_SECONDS", "1.0"))
    mock_step_delay_seconds: float = float(os.getenv("MOCK_STEP_DELAY_SECONDS", "2.0"))
    panel_delay_seconds: float = float(os.getenv("STREAM_PANEL_DELAY_SECONDS", "0.5"))

    @property
    def is_mock(self) -> bool:
        """Whether the simulated (degraded) path must be used."""
        return not self.api_key or self.api_key == MOCK_API_KEY

    @property
    def run_url(self) -> str:
        return f"{self.api_base}/workflows/run"

    def status_url(self, run_id: str) -> str:
        return f"{self.api_base}/workflows/run/{run_id}"


def validate_generation_mode(mode: str) -> str:
    """Normalize a generation mode name.

    Raises:
        ValueError: For names outside `GENERATION_MODES`.
    """
    normalized = (mode or "").strip().lower()
    if normalized not in GENERATION_MODES:
        raise ValueError(
            f"Unknown GENERATION_MODE {mode!r}; expected one of {GENERATION_MODES}"
        )
    return normalized
