"""Data contracts for the generation flow.

Architectural role:
    Defines the values exchanged between the initiator, the resolvers, the
    library store and the API adapters. Every type here is structural; no
    module-level state is kept.

Lifecycle:
    - `GenerationRequest` is created per submission and never mutated.
    - `RunHandle` correlates a submission with its remote result until a
      terminal status is reached.
    - `LibraryEntry` is produced once per successful run and owned by
      `manga_tutor.library.store` afterwards.
"""

import json
import random
import string
import time
import uuid
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum

from manga_tutor.core.errors import ValidationError


MOCK_RUN_PREFIX = "mock_"
TITLE_MAX_CHARS = 50
PLACEHOLDER_IMAGE_URL = "/placeholder-manga.png"


def generate_placeholder_run_id(prefix: str = MOCK_RUN_PREFIX) -> str:
    """Return `<prefix><epoch millis>_<9 base36 chars>`."""
    alphabet = string.ascii_lowercase + string.digits
    suffix = "".join(random.choice(alphabet) for _ in range(9))
    return f"{prefix}{int(time.time() * 1000)}_{suffix}"


def is_placeholder_run_id(run_id: str) -> bool:
    return run_id.startswith(MOCK_RUN_PREFIX)


def make_title(text: str) -> str:
    return text.strip()[:TITLE_MAX_CHARS]


@dataclass(frozen=True)
class GenerationRequest:
    """One user submission.

    Attributes:
        question: Natural-language question to explain.
        level: Target learning level (for example a school grade).
    """

    question: str
    level: str

    @classmethod
    def from_payload(cls, payload) -> "GenerationRequest":
        """Build a request from a JSON body.

        Accepts the wire names `user_question`/`user_level` as well as
        `question`/`level`.

        Raises:
            ValidationError: If the payload is not an object or either field
                is missing or blank.
        """
        if not isinstance(payload, dict):
            raise ValidationError("request body must be a JSON object")

        question = payload.get("user_question") or payload.get("question")
        level = payload.get("user_level") or payload.get("level")

        if not isinstance(question, str) or not question.strip():
            raise ValidationError("user_question and user_level are required")
        if not isinstance(level, str) or not level.strip():
            raise ValidationError("user_question and user_level are required")

        return cls(question=question.strip(), level=level.strip())

    def to_inputs(self) -> dict:
        return {"user_question": self.question, "user_level": self.level}


@dataclass(frozen=True)
class RunHandle:
    run_id: str
    task_id: str | None = None


@dataclass(frozen=True)
class InitiateResult:
    """Outcome of a generation start.

    `degraded` is `True` when the remote service was unavailable or not
    configured and `handle` carries a locally generated placeholder id.
    """

    handle: RunHandle
    degraded: bool = False
    message: str | None = None

    def to_dict(self) -> dict:
        body = {
            "workflow_run_id": self.handle.run_id,
            "task_id": self.handle.task_id,
            "degraded": self.degraded,
        }
        if self.message:
            body["message"] = self.message
        return body


class ResolutionStatus(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    SUCCEEDED_BUT_EMPTY = "succeeded_but_empty"
    SUCCEEDED_BUT_UNREADABLE = "succeeded_but_unreadable"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not ResolutionStatus.PENDING


@dataclass
class StatusResult:
    """Single status resolution for one run.

    `image_urls` is only populated for `SUCCEEDED`; the other terminal
    statuses carry a human-readable `message` instead.
    """

    run_id: str
    status: ResolutionStatus
    image_urls: list[str] = field(default_factory=list)
    message: str | None = None
    degraded: bool = False
    remote_status: str | None = None

    def to_dict(self) -> dict:
        body = {"status": self.status.value, "degraded": self.degraded}
        if self.status is ResolutionStatus.SUCCEEDED:
            body["imageUrls"] = list(self.image_urls)
        if self.message:
            body["message"] = self.message
        if self.remote_status:
            body["remote_status"] = self.remote_status
        return body


class EventType(str, Enum):
    START = "start"
    PLANNING = "planning"
    PLAN_COMPLETE = "plan_complete"
    PANEL_GENERATING = "panel_generating"
    PANEL_COMPLETE = "panel_complete"
    PANEL_ERROR = "panel_error"
    COMPLETE = "complete"
    ERROR = "error"


@dataclass(frozen=True)
class StreamEvent:
    type: EventType
    data: dict

    def to_sse(self) -> str:
        """Format as one server-sent-event frame."""
        payload = json.dumps(self.data, ensure_ascii=False)
        return f"event: {self.type.value}\ndata: {payload}\n\n"


@dataclass
class LibraryEntry:
    """Persisted record of one completed generation.

    Attributes:
        id: Store-assigned identifier (uuid4 hex).
        title: Display title, editable.
        question: Original question, editable.
        level: Learning level, editable.
        image_urls: Ordered panel image references, never empty on creation.
        run_id: Run identifier the entry was produced from.
        created_at: ISO-8601 UTC creation timestamp.
    """

    id: str
    title: str
    question: str
    level: str
    image_urls: list[str]
    run_id: str
    created_at: str

    @classmethod
    def new(
        cls,
        question: str,
        level: str,
        image_urls: list[str],
        run_id: str,
        title: str | None = None,
    ) -> "LibraryEntry":
        """Create a fresh entry, enforcing the non-empty image invariant."""
        if not image_urls:
            raise ValidationError("a library entry needs at least one image")
        return cls(
            id=uuid.uuid4().hex,
            title=make_title(title or question),
            question=question,
            level=level,
            image_urls=list(image_urls),
            run_id=run_id,
            created_at=datetime.now(timezone.utc).isoformat(),
        )

    def to_dict(self) -> dict:
        body = asdict(self)
        body["workflow_run_id"] = body.pop("run_id")
        return body
