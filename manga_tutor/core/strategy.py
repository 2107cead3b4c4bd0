"""Generation strategy selection.

The polling and streaming paths are two variants of one capability. Each
variant is a small tagged object (`name`) with a `start(request)` method:

    - `PollingStrategy.start` -> `InitiateResult`; the caller then polls
      `StatusResolver.resolve` with the returned handle.
    - `StreamingStrategy.start` -> iterator of `StreamEvent`.

Both end with the same `LibraryEntry` shape in the library store.
"""

from dataclasses import dataclass, field
from typing import Iterator, Union

from manga_tutor.core.initiator import GenerationInitiator
from manga_tutor.core.status_resolver import StatusResolver
from manga_tutor.core.streaming import StreamingResolver
from manga_tutor.core.types import GenerationRequest, InitiateResult, StreamEvent
from manga_tutor.workflow.provider_config import validate_generation_mode


@dataclass(frozen=True)
class PollingStrategy:
    initiator: GenerationInitiator
    resolver: StatusResolver
    name: str = field(default="polling", init=False)

    def start(self, request: GenerationRequest) -> InitiateResult:
        return self.initiator.initiate(request)


@dataclass(frozen=True)
class StreamingStrategy:
    resolver: StreamingResolver
    name: str = field(default="streaming", init=False)

    def start(self, request: GenerationRequest) -> Iterator[StreamEvent]:
        return self.resolver.stream(request)


GenerationStrategy = Union[PollingStrategy, StreamingStrategy]


def select_strategy(
    mode: str,
    initiator: GenerationInitiator,
    resolver: StatusResolver,
    streaming_resolver: StreamingResolver,
) -> GenerationStrategy:
    """Pick the variant named by `mode` (`polling` or `streaming`).

    Raises:
        ValueError: For unknown mode names.
    """
    if validate_generation_mode(mode) == "polling":
        return PollingStrategy(initiator=initiator, resolver=resolver)
    return StreamingStrategy(resolver=streaming_resolver)
