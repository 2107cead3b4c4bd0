"""Exception taxonomy shared by orchestration, storage and API adapters.

Mapping used by `manga_tutor.api.http_api`:
    - `ValidationError` -> HTTP 400
    - `ForbiddenError` -> HTTP 403
    - `NotFoundError` -> HTTP 404
    - `RemoteServiceError` -> remote status code, or HTTP 502
    - `GenerationTimeoutError` -> raised to terminal callers only

`PersistenceError` never reaches a caller of the generation flow; the
orchestration layer logs it and keeps the best available result.
"""


class MangaTutorError(Exception):
    """Base class for all application errors."""


class ValidationError(MangaTutorError):
    """Raised when a request payload fails field validation."""


class NotFoundError(MangaTutorError):
    """Raised when a library entry does not exist."""


class PersistenceError(MangaTutorError):
    """Raised when the object store or the relational store fails."""


class RemoteServiceError(MangaTutorError):
    """Raised when the remote workflow service fails or is unreachable.

    Attributes:
        status_code: Upstream HTTP status, or `None` for transport failures.
    """

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class NoRunIdError(RemoteServiceError):
    """Raised when a started run never announced its run identifier."""


class GenerationTimeoutError(MangaTutorError):
    """Raised by the caller-side poll loop after its attempt ceiling."""


class ForbiddenError(MangaTutorError):
    """Raised when a request targets a resource outside the allow-list."""
