"""Error taxonomy for imagecraft.

Every failure carried inside a ``Failure`` result is one of these classes. The
class decides how the pipeline reacts:

- ``ValidationError`` is terminal and is never retried.
- ``CollaboratorError`` is always absorbed by the nearest fallback layer
  (orchestrator fallback, then processor fallback, then per-item exclusion in
  a batch) and only surfaces when every applicable fallback has failed too.
- ``ProcessingTimeoutError`` is a ``CollaboratorError`` raised only by the
  two-stage processor's timeout race.
- ``AggregateFailure`` is reported only when every item of a batch failed.
"""

from typing import Any


class ImagecraftError(Exception):
    """Base class for all imagecraft errors.

    Attributes
    ----------
    code : str
        Machine-readable error code
    suggestion : str | None
        Optional hint for the caller on how to recover
    details : dict[str, Any]
        Structured context about the failure
    """

    code = "IMAGECRAFT_ERROR"

    def __init__(
        self,
        message: str,
        *,
        suggestion: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.suggestion = suggestion
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.suggestion:
            data["suggestion"] = self.suggestion
        if self.details:
            data["details"] = self.details
        return data


class ValidationError(ImagecraftError):
    """Malformed input or configuration. Terminal."""

    code = "VALIDATION_ERROR"


class CollaboratorError(ImagecraftError):
    """A template engine, enhancement engine or generation client failed."""

    code = "COLLABORATOR_ERROR"


class ProcessingTimeoutError(CollaboratorError):
    """The two-stage workflow did not finish within its time budget."""

    code = "PROCESSING_TIMEOUT"


class AggregateFailure(ImagecraftError):
    """Every item of a batch failed.

    The per-item failures are kept in ``failures`` in requirement order.
    """

    code = "AGGREGATE_FAILURE"

    def __init__(self, message: str, failures: list[ImagecraftError], **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.failures = failures


class SessionSealedError(ImagecraftError):
    """A sealed processing session was mutated."""

    code = "SESSION_SEALED"


def as_collaborator_error(error: BaseException, context: str) -> ImagecraftError:
    """Normalize an arbitrary exception raised by a collaborator.

    Imagecraft errors pass through unchanged; anything else is wrapped in a
    ``CollaboratorError`` that names where it happened.
    """
    if isinstance(error, ImagecraftError):
        return error
    return CollaboratorError(
        f"{context}: {error}",
        details={"exception_type": type(error).__name__},
    )
