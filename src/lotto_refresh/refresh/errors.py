"""Failure taxonomy for the data refresh pipeline.

A refresh never raises to its caller. Every failure is converted into one of
the ``RefreshError`` variants below and attached to the result. The variant is
selected by ``kind``:

- transport problems (network, timeout, cors, server) are always retryable and
  carry a retry hint in seconds,
- content problems (validation, processing) are never retryable,
- unknown failures are not retryable unless they were the last error of an
  exhausted download.
"""
import math
from enum import Enum
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class ErrorKind(str, Enum):
    NETWORK = "network"
    TIMEOUT = "timeout"
    CORS = "cors"
    SERVER = "server"
    VALIDATION = "validation"
    PROCESSING = "processing"
    UNKNOWN = "unknown"


TRANSIENT_KINDS = (ErrorKind.NETWORK, ErrorKind.TIMEOUT, ErrorKind.CORS, ErrorKind.SERVER)
CONTENT_KINDS = (ErrorKind.VALIDATION, ErrorKind.PROCESSING)

_RETRY_HINT_SECONDS = {
    ErrorKind.NETWORK: 30,
    ErrorKind.TIMEOUT: 60,
    ErrorKind.CORS: 120,
    ErrorKind.SERVER: 300,
}
_DEFAULT_RETRY_HINT = 60

_USER_MESSAGES = {
    ErrorKind.NETWORK: "Unable to connect to the lottery data source. Please check your internet connection.",
    ErrorKind.VALIDATION: "The downloaded data appears to be incomplete or corrupted.",
    ErrorKind.PROCESSING: "There was an issue processing the lottery data.",
    ErrorKind.TIMEOUT: "The request took too long to complete. The server may be busy.",
    ErrorKind.CORS: "Access to the lottery data source is currently restricted.",
    ErrorKind.SERVER: "The lottery data server is currently unavailable.",
    ErrorKind.UNKNOWN: "An unexpected error occurred while refreshing data.",
}


class FetchTimeoutError(Exception):
    """Raised when a single fetch attempt exceeds its time box."""

    def __init__(self, source: str, timeout_seconds: float) -> None:
        self.source = source
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Request timeout - {source} took longer than {timeout_seconds:.1f}s to respond"
        )


class EmptyContentError(Exception):
    """Raised when a fetch succeeds but returns no usable text."""

    def __init__(self, source: str) -> None:
        self.source = source
        super().__init__(f"Empty or invalid CSV content received from {source}")


class _FailureBase(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    message: str
    details: Optional[str] = None


class TransientFailure(_FailureBase):
    kind: Literal[ErrorKind.NETWORK, ErrorKind.TIMEOUT, ErrorKind.CORS, ErrorKind.SERVER]
    retryable: Literal[True] = True
    estimated_retry_time: int


class ContentFailure(_FailureBase):
    kind: Literal[ErrorKind.VALIDATION, ErrorKind.PROCESSING]
    retryable: Literal[False] = False
    errors: List[str] = Field(default_factory=list)


class UnknownFailure(_FailureBase):
    kind: Literal[ErrorKind.UNKNOWN] = ErrorKind.UNKNOWN
    retryable: bool = False
    estimated_retry_time: Optional[int] = None


RefreshError = Annotated[
    Union[TransientFailure, ContentFailure, UnknownFailure],
    Field(discriminator="kind"),
]


def estimated_retry_time(kind: ErrorKind) -> int:
    """Retry hint in seconds surfaced to the caller, independent of the backoff actually used."""
    return _RETRY_HINT_SECONDS.get(ErrorKind(kind), _DEFAULT_RETRY_HINT)


def make_error(
    kind: ErrorKind,
    message: str,
    details: Optional[str] = None,
    retryable: bool = False,
    errors: Optional[List[str]] = None,
) -> Union[TransientFailure, ContentFailure, UnknownFailure]:
    """
    Build the variant matching ``kind``.

    Args:
        kind: Classified failure kind
        message: Short technical description
        details: Underlying error text
        retryable: Only honoured for unknown failures; other kinds have a fixed flag
        errors: Individual validation errors for content failures

    Returns:
        A frozen RefreshError variant
    """
    kind = ErrorKind(kind)
    if kind in TRANSIENT_KINDS:
        return TransientFailure(
            kind=kind,
            message=message,
            details=details,
            estimated_retry_time=estimated_retry_time(kind),
        )
    if kind in CONTENT_KINDS:
        return ContentFailure(kind=kind, message=message, details=details, errors=list(errors or []))
    return UnknownFailure(
        message=message,
        details=details,
        retryable=retryable,
        estimated_retry_time=estimated_retry_time(kind) if retryable else None,
    )


def user_message(error: Union[TransientFailure, ContentFailure, UnknownFailure]) -> str:
    """Human-readable message for an error, with a retry hint when one applies."""
    message = _USER_MESSAGES.get(error.kind, _USER_MESSAGES[ErrorKind.UNKNOWN])

    retry_time = getattr(error, "estimated_retry_time", None)
    if error.retryable and retry_time:
        if retry_time < 60:
            time_text = f"{retry_time} seconds"
        else:
            time_text = f"{math.ceil(retry_time / 60)} minutes"
        message += f" You can try again in approximately {time_text}."

    return message
