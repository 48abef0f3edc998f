"""Failure classification and the bounded retry loop around a fetch."""
import random
import time
from dataclasses import dataclass
from typing import Callable, Optional

import requests
import structlog
from tenacity import RetryCallState, Retrying, stop_after_attempt

from lotto_refresh.config.settings import Settings
from lotto_refresh.refresh.errors import (
    EmptyContentError,
    ErrorKind,
    FetchTimeoutError,
    make_error,
)

logger = structlog.get_logger()

SERVER_STATUS_CODES = (500, 502, 503, 504)

# Base delay multiplier per kind; kinds not listed use 1
KIND_DELAY_MULTIPLIER = {
    ErrorKind.TIMEOUT: 2.0,
    ErrorKind.SERVER: 3.0,
    ErrorKind.CORS: 1.5,
}
MAX_JITTER_RATIO = 0.3


def classify(error: BaseException) -> ErrorKind:
    """
    Assign an ErrorKind to a failed fetch.

    Known exception types are checked first; anything else is classified by
    substrings of its lowercased message, in priority order.

    Args:
        error: Exception raised by the fetch

    Returns:
        ErrorKind for the failure
    """
    if isinstance(error, (FetchTimeoutError, requests.Timeout, TimeoutError)):
        return ErrorKind.TIMEOUT
    if isinstance(error, requests.HTTPError) and error.response is not None:
        if error.response.status_code in SERVER_STATUS_CODES:
            return ErrorKind.SERVER
    if isinstance(error, (requests.ConnectionError, ConnectionError)):
        return ErrorKind.NETWORK

    message = str(error).lower()
    if "timeout" in message or "timed out" in message or "aborted" in message:
        return ErrorKind.TIMEOUT
    if "cors" in message or "cross-origin" in message:
        return ErrorKind.CORS
    if any(str(code) in message for code in SERVER_STATUS_CODES):
        return ErrorKind.SERVER
    if "network" in message or "fetch" in message or "connection" in message:
        return ErrorKind.NETWORK
    return ErrorKind.UNKNOWN


def backoff_delay(
    attempt: int,
    kind: ErrorKind,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    rng: Callable[[], float] = random.random
) -> float:
    """
    Seconds to wait after a failed attempt.

    Args:
        attempt: 1-based number of the attempt that just failed
        kind: Classified kind of its failure
        base_delay: Delay before kind multiplier and exponent
        max_delay: Upper bound including jitter
        rng: Source of uniform [0, 1) values for jitter

    Returns:
        Delay in seconds
    """
    scaled = base_delay * KIND_DELAY_MULTIPLIER.get(kind, 1.0)
    exponential = scaled * 2 ** (attempt - 1)
    jitter = rng() * MAX_JITTER_RATIO * exponential
    return min(exponential + jitter, max_delay)


@dataclass
class FetchOutcome:
    """What the retry loop produced: content, or the classified last failure."""

    content: Optional[str]
    attempts: int
    error: Optional[object] = None
    last_exception: Optional[BaseException] = None

    @property
    def success(self) -> bool:
        return self.content is not None


class RetryController:
    """Runs a fetch up to ``max_retries`` times with kind-aware backoff."""

    def __init__(
        self,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        request_timeout: float = 15.0,
        sleep: Callable[[float], None] = time.sleep,
        rng: Callable[[], float] = random.random
    ):
        self.max_retries = max(1, max_retries)
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.request_timeout = request_timeout
        self._sleep = sleep
        self._rng = rng

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs) -> "RetryController":
        return cls(
            max_retries=settings.max_retries,
            base_delay=settings.retry_delay,
            max_delay=settings.max_backoff,
            request_timeout=settings.request_timeout,
            **kwargs
        )

    def run(self, fetch: Callable[[float], str], source: str = "data source") -> FetchOutcome:
        """
        Call ``fetch(timeout)`` until it returns non-empty text or attempts run out.

        Args:
            fetch: Fetch capability; receives the per-attempt timeout in seconds
            source: Name used in logs and error details

        Returns:
            FetchOutcome with either the content or a retryable RefreshError
        """
        attempts = 0

        def attempt() -> str:
            nonlocal attempts
            attempts += 1
            logger.info("download_attempt", attempt=attempts, max_attempts=self.max_retries, source=source)
            content = fetch(self.request_timeout)
            if not content or not content.strip():
                raise EmptyContentError(source)
            return content

        retrying = Retrying(
            stop=stop_after_attempt(self.max_retries),
            wait=self._wait,
            sleep=self._sleep,
            after=self._log_failed_attempt,
            before_sleep=self._log_sleep,
            reraise=True
        )

        try:
            content = retrying(attempt)
        except Exception as e:
            kind = classify(e)
            logger.error(
                "download_failed",
                attempts=attempts,
                error_kind=kind.value,
                error=str(e)
            )
            error = make_error(
                kind,
                f"All {self.max_retries} download attempts failed",
                details=f"Last error: {e}",
                retryable=True
            )
            return FetchOutcome(content=None, attempts=attempts, error=error, last_exception=e)

        logger.info("download_successful", attempt=attempts, size=len(content))
        return FetchOutcome(content=content, attempts=attempts)

    def _wait(self, retry_state: RetryCallState) -> float:
        kind = classify(retry_state.outcome.exception())
        return backoff_delay(
            retry_state.attempt_number, kind, self.base_delay, self.max_delay, self._rng
        )

    @staticmethod
    def _log_sleep(retry_state: RetryCallState) -> None:
        logger.info("waiting_before_retry", delay_seconds=round(retry_state.next_action.sleep, 3))

    @staticmethod
    def _log_failed_attempt(retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception()
        logger.warning(
            "download_attempt_failed",
            attempt=retry_state.attempt_number,
            error_kind=classify(error).value,
            error=str(error)
        )
