"""Top-level refresh flow: cache check, fetch, validate, parse, persist, fall back."""
import math
import threading
from concurrent.futures import Future
from datetime import date
from enum import Enum
from typing import Callable, List, Optional

import structlog

from lotto_refresh.config.settings import Settings
from lotto_refresh.refresh.errors import ErrorKind, make_error, user_message
from lotto_refresh.refresh.fetcher import Fetcher, build_fetcher
from lotto_refresh.refresh.models import QualityReport, RefreshResult
from lotto_refresh.refresh.parser import DrawParser
from lotto_refresh.refresh.quality import generate_quality_report, requires_user_confirmation
from lotto_refresh.refresh.retry import RetryController
from lotto_refresh.refresh.synthetic import generate_draws
from lotto_refresh.refresh.validator import DataValidator
from lotto_refresh.storage.cache_manager import CacheManager
from lotto_refresh.storage.store import JsonFileStore

logger = structlog.get_logger()


class RefreshState(str, Enum):
    IDLE = "idle"
    CHECKING_CACHE = "checking_cache"
    FETCHING = "fetching"
    VALIDATING = "validating"
    PARSING = "parsing"
    CACHING = "caching"
    FALLBACK = "fallback"
    DONE = "done"
    FAILED = "failed"


StateListener = Callable[[RefreshState], None]
ConfirmCallback = Callable[[QualityReport], bool]


class RefreshOrchestrator:
    """
    Produces a RefreshResult for every call and never raises.

    Calls that arrive while a refresh is running wait for it and receive the
    same result instead of starting a second download. The joined result is
    the running call's, whatever the joining call asked for: a forced or
    quality-checked call that joins a plain refresh may get cached data and
    no quality report. A call made from inside the running refresh, for
    example by a state listener, is rejected with an unknown-kind error and
    served through the usual fallback.
    """

    def __init__(
        self,
        settings: Settings,
        fetcher: Fetcher,
        cache: CacheManager,
        validator: Optional[DataValidator] = None,
        parser: Optional[DrawParser] = None,
        retry: Optional[RetryController] = None,
        listeners: Optional[List[StateListener]] = None,
        today: Callable[[], date] = date.today
    ):
        """
        Initialize the orchestrator.

        Args:
            settings: Refresh switches (validation, cache and synthetic fallback)
            fetcher: Source of raw archive text
            cache: Cache manager, already loaded
            validator: Payload validator
            parser: Record parser
            retry: Retry loop around the fetcher
            listeners: Callables notified on every state transition
            today: Clock used for validation and synthetic data
        """
        self.settings = settings
        self.fetcher = fetcher
        self.cache = cache
        self.validator = validator or DataValidator(today=today)
        self.parser = parser or DrawParser.from_settings(settings)
        self.retry = retry or RetryController.from_settings(settings)
        self.listeners: List[StateListener] = list(listeners or [])
        self._today = today

        self.state = RefreshState.IDLE
        self._lock = threading.Lock()
        self._in_flight: Optional[Future] = None
        self._owner_thread: Optional[int] = None

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        fetcher: Optional[Fetcher] = None,
        **kwargs
    ) -> "RefreshOrchestrator":
        """Wire the default file store, cache and fetcher and load the cache."""
        store = JsonFileStore(settings.cache_dir, capacity_bytes=settings.storage_quota_bytes)
        cache = CacheManager(store, settings)
        cache.load()
        return cls(settings, fetcher or build_fetcher(settings), cache, **kwargs)

    def add_listener(self, listener: StateListener) -> None:
        self.listeners.append(listener)

    def refresh(self) -> RefreshResult:
        """Serve fresh cached data or download, validate and cache new data."""
        return self._coalesced(lambda: self._run(force=False))

    def force_refresh(self) -> RefreshResult:
        """
        Download even if the cached data is still fresh.

        If another refresh is already running, this call joins it and returns
        its result instead.
        """
        logger.info("forcing_cache_refresh")
        return self._coalesced(lambda: self._run(force=True))

    def refresh_with_quality_check(
        self,
        confirm: Optional[ConfirmCallback] = None,
        force: bool = False
    ) -> RefreshResult:
        """
        Refresh with a QualityReport attached to the result.

        When the report requires confirmation and ``confirm`` is given, the
        callback decides whether the downloaded data may be used. Its approval
        can override the validator's verdict but never a report that cannot
        proceed.

        Joining a refresh that is already running returns that refresh's
        result, which carries no report unless it was quality-checked too.

        Args:
            confirm: Callback receiving the report, returning True to accept
            force: Skip the freshness check

        Returns:
            RefreshResult with ``quality_report`` set when a download was graded
        """
        return self._coalesced(lambda: self._run(force=force, quality_check=True, confirm=confirm))

    def _coalesced(self, job: Callable[[], RefreshResult]) -> RefreshResult:
        with self._lock:
            future = self._in_flight
            owner = future is None
            if owner:
                future = Future()
                self._in_flight = future
                self._owner_thread = threading.get_ident()
            reentrant = not owner and self._owner_thread == threading.get_ident()

        if reentrant:
            # Called from a listener or confirm callback of the running refresh
            logger.warning("reentrant_refresh_rejected")
            error = make_error(
                ErrorKind.UNKNOWN,
                "Refresh already in progress",
                details="A refresh was requested from inside the running refresh"
            )
            return self._fallback_result(error, 0)

        if not owner:
            logger.info("joining_in_flight_refresh")
            return future.result()

        try:
            result = job()
        except BaseException as e:
            future.set_exception(e)
            raise
        else:
            future.set_result(result)
            return result
        finally:
            with self._lock:
                self._in_flight = None
                self._owner_thread = None

    def _set_state(self, state: RefreshState) -> None:
        self.state = state
        logger.debug("refresh_state_changed", state=state.value)
        for listener in self.listeners:
            try:
                listener(state)
            except Exception as e:
                logger.warning("state_listener_failed", state=state.value, error=str(e))

    def _run(
        self,
        force: bool,
        quality_check: bool = False,
        confirm: Optional[ConfirmCallback] = None
    ) -> RefreshResult:
        retry_attempts = 0
        report: Optional[QualityReport] = None

        try:
            logger.info("refresh_started", force=force, quality_check=quality_check)
            self._set_state(RefreshState.CHECKING_CACHE)

            if not force and self.cache.is_fresh():
                data = self.cache.get_cached_data()
                logger.info("using_fresh_cached_data", records=len(data))
                self._set_state(RefreshState.DONE)
                return RefreshResult(
                    success=True,
                    data=data,
                    from_cache=True,
                    data_age=self.cache.get_data_age(),
                    record_count=len(data),
                    retry_attempts=0,
                    fallback_used=False
                )

            self._set_state(RefreshState.FETCHING)
            outcome = self.retry.run(self.fetcher.fetch, self.fetcher.source)
            retry_attempts = outcome.attempts
            if not outcome.success:
                return self._fallback(outcome.error, retry_attempts)

            content = outcome.content

            if quality_check:
                self._set_state(RefreshState.VALIDATING)
                validation = self.validator.validate(content)
                report = generate_quality_report(validation, today=self._today)

                accepted = report.can_proceed and validation.is_valid
                rejected_by_user = False
                if confirm is not None and requires_user_confirmation(report):
                    approved = self._ask(confirm, report)
                    rejected_by_user = not approved
                    accepted = approved and report.can_proceed

                if not accepted:
                    message = (
                        "User rejected data due to quality concerns"
                        if rejected_by_user
                        else "Downloaded data failed quality validation"
                    )
                    logger.warning("downloaded_data_rejected", reason=message, score=report.overall_score)
                    error = make_error(
                        ErrorKind.VALIDATION,
                        message,
                        details="; ".join(w.message for w in report.warnings),
                        errors=validation.errors
                    )
                    return self._fallback(error, retry_attempts, report)

            elif self.settings.validate_data_quality:
                self._set_state(RefreshState.VALIDATING)
                validation = self.validator.validate(content)
                if not validation.is_valid:
                    logger.warning(
                        "downloaded_data_failed_validation",
                        errors=len(validation.errors),
                        score=validation.data_quality_score
                    )
                    error = make_error(
                        ErrorKind.VALIDATION,
                        "Downloaded data failed quality checks",
                        details="; ".join(validation.errors),
                        errors=validation.errors
                    )
                    return self._fallback(error, retry_attempts)

            self._set_state(RefreshState.PARSING)
            try:
                records = self.parser.parse(content)
            except Exception as e:
                logger.error("parsing_failed", error=str(e))
                error = make_error(ErrorKind.PROCESSING, "Failed to parse downloaded data", details=str(e))
                return self._fallback(error, retry_attempts, report)

            if not records:
                error = make_error(
                    ErrorKind.PROCESSING,
                    "No valid data records found after parsing",
                    details="The downloaded data contained no usable lottery results"
                )
                return self._fallback(error, retry_attempts, report)

            self._set_state(RefreshState.CACHING)
            self.cache.save(records)

            logger.info("refresh_completed", records=len(records), attempts=retry_attempts)
            self._set_state(RefreshState.DONE)
            return RefreshResult(
                success=True,
                data=records,
                from_cache=False,
                data_age=0.0,
                record_count=len(records),
                retry_attempts=retry_attempts,
                fallback_used=False,
                quality_report=report
            )

        except Exception as e:
            logger.error("refresh_failed_unexpectedly", error=str(e), exc_info=True)
            error = make_error(ErrorKind.UNKNOWN, "Unexpected error during data refresh", details=str(e))
            return self._fallback(error, retry_attempts, report)

    @staticmethod
    def _ask(confirm: ConfirmCallback, report: QualityReport) -> bool:
        logger.info("requesting_user_confirmation", score=report.overall_score)
        try:
            return bool(confirm(report))
        except Exception as e:
            logger.error("user_confirmation_failed", error=str(e))
            return False

    def _fallback(
        self,
        error,
        retry_attempts: int,
        report: Optional[QualityReport] = None
    ) -> RefreshResult:
        self._set_state(RefreshState.FALLBACK)
        result = self._fallback_result(error, retry_attempts, report)
        self._set_state(RefreshState.DONE if result.success else RefreshState.FAILED)
        return result

    def _fallback_result(
        self,
        error,
        retry_attempts: int,
        report: Optional[QualityReport] = None
    ) -> RefreshResult:
        """Cached data, then synthetic data, then a failed result. Emits no state changes."""
        message = user_message(error)

        try:
            cached = self.cache.get_cached_data()
            data_age = self.cache.get_data_age()
        except Exception as e:
            logger.error("cache_unavailable_for_fallback", error=str(e))
            cached, data_age = [], math.inf

        if self.settings.fallback_to_cached_data and cached:
            logger.warning(
                "using_cached_data_as_fallback",
                records=len(cached),
                error_kind=error.kind.value
            )
            return RefreshResult(
                success=True,
                data=cached,
                error=message,
                error_details=error,
                from_cache=True,
                data_age=data_age,
                record_count=len(cached),
                retry_attempts=retry_attempts,
                fallback_used=True,
                quality_report=report
            )

        if self.settings.allow_synthetic_fallback:
            synthetic = generate_draws(today=self._today())
            return RefreshResult(
                success=True,
                data=synthetic,
                error=message,
                error_details=error,
                from_cache=False,
                data_age=math.inf,
                record_count=len(synthetic),
                retry_attempts=retry_attempts,
                fallback_used=True,
                synthetic=True,
                quality_report=report
            )

        logger.error("refresh_failed_without_fallback", error_kind=error.kind.value)
        return RefreshResult(
            success=False,
            error=message,
            error_details=error,
            from_cache=False,
            data_age=data_age,
            record_count=0,
            retry_attempts=retry_attempts,
            fallback_used=False,
            quality_report=report
        )
