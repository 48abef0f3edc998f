import threading
from datetime import datetime
from typing import List, Optional

import pytest
import requests

from conftest import HEADER, TODAY, Clock, build_csv, build_records

from lotto_refresh.refresh.errors import ContentFailure, ErrorKind, TransientFailure, UnknownFailure
from lotto_refresh.refresh.models import QualityReport, RefreshResult
from lotto_refresh.refresh.orchestrator import RefreshOrchestrator, RefreshState
from lotto_refresh.refresh.retry import RetryController
from lotto_refresh.storage.cache_manager import CacheManager
from lotto_refresh.storage.store import MemoryStore

THREE_ROWS = (
    "DrawNumber,Date,Num1,Num2,Num3,Num4,Num5,Num6,Bonus,Extra1,Extra2\n"
    "5300,16/07/2024,3,14,22,25,33,37,5,,\n"
    "5299,13/07/2024,1,8,15,28,31,36,2,,\n"
    "5298,10/07/2024,7,12,19,24,29,35,4,,"
)


class FakeFetcher:
    source = "fake-archive"

    def __init__(self, content: Optional[str] = None, error: Optional[Exception] = None):
        self.content = content
        self.error = error
        self.calls = 0

    def fetch(self, timeout: float) -> str:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.content


class BrokenParser:
    def parse(self, raw_text: str):
        raise ValueError("column mapping exploded")


class FailingSaveCache(CacheManager):
    def save(self, records):
        raise RuntimeError("disk on fire")


def _orchestrator(settings, fetcher, cache=None, clock=None, **kwargs) -> RefreshOrchestrator:
    clock = clock or Clock(datetime(2024, 7, 20, 12, 0))
    cache = cache or CacheManager(MemoryStore(), settings, clock=clock)
    return RefreshOrchestrator(
        settings,
        fetcher,
        cache,
        retry=RetryController.from_settings(settings, sleep=lambda s: None),
        today=lambda: TODAY,
        **kwargs
    )


def _stale_cache(settings, records: int = 5, hours_old: float = 25) -> CacheManager:
    clock = Clock(datetime(2024, 7, 19, 11, 0))
    cache = CacheManager(MemoryStore(), settings, clock=clock)
    cache.save(build_records(records, start=5200))
    clock.advance(hours_old)
    return cache


def test_failure_without_cache_reports_attempts(settings) -> None:
    fetcher = FakeFetcher(error=requests.ConnectionError("connection refused"))

    result = _orchestrator(settings, fetcher).refresh()

    assert not result.success
    assert not result.from_cache
    assert not result.fallback_used
    assert result.record_count == 0
    assert result.retry_attempts == 3
    assert result.retries == 2
    assert fetcher.calls == 3
    assert isinstance(result.error_details, TransientFailure)
    assert result.error_details.kind == ErrorKind.NETWORK
    assert result.error.startswith("Unable to connect to the lottery data source")


def test_network_failure_falls_back_to_stale_cache(settings) -> None:
    fetcher = FakeFetcher(error=requests.ConnectionError("connection refused"))

    result = _orchestrator(settings, fetcher, cache=_stale_cache(settings)).refresh()

    assert result.success
    assert result.from_cache
    assert result.fallback_used
    assert result.record_count == 5
    assert result.data_age == 25.0
    assert "Unable to connect" in result.error
    assert result.error_details.retryable


def test_fresh_cache_skips_download(settings) -> None:
    cache = _stale_cache(settings, hours_old=2)
    fetcher = FakeFetcher(content=build_csv(60))

    result = _orchestrator(settings, fetcher, cache=cache).refresh()

    assert result.success
    assert result.from_cache
    assert not result.fallback_used
    assert result.retry_attempts == 0
    assert result.record_count == 5
    assert fetcher.calls == 0


def test_force_refresh_ignores_fresh_cache(settings) -> None:
    cache = _stale_cache(settings, hours_old=2)
    fetcher = FakeFetcher(content=build_csv(60))

    result = _orchestrator(settings, fetcher, cache=cache).force_refresh()

    assert fetcher.calls == 1
    assert not result.from_cache
    assert result.record_count == 60


def test_successful_refresh_updates_cache(settings) -> None:
    fetcher = FakeFetcher(content=build_csv(60))
    orchestrator = _orchestrator(settings, fetcher)

    result = orchestrator.refresh()

    assert result.success
    assert not result.from_cache
    assert not result.fallback_used
    assert result.record_count == 60
    assert result.data_age == 0.0
    assert result.retry_attempts == 1
    assert result.error is None
    assert result.data[0].draw_number == 5300
    assert orchestrator.cache.is_fresh()
    assert orchestrator.state == RefreshState.DONE


def test_listeners_see_every_transition(settings) -> None:
    states: List[RefreshState] = []
    orchestrator = _orchestrator(settings, FakeFetcher(content=build_csv(60)), listeners=[states.append])

    orchestrator.refresh()

    assert states == [
        RefreshState.CHECKING_CACHE,
        RefreshState.FETCHING,
        RefreshState.VALIDATING,
        RefreshState.PARSING,
        RefreshState.CACHING,
        RefreshState.DONE,
    ]


def test_failing_listener_does_not_break_refresh(settings) -> None:
    def listener(state: RefreshState) -> None:
        raise RuntimeError("ui gone")

    result = _orchestrator(settings, FakeFetcher(content=build_csv(60)), listeners=[listener]).refresh()

    assert result.success


def test_too_small_payload_falls_back(settings) -> None:
    fetcher = FakeFetcher(content=THREE_ROWS)

    result = _orchestrator(settings, fetcher, cache=_stale_cache(settings)).refresh()

    assert result.success
    assert result.fallback_used
    assert result.record_count == 5
    assert isinstance(result.error_details, ContentFailure)
    assert result.error_details.kind == ErrorKind.VALIDATION
    assert result.error_details.retryable is False
    assert "too small" in result.error_details.details


def test_invalid_payload_without_cache_fails(settings) -> None:
    result = _orchestrator(settings, FakeFetcher(content=THREE_ROWS)).refresh()

    assert not result.success
    assert result.retry_attempts == 1
    assert result.error == "The downloaded data appears to be incomplete or corrupted."


def test_validation_can_be_disabled(settings) -> None:
    settings.validate_data_quality = False

    result = _orchestrator(settings, FakeFetcher(content=THREE_ROWS)).refresh()

    assert result.success
    assert result.record_count == 3


def test_empty_parse_result_is_processing_error(settings) -> None:
    settings.validate_data_quality = False
    payload = "\n".join([HEADER, "junk,row", "more,junk"])

    result = _orchestrator(settings, FakeFetcher(content=payload)).refresh()

    assert not result.success
    assert result.error_details.kind == ErrorKind.PROCESSING
    assert result.error_details.message == "No valid data records found after parsing"


def test_parser_exception_is_processing_error(settings) -> None:
    result = _orchestrator(
        settings,
        FakeFetcher(content=build_csv(60)),
        cache=_stale_cache(settings),
        parser=BrokenParser()
    ).refresh()

    assert result.fallback_used
    assert result.error_details.kind == ErrorKind.PROCESSING
    assert result.error_details.details == "column mapping exploded"


def test_unexpected_exception_becomes_unknown_error(settings) -> None:
    cache = FailingSaveCache(MemoryStore(), settings)

    result = _orchestrator(settings, FakeFetcher(content=build_csv(60)), cache=cache).refresh()

    assert not result.success
    assert isinstance(result.error_details, UnknownFailure)
    assert result.error_details.details == "disk on fire"
    assert result.error_details.retryable is False
    assert result.retry_attempts == 1


def test_cache_fallback_can_be_disabled(settings) -> None:
    settings.fallback_to_cached_data = False
    fetcher = FakeFetcher(error=requests.ConnectionError("connection refused"))

    result = _orchestrator(settings, fetcher, cache=_stale_cache(settings)).refresh()

    assert not result.success
    assert result.record_count == 0
    assert result.data_age == 25.0


def test_synthetic_fallback_when_enabled(settings) -> None:
    settings.allow_synthetic_fallback = True
    fetcher = FakeFetcher(error=requests.ConnectionError("connection refused"))

    result = _orchestrator(settings, fetcher).refresh()

    assert result.success
    assert result.synthetic
    assert result.fallback_used
    assert not result.from_cache
    assert result.record_count == 50
    assert result.error is not None


def test_cache_takes_precedence_over_synthetic_data(settings) -> None:
    settings.allow_synthetic_fallback = True
    fetcher = FakeFetcher(error=requests.ConnectionError("connection refused"))

    result = _orchestrator(settings, fetcher, cache=_stale_cache(settings)).refresh()

    assert result.from_cache
    assert not result.synthetic


def test_concurrent_calls_share_one_download(settings) -> None:
    entered = threading.Event()
    release = threading.Event()

    class BlockingFetcher(FakeFetcher):
        def fetch(self, timeout: float) -> str:
            entered.set()
            release.wait(5)
            return super().fetch(timeout)

    fetcher = BlockingFetcher(content=build_csv(60))
    orchestrator = _orchestrator(settings, fetcher)
    results = {}

    first = threading.Thread(target=lambda: results.setdefault("first", orchestrator.refresh()))
    second = threading.Thread(target=lambda: results.setdefault("second", orchestrator.refresh()))

    first.start()
    assert entered.wait(5)
    second.start()
    second.join(0.2)
    assert second.is_alive()

    release.set()
    first.join(5)
    second.join(5)

    assert fetcher.calls == 1
    assert results["first"] == results["second"]
    assert not results["second"].from_cache


def test_refresh_from_inside_a_refresh_is_rejected(settings) -> None:
    orchestrator = _orchestrator(settings, FakeFetcher(content=build_csv(60)))
    nested: List[RefreshResult] = []

    def listener(state: RefreshState) -> None:
        if state == RefreshState.FETCHING:
            nested.append(orchestrator.refresh())

    orchestrator.add_listener(listener)
    results = {}
    worker = threading.Thread(target=lambda: results.setdefault("outer", orchestrator.refresh()), daemon=True)
    worker.start()
    worker.join(5)

    assert not worker.is_alive()
    assert results["outer"].success
    assert results["outer"].record_count == 60
    assert len(nested) == 1
    assert not nested[0].success
    assert nested[0].error_details.kind == ErrorKind.UNKNOWN
    assert nested[0].error_details.message == "Refresh already in progress"
    assert orchestrator.state == RefreshState.DONE


def test_joining_call_receives_the_running_result(settings) -> None:
    entered = threading.Event()
    release = threading.Event()

    class BlockingFetcher(FakeFetcher):
        def fetch(self, timeout: float) -> str:
            entered.set()
            release.wait(5)
            return super().fetch(timeout)

    fetcher = BlockingFetcher(content=build_csv(60))
    orchestrator = _orchestrator(settings, fetcher)
    results = {}

    plain = threading.Thread(target=lambda: results.setdefault("plain", orchestrator.refresh()), daemon=True)
    checked = threading.Thread(
        target=lambda: results.setdefault("checked", orchestrator.refresh_with_quality_check()), daemon=True
    )

    plain.start()
    assert entered.wait(5)
    checked.start()
    checked.join(0.2)
    assert checked.is_alive()

    release.set()
    plain.join(5)
    checked.join(5)

    assert fetcher.calls == 1
    assert results["checked"] == results["plain"]
    assert results["checked"].quality_report is None


def test_quality_check_attaches_report(settings) -> None:
    asked: List[QualityReport] = []

    def confirm(report: QualityReport) -> bool:
        asked.append(report)
        return True

    result = _orchestrator(settings, FakeFetcher(content=build_csv(60))).refresh_with_quality_check(confirm)

    assert result.success
    assert result.quality_report is not None
    assert result.quality_report.overall_score == 100
    assert asked == []


def _doubtful_payload() -> str:
    return build_csv(10) + "\n5200,01/01/2024,5,5,12,18,25,33,3"


def test_quality_check_asks_for_confirmation(settings) -> None:
    asked: List[QualityReport] = []

    def confirm(report: QualityReport) -> bool:
        asked.append(report)
        return True

    result = _orchestrator(settings, FakeFetcher(content=_doubtful_payload())).refresh_with_quality_check(confirm)

    assert len(asked) == 1
    assert result.success
    assert not result.from_cache
    assert result.record_count == 10
    assert result.quality_report.requires_confirmation


@pytest.mark.parametrize("answer", [False, "raise"])
def test_quality_check_rejection_falls_back(settings, answer) -> None:
    def confirm(report: QualityReport) -> bool:
        if answer == "raise":
            raise RuntimeError("dialog closed")
        return answer

    result = _orchestrator(
        settings, FakeFetcher(content=_doubtful_payload()), cache=_stale_cache(settings)
    ).refresh_with_quality_check(confirm)

    assert result.fallback_used
    assert result.record_count == 5
    assert result.error_details.message == "User rejected data due to quality concerns"
    assert result.quality_report is not None


def test_quality_check_without_callback_uses_validator_verdict(settings) -> None:
    result = _orchestrator(settings, FakeFetcher(content=THREE_ROWS)).refresh_with_quality_check()

    assert not result.success
    assert result.error_details.message == "Downloaded data failed quality validation"
    assert result.quality_report.summary.total_issues > 0
