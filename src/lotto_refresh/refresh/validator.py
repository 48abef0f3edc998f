"""Structural, semantic and statistical validation of raw draw payloads."""
from collections import Counter
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, List, Optional, Set

import structlog
from bs4 import BeautifulSoup

from lotto_refresh.refresh.dates import parse_draw_date
from lotto_refresh.refresh.models import (
    BONUS_MAX,
    BONUS_MIN,
    MAIN_NUMBER_MAX,
    MAIN_NUMBER_MIN,
    NUMBERS_PER_DRAW,
    DateRange,
    ValidationMetrics,
    ValidationOutcome,
)
from lotto_refresh.refresh.parser import MIN_COLUMNS

logger = structlog.get_logger()

# Aliases per required column, matched as substrings of the normalized header
REQUIRED_COLUMNS = [
    ("drawnumber", ("drawnumber", "draw", "drawno", "number")),
    ("date", ("date", "drawdate", "datum")),
    ("num1", ("num1", "1", "number1", "ball1")),
    ("num2", ("num2", "2", "number2", "ball2")),
    ("num3", ("num3", "3", "number3", "ball3")),
    ("num4", ("num4", "4", "number4", "ball4")),
    ("num5", ("num5", "5", "number5", "ball5")),
    ("num6", ("num6", "6", "number6", "ball6")),
    ("bonus", ("bonus", "strong", "strongnumber", "extra")),
]

CRITICAL_ERROR_MARKERS = (
    "missing required columns",
    "content is empty",
    "html content",
    "too many consecutive",
)

MAX_CONSECUTIVE_ERRORS = 5
MIN_VALID_RECORDS = 5
MIN_QUALITY_SCORE = 50
HIGH_DRAW_NUMBER = 10000
EARLIEST_DRAW_YEAR = 1975
MIN_NUMBER_DIVERSITY = 25
MIN_BONUS_DIVERSITY = 5

# Thirds of the main number range used by the same-range pattern check
LOW_RANGE_MAX = 12
MID_RANGE_MAX = 25


def looks_like_html(text: str) -> bool:
    """True when the text is an HTML page rather than delimited data."""
    lowered = text.lower()
    return "<!doctype" in lowered or "<html" in lowered


@dataclass
class _Tally:
    """Running counters shared by the row checks of one validation call."""

    total_rows: int = 0
    valid_rows: int = 0
    invalid_rows: int = 0
    seen_draw_numbers: Set[int] = field(default_factory=set)
    number_frequency: Counter = field(default_factory=Counter)
    bonus_frequency: Counter = field(default_factory=Counter)
    suspicious_patterns: List[str] = field(default_factory=list)
    checked_rows: int = 0
    flagged_rows: int = 0


@dataclass
class _RowCheck:
    is_valid: bool = True
    suspicious: bool = False
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    penalty: int = 0
    draw_number: Optional[int] = None
    draw_date: Optional[date] = None

    def fail(self, message: str, penalty: int) -> None:
        self.errors.append(message)
        self.penalty += penalty
        self.is_valid = False

    def warn(self, message: str, penalty: int) -> None:
        self.warnings.append(message)
        self.penalty += penalty


class DataValidator:
    """Grades a raw payload and decides whether it may replace the cached dataset."""

    def __init__(self, today: Callable[[], date] = date.today):
        """
        Initialize the validator.

        Args:
            today: Clock used for freshness and future-date checks
        """
        self._today = today

    def validate(self, raw_text: str) -> ValidationOutcome:
        """
        Validate raw CSV text.

        Args:
            raw_text: Payload as received from the data source

        Returns:
            ValidationOutcome with errors, warnings, score and metrics
        """
        errors: List[str] = []
        warnings: List[str] = []
        tally = _Tally()

        if not raw_text or not raw_text.strip():
            errors.append("CSV content is empty")
            return self._outcome(False, errors, warnings, 0, None, False, 0, tally, DateRange())

        if looks_like_html(raw_text):
            message = "Received HTML content instead of CSV data"
            title = self._html_title(raw_text)
            if title:
                message += f" (page title: {title})"
            errors.append(message)
            return self._outcome(False, errors, warnings, 0, None, False, 50, tally, DateRange())

        score = 100
        lines = [line for line in raw_text.splitlines() if line.strip()]
        tally.total_rows = len(lines) - 1

        if len(lines) < 2:
            errors.append("CSV must contain at least a header and one data row")
            return self._outcome(False, errors, warnings, 0, None, False, 50, tally, DateRange())

        header_errors, header_warnings = self.validate_header(lines[0])
        has_required_columns = not header_errors
        if header_errors:
            errors.extend(header_errors)
            score -= 30
        if header_warnings:
            warnings.extend(header_warnings)
            score -= 5

        dates: List[date] = []
        draw_numbers: List[int] = []
        consecutive_errors = 0

        for row_number, line in enumerate(lines[1:], 2):
            check = self._validate_row(line.strip(), row_number, tally)

            # Parsed ids and dates count even when another field broke the row
            tally.checked_rows += 1
            if check.suspicious or not check.is_valid:
                tally.flagged_rows += 1
            if check.draw_date:
                dates.append(check.draw_date)
            if check.draw_number:
                draw_numbers.append(check.draw_number)

            if check.is_valid:
                tally.valid_rows += 1
                consecutive_errors = 0
                warnings.extend(check.warnings)
                score -= check.penalty
                continue

            tally.invalid_rows += 1
            errors.extend(check.errors)
            warnings.extend(check.warnings)
            score -= check.penalty

            consecutive_errors += 1
            if consecutive_errors >= MAX_CONSECUTIVE_ERRORS:
                errors.append(
                    f"Too many consecutive invalid rows ({MAX_CONSECUTIVE_ERRORS}+). "
                    "Data quality is too poor."
                )
                score -= 20
                logger.warning("validation_aborted_consecutive_errors", row=row_number)
                break

        record_count = tally.valid_rows
        date_range = DateRange()
        latest_date = None

        if dates:
            latest_date = max(dates)
            date_range = DateRange(earliest=min(dates), latest=latest_date)

            days_since_latest = (self._today() - latest_date).days
            if days_since_latest > 30:
                warnings.append(
                    f"Data appears outdated. Latest draw is {days_since_latest} days old."
                )
                score -= 10

        if len(draw_numbers) > 1:
            sequence_warnings = self._check_draw_sequence(draw_numbers)
            if sequence_warnings:
                warnings.extend(sequence_warnings)
                score -= 5

        size_errors, size_warnings, size_penalty = self._check_dataset_size(record_count)
        errors.extend(size_errors)
        score -= size_penalty
        if size_warnings:
            warnings.extend(size_warnings)
            score -= 5

        anomaly_warnings, anomaly_penalty = self._detect_statistical_anomalies(tally)
        warnings.extend(anomaly_warnings)
        score -= anomaly_penalty

        warnings.extend(self._coverage_warnings(tally, date_range))

        score = max(0, score)

        critical_errors = [
            error for error in errors
            if any(marker in error.lower() for marker in CRITICAL_ERROR_MARKERS)
        ]
        is_valid = (
            not critical_errors
            and has_required_columns
            and score >= MIN_QUALITY_SCORE
            and record_count >= MIN_VALID_RECORDS
        )

        logger.info(
            "validation_completed",
            is_valid=is_valid,
            records=record_count,
            score=score,
            errors=len(errors),
            warnings=len(warnings)
        )
        return self._outcome(
            is_valid, errors, warnings, record_count, latest_date,
            has_required_columns, score, tally, date_range
        )

    @staticmethod
    def validate_header(header_line: str) -> tuple:
        """
        Check that every required column is present under one of its aliases.

        Args:
            header_line: First non-empty line of the payload

        Returns:
            Tuple of (errors, warnings)
        """
        errors = []
        warnings = []
        columns = ["".join(col.lower().split()) for col in header_line.split(",")]

        missing = [
            canonical for canonical, aliases in REQUIRED_COLUMNS
            if not any(alias in column for column in columns for alias in aliases)
        ]
        if missing:
            errors.append(f"Missing required columns: {', '.join(missing)}")

        if len(columns) < MIN_COLUMNS:
            warnings.append(f"Header has only {len(columns)} columns, expected at least {MIN_COLUMNS}")
        elif len(columns) > 15:
            warnings.append(f"Header has {len(columns)} columns, which is more than expected")

        empty_columns = sum(1 for col in columns if not col)
        if empty_columns:
            warnings.append(f"Header contains {empty_columns} empty columns")

        return errors, warnings

    def _validate_row(self, line: str, row_number: int, tally: _Tally) -> _RowCheck:
        check = _RowCheck()
        columns = [col.strip() for col in line.split(",")]

        if len(columns) < MIN_COLUMNS:
            check.fail(
                f"Row {row_number}: Insufficient columns (expected at least {MIN_COLUMNS}, got {len(columns)})",
                10
            )
            return check

        self._check_draw_number(columns[0], row_number, check, tally)
        self._check_date(columns[1], row_number, check)
        numbers = self._check_numbers(columns[2:2 + NUMBERS_PER_DRAW], row_number, check, tally)

        # Once all six parse, out-of-range values do not exempt the row from these checks
        if len(numbers) == NUMBERS_PER_DRAW:
            if len(set(numbers)) != NUMBERS_PER_DRAW:
                check.fail(
                    f"Row {row_number}: Duplicate numbers in the same draw: "
                    f"[{', '.join(str(n) for n in numbers)}]",
                    8
                )
            in_range = [n for n in numbers if MAIN_NUMBER_MIN <= n <= MAIN_NUMBER_MAX]
            if len(in_range) > 1:
                self._check_patterns(in_range, row_number, check, tally)

        self._check_bonus(columns[2 + NUMBERS_PER_DRAW], row_number, check, tally)
        return check

    @staticmethod
    def _check_draw_number(value: str, row_number: int, check: _RowCheck, tally: _Tally) -> None:
        if not value:
            check.fail(f"Row {row_number}: Missing draw number", 5)
            return

        try:
            draw_number = int(value)
        except ValueError:
            draw_number = 0

        if draw_number <= 0:
            check.fail(f"Row {row_number}: Invalid draw number '{value}'", 5)
        elif draw_number in tally.seen_draw_numbers:
            check.fail(f"Row {row_number}: Duplicate draw number {draw_number}", 8)
        else:
            tally.seen_draw_numbers.add(draw_number)
            check.draw_number = draw_number
            if draw_number > HIGH_DRAW_NUMBER:
                check.warn(f"Row {row_number}: Unusually high draw number {draw_number}", 1)

    def _check_date(self, value: str, row_number: int, check: _RowCheck) -> None:
        if not value:
            check.fail(f"Row {row_number}: Missing date", 5)
            return

        try:
            draw_date = parse_draw_date(value)
        except ValueError:
            check.fail(f"Row {row_number}: Invalid date format '{value}'", 3)
            return

        check.draw_date = draw_date
        if draw_date.year < EARLIEST_DRAW_YEAR:
            check.warn(
                f"Row {row_number}: Date {value} is before the lottery started ({EARLIEST_DRAW_YEAR})", 2
            )
        elif (draw_date - self._today()).days > 365:
            check.warn(f"Row {row_number}: Future date {value}", 2)

    @staticmethod
    def _check_numbers(values: List[str], row_number: int, check: _RowCheck, tally: _Tally) -> List[int]:
        numbers = []
        for offset, value in enumerate(values):
            column = offset + 3
            if not value:
                check.fail(f"Row {row_number}: Missing number in column {column}", 3)
                continue
            try:
                num = int(value)
            except ValueError:
                check.fail(f"Row {row_number}: Non-numeric value '{value}' in column {column}", 3)
                continue
            numbers.append(num)
            if not MAIN_NUMBER_MIN <= num <= MAIN_NUMBER_MAX:
                check.fail(
                    f"Row {row_number}: Number {num} out of range "
                    f"({MAIN_NUMBER_MIN}-{MAIN_NUMBER_MAX}) in column {column}",
                    4
                )
                continue
            tally.number_frequency[num] += 1
        return numbers

    @staticmethod
    def _check_patterns(numbers: List[int], row_number: int, check: _RowCheck, tally: _Tally) -> None:
        ordered = sorted(numbers)
        longest_run = run = 1
        for previous, current in zip(ordered, ordered[1:]):
            run = run + 1 if current == previous + 1 else 1
            longest_run = max(longest_run, run)

        if longest_run >= 4:
            check.warn(f"Row {row_number}: Suspicious pattern - {longest_run} consecutive numbers", 2)
            check.suspicious = True
            tally.suspicious_patterns.append(f"Row {row_number}: {longest_run} consecutive numbers")

        if (
            all(n <= LOW_RANGE_MAX for n in numbers)
            or all(LOW_RANGE_MAX < n <= MID_RANGE_MAX for n in numbers)
            or all(n > MID_RANGE_MAX for n in numbers)
        ):
            check.warn(f"Row {row_number}: All numbers in same range (suspicious)", 2)
            check.suspicious = True
            tally.suspicious_patterns.append(f"Row {row_number}: All numbers in same range")

    @staticmethod
    def _check_bonus(value: str, row_number: int, check: _RowCheck, tally: _Tally) -> None:
        if not value:
            check.fail(f"Row {row_number}: Missing bonus number", 3)
            return
        try:
            bonus = int(value)
        except ValueError:
            check.fail(f"Row {row_number}: Non-numeric bonus value '{value}'", 3)
            return
        if not BONUS_MIN <= bonus <= BONUS_MAX:
            check.fail(f"Row {row_number}: Bonus number {bonus} out of range ({BONUS_MIN}-{BONUS_MAX})", 4)
            return
        tally.bonus_frequency[bonus] += 1

    @staticmethod
    def _check_draw_sequence(draw_numbers: List[int]) -> List[str]:
        warnings = []
        ordered = sorted(draw_numbers, reverse=True)

        large_gaps = 0
        for higher, lower in zip(ordered, ordered[1:]):
            gap = higher - lower
            if gap > 50:
                large_gaps += 1
                if gap > 200:
                    warnings.append(f"Large gap in draw numbers: {lower} to {higher} (gap: {gap})")

        if large_gaps > len(ordered) * 0.3:
            warnings.append(
                f"Many large gaps in draw sequence ({large_gaps} gaps out of {len(ordered)} draws)"
            )

        if ordered[0] > HIGH_DRAW_NUMBER:
            warnings.append(f"Very high maximum draw number: {ordered[0]}")

        return warnings

    @staticmethod
    def _check_dataset_size(record_count: int) -> tuple:
        if record_count == 0:
            return ["No valid data records found"], [], 50
        if record_count < MIN_VALID_RECORDS:
            return [
                f"Dataset too small ({record_count} records). "
                f"Minimum {MIN_VALID_RECORDS} records required."
            ], [], 30
        if record_count < 20:
            return [], [
                f"Small dataset ({record_count} records). "
                "Recommend at least 20 records for reliable predictions."
            ], 15
        if record_count < 50:
            return [], [
                f"Moderate dataset size ({record_count} records). "
                "Recommend 50+ records for optimal predictions."
            ], 5
        return [], [], 0

    @staticmethod
    def _detect_statistical_anomalies(tally: _Tally) -> tuple:
        warnings = []
        penalty = 0

        if tally.number_frequency:
            frequencies = list(tally.number_frequency.values())
            average = sum(frequencies) / len(frequencies)
            highest = max(frequencies)
            lowest = min(frequencies)

            if highest > average * 3:
                warnings.append(
                    f"Suspicious number frequency: Number appears {highest} times (avg: {average:.1f})"
                )
                penalty += 3
            if highest / lowest > 10:
                warnings.append("Highly uneven number distribution detected")
                penalty += 2

        if tally.bonus_frequency:
            bonus_frequencies = list(tally.bonus_frequency.values())
            average = sum(bonus_frequencies) / len(bonus_frequencies)
            if max(bonus_frequencies) > average * 4:
                warnings.append("Suspicious bonus number frequency detected")
                penalty += 2

        # Invalid rows count as flagged whether or not a pattern was seen
        if tally.flagged_rows > tally.checked_rows * 0.1:
            warnings.append(
                f"High number of suspicious patterns detected "
                f"({tally.flagged_rows} of {tally.checked_rows} rows suspicious or invalid)"
            )
            penalty += 5

        return warnings, penalty

    @staticmethod
    def _coverage_warnings(tally: _Tally, date_range: DateRange) -> List[str]:
        """Informational warnings that do not affect the score."""
        warnings = []

        if tally.total_rows and tally.valid_rows / tally.total_rows < 0.8:
            warnings.append(
                f"Low data completeness: {tally.valid_rows / tally.total_rows * 100:.1f}% of rows are valid"
            )
        if len(tally.number_frequency) < MIN_NUMBER_DIVERSITY:
            warnings.append(
                f"Limited number diversity: Only {len(tally.number_frequency)} different numbers found"
            )
        if len(tally.bonus_frequency) < MIN_BONUS_DIVERSITY:
            warnings.append(
                f"Limited bonus number diversity: Only {len(tally.bonus_frequency)} different bonus numbers"
            )
        if date_range.earliest and date_range.latest:
            span_days = (date_range.latest - date_range.earliest).days
            if span_days < 30:
                warnings.append(f"Short date range: Only {span_days} days of data")

        return warnings

    @staticmethod
    def _html_title(raw_text: str) -> Optional[str]:
        soup = BeautifulSoup(raw_text, "lxml")
        if soup.title and soup.title.string:
            return soup.title.string.strip() or None
        return None

    @staticmethod
    def _outcome(
        is_valid: bool,
        errors: List[str],
        warnings: List[str],
        record_count: int,
        latest_date: Optional[date],
        has_required_columns: bool,
        score: int,
        tally: _Tally,
        date_range: DateRange
    ) -> ValidationOutcome:
        completeness = tally.valid_rows / tally.total_rows if tally.total_rows > 0 else 0.0
        return ValidationOutcome(
            is_valid=is_valid,
            errors=errors,
            warnings=warnings,
            record_count=record_count,
            latest_date=latest_date,
            has_required_columns=has_required_columns,
            data_quality_score=score,
            metrics=ValidationMetrics(
                total_rows=tally.total_rows,
                valid_rows=tally.valid_rows,
                invalid_rows=tally.invalid_rows,
                completeness_ratio=completeness,
                date_range=date_range,
                number_diversity=len(tally.number_frequency),
                bonus_diversity=len(tally.bonus_frequency),
                suspicious_patterns=len(tally.suspicious_patterns)
            )
        )
