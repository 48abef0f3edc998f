from datetime import date
from typing import List

import pytest

from conftest import HEADER, TODAY, build_csv, build_rows

from lotto_refresh.refresh.validator import DataValidator, looks_like_html

SCENARIO_A = (
    "DrawNumber,Date,Num1,Num2,Num3,Num4,Num5,Num6,Bonus,Extra1,Extra2\n"
    "5300,16/07/2024,3,14,22,25,33,37,5,,\n"
    "5299,13/07/2024,1,8,15,28,31,36,2,,\n"
    "5298,10/07/2024,7,12,19,24,29,35,4,,"
)


def _validator() -> DataValidator:
    return DataValidator(today=lambda: TODAY)


def test_clean_dataset_scores_full_marks() -> None:
    outcome = _validator().validate(build_csv(60))

    assert outcome.is_valid
    assert outcome.errors == []
    assert outcome.data_quality_score == 100
    assert outcome.record_count == 60
    assert outcome.latest_date == date(2024, 7, 16)
    assert outcome.metrics.completeness_ratio == 1.0
    assert outcome.metrics.number_diversity == 37
    assert outcome.metrics.bonus_diversity == 7


def test_three_rows_are_well_formed_but_too_small() -> None:
    outcome = _validator().validate(SCENARIO_A)

    assert outcome.record_count == 3
    assert outcome.has_required_columns
    assert outcome.data_quality_score > 50
    assert not outcome.is_valid
    assert any("too small" in error for error in outcome.errors)


def test_empty_content() -> None:
    outcome = _validator().validate("")

    assert not outcome.is_valid
    assert any("empty" in error for error in outcome.errors)
    assert outcome.data_quality_score == 0


def test_html_content() -> None:
    outcome = _validator().validate(
        "<!DOCTYPE html><html><head><title>Service Unavailable</title></head><body>Error page</body></html>"
    )

    assert not outcome.is_valid
    assert not outcome.has_required_columns
    assert "HTML" in outcome.errors[0]
    assert "Service Unavailable" in outcome.errors[0]
    assert outcome.data_quality_score == 50


def test_looks_like_html_is_case_insensitive() -> None:
    assert looks_like_html("<HTML><body></body></HTML>")
    assert not looks_like_html(HEADER)


def test_duplicate_numbers_mark_row_invalid() -> None:
    raw = "\n".join([HEADER] + build_rows(10) + ["5200,01/01/2024,5,5,12,18,25,33,3"])

    outcome = _validator().validate(raw)

    assert outcome.record_count == 10
    assert outcome.metrics.invalid_rows == 1
    assert any("Duplicate numbers in the same draw" in error for error in outcome.errors)


def test_header_only_is_fatal() -> None:
    outcome = _validator().validate(HEADER)

    assert not outcome.is_valid
    assert "at least a header" in outcome.errors[0]


def test_missing_required_columns() -> None:
    raw = "\n".join(["Id,When,A,B,C,D,E,F,G"] + build_rows(10))

    outcome = _validator().validate(raw)

    assert not outcome.is_valid
    assert not outcome.has_required_columns
    assert any(error.startswith("Missing required columns") for error in outcome.errors)


def test_consecutive_invalid_rows_abort_validation() -> None:
    bad_rows = ["x,16/07/2024,1,2,3,4,5,6,1"] * 7
    raw = "\n".join([HEADER] + bad_rows + build_rows(10))

    outcome = _validator().validate(raw)

    assert not outcome.is_valid
    assert any("Too many consecutive invalid rows" in error for error in outcome.errors)
    assert outcome.record_count == 0


def test_outdated_data_warns_and_costs_points() -> None:
    outcome = DataValidator(today=lambda: date(2024, 12, 1)).validate(build_csv(60))

    assert outcome.is_valid
    assert outcome.data_quality_score == 90
    assert any("outdated" in warning for warning in outcome.warnings)


def test_small_dataset_warning() -> None:
    outcome = _validator().validate(build_csv(10))

    assert outcome.is_valid
    assert any("Small dataset" in warning for warning in outcome.warnings)
    assert outcome.data_quality_score == 80


def test_validate_is_idempotent() -> None:
    raw = build_csv(30)
    validator = _validator()

    assert validator.validate(raw) == validator.validate(raw)


def _with_numbers(row: str, numbers: List[int]) -> str:
    fields = row.split(",")
    fields[2:8] = [str(n) for n in numbers]
    return ",".join(fields)


@pytest.mark.parametrize(
    "patterned_row, high_rows, column",
    [
        (None, 0, 4),
        ([1, 2, 3, 4, 5, 6], 0, 7),
        ([1, 2, 3, 4, 5, 6], 0, 4),
        ([1, 2, 3, 4, 5, 6], 5, 7),
    ],
    ids=["plain-row", "suspicious-row", "breaks-run", "many-suspicious-rows"],
)
def test_out_of_range_number_lowers_score(patterned_row, high_rows, column) -> None:
    rows = build_rows(65)
    if patterned_row is not None:
        rows[5] = _with_numbers(rows[5], patterned_row)
    for i in range(10, 10 + high_rows):
        rows[i] = _with_numbers(rows[i], [26, 28, 30, 32, 34, 36])
    clean = _validator().validate("\n".join([HEADER] + rows))

    broken_rows = list(rows)
    fields = broken_rows[5].split(",")
    fields[column] = "40"
    broken_rows[5] = ",".join(fields)
    broken = _validator().validate("\n".join([HEADER] + broken_rows))

    assert clean.is_valid
    assert broken.data_quality_score < clean.data_quality_score
    assert broken.record_count == clean.record_count - 1
    assert broken.metrics.invalid_rows == clean.metrics.invalid_rows + 1
    assert {error.split(":")[0] for error in broken.errors} == {"Row 7"}
    assert any("out of range" in error for error in broken.errors)


def test_validate_header_reports_column_count() -> None:
    errors, warnings = DataValidator.validate_header("DrawNumber,Date,Num1,Num2,Num3,Num4,Num5,Num6")

    assert errors == ["Missing required columns: bonus"]
    assert warnings == ["Header has only 8 columns, expected at least 9"]
