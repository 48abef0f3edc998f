from datetime import date

from conftest import TODAY, build_csv

from lotto_refresh.refresh.models import QualitySummary, QualityReport, QualityWarning, ValidationOutcome
from lotto_refresh.refresh.quality import (
    confirmation_prompt,
    format_report,
    generate_quality_report,
    quality_aspects,
    reliability_score,
    requires_user_confirmation,
    warning_from_error,
    warning_from_message,
)
from lotto_refresh.refresh.validator import DataValidator


def _report(raw: str, today: date = TODAY) -> QualityReport:
    outcome = DataValidator(today=lambda: today).validate(raw)
    return generate_quality_report(outcome, today=lambda: today)


def test_clean_data_needs_no_confirmation() -> None:
    report = _report(build_csv(60))

    assert report.warnings == []
    assert report.can_proceed
    assert not report.requires_confirmation
    assert report.summary.reliability_score == 100
    assert report.summary.data_completeness == 100.0
    assert report.recommendations == ["Data quality is excellent. No issues detected."]
    assert format_report(report) == "No data quality issues detected. Data is ready for use."
    assert confirmation_prompt(report) == ""


def test_empty_payload_cannot_proceed() -> None:
    report = _report("")

    assert not report.can_proceed
    assert report.requires_confirmation
    assert report.summary.critical_issues >= 1
    assert report.warnings[0].kind == "completeness"
    assert report.warnings[0].severity == "critical"


def test_html_error_is_critical_data_quality() -> None:
    warning = warning_from_error("Received HTML content instead of CSV data")

    assert warning.kind == "data_quality"
    assert warning.severity == "critical"


def test_row_level_errors_are_not_critical() -> None:
    warning = warning_from_error("Row 4: Invalid date format 'abc'")

    assert warning.severity != "critical"
    assert warning.kind == "data_quality"


def test_duplicate_error_is_suspicious_pattern() -> None:
    warning = warning_from_error("Row 3: Duplicate numbers in the same draw: [5, 5, 12, 18, 25, 33]")

    assert warning.kind == "suspicious_pattern"
    assert warning.severity == "high"


def test_warning_messages_are_categorized() -> None:
    assert warning_from_message("Data appears outdated. Latest draw is 40 days old.").kind == "freshness"
    assert warning_from_message("Small dataset (10 records).").kind == "completeness"
    assert warning_from_message("Highly uneven number distribution detected").kind == "statistical_anomaly"
    assert warning_from_message("Something else").severity == "low"


def test_very_old_data_is_high_severity_freshness() -> None:
    report = _report(build_csv(60), today=date(2025, 1, 1))

    freshness = [w for w in report.warnings if w.kind == "freshness"]
    assert any(w.severity == "high" for w in freshness)
    assert report.requires_confirmation


def test_reliability_score_is_clamped() -> None:
    warnings = [
        QualityWarning(kind="completeness", severity="critical", message="a"),
        QualityWarning(kind="completeness", severity="critical", message="b"),
    ]

    assert reliability_score(warnings, 30) == 0
    assert reliability_score([], 100) == 100


def test_requires_confirmation_for_low_score() -> None:
    report = QualityReport(
        overall_score=55,
        can_proceed=True,
        requires_confirmation=True,
        summary=QualitySummary(total_issues=0, critical_issues=0, data_completeness=100.0, reliability_score=55),
    )

    assert requires_user_confirmation(report)
    assert "Do you want to continue" in confirmation_prompt(report)


def test_format_report_groups_by_severity() -> None:
    report = _report("\n".join(build_csv(10).splitlines() + ["5200,01/01/2024,5,5,12,18,25,33,3"]))

    text = format_report(report)

    assert text.startswith(f"Data Quality Report (Score: {report.overall_score}/100)")
    assert "HIGH PRIORITY WARNINGS:" in text
    assert "Duplicate numbers in the same draw" in text
    assert "RECOMMENDATIONS:" in text


def test_quality_aspects_flags() -> None:
    aspects = quality_aspects(_report(build_csv(60)))

    assert aspects == {
        "format_valid": True,
        "content_valid": True,
        "freshness_valid": True,
        "completeness_valid": True,
        "statistically_valid": True,
        "overall_score": 100,
    }


def test_report_from_hand_built_outcome() -> None:
    outcome = ValidationOutcome(is_valid=False, errors=["CSV content is empty"], data_quality_score=0)

    report = generate_quality_report(outcome, today=lambda: TODAY)

    assert report.overall_score == 0
    assert not report.can_proceed
    assert report.summary.data_completeness == 0.0
