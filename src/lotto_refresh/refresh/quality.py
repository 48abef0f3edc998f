"""Quality report generation for validated payloads.

The validator produces flat error and warning strings plus metrics. This
module grades them into categorized warnings with severities and
recommendations, and decides whether the data can be used as-is or needs
the user's confirmation first.
"""
from datetime import date
from typing import Callable, Dict, List, Optional

from lotto_refresh.refresh.models import (
    QualityReport,
    QualitySummary,
    QualityWarning,
    ValidationMetrics,
    ValidationOutcome,
)
from lotto_refresh.refresh.validator import MIN_BONUS_DIVERSITY, MIN_NUMBER_DIVERSITY

SEVERITY_IMPACT = {"critical": 30, "high": 20, "medium": 10, "low": 5}
RELIABILITY_PENALTY = {"critical": 25, "high": 15, "medium": 8, "low": 3}
SEVERITY_ORDER = ("critical", "high", "medium", "low")

MIN_PROCEED_SCORE = 40
MIN_PROCEED_COMPLETENESS = 50.0
CONFIRMATION_SCORE = 60


def _warning(
    kind: str,
    severity: str,
    message: str,
    recommendation: str,
    details: Optional[str] = None,
    quality_impact: Optional[int] = None
) -> QualityWarning:
    if quality_impact is None:
        quality_impact = SEVERITY_IMPACT[severity]
    return QualityWarning(
        kind=kind,
        severity=severity,
        message=message,
        details=details,
        recommendation=recommendation,
        quality_impact=quality_impact
    )


def warning_from_error(error: str) -> QualityWarning:
    """Categorize a validation error. Dataset-level failures are critical, row-level ones are not."""
    text = error.lower()
    row_level = text.startswith("row ")

    if not row_level and ("content is empty" in text or "no valid data" in text or "missing required" in text):
        return _warning("completeness", "critical", error, "Ensure the data source contains valid lottery data.")
    if not row_level and ("html" in text or "format" in text or "header" in text):
        return _warning("data_quality", "critical", error, "Verify the data source URL and format.")
    if "duplicate" in text or "consecutive" in text:
        return _warning(
            "suspicious_pattern", "high", error, "Investigate potential data corruption or manipulation."
        )
    if "too small" in text:
        return _warning("completeness", "high", error, "Obtain more historical data before relying on predictions.")
    if any(token in text for token in ("range", "invalid", "non-numeric", "format")):
        return _warning("data_quality", "medium", error, "Check data source for formatting issues.")
    if "missing" in text or "insufficient" in text:
        return _warning("completeness", "medium", error, "Check the data source for truncated rows.")
    return _warning("data_quality", "high", error, "Review and correct the data source.")


def warning_from_message(message: str) -> QualityWarning:
    """Categorize a validation warning."""
    text = message.lower()

    if "outdated" in text or "days old" in text:
        return _warning(
            "freshness", "medium", message, "Consider updating to more recent data for better predictions."
        )
    if "small" in text or "completeness" in text:
        return _warning("completeness", "medium", message, "Obtain more historical data for improved accuracy.")
    if "suspicious" in text or "pattern" in text:
        return _warning("suspicious_pattern", "medium", message, "Review data source for potential issues.")
    if "frequency" in text or "distribution" in text:
        return _warning(
            "statistical_anomaly", "low", message, "Statistical anomalies may indicate data quality issues."
        )
    return _warning("data_quality", "low", message, "Monitor data quality in future updates.")


def _completeness_warnings(metrics: ValidationMetrics) -> List[QualityWarning]:
    ratio = metrics.completeness_ratio
    percent = f"{ratio * 100:.1f}%"
    counts = f"{metrics.valid_rows} valid rows out of {metrics.total_rows} total rows"

    if ratio < 0.5:
        return [_warning(
            "completeness", "critical",
            f"Very low data completeness: Only {percent} of rows are valid",
            "Data source appears severely corrupted. Consider using a different source.",
            details=counts, quality_impact=40
        )]
    if ratio < 0.8:
        return [_warning(
            "completeness", "high",
            f"Low data completeness: {percent} of rows are valid",
            "Review data source for formatting or corruption issues.",
            details=counts, quality_impact=20
        )]
    if ratio < 0.95:
        return [_warning(
            "completeness", "medium",
            f"Moderate data completeness: {percent} of rows are valid",
            "Some data quality issues detected. Monitor for patterns.",
            details=f"{metrics.invalid_rows} invalid rows found", quality_impact=10
        )]
    return []


def _freshness_warnings(metrics: ValidationMetrics, today: date) -> List[QualityWarning]:
    latest = metrics.date_range.latest
    if latest is None:
        return []

    days = (today - latest).days
    details = f"Latest draw date: {latest.isoformat()}"
    if days > 90:
        return [_warning(
            "freshness", "high",
            f"Data is very outdated: Latest draw is {days} days old",
            "Update to more recent data for accurate predictions.",
            details=details, quality_impact=25
        )]
    if days > 30:
        return [_warning(
            "freshness", "medium",
            f"Data is somewhat outdated: Latest draw is {days} days old",
            "Consider refreshing data for better accuracy.",
            details=details, quality_impact=15
        )]
    if days > 7:
        return [_warning(
            "freshness", "low",
            f"Data is slightly outdated: Latest draw is {days} days old",
            "Data is reasonably fresh but could be updated.",
            details=details, quality_impact=5
        )]
    return []


def _diversity_warnings(metrics: ValidationMetrics) -> List[QualityWarning]:
    warnings = []
    if metrics.number_diversity < MIN_NUMBER_DIVERSITY:
        warnings.append(_warning(
            "statistical_anomaly", "medium",
            f"Low number diversity: Only {metrics.number_diversity} different numbers found",
            "Verify data completeness and check for missing draws.",
            details="Expected 30+ different numbers in a healthy dataset", quality_impact=15
        ))
    if metrics.bonus_diversity < MIN_BONUS_DIVERSITY:
        warnings.append(_warning(
            "statistical_anomaly", "medium",
            f"Low bonus number diversity: Only {metrics.bonus_diversity} different bonus numbers",
            "Check for missing or corrupted bonus number data.",
            details="Expected 6-7 different bonus numbers in a complete dataset", quality_impact=10
        ))
    return warnings


def _pattern_warnings(metrics: ValidationMetrics) -> List[QualityWarning]:
    count = metrics.suspicious_patterns
    if count == 0 or metrics.valid_rows == 0:
        return []

    ratio = count / metrics.valid_rows
    details = f"{ratio * 100:.1f}% of valid rows show suspicious patterns"
    if ratio > 0.2:
        return [_warning(
            "suspicious_pattern", "high",
            f"High number of suspicious patterns: {count} patterns detected",
            "Data may be artificially generated or corrupted. Verify authenticity.",
            details=details, quality_impact=30
        )]
    if ratio > 0.1:
        return [_warning(
            "suspicious_pattern", "medium",
            f"Moderate suspicious patterns: {count} patterns detected",
            "Monitor data source for potential quality issues.",
            details=details, quality_impact=15
        )]
    if count > 2:
        return [_warning(
            "suspicious_pattern", "low",
            f"Some suspicious patterns detected: {count} patterns found",
            "Keep monitoring for pattern increases in future data.",
            details="Patterns may be coincidental but worth monitoring", quality_impact=5
        )]
    return []


def _recommendations(warnings: List[QualityWarning], score: int) -> List[str]:
    recommendations = []
    kinds = {w.kind for w in warnings}
    severities = {w.severity for w in warnings}

    if "critical" in severities:
        recommendations.append("Critical data quality issues detected. Do not proceed without addressing these issues.")
        recommendations.append("Consider using a backup data source or manual data entry.")
    if "high" in severities:
        recommendations.append("Significant data quality concerns. Proceed with caution.")
        recommendations.append("Verify predictions against known results before relying on them.")

    if "completeness" in kinds:
        recommendations.append("Improve data completeness by obtaining more comprehensive historical data.")
    if "freshness" in kinds:
        recommendations.append("Update data source to include more recent lottery draws.")
    if "suspicious_pattern" in kinds:
        recommendations.append("Investigate data source authenticity and integrity.")
    if "statistical_anomaly" in kinds:
        recommendations.append("Review statistical distribution for potential data collection issues.")

    if score < 70:
        recommendations.append("Consider implementing automated data quality monitoring.")
        recommendations.append("Set up data validation alerts for future updates.")

    if not warnings:
        recommendations.append("Data quality is excellent. No issues detected.")
    elif severities == {"low"}:
        recommendations.append("Data quality is good with only minor issues detected.")

    return recommendations


def reliability_score(warnings: List[QualityWarning], overall_score: int) -> int:
    """Overall score minus a severity-weighted penalty per warning, clamped to 0-100."""
    score = overall_score - sum(RELIABILITY_PENALTY[w.severity] for w in warnings)
    return max(0, min(100, score))


def generate_quality_report(
    outcome: ValidationOutcome,
    today: Optional[Callable[[], date]] = None
) -> QualityReport:
    """
    Build a QualityReport from a validation outcome.

    Args:
        outcome: Result of DataValidator.validate
        today: Clock for freshness grading, defaults to date.today

    Returns:
        QualityReport with graded warnings and proceed/confirm decisions
    """
    today = today or date.today
    metrics = outcome.metrics
    score = outcome.data_quality_score

    warnings = [warning_from_error(error) for error in outcome.errors]
    warnings.extend(warning_from_message(message) for message in outcome.warnings)
    warnings.extend(_completeness_warnings(metrics))
    warnings.extend(_freshness_warnings(metrics, today()))
    warnings.extend(_diversity_warnings(metrics))
    warnings.extend(_pattern_warnings(metrics))

    critical_issues = sum(1 for w in warnings if w.severity == "critical")
    completeness = outcome.record_count / metrics.total_rows * 100 if metrics.total_rows > 0 else 0.0

    can_proceed = (
        critical_issues == 0
        and score >= MIN_PROCEED_SCORE
        and completeness >= MIN_PROCEED_COMPLETENESS
    )
    requires_confirmation = (
        not can_proceed
        or any(w.severity == "high" for w in warnings)
        or score < CONFIRMATION_SCORE
    )

    return QualityReport(
        overall_score=score,
        warnings=warnings,
        recommendations=_recommendations(warnings, score),
        can_proceed=can_proceed,
        requires_confirmation=requires_confirmation,
        summary=QualitySummary(
            total_issues=len(warnings),
            critical_issues=critical_issues,
            data_completeness=completeness,
            reliability_score=reliability_score(warnings, score)
        )
    )


def requires_user_confirmation(report: QualityReport) -> bool:
    return (
        report.requires_confirmation
        or report.summary.critical_issues > 0
        or report.overall_score < CONFIRMATION_SCORE
    )


def format_report(report: QualityReport) -> str:
    """Render the report as plain text grouped by severity."""
    if not report.warnings:
        return "No data quality issues detected. Data is ready for use."

    lines = [f"Data Quality Report (Score: {report.overall_score}/100)", ""]
    headings = {
        "critical": "CRITICAL ISSUES:",
        "high": "HIGH PRIORITY WARNINGS:",
        "medium": "MEDIUM PRIORITY ISSUES:",
        "low": "MINOR ISSUES:",
    }

    for severity in SEVERITY_ORDER:
        group = [w for w in report.warnings if w.severity == severity]
        if not group:
            continue
        lines.append(headings[severity])
        for warning in group:
            lines.append(f"  - {warning.message}")
            if severity == "critical" and warning.details:
                lines.append(f"    Details: {warning.details}")
            if severity in ("critical", "high") and warning.recommendation:
                lines.append(f"    Action: {warning.recommendation}")
        lines.append("")

    if report.recommendations:
        lines.append("RECOMMENDATIONS:")
        lines.extend(f"  {rec}" for rec in report.recommendations)

    return "\n".join(lines)


def confirmation_prompt(report: QualityReport) -> str:
    """Prompt shown before using data that needs confirmation; empty when none is needed."""
    if not requires_user_confirmation(report):
        return ""

    lines = ["Data Quality Concerns Detected", ""]
    status = ""
    if report.summary.critical_issues > 0:
        status = f"{report.summary.critical_issues} critical issue(s) found. "
    lines.append(f"{status}Overall data quality score: {report.overall_score}/100")
    lines.append(f"Data completeness: {report.summary.data_completeness:.1f}%")
    lines.append("")

    if report.can_proceed:
        lines.append("You can proceed with predictions, but results may be less reliable.")
        lines.append("")
        lines.append("Do you want to continue with this data?")
    else:
        lines.append("Data quality is too poor for reliable predictions.")
        lines.append("")
        lines.append("Please address the critical issues before proceeding.")

    return "\n".join(lines)


def quality_aspects(report: QualityReport) -> Dict[str, object]:
    """Per-aspect pass/fail flags used by diagnostics."""

    def has(kind: str, severity: str) -> bool:
        return any(w.kind == kind and w.severity == severity for w in report.warnings)

    return {
        "format_valid": not has("data_quality", "critical"),
        "content_valid": report.summary.data_completeness >= 80,
        "freshness_valid": not has("freshness", "high"),
        "completeness_valid": not has("completeness", "high"),
        "statistically_valid": not has("statistical_anomaly", "high"),
        "overall_score": report.overall_score,
    }
