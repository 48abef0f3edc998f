"""Data models for lottery draws, validation outcomes and refresh results."""
import math
from datetime import date, datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from lotto_refresh.refresh.errors import RefreshError

MAIN_NUMBER_MIN = 1
MAIN_NUMBER_MAX = 37
BONUS_MIN = 1
BONUS_MAX = 7
NUMBERS_PER_DRAW = 6

WarningKind = Literal[
    "data_quality", "completeness", "suspicious_pattern", "freshness", "statistical_anomaly"
]
Severity = Literal["low", "medium", "high", "critical"]


class DrawRecord(BaseModel):
    """Model representing a single lottery draw."""

    draw_number: int = Field(..., gt=0, description="Unique draw number")
    draw_date: date = Field(..., description="Date of the draw")
    numbers: List[int] = Field(
        ...,
        description="Six main winning numbers, ascending",
        min_length=NUMBERS_PER_DRAW,
        max_length=NUMBERS_PER_DRAW
    )
    bonus: int = Field(..., description="Bonus (strong) number")
    jackpot: Optional[int] = Field(None, description="Jackpot amount when known")

    @field_validator('numbers')
    @classmethod
    def validate_numbers(cls, v: List[int]) -> List[int]:
        """Validate that main numbers are distinct and between 1 and 37."""
        for num in v:
            if not MAIN_NUMBER_MIN <= num <= MAIN_NUMBER_MAX:
                raise ValueError(
                    f"Number {num} must be between {MAIN_NUMBER_MIN} and {MAIN_NUMBER_MAX}"
                )
        if len(set(v)) != len(v):
            raise ValueError("Main numbers must be unique")
        return sorted(v)

    @field_validator('bonus')
    @classmethod
    def validate_bonus(cls, v: int) -> int:
        """Validate that bonus number is between 1 and 7."""
        if not BONUS_MIN <= v <= BONUS_MAX:
            raise ValueError(f"Bonus number {v} must be between {BONUS_MIN} and {BONUS_MAX}")
        return v

    def canonical(self) -> dict:
        """Fields that participate in the cache integrity hash."""
        return {
            "draw_number": self.draw_number,
            "date": self.draw_date.isoformat(),
            "numbers": list(self.numbers),
            "bonus": self.bonus,
        }


class DateRange(BaseModel):
    model_config = ConfigDict(frozen=True)

    earliest: Optional[date] = None
    latest: Optional[date] = None


class ValidationMetrics(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_rows: int = 0
    valid_rows: int = 0
    invalid_rows: int = 0
    completeness_ratio: float = 0.0
    date_range: DateRange = Field(default_factory=DateRange)
    number_diversity: int = 0
    bonus_diversity: int = 0
    suspicious_patterns: int = 0


class ValidationOutcome(BaseModel):
    """Result of validating one raw text payload."""

    model_config = ConfigDict(frozen=True)

    is_valid: bool
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    record_count: int = 0
    latest_date: Optional[date] = None
    has_required_columns: bool = False
    data_quality_score: int = Field(0, ge=0, le=100)
    metrics: ValidationMetrics = Field(default_factory=ValidationMetrics)


class QualityWarning(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: WarningKind
    severity: Severity
    message: str
    details: Optional[str] = None
    recommendation: Optional[str] = None
    quality_impact: int = 0


class QualitySummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_issues: int
    critical_issues: int
    data_completeness: float
    reliability_score: int


class QualityReport(BaseModel):
    """Graded view of a validation outcome."""

    model_config = ConfigDict(frozen=True)

    overall_score: int
    warnings: List[QualityWarning] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    can_proceed: bool
    requires_confirmation: bool
    summary: QualitySummary


class CacheMetadata(BaseModel):
    """Companion record persisted next to the cached draws."""

    version: str
    timestamp: datetime = Field(..., description="Time of the last successful fetch")
    record_count: int
    data_hash: str
    compression_ratio: Optional[float] = None
    last_access_time: datetime


class CacheStats(BaseModel):
    record_count: int
    cache_age_hours: float
    last_access: Optional[datetime] = None
    cache_size_bytes: int
    compression_ratio: Optional[float] = None
    version: str
    is_fresh: bool


class RefreshResult(BaseModel):
    """Outcome handed to the UI and to the prediction engine."""

    success: bool
    data: Optional[List[DrawRecord]] = None
    error: Optional[str] = Field(None, description="Human-readable error message")
    error_details: Optional[RefreshError] = None
    from_cache: bool = False
    data_age: float = Field(math.inf, description="Hours since the last successful fetch")
    record_count: int = 0
    retry_attempts: int = Field(0, description="Fetch attempts consumed by this refresh")
    fallback_used: bool = False
    synthetic: bool = False
    quality_report: Optional[QualityReport] = None

    @property
    def retries(self) -> int:
        """Attempts made after the first one."""
        return max(self.retry_attempts - 1, 0)


class ExportMetadata(BaseModel):
    """Metadata written alongside exported draws."""

    export_date: datetime = Field(default_factory=datetime.now)
    total_draws: int
    date_range_start: Optional[date] = None
    date_range_end: Optional[date] = None
    source: str = "cache"
    data_hash: Optional[str] = None


class DrawExport(BaseModel):
    metadata: ExportMetadata
    draws: List[DrawRecord]
