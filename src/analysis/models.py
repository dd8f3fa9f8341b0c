"""Pydantic models for series statistics and anomaly findings."""

from typing import Any, Literal

from pydantic import BaseModel, Field

AnomalyType = Literal[
    "statistical_outlier",
    "spike_detection",
    "flatline_detection",
    "insufficient_data",
    "no_valid_data",
]
AnomalySeverity = Literal["low", "medium", "high", "critical", "info", "warning"]
RollupSeverity = Literal["normal", "low", "medium", "high"]
TrendDirection = Literal["increasing", "decreasing", "stable", "insufficient_data"]


class TimeSeriesPoint(BaseModel):
    timestamp: Any = None
    value: float | None = None


class Baseline(BaseModel):
    """Population statistics over the valid numeric points of a series."""

    mean: float
    stddev: float
    min: float
    max: float
    count: int


class Anomaly(BaseModel):
    type: AnomalyType
    severity: AnomalySeverity
    message: str
    timestamp: Any = None
    value: float | None = None
    details: list[dict[str, Any]] | dict[str, Any] = Field(default_factory=list)
    count: int | None = None


class TrendSummary(BaseModel):
    direction: TrendDirection
    strength: float = Field(default=0.0, ge=0.0)
    slope: float = 0.0


class TrendLine(BaseModel):
    """Fitted values at the first and last index of a window."""

    start: float
    end: float


class TrendLines(BaseModel):
    short_term: TrendLine | None = None
    long_term: TrendLine | None = None


class AnalysisResult(BaseModel):
    metric: str
    baseline: Baseline | None = None
    anomalies: list[Anomaly] = Field(default_factory=list)
    severity: RollupSeverity = "normal"
    trend: TrendSummary | None = None
    trend_lines: TrendLines = Field(default_factory=TrendLines)
    recommendations: list[str] = Field(default_factory=list)
    confidence: float = Field(default=0.3, ge=0.3, le=0.9)
    latest_value: float | None = None

    @property
    def has_data(self) -> bool:
        return self.baseline is not None


class SeriesComparison(BaseModel):
    name_a: str
    name_b: str
    mean_ratio: float | None = None
    insights: list[str] = Field(default_factory=list)


class Forecast(BaseModel):
    """Linear projection of a series ``horizon`` points past its last index."""

    horizon: int
    current: float
    projected: float
    slope: float

    @property
    def change(self) -> float:
        return self.projected - self.current
