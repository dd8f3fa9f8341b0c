"""Baseline statistics, anomaly heuristics and linear trends for a single series.

Every function here is pure: points in, models out. All statistics run over the
valid numeric points only; nulls and NaNs are dropped first.
"""

import logging
import math
import statistics
from collections.abc import Sequence
from typing import Any, NamedTuple

from src.analysis.models import (
    AnalysisResult,
    Anomaly,
    Baseline,
    Forecast,
    RollupSeverity,
    SeriesComparison,
    TimeSeriesPoint,
    TrendLine,
    TrendLines,
    TrendSummary,
)
from src.query.models import QueryResult

logger = logging.getLogger(__name__)

DEFAULT_OUTLIER_THRESHOLD = 2.5
MIN_POINTS = 10
OUTLIER_HIGH_FRACTION = 0.1
OUTLIER_DETAIL_LIMIT = 5
SPIKE_RATIO = 3.0
SPIKE_DETAIL_LIMIT = 3
FLATLINE_WINDOW = 20
FLATLINE_MIN_POINTS = 10
FLATLINE_TOLERANCE = 0.01
SHORT_TERM_WINDOW = 24
TREND_SLOPE_THRESHOLD = 0.1
MEAN_RATIO_HIGHER = 1.5
MEAN_RATIO_LOWER = 0.667
VARIABILITY_RATIO = 2.0

NO_ANOMALIES_RECOMMENDATION = "No anomalies detected. Metric appears to be operating normally."
REVIEW_RECOMMENDATION = "Review the detected anomalies and consider setting up alerts for similar patterns."
SPIKE_RECOMMENDATION = (
    "Investigate the cause of the detected spikes - they may indicate capacity issues or unusual load."
)
FLATLINE_RECOMMENDATION = "Check that the metric source is still reporting; a flat series often means a stalled collector."


class Spike(NamedTuple):
    index: int
    timestamp: Any
    value: float
    previous: float
    ratio: str


# --- Series preparation ---


def _as_float(raw: Any) -> float | None:
    if raw is None or isinstance(raw, bool):
        return None
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    return None if math.isnan(value) else value


def valid_points(points: Sequence[TimeSeriesPoint]) -> list[TimeSeriesPoint]:
    """Points whose value is a real number."""
    return [p for p in points if p.value is not None and not math.isnan(p.value)]


def points_from_result(result: QueryResult, value_column: int = 1) -> list[TimeSeriesPoint]:
    """Convert executor rows ``[timestamp, value, ...]`` into points.

    Non-numeric values become ``None`` rather than being dropped, so the point
    count still reflects what the datasource returned.
    """
    points: list[TimeSeriesPoint] = []
    for row in result.values:
        if not row:
            continue
        raw = row[value_column] if len(row) > value_column else None
        points.append(TimeSeriesPoint(timestamp=row[0], value=_as_float(raw)))
    return points


# --- Baseline and anomaly heuristics ---


def compute_baseline(points: Sequence[TimeSeriesPoint]) -> Baseline | None:
    """Population mean/stddev/min/max over valid points, or None when there are none."""
    values = [p.value for p in valid_points(points) if p.value is not None]
    if not values:
        return None
    return Baseline(
        mean=statistics.fmean(values),
        stddev=statistics.pstdev(values),
        min=min(values),
        max=max(values),
        count=len(values),
    )


def find_outliers(
    points: Sequence[TimeSeriesPoint],
    baseline: Baseline,
    threshold: float = DEFAULT_OUTLIER_THRESHOLD,
) -> list[TimeSeriesPoint]:
    """Points further than ``threshold`` standard deviations from the mean. A series with no spread has none."""
    if baseline.stddev == 0:
        return []
    limit = threshold * baseline.stddev
    return [p for p in valid_points(points) if p.value is not None and abs(p.value - baseline.mean) > limit]


def detect_outliers(
    points: Sequence[TimeSeriesPoint],
    baseline: Baseline,
    threshold: float = DEFAULT_OUTLIER_THRESHOLD,
) -> Anomaly | None:
    outliers = find_outliers(points, baseline, threshold)
    if not outliers:
        return None
    severity = "high" if len(outliers) > baseline.count * OUTLIER_HIGH_FRACTION else "medium"
    details = [
        {
            "time": p.timestamp,
            "value": f"{p.value:.2f}",
            "deviation": f"{(p.value - baseline.mean) / baseline.stddev:.2f}σ",
        }
        for p in outliers[:OUTLIER_DETAIL_LIMIT]
        if p.value is not None
    ]
    first = outliers[0]
    return Anomaly(
        type="statistical_outlier",
        severity=severity,
        message=f"Found {len(outliers)} statistical outliers",
        timestamp=first.timestamp,
        value=first.value,
        details=details,
        count=len(outliers),
    )


def find_spikes(points: Sequence[TimeSeriesPoint]) -> list[Spike]:
    """Adjacent pairs where the value jumps to more than three times a positive predecessor.

    Indices refer to positions in the valid-point sequence.
    """
    valid = valid_points(points)
    spikes: list[Spike] = []
    for index in range(1, len(valid)):
        previous, current = valid[index - 1].value, valid[index].value
        if previous is None or current is None:
            continue
        if previous > 0 and current > previous * SPIKE_RATIO:
            spikes.append(Spike(index, valid[index].timestamp, current, previous, f"{current / previous:.2f}"))
    return spikes


def detect_spikes(points: Sequence[TimeSeriesPoint]) -> Anomaly | None:
    spikes = find_spikes(points)
    if not spikes:
        return None
    details = [
        {"time": s.timestamp, "value": s.value, "previous_value": s.previous, "ratio": s.ratio}
        for s in spikes[:SPIKE_DETAIL_LIMIT]
    ]
    return Anomaly(
        type="spike_detection",
        severity="high",
        message=f"Detected {len(spikes)} significant spikes",
        timestamp=spikes[0].timestamp,
        value=spikes[0].value,
        details=details,
        count=len(spikes),
    )


def detect_flatline(points: Sequence[TimeSeriesPoint], baseline: Baseline) -> Anomaly | None:
    """Flag a trailing window with (almost) no variation.

    A window with zero variance is always flat, even when the overall mean is
    zero or negative and the 1%-of-mean tolerance cannot apply.
    """
    recent = [p.value for p in valid_points(points)[-FLATLINE_WINDOW:] if p.value is not None]
    if len(recent) < FLATLINE_MIN_POINTS:
        return None
    recent_stddev = statistics.pstdev(recent)
    expected = baseline.mean * FLATLINE_TOLERANCE
    if recent_stddev != 0 and recent_stddev >= expected:
        return None
    return Anomaly(
        type="flatline_detection",
        severity="medium",
        message="Metric appears to be flatlining (no variation)",
        details={"recent_stddev": f"{recent_stddev:.4f}", "expected_variation": f"{expected:.4f}"},
    )


def rollup_severity(anomalies: Sequence[Anomaly]) -> RollupSeverity:
    """Overall severity from the findings. Data-quality notices (info/warning) do not count."""
    severities = {a.severity for a in anomalies}
    if severities & {"critical", "high"}:
        return "high"
    if "medium" in severities:
        return "medium"
    if "low" in severities:
        return "low"
    return "normal"


def analysis_confidence(count: int) -> float:
    return min(0.9, max(0.3, count / 100))


# --- Trends ---


def _least_squares(values: Sequence[float]) -> tuple[float, float]:
    """(slope, intercept) of value against index."""
    n = len(values)
    if n < 2:
        return 0.0, values[0] if values else 0.0
    sum_x = n * (n - 1) / 2
    sum_y = math.fsum(values)
    sum_xy = math.fsum(i * v for i, v in enumerate(values))
    sum_xx = (n - 1) * n * (2 * n - 1) / 6
    slope = (n * sum_xy - sum_x * sum_y) / (n * sum_xx - sum_x * sum_x)
    intercept = (sum_y - slope * sum_x) / n
    return slope, intercept


def linear_slope(values: Sequence[float]) -> float:
    return _least_squares(values)[0]


def fit_trend_line(values: Sequence[float]) -> TrendLine | None:
    """OLS fit over index; fitted values at the window's first and last index."""
    if not values:
        return None
    slope, intercept = _least_squares(values)
    return TrendLine(start=intercept, end=intercept + slope * (len(values) - 1))


def trend_lines(values: Sequence[float]) -> TrendLines:
    """Short-term (trailing 24 points) and long-term (whole series) trend lines."""
    return TrendLines(
        short_term=fit_trend_line(values[-SHORT_TERM_WINDOW:]),
        long_term=fit_trend_line(values),
    )


def summarize_trend(values: Sequence[float]) -> TrendSummary:
    """Direction and strength of the trailing-window slope."""
    if len(values) < MIN_POINTS:
        return TrendSummary(direction="insufficient_data")
    slope = linear_slope(values[-SHORT_TERM_WINDOW:])
    if slope > TREND_SLOPE_THRESHOLD:
        direction = "increasing"
    elif slope < -TREND_SLOPE_THRESHOLD:
        direction = "decreasing"
    else:
        direction = "stable"
    return TrendSummary(direction=direction, strength=abs(slope), slope=round(slope, 4))


def project_trend(values: Sequence[float], horizon: int) -> Forecast | None:
    """Extend the whole-series OLS line ``horizon`` points past the last observation."""
    if len(values) < 2 or horizon < 1:
        return None
    slope, intercept = _least_squares(values)
    return Forecast(
        horizon=horizon,
        current=values[-1],
        projected=intercept + slope * (len(values) - 1 + horizon),
        slope=slope,
    )


# --- Comparison ---


def compare_baselines(name_a: str, a: Baseline, name_b: str, b: Baseline) -> SeriesComparison:
    """Plain-language contrast of two series' level and spread."""
    comparison = SeriesComparison(name_a=name_a, name_b=name_b)

    if b.mean != 0:
        ratio = a.mean / b.mean
        comparison.mean_ratio = ratio
        if ratio > MEAN_RATIO_HIGHER:
            comparison.insights.append(f"{name_a} has {ratio:.1f}x higher average than {name_b}")
        elif 0 < ratio < MEAN_RATIO_LOWER:
            comparison.insights.append(f"{name_b} has {1 / ratio:.1f}x higher average than {name_a}")
        else:
            comparison.insights.append(f"{name_a} and {name_b} have similar average values")
    elif a.mean == 0:
        comparison.insights.append(f"{name_a} and {name_b} have similar average values")
    else:
        comparison.insights.append(f"{name_b} averages zero while {name_a} averages {a.mean:.2f}")

    range_a = a.max - a.min
    range_b = b.max - b.min
    if range_a > range_b * VARIABILITY_RATIO:
        comparison.insights.append(f"{name_a} shows much higher variability than {name_b}")
    elif range_b > range_a * VARIABILITY_RATIO:
        comparison.insights.append(f"{name_b} shows much higher variability than {name_a}")

    return comparison


# --- Orchestration ---


def _recommendations(anomalies: Sequence[Anomaly]) -> list[str]:
    if not anomalies:
        return [NO_ANOMALIES_RECOMMENDATION]
    recommendations = [REVIEW_RECOMMENDATION]
    kinds = {a.type for a in anomalies}
    if "spike_detection" in kinds:
        recommendations.append(SPIKE_RECOMMENDATION)
    if "flatline_detection" in kinds:
        recommendations.append(FLATLINE_RECOMMENDATION)
    return recommendations


def analyze_series(
    points: Sequence[TimeSeriesPoint],
    metric: str,
    threshold: float = DEFAULT_OUTLIER_THRESHOLD,
) -> AnalysisResult:
    """Run baseline, outlier, spike and flatline detection plus trend fitting."""
    if len(points) < MIN_POINTS:
        return AnalysisResult(
            metric=metric,
            anomalies=[
                Anomaly(
                    type="insufficient_data",
                    severity="info",
                    message="Not enough data points for reliable anomaly detection",
                )
            ],
        )

    baseline = compute_baseline(points)
    if baseline is None:
        return AnalysisResult(
            metric=metric,
            anomalies=[Anomaly(type="no_valid_data", severity="warning", message="No valid numeric values found")],
        )

    anomalies = [
        finding
        for finding in (
            detect_outliers(points, baseline, threshold),
            detect_spikes(points),
            detect_flatline(points, baseline),
        )
        if finding is not None
    ]
    values = [p.value for p in valid_points(points) if p.value is not None]

    logger.debug("Analysed %s: %d points, %d findings", metric, baseline.count, len(anomalies))
    return AnalysisResult(
        metric=metric,
        baseline=baseline,
        anomalies=anomalies,
        severity=rollup_severity(anomalies),
        trend=summarize_trend(values),
        trend_lines=trend_lines(values),
        recommendations=_recommendations(anomalies),
        confidence=analysis_confidence(baseline.count),
        latest_value=values[-1],
    )
