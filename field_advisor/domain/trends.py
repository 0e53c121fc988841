"""Trend statistics over time-ordered sensor samples.

Every function takes samples oldest -> newest and a metric name. Samples may be
pydantic models or plain mappings. Short or empty series never raise; they
collapse to zero / ``stable`` / empty results.
"""

from __future__ import annotations

import math
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from ..schemas.models import IrrigationSummary, SensorSample, TrendRecord
from .enums import TrendDirection, TrendSeverity


TREND_METRICS = (
    "moisture",
    "ph",
    "nitrogen",
    "phosphorus",
    "potassium",
    "temperature",
    "humidity",
)
DIRECTION_EPSILON = 0.01
SEVERITY_THRESHOLDS = (1.0, 3.0, 5.0)


def _read_metric(sample: object, metric: str) -> Optional[float]:
    if isinstance(sample, Mapping):
        value = sample.get(metric)
    else:
        value = getattr(sample, metric, None)
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def metric_values(samples: Iterable[object], metric: str) -> List[float]:
    values = []
    for sample in samples:
        value = _read_metric(sample, metric)
        if value is not None:
            values.append(value)
    return values


def calculate_slope(values: Sequence[float]) -> float:
    """Least-squares slope of ``values`` against their index."""
    n = len(values)
    if n < 2:
        return 0.0
    x_mean = (n - 1) / 2
    y_mean = sum(values) / n
    numerator = 0.0
    denominator = 0.0
    for idx, value in enumerate(values):
        numerator += (idx - x_mean) * (value - y_mean)
        denominator += (idx - x_mean) ** 2
    if denominator == 0:
        return 0.0
    return numerator / denominator


def trend_direction(slope: float, threshold: float = DIRECTION_EPSILON) -> TrendDirection:
    if slope > threshold:
        return TrendDirection.INCREASING
    if slope < -threshold:
        return TrendDirection.DECREASING
    return TrendDirection.STABLE


def percentage_change(start: float, end: float) -> float:
    if start == 0:
        return 0.0
    return round((end - start) / start * 100, 2)


def detect_outliers(samples: Sequence[object], metric: str) -> List[object]:
    """Samples outside ``[Q1 - 1.5*IQR, Q3 + 1.5*IQR]``; needs at least 4 values."""
    readable = [sample for sample in samples if _read_metric(sample, metric) is not None]
    ordered = sorted(_read_metric(sample, metric) for sample in readable)
    n = len(ordered)
    if n < 4:
        return []
    q1 = ordered[math.floor(n * 0.25)]
    q3 = ordered[math.floor(n * 0.75)]
    iqr = q3 - q1
    lower = q1 - 1.5 * iqr
    upper = q3 + 1.5 * iqr
    return [
        sample
        for sample in readable
        if not lower <= _read_metric(sample, metric) <= upper
    ]


def moving_average(values: Sequence[float], window: int = 5) -> List[float]:
    window = max(1, int(window))
    averages = []
    for idx in range(len(values)):
        chunk = values[max(0, idx - window + 1) : idx + 1]
        averages.append(sum(chunk) / len(chunk))
    return averages


def predict_next_value(values: Sequence[float], steps_ahead: int = 1) -> Optional[float]:
    if not values:
        return None
    return values[-1] + calculate_slope(values) * steps_ahead


def trend_severity(
    rate: float, thresholds: Sequence[float] = SEVERITY_THRESHOLDS
) -> TrendSeverity:
    low, medium, high = thresholds
    magnitude = abs(rate)
    if magnitude < low:
        return TrendSeverity.MILD
    if magnitude < medium:
        return TrendSeverity.MODERATE
    if magnitude < high:
        return TrendSeverity.SIGNIFICANT
    return TrendSeverity.SEVERE


def compare_to_averages(
    current: Mapping[str, float], averages: Mapping[str, float]
) -> Dict[str, Dict[str, object]]:
    """Flag metrics deviating more than 10% from their window average."""
    comparison: Dict[str, Dict[str, object]] = {}
    for metric, value in current.items():
        average = averages.get(metric)
        if not average or isinstance(value, bool):
            continue
        diff = float(value) - float(average)
        percent = round(diff / float(average) * 100, 1)
        comparison[metric] = {
            "current": value,
            "average": round(float(average), 1),
            "difference": round(diff, 1),
            "percent_difference": percent,
            "status": "abnormal" if abs(percent) > 10 else "normal",
        }
    return comparison


def _span_days(samples: Sequence[object]) -> float:
    first = getattr(samples[0], "timestamp", None)
    last = getattr(samples[-1], "timestamp", None)
    if first is None or last is None:
        return 0.0
    return (last - first).total_seconds() / 86400


def build_trend_record(samples: Sequence[object], metric: str) -> Optional[TrendRecord]:
    values = metric_values(samples, metric)
    if not values:
        return None
    start, current = values[0], values[-1]
    slope = calculate_slope(values)
    change = current - start
    span = _span_days(samples) if len(values) == len(samples) else 0.0
    rate_per_day = change / span if span > 0 else 0.0
    return TrendRecord(
        metric=metric,
        current=current,
        start=start,
        change=round(change, 2),
        change_percent=percentage_change(start, current),
        direction=trend_direction(slope),
        slope=slope,
        rate_per_day=round(rate_per_day, 4),
        severity=trend_severity(rate_per_day) if len(values) > 1 else None,
    )


def build_trends(
    samples: Sequence[object], metrics: Iterable[str] = TREND_METRICS
) -> Dict[str, TrendRecord]:
    trends: Dict[str, TrendRecord] = {}
    if not samples:
        return trends
    for metric in metrics:
        record = build_trend_record(samples, metric)
        if record is not None:
            trends[metric] = record
    return trends


def summarize_irrigation(samples: Sequence[SensorSample]) -> IrrigationSummary:
    """Summarize motor-on minutes; most recent irrigation hours come first."""
    if not samples:
        return IrrigationSummary()
    total_minutes = sum(sample.motor_on_minutes for sample in samples)
    events = [sample for sample in samples if sample.motor_on_minutes > 0]
    hours: List[int] = []
    for sample in sorted(events, key=lambda item: item.timestamp, reverse=True):
        if sample.timestamp.hour not in hours:
            hours.append(sample.timestamp.hour)
    common_hours = hours[:3]
    if common_hours:
        pattern = "Usually irrigates around " + ", ".join(
            f"{hour}:00" for hour in common_hours
        )
    else:
        pattern = "No clear pattern detected"
    return IrrigationSummary(
        total_events=len(events),
        total_minutes=round(total_minutes, 1),
        avg_duration=round(total_minutes / len(events)) if events else 0,
        common_times=[f"{hour}:00" for hour in common_hours],
        pattern=pattern,
    )
