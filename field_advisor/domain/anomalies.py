from __future__ import annotations

import math
from typing import Dict, List, Optional

from ..schemas.models import (
    Anomaly,
    FieldDiagnosis,
    MoistureAnalysis,
    PhAnalysis,
    SensorSnapshot,
    TrendRecord,
)
from .enums import AnomalySeverity, TrendDirection, Urgency


MOISTURE_OPTIMAL = (40.0, 70.0)
MOISTURE_CRITICAL_FLOOR = 30.0
PH_OPTIMAL = (6.0, 7.0)
PH_STRONG_ACIDIC = 5.5
PH_STRONG_ALKALINE = 7.5
PH_RAPID_CHANGE = 0.3
TEMPERATURE_RANGE = (10.0, 35.0)


def analyze_moisture_trend(
    current: float,
    trend: Optional[TrendRecord],
    optimal: tuple = MOISTURE_OPTIMAL,
    critical_floor: float = MOISTURE_CRITICAL_FLOOR,
) -> MoistureAnalysis:
    low, high = optimal
    analysis = MoistureAnalysis()
    if current < low:
        analysis.status = "low"
        analysis.urgency = Urgency.HIGH
    elif current > high:
        analysis.status = "high"
        analysis.urgency = Urgency.MEDIUM

    if trend is None or trend.direction != TrendDirection.DECREASING:
        return analysis
    rate = trend.rate_per_day
    if rate >= 0:
        return analysis

    days_to_floor = (current - critical_floor) / abs(rate)
    analysis.days_to_action = math.ceil(days_to_floor)
    if days_to_floor < 1:
        analysis.urgency = Urgency.CRITICAL
        analysis.recommendation = "Water immediately"
    elif days_to_floor < 2:
        analysis.urgency = Urgency.HIGH
        analysis.recommendation = f"Water within {analysis.days_to_action} day(s)"
    else:
        analysis.urgency = Urgency.MEDIUM
        analysis.recommendation = (
            f"Monitor closely, water in {analysis.days_to_action} days"
        )
    return analysis


def analyze_ph_trend(
    current: float,
    trend: Optional[TrendRecord],
    optimal: tuple = PH_OPTIMAL,
) -> PhAnalysis:
    low, high = optimal
    analysis = PhAnalysis()
    if current < low:
        analysis.status = "acidic"
        analysis.issue = "soil_acidity"
        analysis.urgency = Urgency.HIGH if current < PH_STRONG_ACIDIC else Urgency.MEDIUM
        analysis.recommendation = "Add lime to increase pH"
    elif current > high:
        analysis.status = "alkaline"
        analysis.issue = "soil_alkalinity"
        analysis.urgency = (
            Urgency.HIGH if current > PH_STRONG_ALKALINE else Urgency.MEDIUM
        )
        analysis.recommendation = "Add sulfur or organic matter to decrease pH"

    if trend is not None and abs(trend.change) > PH_RAPID_CHANGE:
        if analysis.urgency == Urgency.NONE:
            analysis.urgency = Urgency.MEDIUM
        analysis.recommendation += f" (pH changing rapidly: {trend.direction.value})"
    return analysis


def _fmt(value: float) -> str:
    return f"{abs(value):g}"


def detect_anomalies(
    snapshot: SensorSnapshot,
    trends: Dict[str, TrendRecord],
    window_days: int = 7,
) -> List[Anomaly]:
    """Apply the fixed anomaly rules to the snapshot and its recent trends."""
    anomalies: List[Anomaly] = []

    moisture = trends.get("moisture")
    if moisture is not None and abs(moisture.change) > 20:
        anomalies.append(
            Anomaly(
                type="moisture_change",
                severity=AnomalySeverity.HIGH,
                message=(
                    f"Moisture {moisture.direction.value} by {_fmt(moisture.change)}% "
                    f"in {window_days} days"
                ),
                current=snapshot.moisture,
                trend=moisture.direction,
            )
        )

    ph = trends.get("ph")
    if ph is not None and abs(ph.change) > 0.5:
        anomalies.append(
            Anomaly(
                type="ph_change",
                severity=AnomalySeverity.MEDIUM,
                message=f"pH {ph.direction.value} by {_fmt(ph.change)} in {window_days} days",
                current=snapshot.ph,
                trend=ph.direction,
            )
        )

    nitrogen = trends.get("nitrogen")
    if nitrogen is not None and nitrogen.change < -30:
        anomalies.append(
            Anomaly(
                type="nitrogen_depletion",
                severity=AnomalySeverity.HIGH,
                message=(
                    f"Nitrogen dropped by {_fmt(nitrogen.change)} ppm "
                    f"in {window_days} days"
                ),
                current=snapshot.nitrogen,
                trend=TrendDirection.DECREASING,
            )
        )

    low, high = TEMPERATURE_RANGE
    if snapshot.temperature > high or snapshot.temperature < low:
        too_hot = snapshot.temperature > high
        anomalies.append(
            Anomaly(
                type="temperature_extreme",
                severity=AnomalySeverity.HIGH if too_hot else AnomalySeverity.MEDIUM,
                message=(
                    f"Temperature {'too high' if too_hot else 'too low'}: "
                    f"{snapshot.temperature:g}°C"
                ),
                current=snapshot.temperature,
            )
        )
    return anomalies


def diagnose_field(
    snapshot: SensorSnapshot, trends: Dict[str, TrendRecord]
) -> FieldDiagnosis:
    return FieldDiagnosis(
        moisture=analyze_moisture_trend(snapshot.moisture, trends.get("moisture")),
        ph=analyze_ph_trend(snapshot.ph, trends.get("ph")),
    )
