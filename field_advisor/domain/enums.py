from __future__ import annotations

from enum import Enum
from typing import Optional


class QueryType(str, Enum):
    WATERING = "watering"
    DISEASE = "disease"
    FERTILIZER = "fertilizer"
    PEST = "pest"
    WEATHER = "weather"
    PH = "ph"
    NUTRIENTS = "nutrients"
    GENERAL = "general"

    @classmethod
    def coerce(
        cls, value: object, default: Optional["QueryType"] = None
    ) -> "QueryType":
        """Map free text (e.g. ``"Watering "``) onto a member, else ``default``."""
        fallback = default or cls.GENERAL
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return fallback
        key = value.strip().lower()
        for member in cls:
            if member.value == key:
                return member
        return fallback


class Complexity(str, Enum):
    SIMPLE = "simple"
    COMPLEX = "complex"


class TrendDirection(str, Enum):
    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"


class TrendSeverity(str, Enum):
    MILD = "mild"
    MODERATE = "moderate"
    SIGNIFICANT = "significant"
    SEVERE = "severe"


class AnomalySeverity(str, Enum):
    MEDIUM = "medium"
    HIGH = "high"


class Urgency(str, Enum):
    NONE = "none"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ActionPriority(str, Enum):
    URGENT = "urgent"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ActionTaken(str, Enum):
    FOLLOWED = "followed"
    IGNORED = "ignored"
    MODIFIED = "modified"
    PENDING = "pending"
