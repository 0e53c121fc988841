"""Plain-text analysis of a generated answer into insights, actions and alerts."""

from __future__ import annotations

import re
from typing import Dict, List, Optional, Sequence

from ..schemas.models import ActionItem, ContextBundle, FormattedResponse
from .enums import ActionPriority, AnomalySeverity


URGENT_KEYWORDS = ["immediately", "urgent", "critical", "now", "today", "asap"]
HIGH_KEYWORDS = ["soon", "quickly", "within 1-2 days", "important"]
MEDIUM_KEYWORDS = ["within"]
ALERT_KEYWORDS = ["critical", "dangerous", "must", "immediately", "urgent"]

SENSOR_ALERT_PREFIX = "[SENSOR ALERT] "
MAX_ACTIONS = 5
MAX_ALERTS = 3
ACTION_MIN_LENGTH = 10
ACTION_MAX_LENGTH = 150

NUMBERED_PATTERN = re.compile(r"^\s*\d+\.\s+([^.\n]+)", re.MULTILINE)
BULLET_PATTERN = re.compile(r"^\s*[-•]\s+([^.\n]+)", re.MULTILINE)
ALERT_SENTENCE_PATTERN = re.compile(
    r"[^.!?\n]*\b(?:" + "|".join(ALERT_KEYWORDS) + r")\b[^.!?\n]*[.!?]?",
    re.IGNORECASE,
)


def _keyword_pattern(keywords: Sequence[str]) -> re.Pattern:
    alternatives = "|".join(re.escape(word) for word in keywords)
    return re.compile(rf"(?<![\w-])(?:{alternatives})(?![\w-])", re.IGNORECASE)


_URGENT_RE = _keyword_pattern(URGENT_KEYWORDS)
_HIGH_RE = _keyword_pattern(HIGH_KEYWORDS)
_MEDIUM_RE = _keyword_pattern(MEDIUM_KEYWORDS)


def determine_priority(action_text: str) -> ActionPriority:
    if _URGENT_RE.search(action_text):
        return ActionPriority.URGENT
    if _HIGH_RE.search(action_text):
        return ActionPriority.HIGH
    if _MEDIUM_RE.search(action_text):
        return ActionPriority.MEDIUM
    return ActionPriority.LOW


def extract_actions(answer: str) -> List[ActionItem]:
    """Numbered lines first, then bulleted ones; first occurrence wins."""
    actions: List[ActionItem] = []
    seen = set()
    for pattern in (NUMBERED_PATTERN, BULLET_PATTERN):
        for match in pattern.finditer(answer or ""):
            text = match.group(1).strip()
            if not ACTION_MIN_LENGTH < len(text) < ACTION_MAX_LENGTH:
                continue
            key = text.lower()
            if key in seen:
                continue
            seen.add(key)
            actions.append(ActionItem(action=text, priority=determine_priority(text)))
    return actions[:MAX_ACTIONS]


def extract_insights(answer: str, bundle: Optional[ContextBundle]) -> Dict[str, str]:
    insights: Dict[str, str] = {}
    if bundle is None:
        return insights
    text = answer or ""
    for metric, trend in bundle.trends.items():
        if re.search(rf"\b{re.escape(metric)}\b", text, re.IGNORECASE):
            insights[f"{metric}_trend"] = (
                f"{metric} is {trend.direction.value} by {abs(trend.change):.2f}"
            )
    last_success = next(
        (conv for conv in bundle.past_conversations if conv.was_successful), None
    )
    if last_success is not None:
        insights["history"] = (
            f"Last successful: {last_success.query} ({last_success.days_ago}d ago)"
        )
    return insights


def extract_alerts(answer: str, bundle: Optional[ContextBundle]) -> List[str]:
    alerts: List[str] = []
    if bundle is not None:
        for anomaly in bundle.anomalies:
            if anomaly.severity == AnomalySeverity.HIGH:
                alerts.append(f"{SENSOR_ALERT_PREFIX}{anomaly.message}")
    for match in ALERT_SENTENCE_PATTERN.finditer(answer or ""):
        sentence = match.group(0).strip()
        if sentence and sentence not in alerts:
            alerts.append(sentence)
    return alerts[:MAX_ALERTS]


def format_response(answer: str, bundle: Optional[ContextBundle]) -> FormattedResponse:
    return FormattedResponse(
        response=answer,
        insights=extract_insights(answer, bundle),
        actions=extract_actions(answer),
        alerts=extract_alerts(answer, bundle),
    )
