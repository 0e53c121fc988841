"""Assemble the query-scoped historical context handed to the advisor model."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from ...domain.anomalies import detect_anomalies, diagnose_field
from ...domain.enums import QueryType
from ...domain.trends import TREND_METRICS, build_trends, summarize_irrigation
from ...infra.config import get_config
from ...infra.conversation_store import (
    ConversationStore,
    days_ago,
    get_conversation_store,
)
from ...infra.profile_store import FarmerProfileStore, get_profile_store
from ...infra.sensor_store import SensorStore, get_sensor_store
from ...observability.logging_utils import log_event, log_warning
from ...schemas import (
    ContextBundle,
    ContextMetadata,
    ConversationRecord,
    PastConversation,
    SensorSnapshot,
    SimilarQuery,
    TrendRecord,
)


@dataclass(frozen=True)
class ContextProfile:
    name: str
    metrics: Tuple[str, ...]
    window_days: int
    max_conversations: int
    include_irrigation: bool
    include_profile: bool
    include_anomalies: bool


_NUTRIENT_PROFILE = dict(
    metrics=("nitrogen", "phosphorus", "potassium", "ph"),
    window_days=14,
    max_conversations=3,
    include_irrigation=False,
    include_profile=True,
    include_anomalies=True,
)

CONTEXT_PROFILES: Dict[QueryType, ContextProfile] = {
    QueryType.WATERING: ContextProfile(
        name="watering",
        metrics=("moisture", "temperature", "humidity"),
        window_days=7,
        max_conversations=2,
        include_irrigation=True,
        include_profile=False,
        include_anomalies=True,
    ),
    QueryType.FERTILIZER: ContextProfile(name="fertilizer", **_NUTRIENT_PROFILE),
    QueryType.NUTRIENTS: ContextProfile(name="nutrients", **_NUTRIENT_PROFILE),
    QueryType.PH: ContextProfile(
        name="ph",
        metrics=("ph",),
        window_days=14,
        max_conversations=2,
        include_irrigation=False,
        include_profile=True,
        include_anomalies=True,
    ),
    QueryType.DISEASE: ContextProfile(
        name="disease",
        metrics=("temperature", "humidity", "moisture"),
        window_days=7,
        max_conversations=3,
        include_irrigation=False,
        include_profile=True,
        include_anomalies=True,
    ),
    QueryType.PEST: ContextProfile(
        name="pest",
        metrics=("temperature", "humidity"),
        window_days=7,
        max_conversations=2,
        include_irrigation=False,
        include_profile=True,
        include_anomalies=True,
    ),
    QueryType.WEATHER: ContextProfile(
        name="weather",
        metrics=("temperature", "humidity"),
        window_days=7,
        max_conversations=2,
        include_irrigation=True,
        include_profile=False,
        include_anomalies=True,
    ),
}

DEFAULT_CONTEXT_PROFILE = ContextProfile(
    name="default",
    metrics=("moisture", "ph"),
    window_days=7,
    max_conversations=2,
    include_irrigation=False,
    include_profile=True,
    include_anomalies=False,
)

ANOMALY_WINDOW_DAYS = 7
IRRIGATION_WINDOW_DAYS = 7

BASE_TOKENS = 100
TOKENS_PER_CONVERSATION = 100
TOKENS_PER_TREND = 40
IRRIGATION_TOKENS = 50
PROFILE_TOKENS = 80
ANOMALY_TOKENS = 40


def resolve_context_profile(query_type: object) -> ContextProfile:
    resolved = QueryType.coerce(query_type)
    return CONTEXT_PROFILES.get(resolved, DEFAULT_CONTEXT_PROFILE)


def estimate_tokens(bundle: ContextBundle, profile: ContextProfile) -> int:
    tokens = BASE_TOKENS
    tokens += len(bundle.past_conversations) * TOKENS_PER_CONVERSATION
    tokens += len(bundle.trends) * TOKENS_PER_TREND
    if profile.include_irrigation:
        tokens += IRRIGATION_TOKENS
    if profile.include_profile:
        tokens += PROFILE_TOKENS
    if profile.include_anomalies:
        tokens += ANOMALY_TOKENS
    return tokens


def _to_past_conversation(record: ConversationRecord) -> PastConversation:
    return PastConversation(
        conversation_id=record.conversation_id,
        timestamp=record.created_at,
        days_ago=days_ago(record.created_at),
        query=record.query,
        query_type=record.query_type,
        answer_excerpt=record.answer[:200],
        action_taken=record.action_taken,
        was_successful=record.was_successful,
        feedback=record.farmer_feedback,
    )


def _to_similar_query(record: ConversationRecord) -> SimilarQuery:
    return SimilarQuery(
        conversation_id=record.conversation_id,
        days_ago=days_ago(record.created_at),
        query=record.query,
        answer_excerpt=record.answer[:150],
        was_successful=record.was_successful,
        recommendations=list(record.recommendations),
    )


class HistoricalContextBuilder:
    """Fan out the independent history lookups for one query and join them.

    Store calls are blocking, so each runs in a worker thread; a failure in
    any lookup leaves its field empty instead of failing the bundle.
    """

    def __init__(
        self,
        sensor_store: Optional[SensorStore] = None,
        conversation_store: Optional[ConversationStore] = None,
        profile_store: Optional[FarmerProfileStore] = None,
        *,
        conversation_window_days: Optional[int] = None,
        similar_query_limit: Optional[int] = None,
    ) -> None:
        cfg = get_config()
        self._sensor_store = sensor_store or get_sensor_store()
        self._conversation_store = conversation_store or get_conversation_store()
        self._profile_store = profile_store or get_profile_store()
        self._conversation_window_days = (
            conversation_window_days or cfg.conversation_window_days
        )
        self._similar_query_limit = similar_query_limit or cfg.similar_query_limit

    async def build_context(
        self,
        farmer_id: str,
        query: str,
        snapshot: SensorSnapshot,
        query_type: object = QueryType.GENERAL,
    ) -> ContextBundle:
        resolved_type = QueryType.coerce(query_type)
        try:
            return await self._build(farmer_id, query, snapshot, resolved_type)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            log_warning(
                "context_build_failed",
                farmer_id=farmer_id,
                query_type=resolved_type.value,
                error=str(exc),
            )
            return ContextBundle(
                query=query,
                query_type=resolved_type,
                snapshot=snapshot,
                metadata=ContextMetadata(
                    profile_name=resolve_context_profile(resolved_type).name,
                    note=f"Limited context available: {exc}",
                ),
            )

    async def _build(
        self,
        farmer_id: str,
        query: str,
        snapshot: SensorSnapshot,
        query_type: QueryType,
    ) -> ContextBundle:
        profile = resolve_context_profile(query_type)
        fetches = {
            "trends": self._fetch_trends(farmer_id, profile.window_days),
            "conversations": self._fetch_conversations(
                farmer_id, profile.max_conversations
            ),
            "profile": self._fetch_profile(farmer_id, profile.include_profile),
            "irrigation": self._fetch_irrigation(farmer_id, profile.include_irrigation),
            "anomalies": self._fetch_anomalies(
                farmer_id, snapshot, profile.include_anomalies
            ),
            "similar_queries": self._fetch_similar(farmer_id, query_type),
        }
        defaults: Dict[str, Any] = {
            "trends": {},
            "conversations": [],
            "profile": None,
            "irrigation": None,
            "anomalies": [],
            "similar_queries": [],
        }
        outcomes = await asyncio.gather(*fetches.values(), return_exceptions=True)

        results: Dict[str, Any] = {}
        failed: List[str] = []
        for name, outcome in zip(fetches.keys(), outcomes):
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            if isinstance(outcome, Exception):
                failed.append(name)
                log_warning(
                    "context_fetch_failed",
                    farmer_id=farmer_id,
                    fetch=name,
                    error=str(outcome),
                )
                results[name] = defaults[name]
            else:
                results[name] = outcome

        all_trends: Dict[str, TrendRecord] = results["trends"]
        scoped_trends = {
            metric: record
            for metric, record in all_trends.items()
            if metric in profile.metrics
        }
        bundle = ContextBundle(
            query=query,
            query_type=query_type,
            snapshot=snapshot,
            trends=scoped_trends,
            past_conversations=results["conversations"],
            similar_queries=results["similar_queries"],
            farmer_profile=results["profile"],
            irrigation=results["irrigation"],
            anomalies=results["anomalies"],
            diagnosis=diagnose_field(snapshot, all_trends),
        )
        metadata = ContextMetadata(
            profile_name=profile.name,
            trend_window_days=profile.window_days,
            conversations_found=len(bundle.past_conversations),
            similar_queries_found=len(bundle.similar_queries),
            anomalies_detected=len(bundle.anomalies),
            estimated_tokens=estimate_tokens(bundle, profile),
            failed_fetches=failed,
        )
        bundle = bundle.model_copy(update={"metadata": metadata})
        log_event(
            "context_built",
            farmer_id=farmer_id,
            profile=profile.name,
            trends=sorted(bundle.trends),
            conversations=metadata.conversations_found,
            anomalies=metadata.anomalies_detected,
            estimated_tokens=metadata.estimated_tokens,
            failed_fetches=failed,
        )
        return bundle

    async def _fetch_trends(self, farmer_id: str, days: int) -> Dict[str, TrendRecord]:
        samples = await asyncio.to_thread(self._sensor_store.history, farmer_id, days)
        return build_trends(samples, TREND_METRICS)

    async def _fetch_conversations(
        self, farmer_id: str, limit: int
    ) -> List[PastConversation]:
        records = await asyncio.to_thread(
            self._conversation_store.recent,
            farmer_id,
            self._conversation_window_days,
            limit,
        )
        return [_to_past_conversation(record) for record in records[:limit]]

    async def _fetch_profile(self, farmer_id: str, enabled: bool):
        if not enabled:
            return None
        return await asyncio.to_thread(self._profile_store.get, farmer_id)

    async def _fetch_irrigation(self, farmer_id: str, enabled: bool):
        if not enabled:
            return None
        samples = await asyncio.to_thread(
            self._sensor_store.history, farmer_id, IRRIGATION_WINDOW_DAYS
        )
        return summarize_irrigation(samples)

    async def _fetch_anomalies(
        self, farmer_id: str, snapshot: SensorSnapshot, enabled: bool
    ):
        if not enabled:
            return []
        samples = await asyncio.to_thread(
            self._sensor_store.history, farmer_id, ANOMALY_WINDOW_DAYS
        )
        return detect_anomalies(snapshot, build_trends(samples), ANOMALY_WINDOW_DAYS)

    async def _fetch_similar(
        self, farmer_id: str, query_type: QueryType
    ) -> List[SimilarQuery]:
        records = await asyncio.to_thread(
            self._conversation_store.similar,
            farmer_id,
            query_type,
            self._similar_query_limit,
        )
        return [_to_similar_query(record) for record in records]


def _outcome_label(was_successful: Optional[bool]) -> str:
    if was_successful is True:
        return "worked"
    if was_successful is False:
        return "did not work"
    return "outcome unknown"


def format_context(bundle: ContextBundle) -> str:
    snapshot = bundle.snapshot
    lines = [
        "=== CURRENT SENSORS ===",
        f"Moisture: {snapshot.moisture:g}%",
        f"pH: {snapshot.ph:g}",
        f"Nitrogen: {snapshot.nitrogen:g} ppm",
        f"Phosphorus: {snapshot.phosphorus:g} ppm",
        f"Potassium: {snapshot.potassium:g} ppm",
        f"Temperature: {snapshot.temperature:g}°C",
        f"Humidity: {snapshot.humidity:g}%",
        f"Crop: {snapshot.crop}",
        f"Motor: {'ON (irrigating)' if snapshot.motor_on else 'OFF'}",
        (
            "Mode: MANUAL (automatic irrigation disabled by farmer)"
            if snapshot.manual_override
            else "Mode: AUTO"
        ),
    ]

    if bundle.trends:
        lines.append("")
        lines.append(f"=== RECENT TRENDS ({bundle.metadata.trend_window_days} days) ===")
        for metric, trend in bundle.trends.items():
            lines.append(
                f"{metric.upper()}: {trend.direction.value} "
                f"(change {trend.change:+g}, {trend.change_percent:+.2f}%)"
            )

    if bundle.anomalies:
        lines.append("")
        lines.append("=== DETECTED ISSUES ===")
        for anomaly in bundle.anomalies[:3]:
            lines.append(
                f"[{anomaly.severity.value.upper()}] {anomaly.type}: {anomaly.message}"
            )

    lines.append("")
    lines.append("=== RECENT HISTORY ===")
    if bundle.past_conversations:
        for conv in bundle.past_conversations[:2]:
            lines.append(
                f'{conv.days_ago}d ago [{conv.query_type.value}]: "{conv.query}" '
                f"({_outcome_label(conv.was_successful)})"
            )
    else:
        lines.append("No recent conversations")

    if bundle.irrigation is not None:
        irrigation = bundle.irrigation
        lines.append("")
        lines.append("=== IRRIGATION PATTERN ===")
        lines.append(
            f"{irrigation.total_events} events, {irrigation.total_minutes:g} min total, "
            f"avg {irrigation.avg_duration:g} min"
        )
        lines.append(irrigation.pattern)

    profile = bundle.farmer_profile
    if profile is not None and (profile.preferred_methods or profile.common_issues):
        lines.append("")
        lines.append("=== FARMER PREFERENCES ===")
        if profile.preferred_methods:
            lines.append("Preferred methods: " + ", ".join(profile.preferred_methods))
        if profile.common_issues:
            lines.append("Recurring issues: " + ", ".join(profile.top_issues()))

    return "\n".join(lines)
