from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Dict, List, Literal, Optional
from uuid import uuid4

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from ..domain.enums import (
    ActionPriority,
    ActionTaken,
    AnomalySeverity,
    Complexity,
    QueryType,
    TrendDirection,
    TrendSeverity,
    Urgency,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SensorSnapshot(BaseModel):
    """Field state captured by the caller for a single query."""

    model_config = ConfigDict(frozen=True)

    moisture: float = Field(default=0.0, ge=0, le=100, description="Soil moisture in %.")
    ph: float = Field(default=7.0, ge=0, le=14)
    nitrogen: float = Field(default=0.0, ge=0, description="ppm")
    phosphorus: float = Field(default=0.0, ge=0, description="ppm")
    potassium: float = Field(default=0.0, ge=0, description="ppm")
    temperature: float = Field(default=25.0, description="Air temperature in °C.")
    humidity: float = Field(default=50.0, ge=0, le=100)
    crop: str = Field(default="Tomato", examples=["Tomato", "Rice"])
    motor_on: bool = False
    manual_override: bool = Field(
        default=False, description="Farmer disabled automatic irrigation."
    )


class SensorSample(BaseModel):
    """One aggregated reading in a farmer's time-ordered sensor history."""

    timestamp: datetime
    moisture: float = 0.0
    ph: float = 7.0
    nitrogen: float = 0.0
    phosphorus: float = 0.0
    potassium: float = 0.0
    temperature: float = 25.0
    humidity: float = 50.0
    crop: Optional[str] = None
    motor_on: bool = False
    manual_override: bool = False
    motor_on_minutes: float = Field(
        default=0.0, ge=0, description="Irrigation minutes within this sample."
    )

    def to_snapshot(self) -> SensorSnapshot:
        return SensorSnapshot(
            moisture=self.moisture,
            ph=self.ph,
            nitrogen=self.nitrogen,
            phosphorus=self.phosphorus,
            potassium=self.potassium,
            temperature=self.temperature,
            humidity=self.humidity,
            crop=self.crop or "Tomato",
            motor_on=self.motor_on,
            manual_override=self.manual_override,
        )


class TrendRecord(BaseModel):
    metric: str
    current: float
    start: float
    change: float
    change_percent: float
    direction: TrendDirection
    slope: float = 0.0
    rate_per_day: float = 0.0
    severity: Optional[TrendSeverity] = None


class Anomaly(BaseModel):
    type: str
    severity: AnomalySeverity
    message: str
    current: Optional[float] = None
    trend: Optional[TrendDirection] = None


class MoistureAnalysis(BaseModel):
    status: str = "normal"
    urgency: Urgency = Urgency.NONE
    recommendation: str = ""
    days_to_action: Optional[int] = None


class PhAnalysis(BaseModel):
    status: str = "normal"
    urgency: Urgency = Urgency.NONE
    recommendation: str = ""
    issue: Optional[str] = None


class FieldDiagnosis(BaseModel):
    moisture: Optional[MoistureAnalysis] = None
    ph: Optional[PhAnalysis] = None


class IrrigationSummary(BaseModel):
    total_events: int = 0
    total_minutes: float = 0.0
    avg_duration: float = 0.0
    common_times: List[str] = Field(default_factory=list)
    pattern: str = "No irrigation data available"


class ActionItem(BaseModel):
    action: str
    priority: ActionPriority = ActionPriority.LOW


class PastConversation(BaseModel):
    """Trimmed view of a stored conversation handed to the model."""

    conversation_id: str
    timestamp: datetime
    days_ago: int
    query: str
    query_type: QueryType
    answer_excerpt: str = ""
    action_taken: Optional[ActionTaken] = None
    was_successful: Optional[bool] = None
    feedback: Optional[str] = None


class SimilarQuery(BaseModel):
    conversation_id: str
    days_ago: int
    query: str
    answer_excerpt: str = ""
    was_successful: Optional[bool] = None
    recommendations: List[ActionItem] = Field(default_factory=list)


class ActionRecord(BaseModel):
    action: str
    date: datetime = Field(default_factory=utcnow)
    problem: str = ""
    result: Optional[str] = None
    reason: Optional[str] = None
    crop: Optional[str] = None


class ProfileStats(BaseModel):
    total_queries: int = 0
    satisfaction_rate: float = Field(default=0.0, ge=0.0, le=1.0)
    first_query_at: Optional[datetime] = None
    last_query_at: Optional[datetime] = None


def _empty_query_frequency() -> Dict[str, int]:
    return {query_type.value: 0 for query_type in QueryType}


class FarmerProfile(BaseModel):
    """Behavioral profile learned from a farmer's completed conversations."""

    farmer_id: str
    query_frequency: Dict[str, int] = Field(default_factory=_empty_query_frequency)
    response_rate: float = Field(default=0.0, ge=0.0, le=1.0)
    common_issues: List[str] = Field(default_factory=list)
    preferred_methods: List[str] = Field(default_factory=list)
    successful_actions: List[ActionRecord] = Field(default_factory=list)
    failed_actions: List[ActionRecord] = Field(default_factory=list)
    current_crop: Optional[str] = None
    stats: ProfileStats = Field(default_factory=ProfileStats)
    updated_at: datetime = Field(default_factory=utcnow)

    def top_issues(self, limit: int = 3) -> List[str]:
        return list(self.common_issues[:limit])

    def record_query(self, query_type: str, crop: Optional[str] = None) -> None:
        now = utcnow()
        key = QueryType.coerce(query_type).value
        self.query_frequency[key] = self.query_frequency.get(key, 0) + 1
        self.stats.total_queries += 1
        if self.stats.first_query_at is None:
            self.stats.first_query_at = now
        self.stats.last_query_at = now
        if crop:
            self.current_crop = crop
        self.updated_at = now

    def record_success(self, action: ActionRecord) -> None:
        self.successful_actions.append(action)
        self._refresh_response_rate()

    def record_failure(self, action: ActionRecord) -> None:
        self.failed_actions.append(action)
        if action.problem and action.problem not in self.common_issues:
            self.common_issues.append(action.problem)
        self._refresh_response_rate()

    def record_satisfaction(self, positive: bool) -> None:
        total = max(self.stats.total_queries, 1)
        current = self.stats.satisfaction_rate
        self.stats.satisfaction_rate = (
            (current * (total - 1)) + (1.0 if positive else 0.0)
        ) / total
        self.updated_at = utcnow()

    def _refresh_response_rate(self) -> None:
        total = len(self.successful_actions) + len(self.failed_actions)
        self.response_rate = len(self.successful_actions) / total if total else 0.0
        self.updated_at = utcnow()


class ContextMetadata(BaseModel):
    profile_name: str = "default"
    trend_window_days: int = 7
    conversations_found: int = 0
    similar_queries_found: int = 0
    anomalies_detected: int = 0
    estimated_tokens: int = 0
    failed_fetches: List[str] = Field(default_factory=list)
    note: Optional[str] = None


class ContextBundle(BaseModel):
    """Everything the model gets to see about the farmer for one query."""

    model_config = ConfigDict(frozen=True)

    query: str
    query_type: QueryType = QueryType.GENERAL
    snapshot: SensorSnapshot
    trends: Dict[str, TrendRecord] = Field(default_factory=dict)
    past_conversations: List[PastConversation] = Field(default_factory=list)
    similar_queries: List[SimilarQuery] = Field(default_factory=list)
    farmer_profile: Optional[FarmerProfile] = None
    irrigation: Optional[IrrigationSummary] = None
    anomalies: List[Anomaly] = Field(default_factory=list)
    diagnosis: Optional[FieldDiagnosis] = None
    metadata: ContextMetadata = Field(default_factory=ContextMetadata)


class Classification(BaseModel):
    type: QueryType = QueryType.GENERAL
    complexity: Complexity = Complexity.SIMPLE
    intent: str = "question"
    requires_sub_queries: bool = Field(
        default=False,
        validation_alias=AliasChoices("requires_sub_queries", "requiresSubQueries"),
    )
    sub_queries: List[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("sub_queries", "subQueries"),
    )

    @field_validator("type", mode="before")
    @classmethod
    def normalize_type(cls, value: object) -> QueryType:
        return QueryType.coerce(value)

    @field_validator("complexity", mode="before")
    @classmethod
    def normalize_complexity(cls, value: object) -> object:
        return value.strip().lower() if isinstance(value, str) else value

    @field_validator("sub_queries", mode="before")
    @classmethod
    def drop_blank_sub_queries(cls, value: object) -> object:
        if isinstance(value, list):
            return [str(item).strip() for item in value if str(item).strip()]
        return value


class JudgeBreakdown(BaseModel):
    factual_accuracy: int = Field(
        default=0,
        ge=0,
        le=20,
        validation_alias=AliasChoices("factual_accuracy", "factualAccuracy"),
    )
    relevance: int = Field(default=0, ge=0, le=20)
    actionability: int = Field(default=0, ge=0, le=20)
    historical_context: int = Field(
        default=0,
        ge=0,
        le=20,
        validation_alias=AliasChoices("historical_context", "historicalContext"),
    )
    safety_practicality: int = Field(
        default=0,
        ge=0,
        le=20,
        validation_alias=AliasChoices("safety_practicality", "safetyPracticality"),
    )

    @field_validator(
        "factual_accuracy",
        "relevance",
        "actionability",
        "historical_context",
        "safety_practicality",
        mode="before",
    )
    @classmethod
    def clamp_category(cls, value: object) -> int:
        if isinstance(value, bool):
            return 0
        try:
            number = float(value)
        except (TypeError, ValueError):
            return 0
        if not math.isfinite(number):
            return 0
        return max(0, min(20, int(round(number))))


class Judgement(BaseModel):
    score: int = Field(..., ge=0, le=100)
    breakdown: JudgeBreakdown = Field(default_factory=JudgeBreakdown)
    strengths: List[str] = Field(default_factory=list)
    weaknesses: List[str] = Field(default_factory=list)
    suggestions: List[str] = Field(default_factory=list)
    reasoning: str = ""
    unavailable: bool = Field(
        default=False, description="Set when the score was substituted, not judged."
    )

    @field_validator("score", mode="before")
    @classmethod
    def clamp_score(cls, value: object) -> object:
        if isinstance(value, bool):
            return value
        if isinstance(value, (int, float)):
            return max(0, min(100, int(round(value))))
        return value

    @field_validator("breakdown", mode="before")
    @classmethod
    def drop_malformed_breakdown(cls, value: object) -> object:
        if isinstance(value, (dict, JudgeBreakdown)):
            return value
        return {}


class FormattedResponse(BaseModel):
    response: str
    insights: Dict[str, str] = Field(default_factory=dict)
    actions: List[ActionItem] = Field(default_factory=list)
    alerts: List[str] = Field(default_factory=list)


class ContextUsage(BaseModel):
    past_conversations_count: int = 0
    trend_window_days: int = 0
    similar_queries_found: int = 0
    anomalies_detected: int = 0
    estimated_tokens: int = 0


class PipelineMetadata(BaseModel):
    classification: Classification = Field(default_factory=Classification)
    sub_queries: List[str] = Field(default_factory=list)
    judge_score: int = 0
    retries: int = 0
    processing_time_ms: int = 0


class ConversationRecord(BaseModel):
    """Stored outcome of a completed pipeline run."""

    conversation_id: str = Field(default_factory=lambda: uuid4().hex)
    farmer_id: str
    created_at: datetime = Field(default_factory=utcnow)
    query: str
    query_type: QueryType = QueryType.GENERAL
    complexity: Complexity = Complexity.SIMPLE
    sensor_snapshot: SensorSnapshot
    crop: Optional[str] = None
    context_used: ContextUsage = Field(default_factory=ContextUsage)
    pipeline: PipelineMetadata = Field(default_factory=PipelineMetadata)
    answer: str
    confidence: int = Field(default=0, ge=0, le=100)
    reasoning: List[str] = Field(default_factory=list)
    recommendations: List[ActionItem] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    action_taken: Optional[ActionTaken] = None
    action_timestamp: Optional[datetime] = None
    was_successful: Optional[bool] = None
    farmer_feedback: Optional[Literal["up", "down"]] = None
    feedback_comment: Optional[str] = None


class QueryResult(BaseModel):
    """Result handed back to the caller of ``process_query``."""

    success: bool
    conversation_id: Optional[str] = None
    response_text: str = ""
    insights: Dict[str, str] = Field(default_factory=dict)
    actions: List[ActionItem] = Field(default_factory=list)
    alerts: List[str] = Field(default_factory=list)
    processing_time_ms: int = 0
    error: Optional[str] = None
    stage: str = "start"
    judge_score: Optional[int] = None
