from .models import (
    ActionItem,
    ActionRecord,
    Anomaly,
    Classification,
    ContextBundle,
    ContextMetadata,
    ContextUsage,
    ConversationRecord,
    FarmerProfile,
    FieldDiagnosis,
    FormattedResponse,
    IrrigationSummary,
    JudgeBreakdown,
    Judgement,
    MoistureAnalysis,
    PastConversation,
    PhAnalysis,
    PipelineMetadata,
    ProfileStats,
    QueryResult,
    SensorSample,
    SensorSnapshot,
    SimilarQuery,
    TrendRecord,
    utcnow,
)

__all__ = [
    "ActionItem",
    "ActionRecord",
    "Anomaly",
    "Classification",
    "ContextBundle",
    "ContextMetadata",
    "ContextUsage",
    "ConversationRecord",
    "FarmerProfile",
    "FieldDiagnosis",
    "FormattedResponse",
    "IrrigationSummary",
    "JudgeBreakdown",
    "Judgement",
    "MoistureAnalysis",
    "PastConversation",
    "PhAnalysis",
    "PipelineMetadata",
    "ProfileStats",
    "QueryResult",
    "SensorSample",
    "SensorSnapshot",
    "SimilarQuery",
    "TrendRecord",
    "utcnow",
]
