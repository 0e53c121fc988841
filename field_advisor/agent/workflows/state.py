"""State threaded through the advisory workflow nodes."""

from typing import List, Optional, TypedDict

from ...domain.enums import QueryType
from ...schemas import (
    Classification,
    ContextBundle,
    FormattedResponse,
    Judgement,
    SensorSnapshot,
)


class PipelineState(TypedDict, total=False):
    """Mutated additively stage by stage; nothing is rolled back."""

    farmer_id: str
    query: str
    snapshot: SensorSnapshot
    query_type_hint: Optional[QueryType]
    bundle: ContextBundle
    formatted_context: str
    classification: Classification
    answer: str
    judgement: Judgement
    retry_count: int
    formatted: FormattedResponse
    conversation_id: Optional[str]
    stage: str
    last_event: str
    error: Optional[str]
    warnings: List[str]
    trace: List[str]
    started_at: float
    deadline_seconds: Optional[float]
    processing_time_ms: int


def add_trace(state: PipelineState, message: str) -> PipelineState:
    """Append a message to the workflow trace."""
    trace = list(state.get("trace") or [])
    trace.append(message)
    return {**state, "trace": trace}


def add_warning(state: PipelineState, message: str) -> PipelineState:
    warnings = list(state.get("warnings") or [])
    warnings.append(message)
    return {**state, "warnings": warnings}
