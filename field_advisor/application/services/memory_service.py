"""Conversation persistence and farmer-profile learning."""

from __future__ import annotations

from typing import List, Optional, Union

from ...domain.enums import ActionTaken
from ...domain.errors import ConversationNotFoundError, ProfileUpdateError
from ...infra.conversation_store import ConversationStore, get_conversation_store
from ...infra.profile_store import FarmerProfileStore, get_profile_store
from ...observability.logging_utils import log_event, log_warning
from ...schemas import (
    ActionRecord,
    Classification,
    ContextBundle,
    ContextUsage,
    ConversationRecord,
    FormattedResponse,
    Judgement,
    PipelineMetadata,
    utcnow,
)


DEFAULT_CONFIDENCE = 75


def build_conversation_record(
    *,
    farmer_id: str,
    bundle: ContextBundle,
    classification: Classification,
    answer: str,
    judgement: Optional[Judgement],
    formatted: Optional[FormattedResponse],
    retries: int,
    processing_time_ms: int,
) -> ConversationRecord:
    insights = list((formatted.insights if formatted else {}).values())
    reasoning: List[str] = [
        (judgement.reasoning if judgement and judgement.reasoning else None)
        or "Response generated and evaluated",
        *insights,
    ]
    score = judgement.score if judgement else DEFAULT_CONFIDENCE
    return ConversationRecord(
        farmer_id=farmer_id,
        query=bundle.query,
        query_type=classification.type,
        complexity=classification.complexity,
        sensor_snapshot=bundle.snapshot,
        crop=bundle.snapshot.crop,
        context_used=ContextUsage(
            past_conversations_count=len(bundle.past_conversations),
            trend_window_days=bundle.metadata.trend_window_days,
            similar_queries_found=len(bundle.similar_queries),
            anomalies_detected=len(bundle.anomalies),
            estimated_tokens=bundle.metadata.estimated_tokens,
        ),
        pipeline=PipelineMetadata(
            classification=classification,
            sub_queries=list(classification.sub_queries),
            judge_score=score,
            retries=retries,
            processing_time_ms=processing_time_ms,
        ),
        answer=answer,
        confidence=score,
        reasoning=reasoning,
        recommendations=list(formatted.actions) if formatted else [],
        tags=[
            classification.type.value,
            classification.complexity.value,
            *classification.sub_queries,
        ],
    )


class MemoryService:
    def __init__(
        self,
        conversation_store: Optional[ConversationStore] = None,
        profile_store: Optional[FarmerProfileStore] = None,
    ) -> None:
        self._conversations = conversation_store or get_conversation_store()
        self._profiles = profile_store or get_profile_store()

    def store(self, record: ConversationRecord) -> str:
        """Persist a finished run and bump the farmer's query-type counter."""
        conversation_id = self._conversations.create(record)
        log_event(
            "conversation_stored",
            conversation_id=conversation_id,
            farmer_id=record.farmer_id,
            query_type=record.query_type.value,
        )
        try:
            self._profiles.increment_query_type(
                record.farmer_id, record.query_type.value, record.crop
            )
        except Exception as exc:
            log_warning(
                "profile_update_failed",
                conversation_id=conversation_id,
                farmer_id=record.farmer_id,
                error=repr(exc),
            )
            raise ProfileUpdateError(conversation_id, exc) from exc
        return conversation_id

    def _require(self, conversation_id: str) -> ConversationRecord:
        record = self._conversations.get(conversation_id)
        if record is None:
            raise ConversationNotFoundError(conversation_id)
        return record

    def update_outcome(
        self,
        conversation_id: str,
        action_taken: Union[ActionTaken, str],
        was_successful: bool,
    ) -> ConversationRecord:
        record = self._require(conversation_id)
        action = ActionTaken(action_taken)
        record = record.model_copy(
            update={
                "action_taken": action,
                "action_timestamp": utcnow(),
                "was_successful": bool(was_successful),
            }
        )
        self._conversations.update(record)

        summary = (
            record.recommendations[0].action if record.recommendations else action.value
        )
        entry = ActionRecord(
            action=summary,
            problem=record.query_type.value,
            crop=record.crop,
        )
        if was_successful:
            entry.result = "Action completed successfully"
            profile = self._profiles.add_successful_action(record.farmer_id, entry)
        else:
            entry.reason = f"Reported unsuccessful ({action.value})"
            profile = self._profiles.add_failed_action(record.farmer_id, entry)
        log_event(
            "conversation_outcome",
            conversation_id=conversation_id,
            farmer_id=record.farmer_id,
            action_taken=action.value,
            was_successful=bool(was_successful),
            response_rate=profile.response_rate,
        )
        return record

    def record_feedback(
        self, conversation_id: str, feedback: str, comment: Optional[str] = None
    ) -> ConversationRecord:
        value = (feedback or "").strip().lower()
        if value not in {"up", "down"}:
            raise ValueError(f"feedback must be 'up' or 'down', got {feedback!r}")
        record = self._require(conversation_id)
        update = {"farmer_feedback": value}
        if comment:
            update["feedback_comment"] = comment
        record = record.model_copy(update=update)
        self._conversations.update(record)
        self._profiles.update_satisfaction(record.farmer_id, value == "up")
        log_event(
            "conversation_feedback",
            conversation_id=conversation_id,
            farmer_id=record.farmer_id,
            feedback=value,
        )
        return record
