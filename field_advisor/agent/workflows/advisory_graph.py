"""
LangGraph workflow answering a farmer's question.

context -> classify -> generate -> judge -> [retry -> judge] -> format -> persist,
with context and generate failures routed to the error node. Each node records
the event it emitted and every conditional edge resolves it through
``transitions.transition``.
"""

from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable, Dict, Optional

from langchain_core.runnables import RunnableConfig
from langgraph.graph import END, StateGraph
from pydantic import ValidationError

from ...application.services.context_service import (
    HistoricalContextBuilder,
    format_context,
)
from ...application.services.memory_service import (
    MemoryService,
    build_conversation_record,
)
from ...domain.enums import Complexity, QueryType
from ...domain.errors import (
    PipelineCancelledError,
    PipelineTimeoutError,
    ProfileUpdateError,
)
from ...domain.extraction import format_response
from ...infra.config import AppConfig, get_config
from ...infra.json_payload import extract_llm_text, load_json_payload
from ...infra.model_functions import ModelFunctions
from ...observability.logging_utils import log_event, log_warning, summarize_text
from ...prompts.advisor import (
    build_complex_prompt,
    build_retry_prompt,
    build_simple_prompt,
)
from ...prompts.judge import build_context_summary
from ...schemas import Classification, FormattedResponse, Judgement
from .state import PipelineState, add_trace, add_warning
from .transitions import (
    Event,
    Stage,
    can_retry,
    events_from,
    judge_event,
    transition,
)


APOLOGY_MESSAGE = (
    "I apologize, but I encountered an issue processing your query. Please try again."
)
JUDGE_UNAVAILABLE_REASONING = "Judge unavailable, proceeding with caution"

NodeFn = Callable[[PipelineState, RunnableConfig], Awaitable[PipelineState]]


def _cancel_event(config: Optional[RunnableConfig]) -> Optional[asyncio.Event]:
    configurable = (config or {}).get("configurable") or {}
    return configurable.get("cancel_event")


def _check_cancelled(config: Optional[RunnableConfig], stage: Stage) -> None:
    event = _cancel_event(config)
    if event is not None and event.is_set():
        raise PipelineCancelledError(stage.value)


def default_classification(hint: Optional[QueryType]) -> Classification:
    return Classification(type=hint or QueryType.GENERAL)


def parse_classification(raw: object) -> Optional[Classification]:
    payload = load_json_payload(raw)
    if payload is None:
        return None
    try:
        return Classification.model_validate(payload)
    except ValidationError:
        return None


def parse_judgement(raw: object) -> Optional[Judgement]:
    payload = load_json_payload(raw)
    if payload is None or "score" not in payload:
        return None
    try:
        return Judgement.model_validate(payload)
    except ValidationError:
        return None


def _node_name(stage: Stage) -> str:
    if stage == Stage.DONE:
        return END
    return stage.value


class AdvisoryWorkflow:
    def __init__(
        self,
        models: ModelFunctions,
        context_builder: Optional[HistoricalContextBuilder] = None,
        memory_service: Optional[MemoryService] = None,
        *,
        config: Optional[AppConfig] = None,
    ) -> None:
        self._models = models
        self._context_builder = context_builder or HistoricalContextBuilder()
        self._memory = memory_service or MemoryService()
        self._cfg = config or get_config()

    async def _call_external(
        self,
        awaitable: Awaitable,
        *,
        timeout: float,
        config: Optional[RunnableConfig],
        stage: Stage,
    ):
        """Await a model call under its own timeout, abandoning it on cancel."""
        call = asyncio.ensure_future(asyncio.wait_for(awaitable, timeout))
        cancel_event = _cancel_event(config)
        if cancel_event is None:
            return await call
        waiter = asyncio.ensure_future(cancel_event.wait())
        try:
            done, _ = await asyncio.wait(
                {call, waiter}, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            call.cancel()
            raise
        finally:
            waiter.cancel()
        if waiter in done:
            call.cancel()
            raise PipelineCancelledError(stage.value)
        return call.result()

    async def _context_node(
        self, state: PipelineState, config: RunnableConfig
    ) -> PipelineState:
        _check_cancelled(config, Stage.CONTEXT)
        try:
            bundle = await self._context_builder.build_context(
                state["farmer_id"],
                state["query"],
                state["snapshot"],
                state.get("query_type_hint") or QueryType.GENERAL,
            )
            formatted_context = format_context(bundle)
        except PipelineCancelledError:
            raise
        except Exception as exc:
            log_warning("context_stage_failed", error=str(exc))
            state = add_trace(state, f"context failed={exc}")
            state.update(
                {
                    "error": f"Context building failed: {exc}",
                    "stage": "error",
                    "last_event": Event.CONTEXT_FAILED.value,
                }
            )
            return state

        state = add_trace(state, f"context profile={bundle.metadata.profile_name}")
        if bundle.metadata.failed_fetches:
            state = add_warning(
                state,
                "context degraded: " + ", ".join(bundle.metadata.failed_fetches),
            )
        if bundle.metadata.note:
            state = add_warning(state, bundle.metadata.note)
        state.update(
            {
                "bundle": bundle,
                "formatted_context": formatted_context,
                "stage": "context_built",
                "last_event": Event.CONTEXT_READY.value,
            }
        )
        return state

    async def _classify_node(
        self, state: PipelineState, config: RunnableConfig
    ) -> PipelineState:
        _check_cancelled(config, Stage.CLASSIFY)
        hint = state.get("query_type_hint")
        classification = None
        try:
            raw = await self._call_external(
                self._models.classify(state["query"]),
                timeout=self._cfg.classifier_timeout_seconds,
                config=config,
                stage=Stage.CLASSIFY,
            )
            classification = parse_classification(raw)
            if classification is None:
                log_warning(
                    "classification_unparseable",
                    raw_summary=summarize_text(extract_llm_text(raw), limit=200),
                )
                state = add_warning(state, "classification unparseable, using default")
        except PipelineCancelledError:
            raise
        except Exception as exc:
            log_warning("classification_failed", error=repr(exc))
            state = add_warning(state, f"classification unavailable: {exc!r}")

        if classification is None:
            classification = default_classification(hint)
        state = add_trace(
            state,
            f"classified type={classification.type.value} "
            f"complexity={classification.complexity.value}",
        )
        state.update(
            {
                "classification": classification,
                "stage": "classified",
                "last_event": Event.CLASSIFIED.value,
            }
        )
        return state

    async def _generate_node(
        self, state: PipelineState, config: RunnableConfig
    ) -> PipelineState:
        _check_cancelled(config, Stage.GENERATE)
        bundle = state["bundle"]
        classification = state["classification"]
        formatted_context = state.get("formatted_context") or format_context(bundle)
        if classification.complexity == Complexity.COMPLEX:
            prompt = build_complex_prompt(
                bundle, formatted_context, classification.sub_queries
            )
        else:
            prompt = build_simple_prompt(bundle, formatted_context)

        try:
            raw = await self._call_external(
                self._models.generate(prompt),
                timeout=self._cfg.generator_timeout_seconds,
                config=config,
                stage=Stage.GENERATE,
            )
            answer = extract_llm_text(raw)
            if not answer:
                raise ValueError("generator returned an empty answer")
        except PipelineCancelledError:
            raise
        except Exception as exc:
            log_warning("generation_failed", error=repr(exc))
            state = add_trace(state, f"generate failed={exc!r}")
            state.update(
                {
                    "error": f"Response generation failed: {exc!r}",
                    "stage": "error",
                    "last_event": Event.GENERATION_FAILED.value,
                }
            )
            return state

        state = add_trace(state, f"generated {classification.complexity.value}")
        state.update(
            {
                "answer": answer,
                "retry_count": 0,
                "stage": "response_generated",
                "last_event": Event.GENERATED.value,
            }
        )
        return state

    async def _judge_node(
        self, state: PipelineState, config: RunnableConfig
    ) -> PipelineState:
        _check_cancelled(config, Stage.JUDGE)
        judgement = None
        try:
            raw = await self._call_external(
                self._models.judge(
                    state["query"],
                    state["answer"],
                    build_context_summary(state["bundle"]),
                ),
                timeout=self._cfg.judge_timeout_seconds,
                config=config,
                stage=Stage.JUDGE,
            )
            judgement = parse_judgement(raw)
            if judgement is None:
                raise ValueError("judge response was not a parseable score")
        except PipelineCancelledError:
            raise
        except Exception as exc:
            log_warning("judge_failed", error=repr(exc))
            state = add_warning(state, f"judge unavailable: {exc!r}")
            judgement = Judgement(
                score=self._cfg.judge_fallback_score,
                reasoning=JUDGE_UNAVAILABLE_REASONING,
                unavailable=True,
            )

        event = judge_event(judgement, self._cfg.judge_threshold)
        stage_tag = {
            Event.APPROVED: "judge_approved",
            Event.APPROVED_WITH_WARNING: "judge_approved_with_warning",
            Event.REJECTED: "judge_rejected",
        }[event]
        log_event(
            "judge_scored",
            score=judgement.score,
            unavailable=judgement.unavailable,
            retry_count=state.get("retry_count", 0),
            outcome=event.value,
        )
        state = add_trace(state, f"judge score={judgement.score} {event.value}")
        state.update(
            {"judgement": judgement, "stage": stage_tag, "last_event": event.value}
        )
        return state

    async def _retry_node(
        self, state: PipelineState, config: RunnableConfig
    ) -> PipelineState:
        _check_cancelled(config, Stage.RETRY)
        retry_count = state.get("retry_count", 0)
        if not can_retry(retry_count, self._cfg.max_retries):
            state = add_trace(state, "retry skipped, max retries reached")
            state.update(
                {
                    "stage": "max_retries_reached",
                    "last_event": Event.RETRIES_EXHAUSTED.value,
                }
            )
            return state

        prompt = build_retry_prompt(
            state["bundle"],
            state.get("formatted_context") or format_context(state["bundle"]),
            state["answer"],
            state["judgement"],
        )
        try:
            raw = await self._call_external(
                self._models.generate(prompt),
                timeout=self._cfg.generator_timeout_seconds,
                config=config,
                stage=Stage.RETRY,
            )
            improved = extract_llm_text(raw)
            if not improved:
                raise ValueError("generator returned an empty answer")
        except PipelineCancelledError:
            raise
        except Exception as exc:
            log_warning("retry_failed", error=repr(exc))
            state = add_warning(state, f"retry failed: {exc!r}")
            state = add_trace(state, "retry failed, keeping previous answer")
            state.update(
                {"stage": "retry_failed", "last_event": Event.RETRY_FAILED.value}
            )
            return state

        state = add_trace(state, f"retry {retry_count + 1}")
        state.update(
            {
                "answer": improved,
                "retry_count": retry_count + 1,
                "stage": "response_improved",
                "last_event": Event.RETRIED.value,
            }
        )
        return state

    async def _format_node(
        self, state: PipelineState, config: RunnableConfig
    ) -> PipelineState:
        _check_cancelled(config, Stage.FORMAT)
        answer = state.get("answer", "")
        try:
            formatted = format_response(answer, state.get("bundle"))
            stage_tag = "response_formatted"
        except Exception as exc:
            log_warning("format_failed", error=repr(exc))
            state = add_warning(state, f"formatting failed: {exc!r}")
            formatted = FormattedResponse(response=answer)
            stage_tag = "response_formatted_with_error"
        state = add_trace(
            state,
            f"formatted actions={len(formatted.actions)} alerts={len(formatted.alerts)}",
        )
        state.update(
            {
                "formatted": formatted,
                "stage": stage_tag,
                "last_event": Event.FORMATTED.value,
            }
        )
        return state

    async def _persist_node(
        self, state: PipelineState, config: RunnableConfig
    ) -> PipelineState:
        _check_cancelled(config, Stage.PERSIST)
        processing_time_ms = int((time.perf_counter() - state["started_at"]) * 1000)
        deadline = state.get("deadline_seconds")
        if deadline is not None and processing_time_ms >= deadline * 1000:
            # a timed-out run never writes a conversation record
            raise PipelineTimeoutError(deadline)
        try:
            record = build_conversation_record(
                farmer_id=state["farmer_id"],
                bundle=state["bundle"],
                classification=state["classification"],
                answer=state["answer"],
                judgement=state.get("judgement"),
                formatted=state.get("formatted"),
                retries=state.get("retry_count", 0),
                processing_time_ms=processing_time_ms,
            )
            conversation_id = await asyncio.to_thread(self._memory.store, record)
        except Exception as exc:
            log_warning("persist_failed", error=repr(exc))
            state = add_trace(state, f"persist failed={exc!r}")
            state.update(
                {
                    "conversation_id": (
                        exc.conversation_id
                        if isinstance(exc, ProfileUpdateError)
                        else None
                    ),
                    "processing_time_ms": processing_time_ms,
                    "stage": "complete_with_error",
                    "last_event": Event.PERSIST_FAILED.value,
                }
            )
            return state

        state = add_trace(state, f"persisted {conversation_id}")
        state.update(
            {
                "conversation_id": conversation_id,
                "processing_time_ms": processing_time_ms,
                "stage": "complete",
                "last_event": Event.PERSISTED.value,
            }
        )
        return state

    async def _error_node(self, state: PipelineState) -> PipelineState:
        log_event("pipeline_error", error=state.get("error"))
        state = add_trace(state, "error terminal")
        state.update(
            {
                "formatted": FormattedResponse(response=APOLOGY_MESSAGE),
                "stage": "error",
            }
        )
        return state

    @staticmethod
    def _router(stage: Stage) -> Callable[[PipelineState], str]:
        def _route(state: PipelineState) -> str:
            return _node_name(transition(stage, Event(state["last_event"])))

        return _route

    def build_graph(self):
        nodes: Dict[Stage, NodeFn] = {
            Stage.CONTEXT: self._context_node,
            Stage.CLASSIFY: self._classify_node,
            Stage.GENERATE: self._generate_node,
            Stage.JUDGE: self._judge_node,
            Stage.RETRY: self._retry_node,
            Stage.FORMAT: self._format_node,
            Stage.PERSIST: self._persist_node,
        }
        graph = StateGraph(PipelineState)
        for stage, node in nodes.items():
            graph.add_node(stage.value, node)
        graph.add_node(Stage.ERROR.value, self._error_node)

        graph.set_entry_point(Stage.CONTEXT.value)
        for stage in nodes:
            targets = {
                _node_name(transition(stage, event)) for event in events_from(stage)
            }
            graph.add_conditional_edges(
                stage.value,
                self._router(stage),
                {target: target for target in targets},
            )
        graph.add_edge(Stage.ERROR.value, END)
        return graph.compile()
