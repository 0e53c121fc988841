from __future__ import annotations

import asyncio
import time
from typing import Optional, Union

from ..application.services.context_service import HistoricalContextBuilder
from ..application.services.memory_service import MemoryService
from ..domain.enums import QueryType
from ..domain.errors import PipelineCancelledError, PipelineTimeoutError
from ..infra.config import AppConfig, get_config
from ..infra.model_functions import ModelFunctions, build_model_functions
from ..infra.sensor_store import SensorStore, get_sensor_store
from ..observability.logging_utils import (
    init_logging,
    log_event,
    log_warning,
    summarize_text,
    trace_scope,
)
from ..schemas import QueryResult, SensorSnapshot
from .intent_rules import guess_query_type
from .workflows.advisory_graph import APOLOGY_MESSAGE, AdvisoryWorkflow
from .workflows.state import PipelineState


class QueryOrchestrator:
    """Entry point: one ``process_query`` call is one independent pipeline run."""

    def __init__(
        self,
        models: Optional[ModelFunctions] = None,
        *,
        context_builder: Optional[HistoricalContextBuilder] = None,
        memory_service: Optional[MemoryService] = None,
        sensor_store: Optional[SensorStore] = None,
        config: Optional[AppConfig] = None,
    ) -> None:
        self._cfg = config or get_config()
        init_logging(log_path=self._cfg.log_path, level=self._cfg.log_level)
        self._sensor_store = sensor_store or get_sensor_store()
        self._workflow = AdvisoryWorkflow(
            models or build_model_functions(),
            context_builder
            or HistoricalContextBuilder(sensor_store=self._sensor_store),
            memory_service or MemoryService(),
            config=self._cfg,
        )
        self._graph = self._workflow.build_graph()

    async def _resolve_snapshot(
        self, farmer_id: str, snapshot: Optional[SensorSnapshot]
    ) -> SensorSnapshot:
        if snapshot is not None:
            return snapshot
        try:
            latest = await asyncio.to_thread(self._sensor_store.latest, farmer_id)
        except Exception as exc:
            log_warning("latest_snapshot_failed", farmer_id=farmer_id, error=str(exc))
            latest = None
        return latest or SensorSnapshot()

    async def _run(
        self, state: PipelineState, cancel_event: Optional[asyncio.Event]
    ) -> PipelineState:
        deadline = self._cfg.pipeline_deadline_seconds
        try:
            return await asyncio.wait_for(
                self._graph.ainvoke(
                    state, config={"configurable": {"cancel_event": cancel_event}}
                ),
                timeout=deadline,
            )
        except asyncio.TimeoutError as exc:
            raise PipelineTimeoutError(deadline) from exc

    async def process_query(
        self,
        farmer_id: str,
        query: str,
        snapshot: Optional[SensorSnapshot] = None,
        *,
        query_type: Union[QueryType, str, None] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> QueryResult:
        started = time.perf_counter()
        with trace_scope():
            log_event(
                "query_received",
                farmer_id=farmer_id,
                query=summarize_text(query, limit=200),
            )
            hint = (
                QueryType.coerce(query_type) if query_type else guess_query_type(query)
            )
            initial: PipelineState = {
                "farmer_id": farmer_id,
                "query": query,
                "snapshot": await self._resolve_snapshot(farmer_id, snapshot),
                "query_type_hint": hint,
                "retry_count": 0,
                "conversation_id": None,
                "stage": "start",
                "error": None,
                "warnings": [],
                "trace": [],
                "started_at": started,
                "deadline_seconds": self._cfg.pipeline_deadline_seconds,
            }
            try:
                final_state = await self._run(initial, cancel_event)
            except PipelineTimeoutError as exc:
                return self._failure(exc, "timeout", started)
            except PipelineCancelledError as exc:
                return self._failure(exc, "cancelled", started)
            except Exception as exc:
                return self._failure(exc, "error", started)
            return self._to_result(final_state, started)

    @staticmethod
    def _elapsed_ms(started: float) -> int:
        return int((time.perf_counter() - started) * 1000)

    def _failure(self, exc: Exception, stage: str, started: float) -> QueryResult:
        log_warning("query_failed", stage=stage, error=repr(exc))
        return QueryResult(
            success=False,
            response_text=APOLOGY_MESSAGE,
            processing_time_ms=self._elapsed_ms(started),
            error=str(exc) or repr(exc),
            stage=stage,
        )

    def _to_result(self, state: PipelineState, started: float) -> QueryResult:
        fatal = state.get("error")
        formatted = state.get("formatted")
        judgement = state.get("judgement")
        warnings = state.get("warnings") or []
        if fatal:
            error = fatal
        else:
            error = "; ".join(warnings) or None
        result = QueryResult(
            success=not fatal,
            conversation_id=state.get("conversation_id"),
            response_text=(
                formatted.response if formatted and not fatal else APOLOGY_MESSAGE
            ),
            insights=dict(formatted.insights) if formatted else {},
            actions=list(formatted.actions) if formatted else [],
            alerts=list(formatted.alerts) if formatted else [],
            processing_time_ms=self._elapsed_ms(started),
            error=error,
            stage=state.get("stage", "start"),
            judge_score=judgement.score if judgement else None,
        )
        log_event(
            "query_complete",
            success=result.success,
            stage=result.stage,
            judge_score=result.judge_score,
            retries=state.get("retry_count", 0),
            conversation_id=result.conversation_id,
            processing_time_ms=result.processing_time_ms,
            trace=state.get("trace"),
        )
        return result
