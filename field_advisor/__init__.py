"""Field advisor: sensor-aware, memory-backed answers to farmers' questions."""

from __future__ import annotations

from typing import Any


_EXPORTS = {
    "QueryOrchestrator": "field_advisor.agent.orchestrator",
    "AdvisoryWorkflow": "field_advisor.agent.workflows.advisory_graph",
    "HistoricalContextBuilder": "field_advisor.application.services.context_service",
    "format_context": "field_advisor.application.services.context_service",
    "MemoryService": "field_advisor.application.services.memory_service",
    "ModelFunctions": "field_advisor.infra.model_functions",
    "build_model_functions": "field_advisor.infra.model_functions",
}

__all__ = sorted(_EXPORTS)


def __getattr__(name: str) -> Any:
    module_path = _EXPORTS.get(name)
    if module_path is None:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    from importlib import import_module

    return getattr(import_module(module_path), name)
