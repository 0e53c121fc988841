from __future__ import annotations

from typing import Any


_MODULE_EXPORTS = {
    "analyze_moisture_trend": "anomalies",
    "analyze_ph_trend": "anomalies",
    "detect_anomalies": "anomalies",
    "diagnose_field": "anomalies",
    "build_trend_record": "trends",
    "build_trends": "trends",
    "calculate_slope": "trends",
    "compare_to_averages": "trends",
    "detect_outliers": "trends",
    "moving_average": "trends",
    "percentage_change": "trends",
    "predict_next_value": "trends",
    "summarize_irrigation": "trends",
    "trend_direction": "trends",
    "trend_severity": "trends",
    "determine_priority": "extraction",
    "extract_actions": "extraction",
    "extract_alerts": "extraction",
    "extract_insights": "extraction",
    "format_response": "extraction",
    "ConversationNotFoundError": "errors",
    "InvalidTransitionError": "errors",
    "PipelineCancelledError": "errors",
    "PipelineTimeoutError": "errors",
}

__all__ = sorted(_MODULE_EXPORTS)


def __getattr__(name: str) -> Any:
    module_name = _MODULE_EXPORTS.get(name)
    if module_name is None:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    from importlib import import_module

    module = import_module(f".{module_name}", __name__)
    return getattr(module, name)
