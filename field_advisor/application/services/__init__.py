from .context_service import (
    CONTEXT_PROFILES,
    DEFAULT_CONTEXT_PROFILE,
    ContextProfile,
    HistoricalContextBuilder,
    format_context,
    resolve_context_profile,
)
from .memory_service import MemoryService, build_conversation_record

__all__ = [
    "CONTEXT_PROFILES",
    "DEFAULT_CONTEXT_PROFILE",
    "ContextProfile",
    "HistoricalContextBuilder",
    "MemoryService",
    "build_conversation_record",
    "format_context",
    "resolve_context_profile",
]
