from __future__ import annotations


class PipelineTimeoutError(TimeoutError):
    """Raised when a query run exceeds its overall deadline."""

    def __init__(self, deadline_seconds: float):
        self.deadline_seconds = deadline_seconds
        super().__init__(f"Pipeline exceeded its {deadline_seconds:g}s deadline")


class PipelineCancelledError(Exception):
    """Raised when the caller signals cancellation between stages."""

    def __init__(self, stage: str):
        self.stage = stage
        super().__init__(f"Pipeline cancelled at stage {stage!r}")


class ConversationNotFoundError(LookupError):
    def __init__(self, conversation_id: str):
        self.conversation_id = conversation_id
        super().__init__(f"Conversation not found: {conversation_id}")


class InvalidTransitionError(ValueError):
    def __init__(self, stage: object, event: object):
        self.stage = stage
        self.event = event
        super().__init__(f"No transition from {stage} on {event}")


class ProfileUpdateError(RuntimeError):
    """The conversation was stored but the farmer profile was not updated."""

    def __init__(self, conversation_id: str, cause: BaseException):
        self.conversation_id = conversation_id
        self.cause = cause
        super().__init__(
            f"Profile update failed for conversation {conversation_id}: {cause!r}"
        )
