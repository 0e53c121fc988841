"""Finite-state description of the advisory pipeline.

The graph in ``advisory_graph`` is wired from ``TRANSITIONS``: every node
emits exactly one ``Event`` and the next stage is ``transition(stage, event)``.
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, List, Tuple

from ...domain.errors import InvalidTransitionError
from ...schemas import Judgement


MAX_RETRIES = 1
APPROVAL_THRESHOLD = 85


class Stage(str, Enum):
    CONTEXT = "context"
    CLASSIFY = "classify"
    GENERATE = "generate"
    JUDGE = "judge"
    RETRY = "retry"
    FORMAT = "format"
    PERSIST = "persist"
    DONE = "done"
    ERROR = "error"


class Event(str, Enum):
    CONTEXT_READY = "context_ready"
    CONTEXT_FAILED = "context_failed"
    CLASSIFIED = "classified"
    GENERATED = "generated"
    GENERATION_FAILED = "generation_failed"
    APPROVED = "approved"
    APPROVED_WITH_WARNING = "approved_with_warning"
    REJECTED = "rejected"
    RETRIED = "retried"
    RETRIES_EXHAUSTED = "retries_exhausted"
    RETRY_FAILED = "retry_failed"
    FORMATTED = "formatted"
    PERSISTED = "persisted"
    PERSIST_FAILED = "persist_failed"


TRANSITIONS: Dict[Tuple[Stage, Event], Stage] = {
    (Stage.CONTEXT, Event.CONTEXT_READY): Stage.CLASSIFY,
    (Stage.CONTEXT, Event.CONTEXT_FAILED): Stage.ERROR,
    (Stage.CLASSIFY, Event.CLASSIFIED): Stage.GENERATE,
    (Stage.GENERATE, Event.GENERATED): Stage.JUDGE,
    (Stage.GENERATE, Event.GENERATION_FAILED): Stage.ERROR,
    (Stage.JUDGE, Event.APPROVED): Stage.FORMAT,
    (Stage.JUDGE, Event.APPROVED_WITH_WARNING): Stage.FORMAT,
    (Stage.JUDGE, Event.REJECTED): Stage.RETRY,
    (Stage.RETRY, Event.RETRIED): Stage.JUDGE,
    (Stage.RETRY, Event.RETRIES_EXHAUSTED): Stage.FORMAT,
    (Stage.RETRY, Event.RETRY_FAILED): Stage.FORMAT,
    (Stage.FORMAT, Event.FORMATTED): Stage.PERSIST,
    (Stage.PERSIST, Event.PERSISTED): Stage.DONE,
    (Stage.PERSIST, Event.PERSIST_FAILED): Stage.DONE,
}

TERMINAL_STAGES = frozenset({Stage.DONE, Stage.ERROR})


def transition(stage: Stage, event: Event) -> Stage:
    try:
        return TRANSITIONS[(Stage(stage), Event(event))]
    except (KeyError, ValueError):
        raise InvalidTransitionError(stage, event) from None


def events_from(stage: Stage) -> List[Event]:
    return [event for (source, event) in TRANSITIONS if source == stage]


def judge_event(judgement: Judgement, threshold: int = APPROVAL_THRESHOLD) -> Event:
    if judgement.unavailable:
        return Event.APPROVED_WITH_WARNING
    if judgement.score >= threshold:
        return Event.APPROVED
    return Event.REJECTED


def can_retry(retry_count: int, max_retries: int = MAX_RETRIES) -> bool:
    """Configuration may lower the retry limit but never raise it above one."""
    return retry_count < min(max_retries, MAX_RETRIES)
