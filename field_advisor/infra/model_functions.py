"""Async classifier / generator / judge callables consumed by the workflow."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import HumanMessage

from ..observability.logging_utils import log_event, summarize_text
from ..prompts.classifier import build_classifier_prompt
from ..prompts.judge import build_judge_prompt
from .json_payload import extract_llm_text
from .llm import get_chat_model, get_classifier_model, get_judge_model


ClassifyFn = Callable[[str], Awaitable[Any]]
GenerateFn = Callable[[str], Awaitable[str]]
JudgeFn = Callable[[str, str, str], Awaitable[Any]]


@dataclass(frozen=True)
class ModelFunctions:
    classify: ClassifyFn
    generate: GenerateFn
    judge: JudgeFn


async def _ask(model: BaseChatModel, prompt: str, label: str) -> str:
    result = await model.ainvoke([HumanMessage(content=prompt)])
    text = extract_llm_text(result)
    log_event(
        "model_response",
        model=label,
        prompt_chars=len(prompt),
        response_summary=summarize_text(text, limit=200),
    )
    return text


def build_model_functions(
    generator: Optional[BaseChatModel] = None,
    classifier: Optional[BaseChatModel] = None,
    judge: Optional[BaseChatModel] = None,
) -> ModelFunctions:
    """Wire LangChain chat models into the three call shapes the pipeline uses."""
    generator_model = generator or get_chat_model()
    classifier_model = classifier or get_classifier_model()
    judge_model = judge or get_judge_model()

    async def classify(query: str) -> str:
        return await _ask(classifier_model, build_classifier_prompt(query), "classifier")

    async def generate(prompt: str) -> str:
        return await _ask(generator_model, prompt, "generator")

    async def judge_answer(query: str, answer: str, context_summary: str) -> str:
        prompt = build_judge_prompt(query, answer, context_summary)
        return await _ask(judge_model, prompt, "judge")

    return ModelFunctions(classify=classify, generate=generate, judge=judge_answer)
