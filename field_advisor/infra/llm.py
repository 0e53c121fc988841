"""Chat model factories for the generator, classifier and judge roles."""

from typing import Optional

from langchain_core.language_models import BaseChatModel
from langchain_openai import ChatOpenAI

from .config import get_config

CLASSIFIER_TEMPERATURE = 0.0
JUDGE_TEMPERATURE = 0.3


def _openai_model(
    *,
    role: str,
    provider: str,
    provider_env: str,
    api_key: Optional[str],
    key_env: str,
    base_url: Optional[str],
    model: str,
    temperature: float,
    timeout: float,
) -> BaseChatModel:
    if provider != "openai":
        raise ValueError(
            f"The {role} model only supports OpenAI-compatible APIs; set {provider_env}=openai"
        )
    if not api_key:
        raise ValueError(f"{key_env} is not configured; cannot build the {role} model")
    kwargs = {
        "api_key": api_key,
        "model": model,
        "temperature": temperature,
        "timeout": timeout,
        # the workflow owns retries
        "max_retries": 0,
    }
    if base_url:
        kwargs["base_url"] = base_url
    return ChatOpenAI(**kwargs)


def get_chat_model() -> BaseChatModel:
    cfg = get_config()
    return _openai_model(
        role="generator",
        provider=cfg.llm_provider,
        provider_env="LLM_PROVIDER",
        api_key=cfg.openai_api_key,
        key_env="OPENAI_API_KEY",
        base_url=cfg.openai_api_base,
        model=cfg.generator_model,
        temperature=cfg.generator_temperature,
        timeout=cfg.generator_timeout_seconds,
    )


def get_classifier_model() -> BaseChatModel:
    cfg = get_config()
    return _openai_model(
        role="classifier",
        provider=cfg.llm_provider,
        provider_env="LLM_PROVIDER",
        api_key=cfg.openai_api_key,
        key_env="OPENAI_API_KEY",
        base_url=cfg.openai_api_base,
        model=cfg.classifier_model,
        temperature=CLASSIFIER_TEMPERATURE,
        timeout=cfg.classifier_timeout_seconds,
    )


def get_judge_model() -> BaseChatModel:
    """Judge may point at a separate endpoint; falls back to the main key/base."""
    cfg = get_config()
    return _openai_model(
        role="judge",
        provider=cfg.judge_provider,
        provider_env="JUDGE_PROVIDER",
        api_key=cfg.judge_api_key or cfg.openai_api_key,
        key_env="JUDGE_API_KEY",
        base_url=cfg.judge_api_base or cfg.openai_api_base,
        model=cfg.judge_model,
        temperature=JUDGE_TEMPERATURE,
        timeout=cfg.judge_timeout_seconds,
    )
