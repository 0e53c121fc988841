from __future__ import annotations

from ..domain.enums import QueryType


QUERY_TYPE_CHOICES = "|".join(item.value for item in QueryType)

CLASSIFIER_PROMPT_TEMPLATE = """You classify a farmer's question about their field.

Question: "{query}"

Respond ONLY with JSON (no markdown):
{{
  "type": "{choices}",
  "complexity": "simple|complex",
  "intent": "question|alert|prediction|comparison",
  "requiresSubQueries": true|false,
  "subQueries": ["..."]
}}"""


def build_classifier_prompt(query: str) -> str:
    return CLASSIFIER_PROMPT_TEMPLATE.format(query=query, choices=QUERY_TYPE_CHOICES)
