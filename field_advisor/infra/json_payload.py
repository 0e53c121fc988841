"""Recover JSON objects from loosely formatted model output."""

from __future__ import annotations

import ast
import json
import re
from typing import Optional


def extract_llm_text(result: object) -> str:
    content = getattr(result, "content", result)
    if isinstance(content, list):
        parts = []
        for item in content:
            if isinstance(item, dict):
                parts.append(str(item.get("text") or item.get("content") or ""))
            else:
                parts.append(str(item))
        return "".join(parts).strip()
    if content is None:
        return ""
    return str(content).strip()


def strip_code_fence(text: str) -> str:
    cleaned = text.strip()
    if cleaned.startswith("```"):
        cleaned = re.sub(r"^```(?:json)?", "", cleaned, flags=re.IGNORECASE).strip()
        if cleaned.endswith("```"):
            cleaned = cleaned[:-3].strip()
    return cleaned


def extract_json_block(text: str) -> Optional[str]:
    if not text:
        return None
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end == -1 or end <= start:
        return None
    return text[start : end + 1]


def load_json_payload(raw: object) -> Optional[dict]:
    """Return a dict from ``raw`` (dict, message or text), else ``None``."""
    if isinstance(raw, dict):
        return raw
    text = extract_llm_text(raw)
    if not text:
        return None
    cleaned = strip_code_fence(text)
    for candidate in (cleaned, extract_json_block(cleaned)):
        if not candidate:
            continue
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError:
            try:
                data = ast.literal_eval(candidate)
            except (ValueError, SyntaxError):
                continue
        if isinstance(data, dict):
            return data
    return None
