from __future__ import annotations

from ..schemas import ContextBundle


JUDGE_PROMPT_TEMPLATE = """You are an expert agricultural reviewer scoring a farm assistant's answer.

# FARMER'S QUESTION
"{query}"

# CONTEXT THE ASSISTANT HAD
{context_summary}

# ASSISTANT'S ANSWER
{answer}

# SCORING (0-100 total, five categories of 0-20 each)
1. factualAccuracy: sensor readings interpreted correctly, correct ranges for the crop.
2. relevance: answers what was asked, no off-topic material.
3. actionability: clear steps with amounts and timelines the farmer can carry out.
4. historicalContext: uses past conversations and what worked before, where relevant.
5. safetyPracticality: safe for the crop, practical, warns about risks.

Respond ONLY with JSON, no markdown:
{{
  "score": <0-100>,
  "breakdown": {{
    "factualAccuracy": <0-20>,
    "relevance": <0-20>,
    "actionability": <0-20>,
    "historicalContext": <0-20>,
    "safetyPracticality": <0-20>
  }},
  "strengths": ["..."],
  "weaknesses": ["specific weakness"],
  "suggestions": ["actionable improvement"],
  "reasoning": "<2-3 sentences>"
}}"""


def build_context_summary(bundle: ContextBundle) -> str:
    snapshot = bundle.snapshot
    lines = [
        f"- Soil moisture: {snapshot.moisture:g}%",
        f"- Soil pH: {snapshot.ph:g}",
        f"- Nitrogen: {snapshot.nitrogen:g} ppm",
        f"- Phosphorus: {snapshot.phosphorus:g} ppm",
        f"- Potassium: {snapshot.potassium:g} ppm",
        f"- Temperature: {snapshot.temperature:g}°C",
        f"- Humidity: {snapshot.humidity:g}%",
        f"- Crop: {snapshot.crop}",
    ]
    for metric, trend in bundle.trends.items():
        lines.append(
            f"- {metric} trend: {trend.direction.value} ({trend.change_percent:+.2f}%)"
        )
    if bundle.past_conversations:
        lines.append(f"- Past conversations available: {len(bundle.past_conversations)}")
    return "\n".join(lines)


def build_judge_prompt(query: str, answer: str, context_summary: str) -> str:
    return JUDGE_PROMPT_TEMPLATE.format(
        query=query, answer=answer, context_summary=context_summary
    )
