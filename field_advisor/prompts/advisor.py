from __future__ import annotations

from typing import List, Optional

from ..domain.enums import Urgency
from ..schemas import ContextBundle, FieldDiagnosis, Judgement


SYSTEM_PROMPT_TEMPLATE = """You are a field advisor for small and medium farms with practical knowledge of
soil nutrients (NPK, pH), irrigation, crop diseases, pests and low-cost farming.

The farmer is currently growing: {crop}. Apply what you know about {crop} specifically.

You can see live sensor readings, recent trends, past conversations with their
outcomes, the farmer's preferences and irrigation history.

Answer format:
- Start with a direct answer in one or two sentences.
- Explain the reasoning using the sensor data and trends.
- Give numbered action steps with amounts and timings (for example
  "1. Irrigate for 15-20 minutes now").
- Add one preventive tip when it helps.

Rules:
- Keep simple answers under 200 words.
- Prefer organic and low-cost options; warn about chemical overuse.
- Reference past successful actions when they are relevant.
- If manual override is on, remind the farmer that automatic irrigation is disabled.
- Never invent measurements, disease names or chemical doses you are unsure of;
  suggest monitoring instead."""

FEW_SHOT_EXAMPLES = [
    (
        "Should I water my tomatoes now?",
        "Moisture 35%, trend -20% over 7 days, temperature 28°C",
        """**Yes, water now.**

Your soil moisture is 35%, below the 40-70% range for tomatoes, and it dropped 20% this week.

**Action Steps:**
1. Irrigate for 15-20 minutes today
2. Target a moisture level of 60-65%
3. Check again in 2-3 days""",
    ),
    (
        "Is my soil pH okay?",
        "pH 5.8, trend -0.4 over 14 days",
        """**Your pH is slightly low but manageable.**

pH 5.8 is just below the 6.0-7.0 range and has dropped 0.4 recently.

**Action Steps:**
1. Add 100-150g of garden lime per square meter
2. Mix it into the top 10cm of soil
3. Recheck pH in 1-2 weeks""",
    ),
]


def build_system_prompt(crop: str) -> str:
    return SYSTEM_PROMPT_TEMPLATE.format(crop=crop or "the current crop")


def render_few_shot() -> str:
    blocks = []
    for question, situation, answer in FEW_SHOT_EXAMPLES:
        blocks.append(
            f"Farmer: {question}\nSituation: {situation}\nAdvisor:\n{answer}"
        )
    return "# EXAMPLES\n\n" + "\n\n".join(blocks)


def render_diagnosis(diagnosis: Optional[FieldDiagnosis]) -> str:
    if diagnosis is None:
        return ""
    lines = []
    moisture = diagnosis.moisture
    if moisture is not None and moisture.urgency != Urgency.NONE:
        line = f"Moisture: {moisture.status}, urgency {moisture.urgency.value}"
        if moisture.recommendation:
            line += f" - {moisture.recommendation}"
        lines.append(line)
    ph = diagnosis.ph
    if ph is not None and ph.urgency != Urgency.NONE:
        line = f"pH: {ph.status}, urgency {ph.urgency.value}"
        if ph.recommendation:
            line += f" - {ph.recommendation}"
        lines.append(line)
    if not lines:
        return ""
    return "# FIELD DIAGNOSIS\n" + "\n".join(lines)


def _situation_block(bundle: ContextBundle, formatted_context: str) -> str:
    parts = [f"# FARMER'S CURRENT SITUATION\n{formatted_context}"]
    diagnosis = render_diagnosis(bundle.diagnosis)
    if diagnosis:
        parts.append(diagnosis)
    if bundle.metadata.note:
        parts.append(f"# CONTEXT NOTE\n{bundle.metadata.note}")
    return "\n\n".join(parts)


def build_simple_prompt(bundle: ContextBundle, formatted_context: str) -> str:
    return "\n\n".join(
        [
            build_system_prompt(bundle.snapshot.crop),
            render_few_shot(),
            _situation_block(bundle, formatted_context),
            f"# FARMER'S QUESTION\n{bundle.query}",
            "Give a direct, practical answer with specific recommendations.",
        ]
    )


def build_complex_prompt(
    bundle: ContextBundle, formatted_context: str, sub_queries: List[str]
) -> str:
    parts = [
        build_system_prompt(bundle.snapshot.crop),
        render_few_shot(),
        _situation_block(bundle, formatted_context),
        f"# COMPLEX QUESTION\n{bundle.query}",
    ]
    if sub_queries:
        numbered = "\n".join(
            f"{idx}. {item}" for idx, item in enumerate(sub_queries, start=1)
        )
        parts.append(f"Break the analysis down into these areas:\n{numbered}")
    parts.append(
        "This question needs detailed analysis. Reason step by step, weigh cost, "
        "resources and expected outcome, then give a clear recommendation."
    )
    return "\n\n".join(parts)


def _bullets(items: List[str], empty: str) -> str:
    if not items:
        return f"- {empty}"
    return "\n".join(f"- {item}" for item in items)


def build_retry_prompt(
    bundle: ContextBundle,
    formatted_context: str,
    previous_answer: str,
    judgement: Judgement,
) -> str:
    feedback = (
        f"Score: {judgement.score}/100\n\n"
        f"Weaknesses:\n{_bullets(judgement.weaknesses, 'none listed')}\n\n"
        f"Suggestions:\n{_bullets(judgement.suggestions, 'none listed')}"
    )
    return "\n\n".join(
        [
            build_system_prompt(bundle.snapshot.crop),
            _situation_block(bundle, formatted_context),
            f"# FARMER'S QUESTION\n{bundle.query}",
            f"# PREVIOUS ANSWER (needs improvement)\n{previous_answer}",
            f"# REVIEWER FEEDBACK\n{feedback}",
            "Rewrite the answer so that it addresses every weakness, follows the "
            "suggestions, cites the sensor data precisely and gives clearer numbered "
            "steps. Keep it concise and practical.",
        ]
    )
