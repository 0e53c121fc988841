import asyncio
import importlib.util
import json
import sys
import time
import unittest
from datetime import timedelta
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

_MISSING_DEPS = any(
    importlib.util.find_spec(name) is None
    for name in ("pydantic_settings", "langgraph", "langchain_core")
)

if not _MISSING_DEPS:
    from field_advisor.agent.orchestrator import QueryOrchestrator
    from field_advisor.agent.workflows.advisory_graph import (
        APOLOGY_MESSAGE,
        AdvisoryWorkflow,
    )
    from field_advisor.application.services.context_service import (
        HistoricalContextBuilder,
    )
    from field_advisor.application.services.memory_service import MemoryService
    from field_advisor.domain.enums import Complexity, QueryType
    from field_advisor.domain.errors import PipelineTimeoutError
    from field_advisor.infra.config import AppConfig
    from field_advisor.infra.conversation_store import MemoryConversationStore
    from field_advisor.infra.model_functions import ModelFunctions
    from field_advisor.infra.profile_store import MemoryFarmerProfileStore
    from field_advisor.infra.sensor_store import MemorySensorStore
    from field_advisor.schemas import SensorSample, SensorSnapshot, utcnow

    class _FailingConversationStore(MemoryConversationStore):
        def create(self, record):
            raise RuntimeError("disk full")

    class _FailingProfileStore(MemoryFarmerProfileStore):
        def increment_query_type(self, farmer_id, query_type, crop=None):
            raise RuntimeError("profile table locked")


FARMER = "farmer-42"
QUESTION = "Should I water now?"
ANSWER = (
    "Moisture fell from 43.75% to 35% over the last week.\n"
    "1. Irrigate for 20 minutes this evening\n"
    "2. Check moisture again tomorrow morning"
)
IMPROVED_ANSWER = (
    "Your tomato beds lost about 1.5% moisture per day this week.\n"
    "1. Irrigate for 25 minutes before 8 am today\n"
    "2. Mulch the beds to slow evaporation"
)


def _classification(query_type="watering", complexity="simple", sub_queries=None):
    return json.dumps(
        {
            "type": query_type,
            "complexity": complexity,
            "intent": "question",
            "requiresSubQueries": bool(sub_queries),
            "subQueries": sub_queries or [],
        }
    )


def _judgement(score):
    return json.dumps(
        {
            "score": score,
            "breakdown": {"factualAccuracy": 18, "relevance": 18},
            "weaknesses": [] if score >= 85 else ["Not specific enough"],
            "suggestions": [] if score >= 85 else ["Give exact durations"],
            "reasoning": "Evaluated against the sensor history",
        }
    )


class FakeModels:
    """Scripted classifier / generator / judge; the last item repeats."""

    def __init__(self, *, classifications=None, answers=None, judgements=None, delays=None):
        self.classifications = list(classifications or [_classification()])
        self.answers = list(answers or [ANSWER])
        self.judgements = list(judgements or [_judgement(90)])
        self.delays = dict(delays or {})
        self.calls = {"classify": 0, "generate": 0, "judge": 0}
        self.prompts = []
        self.on_generate = None
        self.on_judge = None

    async def _next(self, name, items):
        self.calls[name] += 1
        delay = self.delays.get(name)
        if delay:
            await asyncio.sleep(delay)
        item = items[min(self.calls[name], len(items)) - 1]
        if isinstance(item, Exception):
            raise item
        return item

    async def classify(self, query):
        return await self._next("classify", self.classifications)

    async def generate(self, prompt):
        self.prompts.append(prompt)
        if self.on_generate:
            self.on_generate()
        return await self._next("generate", self.answers)

    async def judge(self, query, answer, context_summary):
        if self.on_judge:
            self.on_judge()
        return await self._next("judge", self.judgements)

    def functions(self):
        return ModelFunctions(
            classify=self.classify, generate=self.generate, judge=self.judge
        )


@unittest.skipUnless(
    not _MISSING_DEPS, "pydantic_settings / langgraph / langchain_core not installed"
)
class AdvisoryPipelineTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.sensors = MemorySensorStore()
        self.conversations = MemoryConversationStore()
        self.profiles = MemoryFarmerProfileStore()
        now = utcnow()
        moisture = [43.75, 42.3, 40.8, 39.4, 37.9, 36.5, 35.0]
        for idx, value in enumerate(moisture):
            self.sensors.append(
                FARMER,
                SensorSample(
                    timestamp=now - timedelta(days=6 - idx, minutes=5),
                    moisture=value,
                    crop="Tomato",
                ),
            )
        self.snapshot = SensorSnapshot(moisture=35, crop="Tomato")

    def _orchestrator(self, models, *, config=None, context_builder=None, memory_service=None):
        return QueryOrchestrator(
            models.functions(),
            context_builder=context_builder
            or HistoricalContextBuilder(self.sensors, self.conversations, self.profiles),
            memory_service=memory_service
            or MemoryService(self.conversations, self.profiles),
            sensor_store=self.sensors,
            config=config or AppConfig(),
        )

    def _stored(self):
        return self.conversations.recent(FARMER, 7, 10)

    async def test_watering_question_end_to_end(self) -> None:
        models = FakeModels()
        result = await self._orchestrator(models).process_query(
            FARMER, QUESTION, self.snapshot
        )
        self.assertTrue(result.success)
        self.assertEqual(result.stage, "complete")
        self.assertIsNone(result.error)
        self.assertEqual(result.response_text, ANSWER)
        self.assertEqual(result.judge_score, 90)
        self.assertTrue(any("Irrigat" in item.action for item in result.actions))
        self.assertIn("moisture_trend", result.insights)
        self.assertEqual(models.calls, {"classify": 1, "generate": 1, "judge": 1})

        stored = self._stored()
        self.assertEqual(len(stored), 1)
        record = stored[0]
        self.assertEqual(record.conversation_id, result.conversation_id)
        self.assertEqual(record.query_type, QueryType.WATERING)
        self.assertEqual(record.complexity, Complexity.SIMPLE)
        self.assertEqual(record.confidence, 90)
        self.assertEqual(record.pipeline.retries, 0)
        self.assertEqual(self.profiles.get(FARMER).query_frequency["watering"], 1)

        prompt = models.prompts[0]
        self.assertIn("=== CURRENT SENSORS ===", prompt)
        self.assertIn("=== RECENT TRENDS (7 days) ===", prompt)
        self.assertIn(QUESTION, prompt)

    async def test_low_scores_retry_once(self) -> None:
        models = FakeModels(
            answers=[ANSWER, IMPROVED_ANSWER], judgements=[_judgement(70), _judgement(70)]
        )
        result = await self._orchestrator(models).process_query(
            FARMER, QUESTION, self.snapshot
        )
        self.assertTrue(result.success)
        self.assertEqual(models.calls["generate"], 2)
        self.assertEqual(models.calls["judge"], 2)
        self.assertEqual(result.judge_score, 70)
        self.assertEqual(result.response_text, IMPROVED_ANSWER)
        self.assertEqual(self._stored()[0].pipeline.retries, 1)
        self.assertIn("Not specific enough", models.prompts[1])
        self.assertIn(ANSWER, models.prompts[1])

    async def test_retries_can_be_disabled(self) -> None:
        models = FakeModels(judgements=[_judgement(60)])
        result = await self._orchestrator(
            models, config=AppConfig(max_retries=0)
        ).process_query(FARMER, QUESTION, self.snapshot)
        self.assertTrue(result.success)
        self.assertEqual(result.response_text, ANSWER)
        self.assertEqual(models.calls["generate"], 1)
        self.assertEqual(models.calls["judge"], 1)

    async def test_configured_retries_are_capped_at_one(self) -> None:
        models = FakeModels(judgements=[_judgement(50)])
        result = await self._orchestrator(
            models, config=AppConfig(max_retries=3)
        ).process_query(FARMER, QUESTION, self.snapshot)
        self.assertTrue(result.success)
        self.assertEqual(models.calls["generate"], 2)
        self.assertEqual(models.calls["judge"], 2)
        self.assertEqual(self._stored()[0].pipeline.retries, 1)

    async def test_loose_breakdown_keeps_the_judge_score(self) -> None:
        judgement = json.dumps(
            {
                "score": 60,
                "breakdown": {
                    "factualAccuracy": 12.5,
                    "relevance": 25,
                    "actionability": "n/a",
                },
                "weaknesses": ["Not specific enough"],
            }
        )
        models = FakeModels(
            answers=[ANSWER, IMPROVED_ANSWER], judgements=[judgement, _judgement(90)]
        )
        result = await self._orchestrator(models).process_query(
            FARMER, QUESTION, self.snapshot
        )
        self.assertEqual(models.calls["generate"], 2)
        self.assertEqual(models.calls["judge"], 2)
        self.assertEqual(result.judge_score, 90)
        self.assertEqual(result.response_text, IMPROVED_ANSWER)
        self.assertNotIn("judge unavailable", result.error or "")

    async def test_improved_answer_is_approved(self) -> None:
        models = FakeModels(
            answers=[ANSWER, IMPROVED_ANSWER], judgements=[_judgement(70), _judgement(90)]
        )
        result = await self._orchestrator(models).process_query(
            FARMER, QUESTION, self.snapshot
        )
        self.assertEqual(result.response_text, IMPROVED_ANSWER)
        self.assertEqual(result.judge_score, 90)
        self.assertEqual(result.stage, "complete")

    async def test_judge_failure_uses_fallback_score(self) -> None:
        for judgement in (RuntimeError("judge offline"), "Looks good to me"):
            with self.subTest(judgement=judgement):
                models = FakeModels(judgements=[judgement])
                result = await self._orchestrator(models).process_query(
                    FARMER, QUESTION, self.snapshot
                )
                self.assertTrue(result.success)
                self.assertEqual(result.judge_score, 75)
                self.assertEqual(models.calls["generate"], 1)
                self.assertEqual(models.calls["judge"], 1)
                self.assertIn("judge unavailable", result.error)

    async def test_generation_failure_is_fatal(self) -> None:
        models = FakeModels(answers=[RuntimeError("model down")])
        result = await self._orchestrator(models).process_query(
            FARMER, QUESTION, self.snapshot
        )
        self.assertFalse(result.success)
        self.assertEqual(result.stage, "error")
        self.assertEqual(result.response_text, APOLOGY_MESSAGE)
        self.assertIn("Response generation failed", result.error)
        self.assertEqual(models.calls["judge"], 0)
        self.assertEqual(self._stored(), [])

    async def test_empty_generation_is_fatal(self) -> None:
        models = FakeModels(answers=["   "])
        result = await self._orchestrator(models).process_query(
            FARMER, QUESTION, self.snapshot
        )
        self.assertFalse(result.success)
        self.assertEqual(result.stage, "error")

    async def test_classifier_failure_falls_back_to_hint(self) -> None:
        models = FakeModels(classifications=[RuntimeError("classifier offline")])
        result = await self._orchestrator(models).process_query(
            FARMER, QUESTION, self.snapshot
        )
        self.assertTrue(result.success)
        self.assertIn("classification unavailable", result.error)
        self.assertEqual(self._stored()[0].query_type, QueryType.WATERING)

    async def test_explicit_query_type_is_the_fallback(self) -> None:
        models = FakeModels(classifications=["not json at all"])
        result = await self._orchestrator(models).process_query(
            FARMER, QUESTION, self.snapshot, query_type="Pest"
        )
        self.assertTrue(result.success)
        self.assertEqual(self._stored()[0].query_type, QueryType.PEST)

    async def test_classifier_timeout(self) -> None:
        models = FakeModels(delays={"classify": 1.0})
        result = await self._orchestrator(
            models, config=AppConfig(classifier_timeout_seconds=0.01)
        ).process_query(FARMER, QUESTION, self.snapshot)
        self.assertTrue(result.success)
        self.assertEqual(self._stored()[0].query_type, QueryType.WATERING)
        self.assertIn("classification unavailable", result.error)

    async def test_retry_failure_keeps_previous_answer(self) -> None:
        models = FakeModels(
            answers=[ANSWER, RuntimeError("generator overloaded")],
            judgements=[_judgement(70)],
        )
        result = await self._orchestrator(models).process_query(
            FARMER, QUESTION, self.snapshot
        )
        self.assertTrue(result.success)
        self.assertEqual(result.response_text, ANSWER)
        self.assertEqual(result.judge_score, 70)
        self.assertEqual(models.calls["judge"], 1)
        self.assertIn("retry failed", result.error)

    async def test_complex_question_lists_sub_queries(self) -> None:
        models = FakeModels(
            classifications=[
                _classification(
                    complexity="complex",
                    sub_queries=["current moisture deficit", "rain risk this week"],
                )
            ]
        )
        result = await self._orchestrator(models).process_query(
            FARMER, "Should I water now or wait for the rain, and how much?", self.snapshot
        )
        self.assertTrue(result.success)
        prompt = models.prompts[0]
        self.assertIn("Break the analysis down into these areas:", prompt)
        self.assertIn("1. current moisture deficit", prompt)
        self.assertIn("2. rain risk this week", prompt)
        self.assertEqual(
            self._stored()[0].tags,
            ["watering", "complex", "current moisture deficit", "rain risk this week"],
        )

    async def test_missing_snapshot_uses_latest_reading(self) -> None:
        models = FakeModels()
        result = await self._orchestrator(models).process_query(FARMER, QUESTION)
        self.assertTrue(result.success)
        self.assertIn("Moisture: 35%", models.prompts[0])
        self.assertEqual(self._stored()[0].sensor_snapshot.moisture, 35)

    async def test_context_failure_is_fatal(self) -> None:
        class _ExplodingContextBuilder:
            async def build_context(self, *args, **kwargs):
                raise RuntimeError("no context")

        models = FakeModels()
        result = await self._orchestrator(
            models, context_builder=_ExplodingContextBuilder()
        ).process_query(FARMER, QUESTION, self.snapshot)
        self.assertFalse(result.success)
        self.assertEqual(result.stage, "error")
        self.assertIn("Context building failed", result.error)
        self.assertEqual(models.calls, {"classify": 0, "generate": 0, "judge": 0})

    async def test_persist_failure_still_answers(self) -> None:
        models = FakeModels()
        memory = MemoryService(_FailingConversationStore(), self.profiles)
        result = await self._orchestrator(models, memory_service=memory).process_query(
            FARMER, QUESTION, self.snapshot
        )
        self.assertTrue(result.success)
        self.assertEqual(result.stage, "complete_with_error")
        self.assertIsNone(result.conversation_id)
        self.assertEqual(result.response_text, ANSWER)

    async def test_profile_failure_reports_the_stored_conversation(self) -> None:
        models = FakeModels()
        memory = MemoryService(self.conversations, _FailingProfileStore())
        result = await self._orchestrator(models, memory_service=memory).process_query(
            FARMER, QUESTION, self.snapshot
        )
        self.assertTrue(result.success)
        self.assertEqual(result.stage, "complete_with_error")
        self.assertIsNotNone(result.conversation_id)
        self.assertEqual(self._stored()[0].conversation_id, result.conversation_id)

    async def test_cancel_event_stops_the_run(self) -> None:
        cancel = asyncio.Event()
        models = FakeModels(delays={"judge": 1.0})
        models.on_judge = cancel.set
        result = await self._orchestrator(models).process_query(
            FARMER, QUESTION, self.snapshot, cancel_event=cancel
        )
        self.assertFalse(result.success)
        self.assertEqual(result.stage, "cancelled")
        self.assertEqual(result.response_text, APOLOGY_MESSAGE)
        self.assertEqual(self._stored(), [])

    async def test_task_cancellation_propagates(self) -> None:
        started = asyncio.Event()
        models = FakeModels(delays={"generate": 5.0})
        models.on_generate = started.set
        task = asyncio.create_task(
            self._orchestrator(models).process_query(FARMER, QUESTION, self.snapshot)
        )
        await asyncio.wait_for(started.wait(), timeout=2.0)
        task.cancel()
        with self.assertRaises(asyncio.CancelledError):
            await task
        self.assertEqual(self._stored(), [])

    async def test_deadline_exceeded(self) -> None:
        models = FakeModels(delays={"generate": 1.0})
        result = await self._orchestrator(
            models, config=AppConfig(pipeline_deadline_seconds=0.05)
        ).process_query(FARMER, QUESTION, self.snapshot)
        self.assertFalse(result.success)
        self.assertEqual(result.stage, "timeout")
        self.assertIn("deadline", result.error)
        self.assertEqual(self._stored(), [])

    async def test_expired_run_skips_the_write(self) -> None:
        models = FakeModels()
        workflow = AdvisoryWorkflow(
            models.functions(),
            HistoricalContextBuilder(self.sensors, self.conversations, self.profiles),
            MemoryService(self.conversations, self.profiles),
            config=AppConfig(),
        )
        state = {
            "farmer_id": FARMER,
            "query": QUESTION,
            "snapshot": self.snapshot,
            "query_type_hint": QueryType.WATERING,
            "retry_count": 0,
            "conversation_id": None,
            "stage": "start",
            "error": None,
            "warnings": [],
            "trace": [],
            "started_at": time.perf_counter() - 5.0,
            "deadline_seconds": 1.0,
        }
        with self.assertRaises(PipelineTimeoutError):
            await workflow.build_graph().ainvoke(state)
        self.assertEqual(models.calls["judge"], 1)
        self.assertEqual(self._stored(), [])
        self.assertIsNone(self.profiles.get(FARMER))

    async def test_concurrent_queries_are_independent(self) -> None:
        models = FakeModels()
        orchestrator = self._orchestrator(models)
        results = await asyncio.gather(
            *(
                orchestrator.process_query(FARMER, QUESTION, self.snapshot)
                for _ in range(5)
            )
        )
        self.assertTrue(all(result.success for result in results))
        self.assertEqual(len({result.conversation_id for result in results}), 5)
        self.assertEqual(self.profiles.get(FARMER).stats.total_queries, 5)


if __name__ == "__main__":
    unittest.main()
