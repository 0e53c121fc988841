import importlib.util
import sys
import unittest
from datetime import timedelta
from pathlib import Path
from unittest.mock import patch

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

_MISSING_PYDANTIC_SETTINGS = importlib.util.find_spec("pydantic_settings") is None

if not _MISSING_PYDANTIC_SETTINGS:
    from field_advisor.application.services.context_service import (
        DEFAULT_CONTEXT_PROFILE,
        HistoricalContextBuilder,
        format_context,
        resolve_context_profile,
    )
    from field_advisor.domain.enums import (
        AnomalySeverity,
        QueryType,
        TrendDirection,
    )
    from field_advisor.infra.conversation_store import MemoryConversationStore
    from field_advisor.infra.profile_store import MemoryFarmerProfileStore
    from field_advisor.infra.sensor_store import MemorySensorStore
    from field_advisor.prompts.advisor import build_simple_prompt
    from field_advisor.schemas import (
        ActionRecord,
        Anomaly,
        ContextBundle,
        ContextMetadata,
        ConversationRecord,
        FarmerProfile,
        IrrigationSummary,
        PastConversation,
        SensorSample,
        SensorSnapshot,
        TrendRecord,
        utcnow,
    )

    class _BrokenSensorStore(MemorySensorStore):
        def history(self, farmer_id, days):
            raise RuntimeError("sensor backend offline")


FARMER = "farmer-1"


def _seed_sensors(store, farmer_id=FARMER):
    now = utcnow()
    moisture = [43.75, 42.3, 40.8, 39.4, 37.9, 36.5, 35.0]
    for idx, value in enumerate(moisture):
        store.append(
            farmer_id,
            SensorSample(
                timestamp=now - timedelta(days=6 - idx, minutes=5),
                moisture=value,
                nitrogen=120 - idx,
                ph=6.4,
                crop="Tomato",
                motor_on_minutes=20 if idx == 3 else 0,
            ),
        )


@unittest.skipUnless(
    not _MISSING_PYDANTIC_SETTINGS, "pydantic_settings is not installed"
)
class ContextProfileTests(unittest.TestCase):
    def test_known_and_unknown_types(self) -> None:
        self.assertEqual(resolve_context_profile("watering").window_days, 7)
        self.assertEqual(resolve_context_profile(QueryType.FERTILIZER).window_days, 14)
        self.assertIs(resolve_context_profile("general"), DEFAULT_CONTEXT_PROFILE)
        self.assertIs(resolve_context_profile("space travel"), DEFAULT_CONTEXT_PROFILE)


@unittest.skipUnless(
    not _MISSING_PYDANTIC_SETTINGS, "pydantic_settings is not installed"
)
class BuildContextTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.sensors = MemorySensorStore()
        self.conversations = MemoryConversationStore()
        self.profiles = MemoryFarmerProfileStore()
        _seed_sensors(self.sensors)
        self.builder = HistoricalContextBuilder(
            self.sensors, self.conversations, self.profiles
        )
        self.snapshot = SensorSnapshot(moisture=35, crop="Tomato")

    async def test_watering_profile(self) -> None:
        bundle = await self.builder.build_context(
            FARMER, "Should I water now?", self.snapshot, QueryType.WATERING
        )
        self.assertEqual(set(bundle.trends), {"moisture", "temperature", "humidity"})
        self.assertEqual(bundle.trends["moisture"].direction, TrendDirection.DECREASING)
        self.assertIsNone(bundle.farmer_profile)
        self.assertIsNotNone(bundle.irrigation)
        self.assertEqual(bundle.irrigation.total_events, 1)
        self.assertEqual(bundle.anomalies, [])
        self.assertEqual(bundle.metadata.profile_name, "watering")
        self.assertEqual(bundle.metadata.trend_window_days, 7)
        self.assertEqual(bundle.metadata.failed_fetches, [])
        self.assertEqual(bundle.metadata.estimated_tokens, 310)
        self.assertEqual(bundle.diagnosis.moisture.status, "low")

    async def test_fertilizer_profile(self) -> None:
        self.profiles.increment_query_type(FARMER, "fertilizer", "Tomato")
        bundle = await self.builder.build_context(
            FARMER, "How much urea?", self.snapshot, "fertilizer"
        )
        self.assertEqual(
            set(bundle.trends), {"nitrogen", "phosphorus", "potassium", "ph"}
        )
        self.assertEqual(bundle.metadata.trend_window_days, 14)
        self.assertIsNotNone(bundle.farmer_profile)
        self.assertEqual(bundle.farmer_profile.query_frequency["fertilizer"], 1)
        self.assertIsNone(bundle.irrigation)

    async def test_default_profile(self) -> None:
        bundle = await self.builder.build_context(
            FARMER, "Hello there", self.snapshot, None
        )
        self.assertEqual(bundle.query_type, QueryType.GENERAL)
        self.assertEqual(bundle.metadata.profile_name, "default")
        self.assertEqual(set(bundle.trends), {"moisture", "ph"})
        self.assertEqual(bundle.anomalies, [])

    async def test_profile_lookup_does_not_create(self) -> None:
        await self.builder.build_context(
            FARMER, "How much urea?", self.snapshot, QueryType.FERTILIZER
        )
        self.assertIsNone(self.profiles.get(FARMER))

    async def test_history_and_similar_queries(self) -> None:
        record = ConversationRecord(
            farmer_id=FARMER,
            query="When should I irrigate?",
            query_type=QueryType.WATERING,
            sensor_snapshot=self.snapshot,
            answer="Irrigate tomorrow morning.",
            was_successful=True,
        )
        other = ConversationRecord(
            farmer_id="someone-else",
            query="When should I irrigate?",
            query_type=QueryType.WATERING,
            sensor_snapshot=self.snapshot,
            answer="Irrigate tonight.",
            was_successful=True,
        )
        self.conversations.create(record)
        self.conversations.create(other)
        bundle = await self.builder.build_context(
            FARMER, "Should I water now?", self.snapshot, QueryType.WATERING
        )
        self.assertEqual(len(bundle.past_conversations), 1)
        self.assertEqual(
            bundle.past_conversations[0].conversation_id, record.conversation_id
        )
        self.assertEqual(len(bundle.similar_queries), 1)
        self.assertEqual(bundle.metadata.conversations_found, 1)
        self.assertEqual(bundle.metadata.estimated_tokens, 410)

    async def test_failed_fetch_degrades(self) -> None:
        builder = HistoricalContextBuilder(
            _BrokenSensorStore(), self.conversations, self.profiles
        )
        bundle = await builder.build_context(
            FARMER, "Should I water now?", self.snapshot, QueryType.WATERING
        )
        self.assertEqual(bundle.trends, {})
        self.assertIsNone(bundle.irrigation)
        self.assertEqual(
            sorted(bundle.metadata.failed_fetches), ["anomalies", "irrigation", "trends"]
        )
        self.assertEqual(bundle.past_conversations, [])

    async def test_unexpected_failure_returns_minimal_bundle(self) -> None:
        with patch(
            "field_advisor.application.services.context_service.diagnose_field",
            side_effect=RuntimeError("boom"),
        ):
            bundle = await self.builder.build_context(
                FARMER, "Should I water now?", self.snapshot, QueryType.WATERING
            )
        self.assertEqual(bundle.metadata.note, "Limited context available: boom")
        self.assertEqual(bundle.trends, {})
        self.assertEqual(bundle.snapshot, self.snapshot)
        self.assertEqual(bundle.query_type, QueryType.WATERING)


@unittest.skipUnless(
    not _MISSING_PYDANTIC_SETTINGS, "pydantic_settings is not installed"
)
class FormatContextTests(unittest.TestCase):
    def _full_bundle(self):
        profile = FarmerProfile(farmer_id=FARMER, preferred_methods=["drip"])
        profile.record_failure(ActionRecord(action="Flood irrigate", problem="watering"))
        return ContextBundle(
            query="Should I water now?",
            query_type=QueryType.WATERING,
            snapshot=SensorSnapshot(moisture=35, manual_override=True, motor_on=True),
            trends={
                "moisture": TrendRecord(
                    metric="moisture",
                    current=35,
                    start=43.75,
                    change=-8.75,
                    change_percent=-20.0,
                    direction=TrendDirection.DECREASING,
                )
            },
            anomalies=[
                Anomaly(
                    type="moisture_change",
                    severity=AnomalySeverity.HIGH,
                    message=f"Moisture decreasing by {n}% in 7 days",
                )
                for n in (21, 22, 23, 24)
            ],
            past_conversations=[
                PastConversation(
                    conversation_id=f"c{idx}",
                    timestamp=utcnow(),
                    days_ago=idx,
                    query=f"Question {idx}",
                    query_type=QueryType.WATERING,
                    was_successful=True,
                )
                for idx in range(3)
            ],
            irrigation=IrrigationSummary(
                total_events=2,
                total_minutes=40,
                avg_duration=20,
                common_times=["6:00"],
                pattern="Usually irrigates around 6:00",
            ),
            farmer_profile=profile,
            metadata=ContextMetadata(trend_window_days=7, note="Sensor clock drift"),
        )

    def test_sections_in_order(self) -> None:
        text = format_context(self._full_bundle())
        headers = [
            "=== CURRENT SENSORS ===",
            "=== RECENT TRENDS (7 days) ===",
            "=== DETECTED ISSUES ===",
            "=== RECENT HISTORY ===",
            "=== IRRIGATION PATTERN ===",
            "=== FARMER PREFERENCES ===",
        ]
        positions = [text.index(header) for header in headers]
        self.assertEqual(positions, sorted(positions))
        self.assertIn("Motor: ON (irrigating)", text)
        self.assertIn("Mode: MANUAL", text)
        self.assertIn("MOISTURE: decreasing", text)
        self.assertIn("Preferred methods: drip", text)
        self.assertIn("Recurring issues: watering", text)
        self.assertNotIn("Sensor clock drift", text)

    def test_note_is_carried_by_the_prompt(self) -> None:
        bundle = self._full_bundle()
        prompt = build_simple_prompt(bundle, format_context(bundle))
        self.assertIn("# CONTEXT NOTE\nSensor clock drift", prompt)
        self.assertLess(
            prompt.index("=== FARMER PREFERENCES ==="), prompt.index("# CONTEXT NOTE")
        )

    def test_lists_are_truncated(self) -> None:
        text = format_context(self._full_bundle())
        self.assertIn("23% in 7 days", text)
        self.assertNotIn("24% in 7 days", text)
        self.assertIn('"Question 1"', text)
        self.assertNotIn('"Question 2"', text)

    def test_empty_sections_are_omitted(self) -> None:
        bundle = ContextBundle(query="Hi", snapshot=SensorSnapshot())
        text = format_context(bundle)
        self.assertIn("=== CURRENT SENSORS ===", text)
        self.assertIn("Mode: AUTO", text)
        self.assertIn("No recent conversations", text)
        for header in (
            "RECENT TRENDS",
            "DETECTED ISSUES",
            "IRRIGATION PATTERN",
            "FARMER PREFERENCES",
            "Note:",
        ):
            self.assertNotIn(header, text)


if __name__ == "__main__":
    unittest.main()
