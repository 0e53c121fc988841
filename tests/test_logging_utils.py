import asyncio
import json
import sys
import unittest
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from field_advisor.observability.logging_utils import (
    get_trace_id,
    log_event,
    log_warning,
    summarize_text,
    trace_scope,
)


class TraceScopeTests(unittest.TestCase):
    def test_scope_binds_and_restores(self) -> None:
        outside = get_trace_id()
        with trace_scope("abc123") as trace_id:
            self.assertEqual(trace_id, "abc123")
            self.assertEqual(get_trace_id(), "abc123")
        self.assertEqual(get_trace_id(), outside)

    def test_generated_ids_are_unique(self) -> None:
        with trace_scope() as first:
            pass
        with trace_scope() as second:
            pass
        self.assertNotEqual(first, second)
        self.assertEqual(len(first), 16)

    def test_concurrent_tasks_keep_their_own_id(self) -> None:
        async def worker(name):
            with trace_scope(name):
                await asyncio.sleep(0.01)
                return get_trace_id()

        async def main():
            return await asyncio.gather(worker("a"), worker("b"), worker("c"))

        self.assertEqual(asyncio.run(main()), ["a", "b", "c"])


class EventPayloadTests(unittest.TestCase):
    def test_event_is_json_with_trace_id(self) -> None:
        with self.assertLogs("field_advisor.events", level="INFO") as captured:
            with trace_scope("t-1"):
                log_event("query_received", farmer_id="f1", note=None)
        payload = json.loads(captured.records[0].getMessage())
        self.assertEqual(
            payload, {"event": "query_received", "trace_id": "t-1", "farmer_id": "f1"}
        )

    def test_warning_level(self) -> None:
        with self.assertLogs("field_advisor.events", level="WARNING") as captured:
            log_warning("judge_failed", error="timeout")
        self.assertEqual(captured.records[0].levelname, "WARNING")


class SummarizeTextTests(unittest.TestCase):
    def test_flattens_and_truncates(self) -> None:
        self.assertEqual(summarize_text("1. Water\n\n2.  Mulch"), "1. Water 2. Mulch")
        self.assertEqual(summarize_text("x" * 10, limit=4), "xxxx...")
        self.assertEqual(summarize_text(None), "")


if __name__ == "__main__":
    unittest.main()
