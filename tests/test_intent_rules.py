import sys
import unittest
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from field_advisor.agent.intent_rules import guess_query_type
from field_advisor.domain.enums import QueryType


class IntentRuleTests(unittest.TestCase):
    def test_cases(self) -> None:
        cases = [
            ("Should I water now?", QueryType.WATERING),
            ("Is the pump running long enough for this dry spell?", QueryType.WATERING),
            ("My soil pH is 5.2, what should I add?", QueryType.PH),
            ("How much urea per acre for tomato?", QueryType.FERTILIZER),
            ("Leaves show nitrogen deficiency", QueryType.NUTRIENTS),
            ("Brown spots and wilt on the lower leaves", QueryType.DISEASE),
            ("Aphids on my chilli plants", QueryType.PEST),
            ("Will rain tomorrow affect the field?", QueryType.WEATHER),
            ("Hello", QueryType.GENERAL),
            ("", QueryType.GENERAL),
        ]
        for prompt, expected in cases:
            with self.subTest(prompt=prompt):
                self.assertEqual(guess_query_type(prompt), expected)

    def test_pests_win_over_watering(self) -> None:
        self.assertEqual(
            guess_query_type("Should I water after spraying for worms?"), QueryType.PEST
        )

    def test_whole_words_only(self) -> None:
        self.assertEqual(guess_query_type("What about the phone signal?"), QueryType.GENERAL)


class QueryTypeCoercionTests(unittest.TestCase):
    def test_coerce(self) -> None:
        self.assertEqual(QueryType.coerce(" Watering "), QueryType.WATERING)
        self.assertEqual(QueryType.coerce("irrigation"), QueryType.GENERAL)
        self.assertEqual(QueryType.coerce(None, QueryType.PEST), QueryType.PEST)
        self.assertIs(QueryType.coerce(QueryType.PH), QueryType.PH)


if __name__ == "__main__":
    unittest.main()
