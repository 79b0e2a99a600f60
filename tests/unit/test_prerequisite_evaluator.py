import sys
from pathlib import Path
import unittest

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from theway.application.services.prerequisite_evaluator import evaluate_prerequisites, flag_matches
from theway.domain.models.player import PlayerState
from theway.domain.models.story import PrerequisiteSpec


class PrerequisiteEvaluatorTests(unittest.TestCase):
    def test_absent_spec_is_always_satisfied(self) -> None:
        verdict = evaluate_prerequisites(PlayerState(player_id="p1", level=1), None)

        self.assertTrue(verdict.satisfied)
        self.assertEqual([], verdict.missing)

    def test_level_min_is_inclusive(self) -> None:
        spec = PrerequisiteSpec(level_min=5)

        self.assertFalse(evaluate_prerequisites(PlayerState(player_id="p1", level=4), spec).satisfied)
        self.assertTrue(evaluate_prerequisites(PlayerState(player_id="p1", level=5), spec).satisfied)

    def test_reports_every_missing_condition(self) -> None:
        spec = PrerequisiteSpec(
            level_min=10,
            story_flags={"met_mari": True},
            quests_completed=("quest_tutorial_001",),
        )

        verdict = evaluate_prerequisites(PlayerState(player_id="p1", level=3), spec)

        self.assertFalse(verdict.satisfied)
        self.assertEqual(
            ["level_min:10", "story_flag:met_mari", "quest_incomplete:quest_tutorial_001"],
            verdict.missing,
        )

    def test_story_flags_need_strict_equality(self) -> None:
        spec = PrerequisiteSpec(story_flags={"met_mari": True, "route": "harbour"})
        state = PlayerState(player_id="p1", story_flags={"met_mari": 1, "route": "harbour"})

        verdict = evaluate_prerequisites(state, spec)

        self.assertEqual(["story_flag:met_mari"], verdict.missing)

    def test_unset_flag_never_matches_even_a_false_expectation(self) -> None:
        spec = PrerequisiteSpec(story_flags={"betrayed_mari": False})

        self.assertFalse(evaluate_prerequisites(PlayerState(player_id="p1"), spec).satisfied)
        self.assertTrue(
            evaluate_prerequisites(PlayerState(player_id="p1", story_flags={"betrayed_mari": False}), spec).satisfied
        )

    def test_completed_quests_must_all_be_present(self) -> None:
        spec = PrerequisiteSpec(quests_completed=("q1", "q2"))
        state = PlayerState(player_id="p1", completed_quests=frozenset({"q1"}))

        verdict = evaluate_prerequisites(state, spec)

        self.assertEqual(["quest_incomplete:q2"], verdict.missing)

    def test_unrecognised_keys_do_not_gate(self) -> None:
        spec = PrerequisiteSpec.from_payload({"levelMin": 2, "reputation_min": 999})

        self.assertEqual({"reputation_min": 999}, dict(spec.extras))
        self.assertTrue(evaluate_prerequisites(PlayerState(player_id="p1", level=2), spec).satisfied)

    def test_flag_matching_rules(self) -> None:
        self.assertTrue(flag_matches(True, True))
        self.assertFalse(flag_matches(True, 1))
        self.assertFalse(flag_matches(0, False))
        self.assertTrue(flag_matches(2, 2.0))
        self.assertFalse(flag_matches("2", 2))
        self.assertTrue(flag_matches({"a": 1}, {"a": 1}))


if __name__ == "__main__":
    unittest.main()
