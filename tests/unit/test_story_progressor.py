import sys
from pathlib import Path
import unittest
from unittest import mock

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from theway.application.dtos import PrerequisitesNotMet, ProgressResult, StaleProgress
from theway.application.services.prerequisite_evaluator import FALLBACK_DIALOGUE
from theway.application.services.story_progressor import replay_key_for, resolve_next_node_id
from theway.bootstrap import _build_inmemory_engine
from theway.domain.errors import LinkageFailure, NotFoundError, StaleProgressError
from theway.domain.events import StoryNodeCompleted
from theway.infrastructure.story_content_loader import parse_story_content


def _content():
    return parse_story_content(
        {
            "merchants": [{"id": "mari", "name": "Mari", "initial_story_node": "n1", "has_active_story": True}],
            "quests": [
                {
                    "id": "q_intro",
                    "title": "Introductions",
                    "objectives": [{"type": "dialogue", "merchantId": "mari", "target_node": "n_report"}],
                }
            ],
            "story_nodes": [
                {
                    "id": "n1",
                    "merchant_id": "mari",
                    "content": {"speaker": "Mari", "text": "Hello there."},
                    "choices": [
                        {"id": "c_next", "text": "Hi!", "next_node": "n2"},
                        {"id": "c_leave", "text": "Bye.", "next_node": None},
                        {"id": "c_locked", "text": "Rare stock?", "next_node": "n2", "requirements": {"level_min": 10}},
                    ],
                    "next_nodes": ["n2"],
                    "rewards": {"gold": 100},
                    "metadata": {"story_flags": {"met_mari": True}, "chapter": 1, "sequence": 1},
                },
                {
                    "id": "n2",
                    "merchant_id": "mari",
                    "content": {"speaker": "Mari", "text": "Want a job?"},
                    "choices": [{"id": "c_accept", "text": "Sure.", "next_node": "n_report", "quest_trigger": "q_intro"}],
                    "prerequisites": {"story_flags": {"met_mari": True}},
                    "rewards": {"experience": 10, "unlock_items": ["mari_charm"]},
                    "metadata": {"chapter": 1, "sequence": 2},
                },
                {
                    "id": "n3",
                    "node_type": "ending",
                    "merchant_id": "mari",
                    "content": {"speaker": "Mari", "text": "Nicely done."},
                    "prerequisites": {"quests_completed": ["q_intro"]},
                    "metadata": {"chapter": 2, "sequence": 3},
                },
                {
                    "id": "n_report",
                    "merchant_id": "mari",
                    "content": {"speaker": "Mari", "text": "Back already?"},
                    "next_nodes": ["n3"],
                    "metadata": {"chapter": 1, "sequence": 3},
                },
            ],
            "players": [{"id": "p1", "name": "Trader", "level": 3}],
        }
    )


class StoryProgressorTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = _build_inmemory_engine(_content())
        self.progressor = self.engine.service.progressor
        self.progress_repo = self.engine.service.store.progress_repo
        self.player_repo = self.engine.service.player_repo
        self.quest_repo = self.engine.service.quest_repo

    def test_completing_a_node_records_visit_flags_and_rewards(self) -> None:
        result = self.progressor.progress("p1", "n1")

        self.assertIsInstance(result, ProgressResult)
        self.assertEqual("n2", result.next_node.id)
        self.assertEqual(100, result.rewards.money)
        self.assertEqual(1, result.version)
        progress = self.progress_repo.get("p1")
        self.assertEqual(frozenset({"n1"}), progress.visited_nodes)
        self.assertEqual("n2", progress.current_node_id)
        self.assertIs(True, progress.story_flags["met_mari"])
        self.assertEqual(100, self.player_repo.get("p1").money)

    def test_chosen_terminal_branch_ends_the_thread(self) -> None:
        result = self.progressor.progress("p1", "n1", choice_id="c_leave")

        self.assertIsNone(result.next_node)
        self.assertIsNone(self.progress_repo.get("p1").current_node_id)

    def test_visited_set_only_grows(self) -> None:
        self.progressor.progress("p1", "n1")
        self.progressor.progress("p1", "n2")
        self.progressor.progress("p1", "n1")

        self.assertEqual(frozenset({"n1", "n2"}), self.progress_repo.get("p1").visited_nodes)

    def test_unmet_choice_requirement_changes_nothing(self) -> None:
        result = self.progressor.progress("p1", "n1", choice_id="c_locked")

        self.assertEqual(PrerequisitesNotMet(missing=["level_min:10"], fallback_dialogue=FALLBACK_DIALOGUE), result)
        progress = self.progress_repo.get("p1")
        self.assertEqual(0, progress.version)
        self.assertEqual(frozenset(), progress.visited_nodes)
        self.assertEqual(0, self.player_repo.get("p1").money)

    def test_node_prerequisites_are_rechecked(self) -> None:
        result = self.progressor.progress("p1", "n2")

        self.assertIsInstance(result, PrerequisitesNotMet)
        self.assertEqual(["story_flag:met_mari"], result.missing)

    def test_unknown_node_or_choice_is_not_found(self) -> None:
        with self.assertRaises(NotFoundError):
            self.progressor.progress("p1", "missing_node")
        with self.assertRaises(NotFoundError) as ctx:
            self.progressor.progress("p1", "n1", choice_id="missing_choice")
        self.assertEqual("choice", ctx.exception.kind)

    def test_unknown_player_is_not_found_before_any_write(self) -> None:
        with self.assertRaises(NotFoundError) as ctx:
            self.progressor.progress("ghost", "n1")
        self.assertEqual("player", ctx.exception.kind)
        with self.assertRaises(NotFoundError):
            self.progressor.set_flag("ghost", "met_mari", True)

        self.assertIsNone(self.progress_repo.get("ghost"))

    def test_repeated_attempt_grants_rewards_once(self) -> None:
        first = self.progressor.progress("p1", "n1", attempt_id="a-1")
        second = self.progressor.progress("p1", "n1", attempt_id="a-1")

        self.assertFalse(first.duplicate)
        self.assertTrue(second.duplicate)
        self.assertIsNone(second.rewards)
        self.assertEqual(100, self.player_repo.get("p1").money)
        self.assertEqual(1, self.progress_repo.get("p1").version)

    def test_without_attempt_id_each_completion_grants(self) -> None:
        self.progressor.progress("p1", "n1")
        self.progressor.progress("p1", "n1")

        self.assertEqual(200, self.player_repo.get("p1").money)

    def test_lost_compare_and_set_rolls_back_the_whole_step(self) -> None:
        def _stale_operation(*, expected_version, progress):
            def _operation(_session):
                raise StaleProgressError(progress.player_id, expected_version)

            return _operation

        with mock.patch.object(self.progress_repo, "build_transition_operation", side_effect=_stale_operation):
            result = self.progressor.progress("p1", "n1", attempt_id="a-1")

        self.assertEqual(StaleProgress(player_id="p1", expected_version=0), result)
        self.assertFalse(self.progress_repo.has_reward_grant("p1", "n1", "a-1"))
        self.assertEqual(0, self.player_repo.get("p1").money)

    def test_choice_quest_trigger_starts_quest_and_a_later_node_completes_it(self) -> None:
        self.progressor.progress("p1", "n1")
        self.progressor.progress("p1", "n2", choice_id="c_accept")

        instance = self.quest_repo.get_instance("p1", "q_intro")
        self.assertTrue(instance.is_active)
        self.assertIsInstance(self.progressor.progress("p1", "n3"), PrerequisitesNotMet)

        self.progressor.progress("p1", "n_report")

        self.assertTrue(self.quest_repo.get_instance("p1", "q_intro").is_finished)
        self.assertIsInstance(self.progressor.progress("p1", "n3"), ProgressResult)

    def test_linkage_failure_keeps_the_committed_transition(self) -> None:
        self.progressor.progress("p1", "n1")

        with mock.patch.object(self.quest_repo, "save_instance", side_effect=RuntimeError("quest store down")):
            with self.assertLogs("theway.application.services.event_bus", level="ERROR"):
                result = self.progressor.progress("p1", "n2", choice_id="c_accept")

        self.assertIsInstance(result, ProgressResult)
        self.assertIn("n2", self.progress_repo.get("p1").visited_nodes)
        self.assertEqual(10, self.player_repo.get("p1").experience)
        errors = self.engine.event_bus.last_publish_errors()
        self.assertEqual(1, len(errors))
        self.assertIsInstance(errors[0], LinkageFailure)
        self.assertEqual("story:p1:n2:v2", errors[0].replay_key)

    def test_replay_after_linkage_failure_catches_the_quest_up(self) -> None:
        self.progressor.progress("p1", "n1")
        with mock.patch.object(self.quest_repo, "save_instance", side_effect=RuntimeError("quest store down")):
            with self.assertLogs("theway.application.services.event_bus", level="ERROR"):
                self.progressor.progress("p1", "n2", choice_id="c_accept")

        event = StoryNodeCompleted(
            player_id="p1",
            merchant_id="mari",
            node_id="n2",
            choice_id="c_accept",
            next_node_id="n_report",
            quest_trigger="q_intro",
            replay_key="story:p1:n2:v2",
        )
        self.engine.quest_linkage.replay(event)
        self.engine.quest_linkage.replay(event)

        self.assertTrue(self.quest_repo.get_instance("p1", "q_intro").is_active)

    def test_set_and_get_flag(self) -> None:
        updated = self.progressor.set_flag("p1", "owes_favour", True)

        self.assertEqual(1, updated.version)
        self.assertIs(True, self.progressor.get_flag("p1", "owes_favour"))
        self.assertEqual("unset", self.progressor.get_flag("p2", "owes_favour", "unset"))


class NextNodeResolutionTests(unittest.TestCase):
    def test_choice_target_wins_over_fallback(self) -> None:
        content = _content()
        node = content.nodes[0]

        self.assertEqual("n2", resolve_next_node_id(node, None))
        self.assertIsNone(resolve_next_node_id(node, node.find_choice("c_leave")))
        self.assertIsNone(resolve_next_node_id(content.nodes[2], None))

    def test_replay_key_prefers_attempt_id(self) -> None:
        self.assertEqual("story:p1:n1:a-1", replay_key_for(player_id="p1", node_id="n1", attempt_id="a-1", version=3))
        self.assertEqual("story:p1:n1:v3", replay_key_for(player_id="p1", node_id="n1", attempt_id=None, version=3))


if __name__ == "__main__":
    unittest.main()
