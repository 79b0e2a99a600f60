import sys
from datetime import datetime, timezone
from pathlib import Path
import unittest

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from theway.domain.models.chat import UnlockedEpisode
from theway.domain.models.merchant import MerchantRelationship
from theway.domain.models.quest import QuestInstance
from theway.domain.models.story import (
    PlayerStoryProgress,
    RewardSpec,
    StoryCatalog,
    StoryNode,
    coerce_mapping,
)

_NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class StoryNodePayloadTests(unittest.TestCase):
    def test_camel_case_and_json_string_fields_are_accepted(self) -> None:
        node = StoryNode.from_payload(
            {
                "id": "story_mari_04",
                "nodeType": "dialogue",
                "merchantId": "mari",
                "content": '{"speaker": "Mari", "text": "You came back!"}',
                "choices": '[{"id": "a", "nextNode": "story_mari_05", "questTrigger": "q1"}]',
                "prerequisites": '{"storyFlags": {"met_mari": true}}',
                "nextNodes": ["story_mari_05"],
                "rewards": '{"exp": 50, "unlockItems": ["mari_charm", "mari_charm"]}',
                "metadata": None,
            }
        )

        self.assertEqual("mari", node.merchant_id)
        self.assertEqual("You came back!", node.content.text)
        self.assertEqual("story_mari_05", node.choices[0].next_node)
        self.assertEqual("q1", node.choices[0].quest_trigger)
        self.assertEqual({"met_mari": True}, dict(node.prerequisites.story_flags))
        self.assertEqual(RewardSpec(experience=50, unlock_items=("mari_charm",)), node.rewards)
        self.assertEqual({}, dict(node.metadata))

    def test_node_without_id_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            StoryNode.from_payload({"merchant_id": "mari"})

    def test_payload_survives_a_round_trip(self) -> None:
        payload = {
            "id": "n1",
            "node_type": "quest_gate",
            "merchant_id": "mari",
            "content": {"speaker": "Mari", "text": "Trade?", "context": "intro"},
            "choices": [{"id": "c1", "text": "Yes", "next_node": None, "quest_trigger": "q1"}],
            "prerequisites": {"level_min": 2, "reputation_min": 5},
            "next_nodes": [],
            "rewards": {"money": 1000, "reputation": 5},
            "metadata": {"chapter": 1},
        }

        self.assertEqual(payload, StoryNode.from_payload(payload).to_payload())

    def test_gold_alias_maps_to_money(self) -> None:
        self.assertEqual(1000, RewardSpec.from_payload({"gold": 1000}).money)
        self.assertTrue(RewardSpec.from_payload({}).is_empty)

    def test_non_object_json_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            coerce_mapping("[1, 2]")

    def test_chapter_and_sequence_ignore_junk(self) -> None:
        node = StoryNode(id="n", node_type="dialogue", merchant_id="m", metadata={"chapter": "two", "sequence": True})

        self.assertIsNone(node.chapter)
        self.assertIsNone(node.sequence)


class StoryCatalogTests(unittest.TestCase):
    def test_catalog_is_append_only(self) -> None:
        catalog = StoryCatalog([StoryNode(id="n1", node_type="dialogue", merchant_id="mari")])

        with self.assertRaises(ValueError):
            catalog.add(StoryNode(id="n1", node_type="ending", merchant_id="kim"))
        self.assertEqual("dialogue", catalog.get("n1").node_type)
        self.assertEqual(1, len(catalog))


class PlayerStoryProgressTests(unittest.TestCase):
    def test_transition_merges_flags_and_bumps_version(self) -> None:
        progress = PlayerStoryProgress(player_id="p1", story_flags={"a": 1, "b": 2}, version=4)

        updated = progress.record_transition(node_id="n1", next_node_id="n2", flags={"b": 3}, at=_NOW)

        self.assertEqual({"a": 1, "b": 3}, dict(updated.story_flags))
        self.assertEqual(5, updated.version)
        self.assertTrue(updated.has_visited("n1"))
        self.assertFalse(progress.has_visited("n1"))


class MerchantRelationshipTests(unittest.TestCase):
    def test_stage_two_needs_five_quests(self) -> None:
        relationship = MerchantRelationship(player_id="p1", merchant_id="mari", trust_stage=2)
        for _ in range(4):
            relationship = relationship.advance(at=_NOW)
        self.assertEqual((2, 4), (relationship.trust_stage, relationship.stage_progress))

        relationship = relationship.advance(at=_NOW)
        self.assertEqual((3, 0), (relationship.trust_stage, relationship.stage_progress))

    def test_max_stage_does_not_advance(self) -> None:
        relationship = MerchantRelationship(player_id="p1", merchant_id="mari", trust_stage=4)

        self.assertIs(relationship, relationship.advance(at=_NOW))


class QuestInstanceTests(unittest.TestCase):
    def test_all_satisfied_requires_every_objective(self) -> None:
        instance = QuestInstance(player_id="p1", quest_id="q1").mark_satisfied(0)

        self.assertFalse(instance.all_satisfied(2))
        self.assertTrue(instance.mark_satisfied(1).all_satisfied(2))
        self.assertFalse(QuestInstance(player_id="p1", quest_id="q0").all_satisfied(0))


class UnlockedEpisodeTests(unittest.TestCase):
    def test_accepts_either_key_style(self) -> None:
        episode = UnlockedEpisode.from_payload({"episodeId": "ep1", "title": "Rumours", "entryNode": "story_mari_04"})

        self.assertEqual(UnlockedEpisode(episode_id="ep1", title="Rumours", entry_node="story_mari_04"), episode)
        self.assertIsNone(UnlockedEpisode.from_payload({"title": "No entry"}))
        self.assertIsNone(UnlockedEpisode.from_payload(None))


if __name__ == "__main__":
    unittest.main()
