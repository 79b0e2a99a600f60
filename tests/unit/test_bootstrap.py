import json
import os
import sys
import tempfile
from pathlib import Path
import unittest
from unittest import mock

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from theway import bootstrap
from theway.domain.events import StoryNodeCompleted
from theway.infrastructure.merchant_chat_client import MerchantChatClient


class BootstrapTests(unittest.TestCase):
    def test_defaults_to_inmemory_with_repository_content(self) -> None:
        with mock.patch.dict(os.environ, {"THEWAY_DATABASE_URL": "", "THEWAY_CHAT_URL": ""}, clear=False):
            engine = bootstrap.create_story_engine()

        self.assertEqual("inmemory", engine.backend)
        self.assertIsNotNone(engine.quest_linkage)
        self.assertEqual(1, engine.event_bus.subscriber_count(StoryNodeCompleted))
        self.assertIsNone(engine.service.chat_gateway)
        self.assertEqual("story_mari_01", engine.service.get_story_node("story_mari_01").id)

    def test_unreachable_local_mysql_falls_back(self) -> None:
        env = {"THEWAY_DATABASE_URL": "mysql+mysqlconnector://u:p@localhost:3306/theway"}
        with mock.patch.dict(os.environ, env, clear=False), mock.patch.object(
            bootstrap, "_looks_like_local_mysql_unreachable", return_value=True
        ), self.assertLogs("theway.bootstrap", level="WARNING"):
            engine = bootstrap.create_story_engine()

        self.assertEqual("inmemory", engine.backend)

    def test_sql_bootstrap_failure_falls_back(self) -> None:
        env = {"THEWAY_DATABASE_URL": "mysql+mysqlconnector://u:p@db.internal:3306/theway"}
        with mock.patch.dict(os.environ, env, clear=False), mock.patch.object(
            bootstrap, "_build_mysql_engine", side_effect=RuntimeError("SQL bootstrap probe failed")
        ), self.assertLogs("theway.bootstrap", level="WARNING") as logs:
            engine = bootstrap.create_story_engine()

        self.assertEqual("inmemory", engine.backend)
        self.assertIn("probe failed", logs.output[0])

    def test_non_mysql_urls_are_not_probed(self) -> None:
        self.assertFalse(bootstrap._looks_like_local_mysql_unreachable("sqlite:///theway.db"))
        self.assertFalse(bootstrap._looks_like_local_mysql_unreachable("mysql+mysqlconnector://u:p@db.internal/theway"))

    def test_chat_gateway_is_configured_from_environment(self) -> None:
        env = {"THEWAY_CHAT_URL": "http://localhost:8000", "THEWAY_CHAT_RETRIES": "0"}
        with mock.patch.dict(os.environ, env, clear=False):
            engine = bootstrap.create_story_engine()

        self.assertIsInstance(engine.service.chat_gateway, MerchantChatClient)
        engine.service.chat_gateway.close()

    def test_dangling_quest_trigger_is_rejected_at_load(self) -> None:
        payload = {
            "merchants": [{"id": "mari", "name": "Mari", "initial_story_node": "n1", "has_active_story": True}],
            "quests": [],
            "story_nodes": [
                {
                    "id": "n1",
                    "merchant_id": "mari",
                    "content": {"speaker": "Mari", "text": "Hello."},
                    "choices": [{"id": "c1", "text": "Work?", "next_node": None, "quest_trigger": "q_missing"}],
                }
            ],
            "players": [{"id": "p1", "name": "Trader", "level": 1}],
        }
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "story.json"
            path.write_text(json.dumps(payload), encoding="utf-8")

            with self.assertRaises(ValueError) as ctx:
                bootstrap.create_story_engine(path)

        self.assertIn("unknown quest q_missing", str(ctx.exception))


if __name__ == "__main__":
    unittest.main()
