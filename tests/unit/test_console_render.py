import io
import sys
from pathlib import Path
import unittest

from rich.console import Console

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from theway.application.dtos import (
    ChoiceView,
    PrerequisitesNotMet,
    StoryChapterView,
    StoryNodeView,
    TradeAccessView,
    TradeEligibilityView,
)
from theway.presentation.console import render


def _render(value) -> str:
    buffer = io.StringIO()
    render(value, Console(file=buffer, width=100, color_system=None))
    return buffer.getvalue()


class ConsoleRenderTests(unittest.TestCase):
    def test_node_panel_lists_choices_and_rewards(self) -> None:
        view = StoryNodeView(
            id="story_mari_03",
            node_type="quest_gate",
            merchant_id="mari",
            speaker="Mari",
            text="Shall we start with a simple trade?",
            choices=[ChoiceView(id="a", text="Sounds good!", next_node="story_mari_04", quest_trigger="quest_tutorial_001")],
            rewards={"money": 1000},
        )

        output = _render(view)

        self.assertIn("Mari: Shall we start with a simple trade?", output)
        self.assertIn("1. Sounds good! (starts quest_tutorial_001)", output)
        self.assertIn("money=1000", output)

    def test_gated_result_shows_fallback_line(self) -> None:
        output = _render(PrerequisitesNotMet(missing=["level_min:5"], fallback_dialogue="Not yet."))

        self.assertIn("Not yet.", output)
        self.assertIn("Missing: level_min:5", output)

    def test_trade_access_table(self) -> None:
        view = TradeAccessView(
            player_id="p1",
            merchant_id="mari",
            trust_stage=2,
            permit_tier=1,
            relationship_max_grade=1,
            permit_max_grade=0,
            effective_max_grade=0,
            can_trade=True,
            stage_progress=1,
            stage_requirement=5,
        )

        output = _render(view)

        self.assertIn("Effective max grade", output)
        self.assertIn("2 (1/5)", output)

    def test_eligibility_table_adds_distance_rows(self) -> None:
        access = TradeAccessView(
            player_id="p1",
            merchant_id="mari",
            trust_stage=1,
            permit_tier=1,
            relationship_max_grade=0,
            permit_max_grade=0,
            effective_max_grade=0,
            can_trade=True,
        )
        view = TradeEligibilityView(
            access=access,
            distance_meters=1112,
            within_trade_distance=False,
            trade_distance_limit=400,
            can_trade=False,
        )

        output = _render(view)

        self.assertIn("1112 m (limit 400 m)", output)
        self.assertIn("Can trade here", output)

    def test_chapter_table(self) -> None:
        rows = [StoryChapterView(chapter=1, title="First Meeting", story_type="main", initial_node="story_mari_01", completed=True)]

        self.assertIn("First Meeting", _render(rows))


if __name__ == "__main__":
    unittest.main()
