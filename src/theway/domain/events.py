from dataclasses import dataclass
from typing import Optional


@dataclass
class StoryNodeCompleted:
    player_id: str
    merchant_id: str
    node_id: str
    choice_id: Optional[str]
    next_node_id: Optional[str]
    quest_trigger: Optional[str]
    replay_key: str


@dataclass
class TrustStageAdvanced:
    player_id: str
    merchant_id: str
    stage_before: int
    stage_after: int
    quest_id: str


@dataclass
class PermitUpgraded:
    player_id: str
    merchant_id: str
    tier_before: int
    tier_after: int
