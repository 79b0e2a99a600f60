from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from theway.domain.models.story import RewardSpec, StoryNode


@dataclass(frozen=True)
class PrerequisiteVerdict:
    satisfied: bool
    missing: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class PrerequisitesNotMet:
    missing: List[str]
    fallback_dialogue: str = ""


@dataclass(frozen=True)
class StaleProgress:
    player_id: str
    expected_version: int


@dataclass(frozen=True)
class StaleRelationship:
    player_id: str
    merchant_id: str


@dataclass(frozen=True)
class ProgressResult:
    completed_node: str
    next_node: Optional[StoryNode]
    rewards: Optional[RewardSpec]
    duplicate: bool = False
    version: int = 0


@dataclass(frozen=True)
class TradeAccessView:
    player_id: str
    merchant_id: str
    trust_stage: int
    permit_tier: int
    relationship_max_grade: int
    permit_max_grade: int
    effective_max_grade: int
    can_trade: bool
    stage_progress: int = 0
    stage_requirement: int = 0


@dataclass(frozen=True)
class TradeEligibilityView:
    access: TradeAccessView
    distance_meters: Optional[int]
    within_trade_distance: bool
    trade_distance_limit: int
    can_trade: bool


@dataclass(frozen=True)
class TradeRecordView:
    player_id: str
    merchant_id: str
    amount: int
    total_trades: int
    total_spent: int


@dataclass(frozen=True)
class StageProgressView:
    player_id: str
    merchant_id: str
    quest_id: str
    applied: bool
    trust_stage: int
    stage_progress: int
    stage_requirement: int
    stage_advanced: bool = False


@dataclass(frozen=True)
class PermitUpgradeView:
    player_id: str
    merchant_id: str
    permit_tier: int
    permit_item_id: str
    trust_stage: int


@dataclass
class ChoiceView:
    id: str
    text: str
    next_node: Optional[str]
    quest_trigger: Optional[str] = None


@dataclass
class StoryNodeView:
    id: str
    node_type: str
    merchant_id: str
    speaker: str
    text: str
    context: str = ""
    choices: List[ChoiceView] = field(default_factory=list)
    next_nodes: List[str] = field(default_factory=list)
    rewards: Dict[str, Any] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class StoryProgressView:
    completed_node: str
    next_node: Optional[StoryNodeView]
    rewards: Optional[Dict[str, Any]]
    duplicate: bool = False


@dataclass
class StoryChapterView:
    chapter: int
    title: str
    story_type: str
    initial_node: str
    completed: bool


@dataclass
class MerchantChatView:
    reply: str
    episode_title: Optional[str] = None
    offered_node: Optional[StoryNodeView] = None
    missing: List[str] = field(default_factory=list)
