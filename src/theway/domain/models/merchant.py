from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Iterable

MAX_TRUST_STAGE = 4
MAX_PERMIT_TIER = 4
NO_TRADING_GRADE = -1

# Trust-stage progress needed to reach the next stage; the last stage has nowhere to go.
STAGE_REQUIREMENTS = {0: 3, 1: 3, 2: 5, 3: 5, 4: 0}

# Highest item grade unlocked by a trust stage or a permit tier (same table for both).
GRADE_CAP_BY_TIER = {0: NO_TRADING_GRADE, 1: 0, 2: 1, 3: 2, 4: 5}

REQUIRED_TIER_FOR_GRADE = {0: 1, 1: 2, 2: 3, 3: 4, 4: 4, 5: 4}

PERMIT_ITEM_PREFIX = "merchant_permit_"
PERMIT_ITEM_PREFIXES = (PERMIT_ITEM_PREFIX, "merchantpermit_")
PERMIT_ITEM_IDS = tuple(f"{PERMIT_ITEM_PREFIX}{tier}" for tier in range(1, MAX_PERMIT_TIER + 1))


def clamp_stage(stage: int) -> int:
    return max(0, min(int(stage or 0), MAX_TRUST_STAGE))


def grade_cap_for_tier(tier: int) -> int:
    return GRADE_CAP_BY_TIER.get(int(tier or 0), NO_TRADING_GRADE)


def stage_requirement(stage: int) -> int:
    return STAGE_REQUIREMENTS.get(clamp_stage(stage), 0)


def required_tier_for_grade(grade: int) -> int:
    return REQUIRED_TIER_FOR_GRADE.get(int(grade), MAX_PERMIT_TIER)


def effective_max_grade(relationship_cap: int, permit_cap: int) -> int:
    """Lower of the two caps; a missing stage or permit locks trading entirely."""

    if relationship_cap == NO_TRADING_GRADE or permit_cap == NO_TRADING_GRADE:
        return NO_TRADING_GRADE
    return min(relationship_cap, permit_cap)


def permit_item_id(tier: int) -> str:
    return f"{PERMIT_ITEM_PREFIX}{int(tier)}"


def permit_tier_for_items(item_ids: Iterable[str]) -> int:
    tier = 0
    for item_id in item_ids:
        token = str(item_id or "").strip().lower()
        prefix = next((candidate for candidate in PERMIT_ITEM_PREFIXES if token.startswith(candidate)), None)
        if prefix is None:
            continue
        suffix = token[len(prefix):]
        if not suffix.isdigit():
            continue
        level = int(suffix)
        if 1 <= level <= MAX_PERMIT_TIER:
            tier = max(tier, level)
    return tier


@dataclass(frozen=True)
class Merchant:
    id: str
    name: str
    initial_story_node: str | None = None
    has_active_story: bool = False
    latitude: float | None = None
    longitude: float | None = None


@dataclass(frozen=True)
class MerchantRelationship:
    player_id: str
    merchant_id: str
    trust_stage: int = 0
    stage_progress: int = 0
    total_trades: int = 0
    total_spent: int = 0
    last_interaction: datetime | None = None

    @property
    def at_max_stage(self) -> bool:
        return self.trust_stage >= MAX_TRUST_STAGE

    def advance(self, *, at: datetime) -> MerchantRelationship:
        """Count one qualifying quest toward the next trust stage."""

        if self.at_max_stage:
            return self
        progress = self.stage_progress + 1
        stage = self.trust_stage
        if progress >= stage_requirement(stage):
            stage = clamp_stage(stage + 1)
            progress = 0
        return replace(self, trust_stage=stage, stage_progress=progress, last_interaction=at)
