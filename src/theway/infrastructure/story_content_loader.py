from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from theway.domain.models.merchant import Merchant
from theway.domain.models.player import Player
from theway.domain.models.quest import QuestDefinition, QuestObjective
from theway.domain.models.story import StoryNode, coerce_list

DEFAULT_STORY_CONTENT_FILE = "data/story/story_nodes.json"

_logger = logging.getLogger(__name__)


@dataclass
class StoryContent:
    nodes: list[StoryNode] = field(default_factory=list)
    merchants: list[Merchant] = field(default_factory=list)
    quests: list[QuestDefinition] = field(default_factory=list)
    players: list[Player] = field(default_factory=list)
    player_items: dict[str, list[str]] = field(default_factory=dict)


def story_content_path() -> Path:
    configured = os.getenv("THEWAY_STORY_CONTENT", "").strip()
    if configured:
        return Path(configured)
    project_root = Path(__file__).resolve().parents[3]
    return project_root / DEFAULT_STORY_CONTENT_FILE


def _parse_merchant(row: dict[str, Any]) -> Merchant:
    merchant_id = str(row.get("id", "") or "").strip()
    if not merchant_id:
        raise ValueError("merchant id is required")
    initial = row.get("initial_story_node", row.get("initialStoryNode"))
    latitude = row.get("lat", row.get("latitude"))
    longitude = row.get("lng", row.get("longitude"))
    return Merchant(
        id=merchant_id,
        name=str(row.get("name", merchant_id) or merchant_id),
        initial_story_node=str(initial).strip() if initial else None,
        has_active_story=bool(row.get("has_active_story", row.get("hasActiveStory", False))),
        latitude=None if latitude is None else float(latitude),
        longitude=None if longitude is None else float(longitude),
    )


def _parse_quest(row: dict[str, Any]) -> QuestDefinition:
    quest_id = str(row.get("id", "") or "").strip()
    if not quest_id:
        raise ValueError("quest id is required")
    objectives = []
    for objective in coerce_list(row.get("objectives")):
        if not isinstance(objective, dict):
            raise ValueError(f"quests.{quest_id}.objectives entries must be objects")
        merchant_id = objective.get("merchant_id", objective.get("merchantId"))
        target_node = objective.get("target_node", objective.get("targetNode"))
        objectives.append(
            QuestObjective(
                kind=str(objective.get("kind", objective.get("type", "")) or ""),
                merchant_id=str(merchant_id) if merchant_id else None,
                target_node=str(target_node) if target_node else None,
                description=str(objective.get("description", "") or ""),
            )
        )
    merchant = row.get("merchant_id", row.get("required_merchant"))
    return QuestDefinition(
        id=quest_id,
        title=str(row.get("title", row.get("name", quest_id)) or quest_id),
        objectives=tuple(objectives),
        merchant_id=str(merchant) if merchant else None,
    )


def _parse_player(row: dict[str, Any]) -> Player:
    player_id = str(row.get("id", "") or "").strip()
    if not player_id:
        raise ValueError("player id is required")
    return Player(
        id=player_id,
        name=str(row.get("name", "") or ""),
        level=int(row.get("level", 1) or 1),
        experience=int(row.get("experience", 0) or 0),
        money=int(row.get("money", 0) or 0),
        reputation=int(row.get("reputation", 0) or 0),
    )


def parse_story_content(payload: object) -> StoryContent:
    if not isinstance(payload, dict):
        raise ValueError("story content must be a JSON object")

    content = StoryContent()
    content.merchants = [_parse_merchant(row) for row in coerce_list(payload.get("merchants"))]
    content.quests = [_parse_quest(row) for row in coerce_list(payload.get("quests"))]
    content.nodes = [StoryNode.from_payload(row) for row in coerce_list(payload.get("story_nodes"))]
    for row in coerce_list(payload.get("players")):
        player = _parse_player(row)
        content.players.append(player)
        items = [str(item) for item in coerce_list(row.get("items")) if str(item).strip()]
        if items:
            content.player_items[player.id] = items
    return content


def load_story_content(path: str | Path | None = None) -> StoryContent:
    source = Path(path) if path is not None else story_content_path()
    with source.open("r", encoding="utf-8") as handle:
        payload = json.load(handle)
    content = parse_story_content(payload)
    _logger.info(
        "Story content loaded",
        extra={"path": str(source), "nodes": len(content.nodes), "merchants": len(content.merchants)},
    )
    return content
