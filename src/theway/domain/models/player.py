from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping


@dataclass
class Player:
    id: str
    name: str = ""
    level: int = 1
    experience: int = 0
    money: int = 0
    reputation: int = 0


@dataclass(frozen=True)
class PlayerState:
    """Read-only view of the player attributes prerequisites are checked against."""

    player_id: str
    level: int = 1
    story_flags: Mapping[str, Any] = field(default_factory=dict)
    completed_quests: frozenset[str] = frozenset()
