from __future__ import annotations

import json
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Iterator, Mapping


class StoryNodeType(str, Enum):
    DIALOGUE = "dialogue"
    QUEST_GATE = "quest_gate"
    NARRATION = "narration"
    ENDING = "ending"


def coerce_mapping(raw: object) -> dict[str, Any] | None:
    """Accept a mapping or a JSON object string; anything else reads as absent."""

    if raw is None:
        return None
    if isinstance(raw, Mapping):
        return {str(key): value for key, value in raw.items()}
    if isinstance(raw, (str, bytes)):
        text_value = raw.decode("utf-8") if isinstance(raw, bytes) else raw
        if not text_value.strip():
            return None
        parsed = json.loads(text_value)
        if parsed is None:
            return None
        if not isinstance(parsed, dict):
            raise ValueError(f"Expected a JSON object, got {type(parsed).__name__}")
        return {str(key): value for key, value in parsed.items()}
    raise ValueError(f"Expected a mapping, got {type(raw).__name__}")


def coerce_list(raw: object) -> list[Any]:
    if raw is None:
        return []
    if isinstance(raw, (str, bytes)):
        text_value = raw.decode("utf-8") if isinstance(raw, bytes) else raw
        if not text_value.strip():
            return []
        parsed = json.loads(text_value)
        if parsed is None:
            return []
        if not isinstance(parsed, list):
            raise ValueError(f"Expected a JSON array, got {type(parsed).__name__}")
        return parsed
    if isinstance(raw, (list, tuple)):
        return list(raw)
    raise ValueError(f"Expected a list, got {type(raw).__name__}")


def _first_present(payload: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in payload:
            return payload[key]
    return None


def _optional_id(raw: object) -> str | None:
    if raw is None:
        return None
    token = str(raw).strip()
    return token or None


_RECOGNIZED_PREREQUISITE_KEYS = {
    "level_min",
    "levelMin",
    "story_flags",
    "storyFlags",
    "quests_completed",
    "questsCompleted",
}


@dataclass(frozen=True)
class PrerequisiteSpec:
    """Gate on player state; every present field must hold.

    Unrecognized payload keys are kept in ``extras`` for round-tripping and
    never take part in evaluation.
    """

    level_min: int | None = None
    story_flags: Mapping[str, Any] | None = None
    quests_completed: tuple[str, ...] | None = None
    extras: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, raw: object) -> PrerequisiteSpec | None:
        payload = coerce_mapping(raw)
        if payload is None:
            return None

        level_raw = _first_present(payload, "level_min", "levelMin")
        level_min = None if level_raw is None else int(level_raw)

        flags_raw = _first_present(payload, "story_flags", "storyFlags")
        story_flags = None if flags_raw is None else dict(coerce_mapping(flags_raw) or {})

        quests_raw = _first_present(payload, "quests_completed", "questsCompleted")
        quests_completed = None
        if quests_raw is not None:
            quests_completed = tuple(str(item) for item in coerce_list(quests_raw) if str(item).strip())

        extras = {key: value for key, value in payload.items() if key not in _RECOGNIZED_PREREQUISITE_KEYS}
        return cls(
            level_min=level_min,
            story_flags=story_flags,
            quests_completed=quests_completed,
            extras=extras,
        )

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = dict(self.extras)
        if self.level_min is not None:
            payload["level_min"] = int(self.level_min)
        if self.story_flags is not None:
            payload["story_flags"] = dict(self.story_flags)
        if self.quests_completed is not None:
            payload["quests_completed"] = list(self.quests_completed)
        return payload


@dataclass(frozen=True)
class RewardSpec:
    experience: int = 0
    money: int = 0
    reputation: int = 0
    unlock_items: tuple[str, ...] = ()

    @classmethod
    def from_payload(cls, raw: object) -> RewardSpec | None:
        payload = coerce_mapping(raw)
        if payload is None:
            return None
        items_raw = _first_present(payload, "unlock_items", "unlockItems")
        items: list[str] = []
        for item in coerce_list(items_raw):
            token = str(item).strip()
            if token and token not in items:
                items.append(token)
        return cls(
            experience=int(_first_present(payload, "experience", "exp") or 0),
            money=int(_first_present(payload, "money", "gold") or 0),
            reputation=int(payload.get("reputation", 0) or 0),
            unlock_items=tuple(items),
        )

    @property
    def is_empty(self) -> bool:
        return not (self.experience or self.money or self.reputation or self.unlock_items)

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {}
        if self.experience:
            payload["experience"] = int(self.experience)
        if self.money:
            payload["money"] = int(self.money)
        if self.reputation:
            payload["reputation"] = int(self.reputation)
        if self.unlock_items:
            payload["unlock_items"] = list(self.unlock_items)
        return payload


@dataclass(frozen=True)
class NodeContent:
    speaker: str = ""
    text: str = ""
    context: str = ""
    extra: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, raw: object) -> NodeContent:
        payload = coerce_mapping(raw) or {}
        extra = {key: value for key, value in payload.items() if key not in {"speaker", "text", "context"}}
        return cls(
            speaker=str(payload.get("speaker", "") or ""),
            text=str(payload.get("text", "") or ""),
            context=str(payload.get("context", "") or ""),
            extra=extra,
        )

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = dict(self.extra)
        payload.update({"speaker": self.speaker, "text": self.text, "context": self.context})
        return payload


@dataclass(frozen=True)
class Choice:
    id: str
    text: str = ""
    next_node: str | None = None
    requirements: PrerequisiteSpec | None = None
    quest_trigger: str | None = None

    @classmethod
    def from_payload(cls, raw: object) -> Choice:
        payload = coerce_mapping(raw) or {}
        choice_id = str(payload.get("id", "") or "").strip()
        if not choice_id:
            raise ValueError("choice.id is required")
        return cls(
            id=choice_id,
            text=str(payload.get("text", "") or ""),
            next_node=_optional_id(_first_present(payload, "next_node", "nextNode")),
            requirements=PrerequisiteSpec.from_payload(payload.get("requirements")),
            quest_trigger=_optional_id(_first_present(payload, "quest_trigger", "questTrigger")),
        )

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"id": self.id, "text": self.text, "next_node": self.next_node}
        if self.requirements is not None:
            payload["requirements"] = self.requirements.to_payload()
        if self.quest_trigger is not None:
            payload["quest_trigger"] = self.quest_trigger
        return payload


@dataclass(frozen=True)
class StoryNode:
    id: str
    node_type: str
    merchant_id: str
    content: NodeContent = field(default_factory=NodeContent)
    choices: tuple[Choice, ...] = ()
    prerequisites: PrerequisiteSpec | None = None
    next_nodes: tuple[str, ...] = ()
    rewards: RewardSpec | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, raw: object) -> StoryNode:
        payload = coerce_mapping(raw) or {}
        node_id = str(payload.get("id", "") or "").strip()
        if not node_id:
            raise ValueError("story node id is required")
        choices = tuple(Choice.from_payload(row) for row in coerce_list(payload.get("choices")))
        next_nodes = tuple(
            str(item).strip()
            for item in coerce_list(_first_present(payload, "next_nodes", "nextNodes"))
            if str(item).strip()
        )
        return cls(
            id=node_id,
            node_type=str(_first_present(payload, "node_type", "nodeType") or StoryNodeType.DIALOGUE.value),
            merchant_id=str(_first_present(payload, "merchant_id", "merchantId") or ""),
            content=NodeContent.from_payload(payload.get("content")),
            choices=choices,
            prerequisites=PrerequisiteSpec.from_payload(payload.get("prerequisites")),
            next_nodes=next_nodes,
            rewards=RewardSpec.from_payload(payload.get("rewards")),
            metadata=coerce_mapping(payload.get("metadata")) or {},
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "node_type": self.node_type,
            "merchant_id": self.merchant_id,
            "content": self.content.to_payload(),
            "choices": [choice.to_payload() for choice in self.choices],
            "prerequisites": None if self.prerequisites is None else self.prerequisites.to_payload(),
            "next_nodes": list(self.next_nodes),
            "rewards": None if self.rewards is None else self.rewards.to_payload(),
            "metadata": dict(self.metadata),
        }

    def find_choice(self, choice_id: str) -> Choice | None:
        for choice in self.choices:
            if choice.id == choice_id:
                return choice
        return None

    @property
    def declared_flags(self) -> dict[str, Any]:
        flags = self.metadata.get("story_flags")
        return dict(flags) if isinstance(flags, Mapping) else {}

    @property
    def chapter(self) -> int | None:
        raw = self.metadata.get("chapter")
        if raw is None or isinstance(raw, bool):
            return None
        try:
            return int(raw)
        except (TypeError, ValueError):
            return None

    @property
    def sequence(self) -> int | None:
        raw = self.metadata.get("sequence")
        if raw is None or isinstance(raw, bool):
            return None
        try:
            return int(raw)
        except (TypeError, ValueError):
            return None


@dataclass(frozen=True)
class PlayerStoryProgress:
    player_id: str
    current_node_id: str | None = None
    visited_nodes: frozenset[str] = frozenset()
    story_flags: Mapping[str, Any] = field(default_factory=dict)
    last_interaction: datetime | None = None
    version: int = 0

    @classmethod
    def empty(cls, player_id: str) -> PlayerStoryProgress:
        return cls(player_id=str(player_id))

    def has_visited(self, node_id: str) -> bool:
        return node_id in self.visited_nodes

    def record_transition(
        self,
        *,
        node_id: str,
        next_node_id: str | None,
        flags: Mapping[str, Any],
        at: datetime,
    ) -> PlayerStoryProgress:
        merged = dict(self.story_flags)
        merged.update(flags)
        return replace(
            self,
            current_node_id=next_node_id,
            visited_nodes=self.visited_nodes | {node_id},
            story_flags=merged,
            last_interaction=at,
            version=self.version + 1,
        )

    def with_flag(self, key: str, value: Any, *, at: datetime) -> PlayerStoryProgress:
        merged = dict(self.story_flags)
        merged[str(key)] = value
        return replace(self, story_flags=merged, last_interaction=at, version=self.version + 1)


@dataclass(frozen=True)
class StoryChapter:
    merchant_id: str
    chapter: int
    title: str
    story_type: str
    initial_node_id: str


def group_chapters(nodes: Iterable[StoryNode]) -> list[StoryChapter]:
    """Group nodes by ``metadata.chapter``; each chapter opens at its lowest sequence."""

    grouped: dict[int, list[StoryNode]] = {}
    for node in nodes:
        if node.chapter is None:
            continue
        grouped.setdefault(node.chapter, []).append(node)

    chapters: list[StoryChapter] = []
    for number in sorted(grouped):
        members = sorted(
            grouped[number],
            key=lambda row: (row.sequence if row.sequence is not None else float("inf"), row.id),
        )
        initial = members[0]
        title = str(initial.metadata.get("title") or "")
        story_type = str(initial.metadata.get("story_type") or "")
        for member in members[1:]:
            title = title or str(member.metadata.get("title") or "")
            story_type = story_type or str(member.metadata.get("story_type") or "")
        chapters.append(
            StoryChapter(
                merchant_id=initial.merchant_id,
                chapter=number,
                title=title,
                story_type=story_type,
                initial_node_id=initial.id,
            )
        )
    return chapters


class StoryCatalog:
    """Authored node table; nodes are only ever added, never replaced."""

    def __init__(self, nodes: Iterable[StoryNode] = ()) -> None:
        self._nodes: dict[str, StoryNode] = {}
        self._by_merchant: dict[str, list[str]] = {}
        for node in nodes:
            self.add(node)

    def add(self, node: StoryNode) -> None:
        if node.id in self._nodes:
            raise ValueError(f"Story node already authored: {node.id}")
        self._nodes[node.id] = node
        self._by_merchant.setdefault(node.merchant_id, []).append(node.id)

    def get(self, node_id: str) -> StoryNode | None:
        return self._nodes.get(str(node_id))

    def for_merchant(self, merchant_id: str) -> list[StoryNode]:
        return [self._nodes[node_id] for node_id in self._by_merchant.get(str(merchant_id), [])]

    def node_ids(self) -> set[str]:
        return set(self._nodes)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    def __iter__(self) -> Iterator[StoryNode]:
        return iter(list(self._nodes.values()))

    def __len__(self) -> int:
        return len(self._nodes)
