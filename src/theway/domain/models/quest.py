from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Mapping


class QuestObjectiveKind(str, Enum):
    DIALOGUE = "dialogue"
    DELIVER = "deliver"
    TRADE = "trade"
    TRAVEL = "travel"


class QuestStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    CLAIMED = "claimed"


@dataclass(frozen=True)
class QuestObjective:
    kind: str
    merchant_id: str | None = None
    target_node: str | None = None
    description: str = ""

    @property
    def is_dialogue(self) -> bool:
        return str(self.kind) == QuestObjectiveKind.DIALOGUE.value

    def matches_dialogue(self, *, merchant_id: str, node_id: str) -> bool:
        return self.is_dialogue and self.merchant_id == merchant_id and self.target_node == node_id


@dataclass(frozen=True)
class QuestDefinition:
    id: str
    title: str
    objectives: tuple[QuestObjective, ...] = ()
    merchant_id: str | None = None


@dataclass(frozen=True)
class QuestInstance:
    player_id: str
    quest_id: str
    status: str = QuestStatus.ACTIVE.value
    satisfied: Mapping[int, bool] = field(default_factory=dict)

    @property
    def is_active(self) -> bool:
        return self.status == QuestStatus.ACTIVE.value

    @property
    def is_finished(self) -> bool:
        return self.status in {QuestStatus.COMPLETED.value, QuestStatus.CLAIMED.value}

    def mark_satisfied(self, index: int) -> QuestInstance:
        updated = dict(self.satisfied)
        updated[int(index)] = True
        return replace(self, satisfied=updated)

    def all_satisfied(self, objective_count: int) -> bool:
        if objective_count <= 0:
            return False
        return all(self.satisfied.get(index, False) for index in range(objective_count))

    def complete(self) -> QuestInstance:
        return replace(self, status=QuestStatus.COMPLETED.value)
