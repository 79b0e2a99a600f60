from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Iterable

from theway.domain.errors import NotFoundError
from theway.domain.models.story import PlayerStoryProgress, StoryChapter, StoryNode, group_chapters
from theway.domain.repositories import QuestRepository, StoryNodeRepository, StoryProgressRepository


def validate_story_catalog(nodes: Iterable[StoryNode], quest_ids: Iterable[str]) -> list[str]:
    """Authoring checks: quest triggers, dangling links, duplicate choice ids."""

    rows = list(nodes)
    known_nodes = {row.id for row in rows}
    known_quests = {str(quest_id) for quest_id in quest_ids}
    errors: list[str] = []

    seen: set[str] = set()
    for node in rows:
        if node.id in seen:
            errors.append(f"nodes.{node.id} is defined more than once")
        seen.add(node.id)

        if not node.merchant_id:
            errors.append(f"nodes.{node.id}.merchant_id is required")

        for index, next_id in enumerate(node.next_nodes):
            if next_id not in known_nodes:
                errors.append(f"nodes.{node.id}.next_nodes[{index}] references unknown node {next_id}")

        choice_ids: set[str] = set()
        for index, choice in enumerate(node.choices):
            prefix = f"nodes.{node.id}.choices[{index}]"
            if choice.id in choice_ids:
                errors.append(f"{prefix}.id duplicates {choice.id}")
            choice_ids.add(choice.id)
            if choice.next_node is not None and choice.next_node not in known_nodes:
                errors.append(f"{prefix}.next_node references unknown node {choice.next_node}")
            if choice.quest_trigger is not None and choice.quest_trigger not in known_quests:
                errors.append(f"{prefix}.quest_trigger references unknown quest {choice.quest_trigger}")
    return errors


class StoryGraphStore:
    """Read side of the story graph plus append-only node authoring.

    Progress rows are only ever created here (lazily, on first read); every
    later change goes through StoryProgressor's atomic commit.
    """

    def __init__(
        self,
        node_repo: StoryNodeRepository,
        progress_repo: StoryProgressRepository,
        quest_repo: QuestRepository | None = None,
    ) -> None:
        self.node_repo = node_repo
        self.progress_repo = progress_repo
        self.quest_repo = quest_repo
        self._logger = logging.getLogger(__name__)

    def get_node(self, node_id: str) -> StoryNode:
        node = self.node_repo.get(str(node_id))
        if node is None:
            raise NotFoundError("story_node", str(node_id))
        return node

    def find_node(self, node_id: str | None) -> StoryNode | None:
        if not node_id:
            return None
        return self.node_repo.get(str(node_id))

    def get_progress(self, player_id: str) -> PlayerStoryProgress | None:
        return self.progress_repo.get(str(player_id))

    def get_or_init_progress(self, player_id: str) -> PlayerStoryProgress:
        return self.progress_repo.get_or_create(str(player_id))

    def has_reward_grant(self, player_id: str, node_id: str, attempt_id: str) -> bool:
        return self.progress_repo.has_reward_grant(str(player_id), str(node_id), str(attempt_id))

    def build_transition_operation(
        self,
        *,
        expected_version: int,
        progress: PlayerStoryProgress,
    ) -> Callable[[object], None]:
        return self.progress_repo.build_transition_operation(expected_version=expected_version, progress=progress)

    def build_reward_grant_operation(
        self,
        *,
        player_id: str,
        node_id: str,
        attempt_id: str,
        granted_at: datetime,
    ) -> Callable[[object], None]:
        return self.progress_repo.build_reward_grant_operation(
            player_id=player_id,
            node_id=node_id,
            attempt_id=attempt_id,
            granted_at=granted_at,
        )

    def append_node(self, node: StoryNode) -> StoryNode:
        if self.node_repo.get(node.id) is not None:
            raise ValueError(f"Story node already authored: {node.id}")

        if self.quest_repo is not None:
            for choice in node.choices:
                if choice.quest_trigger and self.quest_repo.get_definition(choice.quest_trigger) is None:
                    raise ValueError(
                        f"Choice {node.id}/{choice.id} triggers unknown quest {choice.quest_trigger}"
                    )

        self.node_repo.add(node)
        self._logger.debug("Story node authored", extra={"node_id": node.id, "merchant_id": node.merchant_id})
        return node

    def list_merchant_nodes(self, merchant_id: str) -> list[StoryNode]:
        return list(self.node_repo.list_for_merchant(str(merchant_id)))

    def chapters_for_merchant(self, merchant_id: str) -> list[StoryChapter]:
        return group_chapters(self.list_merchant_nodes(merchant_id))
