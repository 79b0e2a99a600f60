from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Sequence

from theway.application.dtos import PrerequisitesNotMet, ProgressResult, StaleProgress
from theway.application.services.event_bus import EventBus
from theway.application.services.player_state import load_player_state
from theway.application.services.prerequisite_evaluator import FALLBACK_DIALOGUE, evaluate_prerequisites
from theway.application.services.story_graph_store import StoryGraphStore
from theway.domain.errors import DuplicateRewardGrantError, NotFoundError, StaleProgressError
from theway.domain.events import StoryNodeCompleted
from theway.domain.models.story import Choice, PlayerStoryProgress, StoryNode
from theway.domain.repositories import PlayerRepository, QuestRepository

AtomicPersistor = Callable[[Sequence[Callable[[object], None]]], None]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def resolve_next_node_id(node: StoryNode, choice: Choice | None) -> str | None:
    """A chosen branch wins even when it ends the story; otherwise the first authored fallback."""

    if choice is not None:
        return choice.next_node
    return node.next_nodes[0] if node.next_nodes else None


def replay_key_for(*, player_id: str, node_id: str, attempt_id: str | None, version: int) -> str:
    suffix = attempt_id if attempt_id else f"v{int(version)}"
    return f"story:{player_id}:{node_id}:{suffix}"


class StoryProgressor:
    def __init__(
        self,
        store: StoryGraphStore,
        player_repo: PlayerRepository,
        persist_atomic: AtomicPersistor,
        quest_repo: QuestRepository | None = None,
        event_bus: EventBus | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.store = store
        self.player_repo = player_repo
        self.quest_repo = quest_repo
        self.event_bus = event_bus
        self._persist_atomic = persist_atomic
        self._clock = clock or _utc_now
        self._logger = logging.getLogger(__name__)

    def progress(
        self,
        player_id: str,
        node_id: str,
        choice_id: str | None = None,
        attempt_id: str | None = None,
    ) -> ProgressResult | PrerequisitesNotMet | StaleProgress:
        player_id = str(player_id)
        node = self.store.get_node(node_id)
        choice = None
        if choice_id is not None:
            choice = node.find_choice(str(choice_id))
            if choice is None:
                raise NotFoundError("choice", f"{node.id}/{choice_id}")
        attempt = str(attempt_id).strip() if attempt_id is not None else ""
        next_node_id = resolve_next_node_id(node, choice)

        self._require_player(player_id)
        progress = self.store.get_or_init_progress(player_id)
        if attempt and self.store.has_reward_grant(player_id, node.id, attempt):
            return self._duplicate(node, next_node_id, progress)

        state = load_player_state(
            player_id=player_id,
            player_repo=self.player_repo,
            quest_repo=self.quest_repo,
            progress=progress,
        )
        missing = list(evaluate_prerequisites(state, node.prerequisites).missing)
        if choice is not None:
            missing.extend(evaluate_prerequisites(state, choice.requirements).missing)
        if missing:
            return PrerequisitesNotMet(missing=missing, fallback_dialogue=FALLBACK_DIALOGUE)

        now = self._clock()
        updated = progress.record_transition(
            node_id=node.id,
            next_node_id=next_node_id,
            flags=node.declared_flags,
            at=now,
        )
        rewards = node.rewards if node.rewards is not None and not node.rewards.is_empty else None

        operations: list[Callable[[object], None]] = []
        if attempt:
            operations.append(
                self.store.build_reward_grant_operation(
                    player_id=player_id,
                    node_id=node.id,
                    attempt_id=attempt,
                    granted_at=now,
                )
            )
        operations.append(
            self.store.build_transition_operation(
                expected_version=progress.version,
                progress=updated,
            )
        )
        if rewards is not None:
            operations.append(self.player_repo.build_reward_operation(player_id=player_id, rewards=rewards))

        try:
            self._persist_atomic(operations)
        except StaleProgressError as exc:
            self._logger.info(
                "Story progress lost a concurrent update",
                extra={"player_id": player_id, "node_id": node.id, "expected_version": exc.expected_version},
            )
            return StaleProgress(player_id=player_id, expected_version=exc.expected_version)
        except DuplicateRewardGrantError:
            return self._duplicate(node, next_node_id, self.store.get_or_init_progress(player_id))

        self._publish_completion(
            player_id=player_id,
            node=node,
            choice=choice,
            next_node_id=next_node_id,
            replay_key=replay_key_for(
                player_id=player_id,
                node_id=node.id,
                attempt_id=attempt or None,
                version=updated.version,
            ),
        )
        return ProgressResult(
            completed_node=node.id,
            next_node=self.store.find_node(next_node_id),
            rewards=rewards,
            duplicate=False,
            version=updated.version,
        )

    def _require_player(self, player_id: str) -> None:
        if self.player_repo.get(player_id) is None:
            raise NotFoundError("player", player_id)

    def _duplicate(self, node: StoryNode, next_node_id: str | None, progress: PlayerStoryProgress) -> ProgressResult:
        self._logger.info(
            "Repeated story attempt ignored",
            extra={"player_id": progress.player_id, "node_id": node.id},
        )
        return ProgressResult(
            completed_node=node.id,
            next_node=self.store.find_node(next_node_id),
            rewards=None,
            duplicate=True,
            version=progress.version,
        )

    def _publish_completion(
        self,
        *,
        player_id: str,
        node: StoryNode,
        choice: Choice | None,
        next_node_id: str | None,
        replay_key: str,
    ) -> None:
        if self.event_bus is None:
            return
        errors = self.event_bus.publish(
            StoryNodeCompleted(
                player_id=player_id,
                merchant_id=node.merchant_id,
                node_id=node.id,
                choice_id=None if choice is None else choice.id,
                next_node_id=next_node_id,
                quest_trigger=None if choice is None else choice.quest_trigger,
                replay_key=replay_key,
            )
        )
        if errors:
            self._logger.warning(
                "Story transition committed with failed post-commit handlers",
                extra={"player_id": player_id, "node_id": node.id, "replay_key": replay_key, "failures": len(errors)},
            )

    def set_flag(self, player_id: str, key: str, value: Any) -> PlayerStoryProgress | StaleProgress:
        player_id = str(player_id)
        self._require_player(player_id)
        progress = self.store.get_or_init_progress(player_id)
        updated = progress.with_flag(str(key), value, at=self._clock())
        try:
            self._persist_atomic(
                [
                    self.store.build_transition_operation(
                        expected_version=progress.version,
                        progress=updated,
                    )
                ]
            )
        except StaleProgressError as exc:
            return StaleProgress(player_id=player_id, expected_version=exc.expected_version)
        return updated

    def get_flag(self, player_id: str, key: str, default: Any = None) -> Any:
        progress = self.store.get_progress(str(player_id))
        if progress is None:
            return default
        return progress.story_flags.get(str(key), default)
