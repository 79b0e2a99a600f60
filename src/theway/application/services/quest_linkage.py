from __future__ import annotations

import logging

from theway.application.services.event_bus import EventBus
from theway.domain.errors import LinkageFailure
from theway.domain.events import StoryNodeCompleted
from theway.domain.models.quest import QuestInstance, QuestStatus
from theway.domain.repositories import QuestRepository


class QuestLinkage:
    """Feeds committed story transitions into the quest tracker.

    Runs after the transition has committed, so anything raised here is
    wrapped in LinkageFailure for the bus to log; the story step stays.
    The event's replay key lets an operator run the same update again.
    """

    def __init__(self, quest_repo: QuestRepository, event_bus: EventBus) -> None:
        self.quest_repo = quest_repo
        self.event_bus = event_bus
        self._logger = logging.getLogger(__name__)

    def register_handlers(self) -> None:
        self.event_bus.subscribe(StoryNodeCompleted, self.on_story_node_completed, priority=20)

    def on_story_node_completed(self, event: StoryNodeCompleted) -> None:
        try:
            self.apply(event)
        except LinkageFailure:
            raise
        except Exception as exc:
            raise LinkageFailure(event.replay_key, f"Quest linkage failed for {event.replay_key}: {exc}") from exc

    def replay(self, event: StoryNodeCompleted) -> list[str]:
        """Re-run linkage for a previously committed transition; safe to repeat."""
        return self.apply(event)

    def apply(self, event: StoryNodeCompleted) -> list[str]:
        """Return the ids of quest instances that changed."""

        changed: list[str] = []
        if event.quest_trigger:
            if self._start_quest(event.player_id, event.quest_trigger, replay_key=event.replay_key):
                changed.append(event.quest_trigger)

        for instance in self.quest_repo.list_instances(event.player_id):
            # The completion that opens a quest never counts toward it.
            if not instance.is_active or instance.quest_id == event.quest_trigger:
                continue
            definition = self.quest_repo.get_definition(instance.quest_id)
            if definition is None:
                raise LinkageFailure(event.replay_key, f"Quest definition missing: {instance.quest_id}")

            updated = instance
            for index, objective in enumerate(definition.objectives):
                if objective.matches_dialogue(merchant_id=event.merchant_id, node_id=event.node_id):
                    updated = updated.mark_satisfied(index)
            if updated == instance:
                continue
            if updated.all_satisfied(len(definition.objectives)):
                updated = updated.complete()
            self.quest_repo.save_instance(updated)
            changed.append(instance.quest_id)
            self._logger.info(
                "Dialogue objective satisfied",
                extra={
                    "player_id": event.player_id,
                    "quest_id": instance.quest_id,
                    "node_id": event.node_id,
                    "status": updated.status,
                },
            )
        return changed

    def _start_quest(self, player_id: str, quest_id: str, *, replay_key: str) -> bool:
        if self.quest_repo.get_definition(quest_id) is None:
            raise LinkageFailure(replay_key, f"Choice triggered unknown quest {quest_id}")
        if self.quest_repo.get_instance(player_id, quest_id) is not None:
            return False
        self.quest_repo.save_instance(
            QuestInstance(player_id=player_id, quest_id=quest_id, status=QuestStatus.ACTIVE.value)
        )
        return True


def register_quest_linkage_handlers(event_bus: EventBus, quest_repo: QuestRepository | None) -> QuestLinkage | None:
    if quest_repo is None:
        return None
    linkage = QuestLinkage(quest_repo=quest_repo, event_bus=event_bus)
    linkage.register_handlers()
    return linkage
