from __future__ import annotations

from theway.domain.errors import NotFoundError
from theway.domain.models.player import PlayerState
from theway.domain.models.story import PlayerStoryProgress
from theway.domain.repositories import PlayerRepository, QuestRepository


def load_player_state(
    *,
    player_id: str,
    player_repo: PlayerRepository,
    quest_repo: QuestRepository | None,
    progress: PlayerStoryProgress | None,
) -> PlayerState:
    player = player_repo.get(str(player_id))
    if player is None:
        raise NotFoundError("player", str(player_id))

    completed: frozenset[str] = frozenset()
    if quest_repo is not None:
        completed = frozenset(quest_repo.completed_quest_ids(player.id))

    return PlayerState(
        player_id=player.id,
        level=int(player.level or 0),
        story_flags=dict(progress.story_flags) if progress is not None else {},
        completed_quests=completed,
    )
