from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import Dict, Iterable, List, Sequence

from theway.domain.errors import (
    DuplicateRewardGrantError,
    NotFoundError,
    StaleProgressError,
    StaleRelationshipError,
)
from theway.domain.models.merchant import Merchant, MerchantRelationship
from theway.domain.models.player import Player
from theway.domain.models.quest import QuestDefinition, QuestInstance
from theway.domain.models.story import PlayerStoryProgress, RewardSpec, StoryCatalog, StoryNode
from theway.domain.repositories import (
    MerchantRepository,
    PlayerRepository,
    QuestRepository,
    RelationshipRepository,
    StoryNodeRepository,
    StoryProgressRepository,
)


class InMemoryStoryNodeRepository(StoryNodeRepository):
    def __init__(self, nodes: Iterable[StoryNode] = ()) -> None:
        self._catalog = StoryCatalog(nodes)

    def get(self, node_id: str) -> StoryNode | None:
        return self._catalog.get(node_id)

    def list_for_merchant(self, merchant_id: str) -> List[StoryNode]:
        return self._catalog.for_merchant(merchant_id)

    def list_all(self) -> List[StoryNode]:
        return list(self._catalog)

    def add(self, node: StoryNode) -> None:
        self._catalog.add(node)


class InMemoryStoryProgressRepository(StoryProgressRepository):
    _STATE_ATTRS = ("_progress", "_reward_grants")

    def __init__(self, initial: Dict[str, PlayerStoryProgress] | None = None) -> None:
        self._progress: Dict[str, PlayerStoryProgress] = dict(initial or {})
        self._reward_grants: Dict[tuple[str, str, str], datetime] = {}

    def get(self, player_id: str) -> PlayerStoryProgress | None:
        return self._progress.get(str(player_id))

    def get_or_create(self, player_id: str) -> PlayerStoryProgress:
        key = str(player_id)
        existing = self._progress.get(key)
        if existing is None:
            existing = PlayerStoryProgress.empty(key)
            self._progress[key] = existing
        return existing

    def has_reward_grant(self, player_id: str, node_id: str, attempt_id: str) -> bool:
        return (str(player_id), str(node_id), str(attempt_id)) in self._reward_grants

    def build_transition_operation(self, *, expected_version: int, progress: PlayerStoryProgress):
        def _operation(_session: object) -> None:
            current = self._progress.get(progress.player_id)
            current_version = current.version if current is not None else 0
            if current_version != int(expected_version):
                raise StaleProgressError(progress.player_id, expected_version)
            self._progress[progress.player_id] = progress

        return _operation

    def build_reward_grant_operation(self, *, player_id: str, node_id: str, attempt_id: str, granted_at: datetime):
        def _operation(_session: object) -> None:
            key = (str(player_id), str(node_id), str(attempt_id))
            if key in self._reward_grants:
                raise DuplicateRewardGrantError(*key)
            self._reward_grants[key] = granted_at

        return _operation


class InMemoryPlayerRepository(PlayerRepository):
    _STATE_ATTRS = ("_players", "_items")

    def __init__(
        self,
        players: Iterable[Player] = (),
        items: Dict[str, Sequence[str]] | None = None,
    ) -> None:
        self._players: Dict[str, Player] = {player.id: player for player in players}
        self._items: Dict[str, List[str]] = {key: list(value) for key, value in (items or {}).items()}

    def get(self, player_id: str) -> Player | None:
        return self._players.get(str(player_id))

    def save(self, player: Player) -> None:
        self._players[player.id] = player

    def list_item_ids(self, player_id: str) -> List[str]:
        return list(self._items.get(str(player_id), []))

    def grant_item(self, player_id: str, item_id: str) -> bool:
        held = self._items.setdefault(str(player_id), [])
        if item_id in held:
            return False
        held.append(item_id)
        return True

    def replace_permit(self, player_id: str, *, permit_item_ids: List[str], new_item_id: str) -> None:
        key = str(player_id)
        permits = set(permit_item_ids)
        kept = [item for item in self._items.get(key, []) if item not in permits]
        kept.append(new_item_id)
        self._items[key] = kept

    def build_reward_operation(self, *, player_id: str, rewards: RewardSpec):
        def _operation(_session: object) -> None:
            player = self._players.get(str(player_id))
            if player is None:
                raise NotFoundError("player", str(player_id))
            player.experience += int(rewards.experience)
            player.money += int(rewards.money)
            player.reputation += int(rewards.reputation)
            for item_id in rewards.unlock_items:
                self.grant_item(player.id, item_id)

        return _operation


class InMemoryMerchantRepository(MerchantRepository):
    def __init__(self, merchants: Iterable[Merchant] = ()) -> None:
        self._merchants: Dict[str, Merchant] = {merchant.id: merchant for merchant in merchants}

    def get(self, merchant_id: str) -> Merchant | None:
        return self._merchants.get(str(merchant_id))

    def list_all(self) -> List[Merchant]:
        return list(self._merchants.values())


class InMemoryRelationshipRepository(RelationshipRepository):
    _STATE_ATTRS = ("_relationships", "_quest_log")

    def __init__(self, relationships: Iterable[MerchantRelationship] = ()) -> None:
        self._relationships: Dict[tuple[str, str], MerchantRelationship] = {
            (row.player_id, row.merchant_id): row for row in relationships
        }
        self._quest_log: set[tuple[str, str, str]] = set()

    def get(self, player_id: str, merchant_id: str) -> MerchantRelationship | None:
        return self._relationships.get((str(player_id), str(merchant_id)))

    def get_or_create(self, player_id: str, merchant_id: str) -> MerchantRelationship:
        key = (str(player_id), str(merchant_id))
        row = self._relationships.get(key)
        if row is None:
            row = MerchantRelationship(player_id=key[0], merchant_id=key[1])
            self._relationships[key] = row
        return row

    def apply_stage_progress(
        self,
        *,
        expected: MerchantRelationship,
        updated: MerchantRelationship,
        quest_id: str,
    ) -> bool:
        log_key = (expected.player_id, expected.merchant_id, str(quest_id))
        if log_key in self._quest_log:
            return False
        key = (expected.player_id, expected.merchant_id)
        current = self._relationships.get(key)
        if current is None or (current.trust_stage, current.stage_progress) != (
            expected.trust_stage,
            expected.stage_progress,
        ):
            raise StaleRelationshipError(expected.player_id, expected.merchant_id)
        self._relationships[key] = replace(
            current,
            trust_stage=updated.trust_stage,
            stage_progress=updated.stage_progress,
            last_interaction=updated.last_interaction,
        )
        self._quest_log.add(log_key)
        return True

    def record_trade(self, *, player_id: str, merchant_id: str, amount: int, traded_at: datetime) -> None:
        current = self.get_or_create(player_id, merchant_id)
        self._relationships[(current.player_id, current.merchant_id)] = replace(
            current,
            total_trades=current.total_trades + 1,
            total_spent=current.total_spent + int(amount),
            last_interaction=traded_at,
        )


class InMemoryQuestRepository(QuestRepository):
    _STATE_ATTRS = ("_instances",)

    def __init__(self, definitions: Iterable[QuestDefinition] = (), instances: Iterable[QuestInstance] = ()) -> None:
        self._definitions: Dict[str, QuestDefinition] = {row.id: row for row in definitions}
        self._instances: Dict[tuple[str, str], QuestInstance] = {
            (row.player_id, row.quest_id): row for row in instances
        }

    def get_definition(self, quest_id: str) -> QuestDefinition | None:
        return self._definitions.get(str(quest_id))

    def list_definitions(self) -> List[QuestDefinition]:
        return list(self._definitions.values())

    def list_instances(self, player_id: str) -> List[QuestInstance]:
        return [row for (owner, _), row in self._instances.items() if owner == str(player_id)]

    def save_instance(self, instance: QuestInstance) -> None:
        self._instances[(instance.player_id, instance.quest_id)] = instance
