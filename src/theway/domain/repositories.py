from abc import ABC, abstractmethod
from datetime import datetime
from typing import Callable, List, Optional, Sequence

from theway.domain.models.chat import ChatReply, ChatTurn
from theway.domain.models.merchant import Merchant, MerchantRelationship
from theway.domain.models.player import Player
from theway.domain.models.quest import QuestDefinition, QuestInstance
from theway.domain.models.story import PlayerStoryProgress, RewardSpec, StoryNode


class StoryNodeRepository(ABC):
    @abstractmethod
    def get(self, node_id: str) -> Optional[StoryNode]:
        raise NotImplementedError

    @abstractmethod
    def list_for_merchant(self, merchant_id: str) -> List[StoryNode]:
        raise NotImplementedError

    @abstractmethod
    def list_all(self) -> List[StoryNode]:
        raise NotImplementedError

    @abstractmethod
    def add(self, node: StoryNode) -> None:
        """Author a new node; raises ValueError when the id is already taken."""
        raise NotImplementedError


class StoryProgressRepository(ABC):
    @abstractmethod
    def get(self, player_id: str) -> Optional[PlayerStoryProgress]:
        raise NotImplementedError

    @abstractmethod
    def get_or_create(self, player_id: str) -> PlayerStoryProgress:
        raise NotImplementedError

    @abstractmethod
    def has_reward_grant(self, player_id: str, node_id: str, attempt_id: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    def build_transition_operation(
        self,
        *,
        expected_version: int,
        progress: PlayerStoryProgress,
    ) -> Callable[[object], None]:
        """Compare-and-set on version; the operation raises StaleProgressError on a lost race."""
        raise NotImplementedError

    @abstractmethod
    def build_reward_grant_operation(
        self,
        *,
        player_id: str,
        node_id: str,
        attempt_id: str,
        granted_at: datetime,
    ) -> Callable[[object], None]:
        """Ledger insert; the operation raises DuplicateRewardGrantError on a repeat attempt."""
        raise NotImplementedError


class PlayerRepository(ABC):
    @abstractmethod
    def get(self, player_id: str) -> Optional[Player]:
        raise NotImplementedError

    @abstractmethod
    def save(self, player: Player) -> None:
        raise NotImplementedError

    @abstractmethod
    def list_item_ids(self, player_id: str) -> List[str]:
        raise NotImplementedError

    @abstractmethod
    def replace_permit(self, player_id: str, *, permit_item_ids: List[str], new_item_id: str) -> None:
        """Swap every held permit for ``new_item_id`` in one transaction."""
        raise NotImplementedError

    @abstractmethod
    def build_reward_operation(self, *, player_id: str, rewards: RewardSpec) -> Callable[[object], None]:
        raise NotImplementedError


class MerchantRepository(ABC):
    @abstractmethod
    def get(self, merchant_id: str) -> Optional[Merchant]:
        raise NotImplementedError

    @abstractmethod
    def list_all(self) -> List[Merchant]:
        raise NotImplementedError


class RelationshipRepository(ABC):
    @abstractmethod
    def get(self, player_id: str, merchant_id: str) -> Optional[MerchantRelationship]:
        raise NotImplementedError

    @abstractmethod
    def get_or_create(self, player_id: str, merchant_id: str) -> MerchantRelationship:
        raise NotImplementedError

    @abstractmethod
    def apply_stage_progress(
        self,
        *,
        expected: MerchantRelationship,
        updated: MerchantRelationship,
        quest_id: str,
    ) -> bool:
        """Log the quest and store ``updated`` atomically.

        Returns False when the (player, merchant, quest) triple was already
        logged. Raises StaleRelationshipError when the stored row no longer
        matches ``expected``.
        """
        raise NotImplementedError

    @abstractmethod
    def record_trade(self, *, player_id: str, merchant_id: str, amount: int, traded_at: datetime) -> None:
        raise NotImplementedError


class QuestRepository(ABC):
    @abstractmethod
    def get_definition(self, quest_id: str) -> Optional[QuestDefinition]:
        raise NotImplementedError

    @abstractmethod
    def list_definitions(self) -> List[QuestDefinition]:
        raise NotImplementedError

    @abstractmethod
    def list_instances(self, player_id: str) -> List[QuestInstance]:
        raise NotImplementedError

    @abstractmethod
    def save_instance(self, instance: QuestInstance) -> None:
        raise NotImplementedError

    def completed_quest_ids(self, player_id: str) -> List[str]:
        return [row.quest_id for row in self.list_instances(player_id) if row.is_finished]

    def get_instance(self, player_id: str, quest_id: str) -> Optional[QuestInstance]:
        for row in self.list_instances(player_id):
            if row.quest_id == quest_id:
                return row
        return None


class MerchantChatGateway(ABC):
    @abstractmethod
    def send(self, merchant_id: str, message: str, history: Sequence[ChatTurn] = ()) -> ChatReply:
        raise NotImplementedError
