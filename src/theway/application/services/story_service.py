from __future__ import annotations

import logging
from typing import Sequence

from theway.application.dtos import (
    ChoiceView,
    MerchantChatView,
    PermitUpgradeView,
    PrerequisitesNotMet,
    ProgressResult,
    StageProgressView,
    StaleProgress,
    StaleRelationship,
    StoryChapterView,
    StoryNodeView,
    StoryProgressView,
    TradeAccessView,
    TradeEligibilityView,
    TradeRecordView,
)
from theway.application.services.choice_filter import filter_choices
from theway.application.services.player_state import load_player_state
from theway.application.services.prerequisite_evaluator import FALLBACK_DIALOGUE, evaluate_prerequisites
from theway.application.services.story_graph_store import StoryGraphStore
from theway.application.services.story_progressor import StoryProgressor
from theway.application.services.trust_gate import TrustGate
from theway.domain.errors import CapabilityGapError, NotFoundError
from theway.domain.geo import TRADE_DISTANCE_LIMIT_METERS, distance_meters, within_trade_distance
from theway.domain.models.chat import ChatTurn, UnlockedEpisode
from theway.domain.models.merchant import Merchant
from theway.domain.models.player import PlayerState
from theway.domain.models.story import StoryNode
from theway.domain.repositories import (
    MerchantChatGateway,
    MerchantRepository,
    PlayerRepository,
    QuestRepository,
)


class StoryService:
    """Request/response surface over the story engine and the trade gate."""

    def __init__(
        self,
        store: StoryGraphStore,
        progressor: StoryProgressor,
        trust_gate: TrustGate,
        player_repo: PlayerRepository,
        merchant_repo: MerchantRepository,
        quest_repo: QuestRepository | None = None,
        chat_gateway: MerchantChatGateway | None = None,
    ) -> None:
        self.store = store
        self.progressor = progressor
        self.trust_gate = trust_gate
        self.player_repo = player_repo
        self.merchant_repo = merchant_repo
        self.quest_repo = quest_repo
        self.chat_gateway = chat_gateway
        self._logger = logging.getLogger(__name__)

    def _player_state(self, player_id: str) -> PlayerState:
        return load_player_state(
            player_id=player_id,
            player_repo=self.player_repo,
            quest_repo=self.quest_repo,
            progress=self.store.get_progress(player_id),
        )

    def _merchant(self, merchant_id: str) -> Merchant:
        merchant = self.merchant_repo.get(str(merchant_id))
        if merchant is None:
            raise NotFoundError("merchant", str(merchant_id))
        return merchant

    @staticmethod
    def _node_view(node: StoryNode, player_state: PlayerState | None = None) -> StoryNodeView:
        choices = list(node.choices) if player_state is None else filter_choices(player_state, node.choices)
        return StoryNodeView(
            id=node.id,
            node_type=str(node.node_type),
            merchant_id=node.merchant_id,
            speaker=node.content.speaker,
            text=node.content.text,
            context=node.content.context,
            choices=[
                ChoiceView(
                    id=choice.id,
                    text=choice.text,
                    next_node=choice.next_node,
                    quest_trigger=choice.quest_trigger,
                )
                for choice in choices
            ],
            next_nodes=list(node.next_nodes),
            rewards={} if node.rewards is None else node.rewards.to_payload(),
            metadata=dict(node.metadata),
        )

    def get_story_node(self, node_id: str, player_id: str | None = None) -> StoryNodeView:
        node = self.store.get_node(node_id)
        state = None if player_id is None else self._player_state(str(player_id))
        return self._node_view(node, state)

    def progress_story(
        self,
        player_id: str,
        node_id: str,
        choice_id: str | None = None,
        attempt_id: str | None = None,
    ) -> StoryProgressView | PrerequisitesNotMet | StaleProgress:
        result = self.progressor.progress(player_id, node_id, choice_id=choice_id, attempt_id=attempt_id)
        if not isinstance(result, ProgressResult):
            return result

        next_view = None
        if result.next_node is not None:
            next_view = self._node_view(result.next_node, self._player_state(str(player_id)))
        return StoryProgressView(
            completed_node=result.completed_node,
            next_node=next_view,
            rewards=None if result.rewards is None else result.rewards.to_payload(),
            duplicate=result.duplicate,
        )

    def resolve_trade_access(self, player_id: str, merchant_id: str) -> TradeAccessView:
        return self.trust_gate.resolve_trade_access(player_id, merchant_id)

    def record_stage_progress(
        self,
        player_id: str,
        merchant_id: str,
        quest_id: str,
    ) -> StageProgressView | StaleRelationship:
        return self.trust_gate.record_stage_progress(player_id, merchant_id, quest_id)

    def upgrade_permit(self, player_id: str, merchant_id: str) -> PermitUpgradeView:
        return self.trust_gate.upgrade_permit(player_id, merchant_id)

    def trade_eligibility(
        self,
        player_id: str,
        merchant_id: str,
        latitude: float,
        longitude: float,
    ) -> TradeEligibilityView:
        """Trade access combined with the player's distance to the merchant's stall.

        A merchant without coordinates cannot be reached, so it is never within
        trading distance.
        """

        merchant = self._merchant(merchant_id)
        access = self.trust_gate.resolve_trade_access(player_id, merchant.id)
        distance = None
        within = False
        if merchant.latitude is not None and merchant.longitude is not None:
            distance = round(distance_meters(latitude, longitude, merchant.latitude, merchant.longitude))
            within = within_trade_distance(latitude, longitude, merchant.latitude, merchant.longitude)
        return TradeEligibilityView(
            access=access,
            distance_meters=distance,
            within_trade_distance=within,
            trade_distance_limit=TRADE_DISTANCE_LIMIT_METERS,
            can_trade=access.can_trade and within,
        )

    def record_trade(
        self,
        player_id: str,
        merchant_id: str,
        amount: int,
        *,
        latitude: float,
        longitude: float,
    ) -> TradeRecordView:
        if self.player_repo.get(str(player_id)) is None:
            raise NotFoundError("player", str(player_id))
        eligibility = self.trade_eligibility(player_id, merchant_id, latitude, longitude)
        access = eligibility.access
        if access.trust_stage < 1:
            raise CapabilityGapError("trust_stage", current=access.trust_stage, required=1)
        if access.permit_tier < 1:
            raise CapabilityGapError("permit_tier", current=access.permit_tier, required=1)
        if not eligibility.within_trade_distance:
            current = -1 if eligibility.distance_meters is None else eligibility.distance_meters
            raise CapabilityGapError("trade_distance", current=current, required=eligibility.trade_distance_limit)

        relationship = self.trust_gate.record_trade(player_id, merchant_id, amount)
        return TradeRecordView(
            player_id=relationship.player_id,
            merchant_id=relationship.merchant_id,
            amount=int(amount),
            total_trades=relationship.total_trades,
            total_spent=relationship.total_spent,
        )

    def list_story_chapters(self, merchant_id: str, player_id: str) -> list[StoryChapterView]:
        merchant = self._merchant(merchant_id)
        progress = self.store.get_progress(str(player_id))
        visited = progress.visited_nodes if progress is not None else frozenset()
        return [
            StoryChapterView(
                chapter=chapter.chapter,
                title=chapter.title,
                story_type=chapter.story_type,
                initial_node=chapter.initial_node_id,
                completed=chapter.initial_node_id in visited,
            )
            for chapter in self.store.chapters_for_merchant(merchant.id)
        ]

    def get_merchant_story(self, merchant_id: str, player_id: str) -> StoryNodeView | PrerequisitesNotMet:
        """Resume the player's thread with this merchant, or open the merchant's first node."""

        merchant = self._merchant(merchant_id)
        if not merchant.has_active_story:
            raise NotFoundError("merchant_story", merchant.id)

        if self.player_repo.get(str(player_id)) is None:
            raise NotFoundError("player", str(player_id))
        progress = self.store.get_or_init_progress(str(player_id))
        node = self.store.find_node(progress.current_node_id)
        if node is None or node.merchant_id != merchant.id:
            if not merchant.initial_story_node:
                raise NotFoundError("merchant_story", merchant.id)
            node = self.store.get_node(merchant.initial_story_node)

        state = self._player_state(str(player_id))
        verdict = evaluate_prerequisites(state, node.prerequisites)
        if not verdict.satisfied:
            return PrerequisitesNotMet(missing=list(verdict.missing), fallback_dialogue=FALLBACK_DIALOGUE)
        return self._node_view(node, state)

    def offer_unlocked_episode(
        self,
        player_id: str,
        unlocked_episode: UnlockedEpisode,
    ) -> StoryNodeView | PrerequisitesNotMet:
        node = self.store.get_node(unlocked_episode.entry_node)
        state = self._player_state(str(player_id))
        verdict = evaluate_prerequisites(state, node.prerequisites)
        if not verdict.satisfied:
            self._logger.info(
                "Chat unlock hint rejected by prerequisites",
                extra={"player_id": player_id, "node_id": node.id, "missing": list(verdict.missing)},
            )
            return PrerequisitesNotMet(missing=list(verdict.missing), fallback_dialogue=FALLBACK_DIALOGUE)
        return self._node_view(node, state)

    def chat_with_merchant(
        self,
        player_id: str,
        merchant_id: str,
        message: str,
        history: Sequence[ChatTurn] = (),
    ) -> MerchantChatView:
        if self.chat_gateway is None:
            raise NotFoundError("chat_gateway", "merchant_chat")
        merchant = self._merchant(merchant_id)
        reply = self.chat_gateway.send(merchant.id, message, history)
        view = MerchantChatView(reply=reply.reply)
        episode = reply.unlocked_episode
        if episode is None:
            return view

        view.episode_title = episode.title
        try:
            offered = self.offer_unlocked_episode(player_id, episode)
        except NotFoundError:
            self._logger.warning(
                "Chat unlock hint names an unknown story node",
                extra={"merchant_id": merchant.id, "node_id": episode.entry_node},
            )
            return view
        if isinstance(offered, PrerequisitesNotMet):
            view.missing = list(offered.missing)
        else:
            view.offered_node = offered
        return view
