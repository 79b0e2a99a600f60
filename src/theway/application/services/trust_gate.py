from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable

from theway.application.dtos import (
    PermitUpgradeView,
    StageProgressView,
    StaleRelationship,
    TradeAccessView,
)
from theway.application.services.event_bus import EventBus
from theway.domain.errors import CapabilityGapError, NotFoundError, StaleRelationshipError
from theway.domain.events import PermitUpgraded, TrustStageAdvanced
from theway.domain.models.merchant import (
    MAX_PERMIT_TIER,
    NO_TRADING_GRADE,
    PERMIT_ITEM_IDS,
    MerchantRelationship,
    effective_max_grade,
    grade_cap_for_tier,
    permit_item_id,
    permit_tier_for_items,
    required_tier_for_grade,
    stage_requirement,
)
from theway.domain.repositories import MerchantRepository, PlayerRepository, RelationshipRepository


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TrustGate:
    """Decides which item grades a player may trade with a merchant.

    Access is the lower of two independent caps: the trust stage earned with
    that merchant through quests, and the highest merchant permit the player
    holds. Either one at zero locks trading.
    """

    def __init__(
        self,
        relationship_repo: RelationshipRepository,
        player_repo: PlayerRepository,
        merchant_repo: MerchantRepository | None = None,
        event_bus: EventBus | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.relationship_repo = relationship_repo
        self.player_repo = player_repo
        self.merchant_repo = merchant_repo
        self.event_bus = event_bus
        self._clock = clock or _utc_now
        self._logger = logging.getLogger(__name__)

    def _require_merchant(self, merchant_id: str) -> None:
        if self.merchant_repo is not None and self.merchant_repo.get(merchant_id) is None:
            raise NotFoundError("merchant", merchant_id)

    def _require_player(self, player_id: str) -> None:
        if self.player_repo.get(player_id) is None:
            raise NotFoundError("player", player_id)

    def _relationship(self, player_id: str, merchant_id: str) -> MerchantRelationship:
        row = self.relationship_repo.get(player_id, merchant_id)
        if row is None:
            return MerchantRelationship(player_id=player_id, merchant_id=merchant_id)
        return row

    def permit_tier(self, player_id: str) -> int:
        return permit_tier_for_items(self.player_repo.list_item_ids(player_id))

    def resolve_trade_access(self, player_id: str, merchant_id: str) -> TradeAccessView:
        player_id = str(player_id)
        merchant_id = str(merchant_id)
        self._require_merchant(merchant_id)

        relationship = self._relationship(player_id, merchant_id)
        tier = self.permit_tier(player_id)
        relationship_cap = grade_cap_for_tier(relationship.trust_stage)
        permit_cap = grade_cap_for_tier(tier)
        return TradeAccessView(
            player_id=player_id,
            merchant_id=merchant_id,
            trust_stage=int(relationship.trust_stage),
            permit_tier=int(tier),
            relationship_max_grade=relationship_cap,
            permit_max_grade=permit_cap,
            effective_max_grade=effective_max_grade(relationship_cap, permit_cap),
            can_trade=relationship.trust_stage > 0 and tier > 0,
            stage_progress=int(relationship.stage_progress),
            stage_requirement=stage_requirement(relationship.trust_stage),
        )

    @staticmethod
    def can_trade_grade(view: TradeAccessView, grade: int) -> bool:
        if not view.can_trade or view.effective_max_grade == NO_TRADING_GRADE:
            return False
        return 0 <= int(grade) <= view.effective_max_grade

    @staticmethod
    def required_tier_for_grade(grade: int) -> int:
        return required_tier_for_grade(grade)

    def record_stage_progress(
        self,
        player_id: str,
        merchant_id: str,
        quest_id: str,
    ) -> StageProgressView | StaleRelationship:
        player_id = str(player_id)
        merchant_id = str(merchant_id)
        quest_id = str(quest_id)
        self._require_merchant(merchant_id)
        self._require_player(player_id)

        current = self.relationship_repo.get_or_create(player_id, merchant_id)
        if current.at_max_stage:
            return self._stage_view(current, quest_id=quest_id, applied=False)

        updated = current.advance(at=self._clock())
        try:
            applied = self.relationship_repo.apply_stage_progress(
                expected=current,
                updated=updated,
                quest_id=quest_id,
            )
        except StaleRelationshipError:
            self._logger.info(
                "Stage progress lost a concurrent update",
                extra={"player_id": player_id, "merchant_id": merchant_id, "quest_id": quest_id},
            )
            return StaleRelationship(player_id=player_id, merchant_id=merchant_id)

        if not applied:
            return self._stage_view(current, quest_id=quest_id, applied=False)

        advanced = updated.trust_stage > current.trust_stage
        if advanced and self.event_bus is not None:
            self.event_bus.publish(
                TrustStageAdvanced(
                    player_id=player_id,
                    merchant_id=merchant_id,
                    stage_before=current.trust_stage,
                    stage_after=updated.trust_stage,
                    quest_id=quest_id,
                )
            )
        return self._stage_view(updated, quest_id=quest_id, applied=True, advanced=advanced)

    @staticmethod
    def _stage_view(
        relationship: MerchantRelationship,
        *,
        quest_id: str,
        applied: bool,
        advanced: bool = False,
    ) -> StageProgressView:
        return StageProgressView(
            player_id=relationship.player_id,
            merchant_id=relationship.merchant_id,
            quest_id=quest_id,
            applied=applied,
            trust_stage=int(relationship.trust_stage),
            stage_progress=int(relationship.stage_progress),
            stage_requirement=stage_requirement(relationship.trust_stage),
            stage_advanced=advanced,
        )

    def upgrade_permit(self, player_id: str, merchant_id: str) -> PermitUpgradeView:
        player_id = str(player_id)
        merchant_id = str(merchant_id)
        self._require_merchant(merchant_id)
        self._require_player(player_id)

        tier = self.permit_tier(player_id)
        target = tier + 1
        if target > MAX_PERMIT_TIER:
            raise CapabilityGapError("permit_tier", current=tier, required=target)

        relationship = self._relationship(player_id, merchant_id)
        if relationship.trust_stage < target:
            raise CapabilityGapError("trust_stage", current=relationship.trust_stage, required=target)

        new_item_id = permit_item_id(target)
        held_permits = [item for item in self.player_repo.list_item_ids(player_id) if permit_tier_for_items([item])]
        self.player_repo.replace_permit(
            player_id,
            permit_item_ids=sorted(set(PERMIT_ITEM_IDS) | set(held_permits)),
            new_item_id=new_item_id,
        )
        self._logger.info(
            "Merchant permit upgraded",
            extra={"player_id": player_id, "merchant_id": merchant_id, "permit_tier": target},
        )
        if self.event_bus is not None:
            self.event_bus.publish(
                PermitUpgraded(
                    player_id=player_id,
                    merchant_id=merchant_id,
                    tier_before=tier,
                    tier_after=target,
                )
            )
        return PermitUpgradeView(
            player_id=player_id,
            merchant_id=merchant_id,
            permit_tier=target,
            permit_item_id=new_item_id,
            trust_stage=int(relationship.trust_stage),
        )

    def record_trade(self, player_id: str, merchant_id: str, amount: int) -> MerchantRelationship:
        player_id = str(player_id)
        merchant_id = str(merchant_id)
        self._require_merchant(merchant_id)
        self._require_player(player_id)
        if int(amount) < 0:
            raise ValueError("trade amount must not be negative")
        self.relationship_repo.record_trade(
            player_id=player_id,
            merchant_id=merchant_id,
            amount=int(amount),
            traded_at=self._clock(),
        )
        return self._relationship(player_id, merchant_id)
