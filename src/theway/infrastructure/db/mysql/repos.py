from __future__ import annotations

import json
from datetime import datetime
from typing import Callable, Iterable, List, Optional

from sqlalchemy import bindparam, text

from theway.domain.errors import (
    DuplicateRewardGrantError,
    NotFoundError,
    StaleProgressError,
    StaleRelationshipError,
)
from theway.domain.models.merchant import MerchantRelationship
from theway.domain.models.player import Player
from theway.domain.models.quest import QuestDefinition, QuestInstance
from theway.domain.models.story import PlayerStoryProgress, RewardSpec
from theway.domain.repositories import (
    PlayerRepository,
    QuestRepository,
    RelationshipRepository,
    StoryProgressRepository,
)
from .connection import SessionLocal


def _dialect(session) -> str:
    return session.bind.dialect.name if session.bind is not None else "mysql"


def _insert_ignore(session) -> str:
    return "INSERT IGNORE INTO" if _dialect(session) == "mysql" else "INSERT OR IGNORE INTO"


def _iso(value: datetime | None) -> str | None:
    return None if value is None else value.isoformat()


def _parse_datetime(raw: object) -> datetime | None:
    if raw is None or raw == "":
        return None
    if isinstance(raw, datetime):
        return raw
    return datetime.fromisoformat(str(raw))


def _progress_from_row(row) -> PlayerStoryProgress:
    visited = json.loads(row.visited_nodes_json or "[]")
    flags = json.loads(row.story_flags_json or "{}")
    return PlayerStoryProgress(
        player_id=str(row.player_id),
        current_node_id=row.current_node_id,
        visited_nodes=frozenset(str(node_id) for node_id in visited),
        story_flags=dict(flags) if isinstance(flags, dict) else {},
        last_interaction=_parse_datetime(row.last_interaction),
        version=int(row.version or 0),
    )


def _relationship_from_row(row) -> MerchantRelationship:
    return MerchantRelationship(
        player_id=str(row.player_id),
        merchant_id=str(row.merchant_id),
        trust_stage=int(row.trust_stage or 0),
        stage_progress=int(row.stage_progress or 0),
        total_trades=int(row.total_trades or 0),
        total_spent=int(row.total_spent or 0),
        last_interaction=_parse_datetime(row.last_interaction),
    )


class MysqlStoryProgressRepository(StoryProgressRepository):
    _SELECT = """
        SELECT player_id, current_node_id, visited_nodes_json, story_flags_json, last_interaction, version
        FROM player_story_progress
        WHERE player_id = :player_id
    """

    def get(self, player_id: str) -> Optional[PlayerStoryProgress]:
        with SessionLocal() as session:
            row = session.execute(text(self._SELECT), {"player_id": str(player_id)}).first()
        return None if row is None else _progress_from_row(row)

    @staticmethod
    def _ensure_row(session, player_id: str) -> None:
        session.execute(
            text(
                f"""
                {_insert_ignore(session)} player_story_progress
                    (player_id, current_node_id, visited_nodes_json, story_flags_json, last_interaction, version)
                VALUES (:player_id, NULL, '[]', '{{}}', NULL, 0)
                """
            ),
            {"player_id": str(player_id)},
        )

    def get_or_create(self, player_id: str) -> PlayerStoryProgress:
        with SessionLocal.begin() as session:
            self._ensure_row(session, player_id)
            row = session.execute(text(self._SELECT), {"player_id": str(player_id)}).first()
        return _progress_from_row(row)

    def has_reward_grant(self, player_id: str, node_id: str, attempt_id: str) -> bool:
        with SessionLocal() as session:
            row = session.execute(
                text(
                    """
                    SELECT 1 AS granted
                    FROM story_reward_grant
                    WHERE player_id = :player_id AND node_id = :node_id AND attempt_id = :attempt_id
                    LIMIT 1
                    """
                ),
                {"player_id": str(player_id), "node_id": str(node_id), "attempt_id": str(attempt_id)},
            ).first()
        return row is not None

    def build_transition_operation(
        self,
        *,
        expected_version: int,
        progress: PlayerStoryProgress,
    ) -> Callable[[object], None]:
        def _operation(session) -> None:
            self._ensure_row(session, progress.player_id)
            result = session.execute(
                text(
                    """
                    UPDATE player_story_progress
                    SET current_node_id = :current_node_id,
                        visited_nodes_json = :visited_nodes_json,
                        story_flags_json = :story_flags_json,
                        last_interaction = :last_interaction,
                        version = :new_version
                    WHERE player_id = :player_id AND version = :expected_version
                    """
                ),
                {
                    "player_id": progress.player_id,
                    "current_node_id": progress.current_node_id,
                    "visited_nodes_json": json.dumps(sorted(progress.visited_nodes)),
                    "story_flags_json": json.dumps(dict(progress.story_flags), sort_keys=True),
                    "last_interaction": _iso(progress.last_interaction),
                    "new_version": int(progress.version),
                    "expected_version": int(expected_version),
                },
            )
            if int(result.rowcount or 0) != 1:
                raise StaleProgressError(progress.player_id, expected_version)

        return _operation

    def build_reward_grant_operation(
        self,
        *,
        player_id: str,
        node_id: str,
        attempt_id: str,
        granted_at: datetime,
    ) -> Callable[[object], None]:
        def _operation(session) -> None:
            result = session.execute(
                text(
                    f"""
                    {_insert_ignore(session)} story_reward_grant (player_id, node_id, attempt_id, granted_at)
                    VALUES (:player_id, :node_id, :attempt_id, :granted_at)
                    """
                ),
                {
                    "player_id": str(player_id),
                    "node_id": str(node_id),
                    "attempt_id": str(attempt_id),
                    "granted_at": _iso(granted_at),
                },
            )
            if int(result.rowcount or 0) == 0:
                raise DuplicateRewardGrantError(player_id, node_id, attempt_id)

        return _operation


class MysqlPlayerRepository(PlayerRepository):
    def get(self, player_id: str) -> Optional[Player]:
        with SessionLocal() as session:
            row = session.execute(
                text(
                    """
                    SELECT player_id, name, level, experience, money, reputation
                    FROM player
                    WHERE player_id = :player_id
                    """
                ),
                {"player_id": str(player_id)},
            ).first()
        if row is None:
            return None
        return Player(
            id=str(row.player_id),
            name=str(row.name or ""),
            level=int(row.level or 0),
            experience=int(row.experience or 0),
            money=int(row.money or 0),
            reputation=int(row.reputation or 0),
        )

    def save(self, player: Player) -> None:
        with SessionLocal.begin() as session:
            if _dialect(session) == "mysql":
                statement = text(
                    """
                    INSERT INTO player (player_id, name, level, experience, money, reputation)
                    VALUES (:player_id, :name, :level, :experience, :money, :reputation)
                    ON DUPLICATE KEY UPDATE
                        name = VALUES(name),
                        level = VALUES(level),
                        experience = VALUES(experience),
                        money = VALUES(money),
                        reputation = VALUES(reputation)
                    """
                )
            else:
                statement = text(
                    """
                    INSERT INTO player (player_id, name, level, experience, money, reputation)
                    VALUES (:player_id, :name, :level, :experience, :money, :reputation)
                    ON CONFLICT(player_id) DO UPDATE SET
                        name = excluded.name,
                        level = excluded.level,
                        experience = excluded.experience,
                        money = excluded.money,
                        reputation = excluded.reputation
                    """
                )
            session.execute(
                statement,
                {
                    "player_id": player.id,
                    "name": player.name,
                    "level": int(player.level),
                    "experience": int(player.experience),
                    "money": int(player.money),
                    "reputation": int(player.reputation),
                },
            )

    def list_item_ids(self, player_id: str) -> List[str]:
        with SessionLocal() as session:
            rows = session.execute(
                text("SELECT item_id FROM player_item WHERE player_id = :player_id ORDER BY item_id"),
                {"player_id": str(player_id)},
            ).all()
        return [str(row.item_id) for row in rows]

    @staticmethod
    def _grant_items(session, player_id: str, item_ids: Iterable[str], acquired_at: str | None = None) -> None:
        for item_id in item_ids:
            session.execute(
                text(
                    f"""
                    {_insert_ignore(session)} player_item (player_id, item_id, acquired_at)
                    VALUES (:player_id, :item_id, :acquired_at)
                    """
                ),
                {"player_id": str(player_id), "item_id": str(item_id), "acquired_at": acquired_at},
            )

    def grant_item(self, player_id: str, item_id: str) -> None:
        with SessionLocal.begin() as session:
            self._grant_items(session, player_id, [item_id])

    def replace_permit(self, player_id: str, *, permit_item_ids: List[str], new_item_id: str) -> None:
        with SessionLocal.begin() as session:
            session.execute(
                text(
                    "DELETE FROM player_item WHERE player_id = :player_id AND item_id IN :item_ids"
                ).bindparams(bindparam("item_ids", expanding=True)),
                {"player_id": str(player_id), "item_ids": list(permit_item_ids)},
            )
            self._grant_items(session, player_id, [new_item_id])

    def build_reward_operation(self, *, player_id: str, rewards: RewardSpec) -> Callable[[object], None]:
        def _operation(session) -> None:
            result = session.execute(
                text(
                    """
                    UPDATE player
                    SET experience = experience + :experience,
                        money = money + :money,
                        reputation = reputation + :reputation
                    WHERE player_id = :player_id
                    """
                ),
                {
                    "player_id": str(player_id),
                    "experience": int(rewards.experience),
                    "money": int(rewards.money),
                    "reputation": int(rewards.reputation),
                },
            )
            if int(result.rowcount or 0) == 0:
                raise NotFoundError("player", str(player_id))
            self._grant_items(session, player_id, rewards.unlock_items)

        return _operation


class MysqlRelationshipRepository(RelationshipRepository):
    _SELECT = """
        SELECT player_id, merchant_id, trust_stage, stage_progress, total_trades, total_spent, last_interaction
        FROM merchant_relationship
        WHERE player_id = :player_id AND merchant_id = :merchant_id
    """

    @staticmethod
    def _ensure_row(session, player_id: str, merchant_id: str) -> None:
        session.execute(
            text(
                f"""
                {_insert_ignore(session)} merchant_relationship
                    (player_id, merchant_id, trust_stage, stage_progress, total_trades, total_spent)
                VALUES (:player_id, :merchant_id, 0, 0, 0, 0)
                """
            ),
            {"player_id": str(player_id), "merchant_id": str(merchant_id)},
        )

    def get(self, player_id: str, merchant_id: str) -> Optional[MerchantRelationship]:
        with SessionLocal() as session:
            row = session.execute(
                text(self._SELECT),
                {"player_id": str(player_id), "merchant_id": str(merchant_id)},
            ).first()
        return None if row is None else _relationship_from_row(row)

    def get_or_create(self, player_id: str, merchant_id: str) -> MerchantRelationship:
        with SessionLocal.begin() as session:
            self._ensure_row(session, player_id, merchant_id)
            row = session.execute(
                text(self._SELECT),
                {"player_id": str(player_id), "merchant_id": str(merchant_id)},
            ).first()
        return _relationship_from_row(row)

    def apply_stage_progress(
        self,
        *,
        expected: MerchantRelationship,
        updated: MerchantRelationship,
        quest_id: str,
    ) -> bool:
        with SessionLocal.begin() as session:
            logged = session.execute(
                text(
                    f"""
                    {_insert_ignore(session)} merchant_relationship_quest_log (player_id, merchant_id, quest_id, logged_at)
                    VALUES (:player_id, :merchant_id, :quest_id, :logged_at)
                    """
                ),
                {
                    "player_id": expected.player_id,
                    "merchant_id": expected.merchant_id,
                    "quest_id": str(quest_id),
                    "logged_at": _iso(updated.last_interaction),
                },
            )
            if int(logged.rowcount or 0) == 0:
                return False

            result = session.execute(
                text(
                    """
                    UPDATE merchant_relationship
                    SET trust_stage = :trust_stage,
                        stage_progress = :stage_progress,
                        last_interaction = :last_interaction
                    WHERE player_id = :player_id
                      AND merchant_id = :merchant_id
                      AND trust_stage = :expected_stage
                      AND stage_progress = :expected_progress
                    """
                ),
                {
                    "player_id": expected.player_id,
                    "merchant_id": expected.merchant_id,
                    "trust_stage": int(updated.trust_stage),
                    "stage_progress": int(updated.stage_progress),
                    "last_interaction": _iso(updated.last_interaction),
                    "expected_stage": int(expected.trust_stage),
                    "expected_progress": int(expected.stage_progress),
                },
            )
            if int(result.rowcount or 0) != 1:
                raise StaleRelationshipError(expected.player_id, expected.merchant_id)
        return True

    def record_trade(self, *, player_id: str, merchant_id: str, amount: int, traded_at: datetime) -> None:
        with SessionLocal.begin() as session:
            self._ensure_row(session, player_id, merchant_id)
            session.execute(
                text(
                    """
                    UPDATE merchant_relationship
                    SET total_trades = total_trades + 1,
                        total_spent = total_spent + :amount,
                        last_interaction = :last_interaction
                    WHERE player_id = :player_id AND merchant_id = :merchant_id
                    """
                ),
                {
                    "player_id": str(player_id),
                    "merchant_id": str(merchant_id),
                    "amount": int(amount),
                    "last_interaction": _iso(traded_at),
                },
            )


class MysqlQuestRepository(QuestRepository):
    """Quest instances live in SQL; definitions come from authored content."""

    def __init__(self, definitions: Iterable[QuestDefinition] = ()) -> None:
        self._definitions = {row.id: row for row in definitions}

    def get_definition(self, quest_id: str) -> Optional[QuestDefinition]:
        return self._definitions.get(str(quest_id))

    def list_definitions(self) -> List[QuestDefinition]:
        return list(self._definitions.values())

    @staticmethod
    def _satisfied_from_json(raw: str | None) -> dict[int, bool]:
        payload = json.loads(raw or "{}")
        satisfied: dict[int, bool] = {}
        if not isinstance(payload, dict):
            return satisfied
        for key, value in payload.items():
            suffix = str(key).rsplit("_", 1)[-1]
            if suffix.isdigit() and int(value or 0) >= 1:
                satisfied[int(suffix)] = True
        return satisfied

    def list_instances(self, player_id: str) -> List[QuestInstance]:
        with SessionLocal() as session:
            rows = session.execute(
                text(
                    """
                    SELECT player_id, quest_id, status, progress_json
                    FROM player_quest
                    WHERE player_id = :player_id
                    ORDER BY quest_id
                    """
                ),
                {"player_id": str(player_id)},
            ).all()
        return [
            QuestInstance(
                player_id=str(row.player_id),
                quest_id=str(row.quest_id),
                status=str(row.status),
                satisfied=self._satisfied_from_json(row.progress_json),
            )
            for row in rows
        ]

    def save_instance(self, instance: QuestInstance) -> None:
        progress_json = json.dumps(
            {f"objective_{index}": 1 for index, done in sorted(instance.satisfied.items()) if done},
            sort_keys=True,
        )
        with SessionLocal.begin() as session:
            if _dialect(session) == "mysql":
                statement = text(
                    """
                    INSERT INTO player_quest (player_id, quest_id, status, progress_json)
                    VALUES (:player_id, :quest_id, :status, :progress_json)
                    ON DUPLICATE KEY UPDATE
                        status = VALUES(status),
                        progress_json = VALUES(progress_json)
                    """
                )
            else:
                statement = text(
                    """
                    INSERT INTO player_quest (player_id, quest_id, status, progress_json)
                    VALUES (:player_id, :quest_id, :status, :progress_json)
                    ON CONFLICT(player_id, quest_id) DO UPDATE SET
                        status = excluded.status,
                        progress_json = excluded.progress_json
                    """
                )
            session.execute(
                statement,
                {
                    "player_id": instance.player_id,
                    "quest_id": instance.quest_id,
                    "status": str(instance.status),
                    "progress_json": progress_json,
                },
            )
