import logging
import os
import socket
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

from theway.application.services.event_bus import EventBus
from theway.application.services.quest_linkage import QuestLinkage, register_quest_linkage_handlers
from theway.application.services.story_graph_store import StoryGraphStore, validate_story_catalog
from theway.application.services.story_progressor import StoryProgressor
from theway.application.services.story_service import StoryService
from theway.application.services.trust_gate import TrustGate
from theway.infrastructure.db.inmemory.repos import (
    InMemoryMerchantRepository,
    InMemoryPlayerRepository,
    InMemoryQuestRepository,
    InMemoryRelationshipRepository,
    InMemoryStoryNodeRepository,
    InMemoryStoryProgressRepository,
)
from theway.infrastructure.inmemory.atomic_persistence import create_inmemory_atomic_persistor
from theway.infrastructure.merchant_chat_client import MerchantChatClient
from theway.infrastructure.story_content_loader import StoryContent, load_story_content

_logger = logging.getLogger(__name__)


@dataclass
class StoryEngine:
    service: StoryService
    event_bus: EventBus
    quest_linkage: Optional[QuestLinkage]
    content: StoryContent
    backend: str


def _is_truthy(value: str | None, *, default: str) -> bool:
    normalized = str(value if value is not None else default).strip().lower()
    return normalized in {"1", "true", "yes"}


def _looks_like_local_mysql_unreachable(database_url: str) -> bool:
    if not database_url:
        return False

    parsed = urlparse(database_url)
    if not parsed.scheme.startswith("mysql"):
        return False

    host = (parsed.hostname or "").strip().lower()
    if host not in {"localhost", "127.0.0.1", "::1"}:
        return False

    port = parsed.port or 3306
    timeout = float(os.getenv("THEWAY_DB_CONNECT_PROBE_TIMEOUT_S", "0.35"))

    try:
        with socket.create_connection((host, port), timeout=timeout):
            return False
    except OSError:
        return True


def _build_chat_gateway() -> Optional[MerchantChatClient]:
    base_url = os.getenv("THEWAY_CHAT_URL", "").strip()
    if not base_url:
        return None
    return MerchantChatClient(
        base_url=base_url,
        timeout=float(os.getenv("THEWAY_CHAT_TIMEOUT_S", "10")),
        retries=int(os.getenv("THEWAY_CHAT_RETRIES", "1")),
        backoff_seconds=float(os.getenv("THEWAY_CHAT_BACKOFF_S", "0.2")),
    )


def _assemble(
    *,
    content: StoryContent,
    backend: str,
    node_repo,
    progress_repo,
    player_repo,
    relationship_repo,
    quest_repo,
    merchant_repo,
    persist_atomic,
) -> StoryEngine:
    event_bus = EventBus()
    quest_linkage = register_quest_linkage_handlers(event_bus, quest_repo=quest_repo)
    store = StoryGraphStore(node_repo, progress_repo, quest_repo=quest_repo)
    progressor = StoryProgressor(
        store,
        player_repo,
        persist_atomic,
        quest_repo=quest_repo,
        event_bus=event_bus,
    )
    trust_gate = TrustGate(
        relationship_repo,
        player_repo,
        merchant_repo=merchant_repo,
        event_bus=event_bus,
    )
    service = StoryService(
        store,
        progressor,
        trust_gate,
        player_repo=player_repo,
        merchant_repo=merchant_repo,
        quest_repo=quest_repo,
        chat_gateway=_build_chat_gateway(),
    )
    return StoryEngine(
        service=service,
        event_bus=event_bus,
        quest_linkage=quest_linkage,
        content=content,
        backend=backend,
    )


def _build_inmemory_engine(content: StoryContent) -> StoryEngine:
    progress_repo = InMemoryStoryProgressRepository()
    player_repo = InMemoryPlayerRepository(content.players, items=content.player_items)
    relationship_repo = InMemoryRelationshipRepository()
    quest_repo = InMemoryQuestRepository(content.quests)
    return _assemble(
        content=content,
        backend="inmemory",
        node_repo=InMemoryStoryNodeRepository(content.nodes),
        progress_repo=progress_repo,
        player_repo=player_repo,
        relationship_repo=relationship_repo,
        quest_repo=quest_repo,
        merchant_repo=InMemoryMerchantRepository(content.merchants),
        persist_atomic=create_inmemory_atomic_persistor(progress_repo, player_repo),
    )


def _build_mysql_engine(content: StoryContent) -> StoryEngine:
    from theway.infrastructure.db.mysql.atomic_persistence import save_story_transition_atomic
    from theway.infrastructure.db.mysql.connection import create_schema
    from theway.infrastructure.db.mysql.repos import (
        MysqlPlayerRepository,
        MysqlQuestRepository,
        MysqlRelationshipRepository,
        MysqlStoryProgressRepository,
    )

    progress_repo = MysqlStoryProgressRepository()
    player_repo = MysqlPlayerRepository()

    if _is_truthy(os.getenv("THEWAY_DB_CREATE_SCHEMA"), default="0"):
        create_schema()
        for player in content.players:
            if player_repo.get(player.id) is None:
                player_repo.save(player)
                for item_id in content.player_items.get(player.id, []):
                    player_repo.grant_item(player.id, item_id)

    # Force an early connectivity check so fallback happens before serving requests.
    try:
        progress_repo.get("__probe__")
    except Exception as exc:
        raise RuntimeError(f"SQL bootstrap probe failed: {exc}") from exc

    return _assemble(
        content=content,
        backend="sql",
        node_repo=InMemoryStoryNodeRepository(content.nodes),
        progress_repo=progress_repo,
        player_repo=player_repo,
        relationship_repo=MysqlRelationshipRepository(),
        quest_repo=MysqlQuestRepository(content.quests),
        merchant_repo=InMemoryMerchantRepository(content.merchants),
        persist_atomic=save_story_transition_atomic,
    )


def create_story_engine(content_path: str | Path | None = None) -> StoryEngine:
    content = load_story_content(content_path)
    errors = validate_story_catalog(content.nodes, [quest.id for quest in content.quests])
    if errors:
        raise ValueError("Story content failed validation: " + "; ".join(errors))

    database_url = os.getenv("THEWAY_DATABASE_URL")
    if database_url:
        if _looks_like_local_mysql_unreachable(database_url):
            _logger.warning("MySQL appears unreachable, falling back to in-memory.")
            return _build_inmemory_engine(content)
        try:
            return _build_mysql_engine(content)
        except Exception as exc:  # pragma: no cover - best-effort fallback
            _logger.warning("SQL store unavailable, falling back to in-memory. Reason: %s", exc)

    return _build_inmemory_engine(content)
