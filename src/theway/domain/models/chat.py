from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping


@dataclass(frozen=True)
class UnlockedEpisode:
    """Advisory hint from the chat collaborator that a story node may be offered."""

    episode_id: str
    title: str
    entry_node: str

    @classmethod
    def from_payload(cls, raw: Mapping[str, Any] | None) -> UnlockedEpisode | None:
        if not isinstance(raw, Mapping):
            return None
        entry_node = str(raw.get("entry_node", raw.get("entryNode", "")) or "").strip()
        if not entry_node:
            return None
        return cls(
            episode_id=str(raw.get("episode_id", raw.get("episodeId", "")) or ""),
            title=str(raw.get("title", "") or ""),
            entry_node=entry_node,
        )


@dataclass(frozen=True)
class ChatTurn:
    role: str
    content: str


@dataclass(frozen=True)
class ChatReply:
    reply: str
    unlocked_episode: UnlockedEpisode | None = None
