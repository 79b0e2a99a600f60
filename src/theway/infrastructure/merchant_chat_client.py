from __future__ import annotations

from typing import Sequence

import httpx

from theway.domain.models.chat import ChatReply, ChatTurn, UnlockedEpisode
from theway.domain.repositories import MerchantChatGateway
from theway.infrastructure.resilient_http import post_json_with_retry


class MerchantChatClient(MerchantChatGateway):
    """HTTP client for the free-text merchant dialogue generator.

    The generator may attach an ``unlockedEpisode`` hint; it is passed through
    untouched and the story engine decides whether to honour it.
    """

    DEFAULT_BASE_URL = "http://localhost:8000"
    CHAT_PATH = "/chat"

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 10.0,
        retries: int = 1,
        backoff_seconds: float = 0.2,
        http_client: httpx.Client | None = None,
    ) -> None:
        self._retries = retries
        self._backoff_seconds = backoff_seconds
        self.client = http_client or httpx.Client(base_url=base_url, timeout=timeout)

    def send(self, merchant_id: str, message: str, history: Sequence[ChatTurn] = ()) -> ChatReply:
        payload = post_json_with_retry(
            self.client,
            self.CHAT_PATH,
            payload={
                "merchantId": str(merchant_id),
                "message": str(message),
                "history": [{"role": turn.role, "content": turn.content} for turn in history],
            },
            headers={"Accept": "application/json"},
            retries=self._retries,
            backoff_seconds=self._backoff_seconds,
        )
        episode_raw = payload.get("unlockedEpisode", payload.get("unlocked_episode"))
        return ChatReply(
            reply=str(payload.get("reply", "") or ""),
            unlocked_episode=UnlockedEpisode.from_payload(episode_raw if isinstance(episode_raw, dict) else None),
        )

    def close(self) -> None:
        self.client.close()
