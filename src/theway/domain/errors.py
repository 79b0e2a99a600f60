from __future__ import annotations


class StoryEngineError(Exception):
    """Base class for story and trade-access failures."""


class NotFoundError(StoryEngineError):
    def __init__(self, kind: str, identifier: str) -> None:
        self.kind = str(kind)
        self.identifier = str(identifier)
        super().__init__(f"{self.kind} not found: {self.identifier}")


class CapabilityGapError(StoryEngineError):
    """The player is below the stage or tier an action needs."""

    def __init__(self, capability: str, *, current: int, required: int) -> None:
        self.capability = str(capability)
        self.current = int(current)
        self.required = int(required)
        super().__init__(f"{self.capability} requires {self.required}, current {self.current}")


class LinkageFailure(StoryEngineError):
    def __init__(self, replay_key: str, message: str = "") -> None:
        self.replay_key = str(replay_key)
        super().__init__(message or f"Quest linkage failed for {self.replay_key}")


class StaleProgressError(StoryEngineError):
    def __init__(self, player_id: str, expected_version: int) -> None:
        self.player_id = str(player_id)
        self.expected_version = int(expected_version)
        super().__init__(f"Story progress for {self.player_id} moved past version {self.expected_version}")


class StaleRelationshipError(StoryEngineError):
    def __init__(self, player_id: str, merchant_id: str) -> None:
        self.player_id = str(player_id)
        self.merchant_id = str(merchant_id)
        super().__init__(f"Relationship {self.player_id}/{self.merchant_id} changed concurrently")


class DuplicateRewardGrantError(StoryEngineError):
    def __init__(self, player_id: str, node_id: str, attempt_id: str) -> None:
        self.player_id = str(player_id)
        self.node_id = str(node_id)
        self.attempt_id = str(attempt_id)
        super().__init__(f"Rewards already granted for {self.player_id}/{self.node_id}/{self.attempt_id}")
