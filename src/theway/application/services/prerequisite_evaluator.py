from __future__ import annotations

from typing import Any, Mapping

from theway.application.dtos import PrerequisiteVerdict
from theway.domain.models.player import PlayerState
from theway.domain.models.story import PrerequisiteSpec

FALLBACK_DIALOGUE = "It doesn't seem like the right time to talk about that yet."

_MISSING = object()


def flag_matches(expected: Any, actual: Any) -> bool:
    """Strict equality: booleans only match booleans and an unset flag never matches."""

    if actual is _MISSING:
        return False
    if isinstance(expected, bool) or isinstance(actual, bool):
        return isinstance(expected, bool) and isinstance(actual, bool) and expected is actual
    if isinstance(expected, (int, float)) and isinstance(actual, (int, float)):
        return expected == actual
    return type(expected) is type(actual) and expected == actual


def evaluate_prerequisites(player_state: PlayerState, spec: PrerequisiteSpec | None) -> PrerequisiteVerdict:
    if spec is None:
        return PrerequisiteVerdict(satisfied=True)

    missing: list[str] = []

    if spec.level_min is not None and int(player_state.level) < int(spec.level_min):
        missing.append(f"level_min:{int(spec.level_min)}")

    flags: Mapping[str, Any] = player_state.story_flags or {}
    for key, expected in (spec.story_flags or {}).items():
        if not flag_matches(expected, flags.get(key, _MISSING)):
            missing.append(f"story_flag:{key}")

    completed = player_state.completed_quests or frozenset()
    for quest_id in spec.quests_completed or ():
        if quest_id not in completed:
            missing.append(f"quest_incomplete:{quest_id}")

    return PrerequisiteVerdict(satisfied=not missing, missing=missing)
