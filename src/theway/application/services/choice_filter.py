from __future__ import annotations

from typing import Iterable

from theway.application.services.prerequisite_evaluator import evaluate_prerequisites
from theway.domain.models.player import PlayerState
from theway.domain.models.story import Choice


def filter_choices(player_state: PlayerState, choices: Iterable[Choice]) -> list[Choice]:
    """Choices whose requirements hold, in authored order. An empty list is a dead end, not an error."""

    return [
        choice
        for choice in choices
        if evaluate_prerequisites(player_state, choice.requirements).satisfied
    ]
