from __future__ import annotations

from collections.abc import Callable, Sequence

from .connection import SessionLocal


def save_story_transition_atomic(operations: Sequence[Callable[[object], None]] | None = None) -> None:
    """Run progress, ledger and reward operations in one DB transaction.

    Any operation raising (a lost compare-and-set, a repeated reward grant)
    rolls back everything the earlier operations wrote.
    """
    with SessionLocal.begin() as session:
        for operation in operations or ():
            operation(session)
