from __future__ import annotations

import copy
from collections.abc import Callable, Sequence


def create_inmemory_atomic_persistor(*repos: object) -> Callable[..., None]:
    """Run commit operations against in-memory repos, restoring every repo on failure."""

    def _persist(operations: Sequence[Callable[[object], None]] | None = None) -> None:
        snapshot = [
            (repo, {name: copy.deepcopy(getattr(repo, name)) for name in getattr(repo, "_STATE_ATTRS", ())})
            for repo in repos
        ]
        try:
            for operation in operations or ():
                operation(None)
        except Exception:
            for repo, state in snapshot:
                for name, value in state.items():
                    setattr(repo, name, value)
            raise

    return _persist
