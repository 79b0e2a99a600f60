from collections import defaultdict
import logging
from typing import Callable, DefaultDict, List, Type


class EventBus:
    """Synchronous publish/subscribe with per-handler failure isolation.

    Handlers run in ascending priority, ties in subscription order. A failing
    handler is logged and recorded but never stops the remaining handlers or
    reaches the publisher.
    """

    def __init__(self) -> None:
        self._subscribers: DefaultDict[Type[object], List[tuple[int, int, Callable[[object], None]]]] = defaultdict(list)
        self._next_order = 0
        self._last_publish_errors: List[Exception] = []
        self._logger = logging.getLogger(__name__)

    def subscribe(self, event_type: Type[object], handler: Callable[[object], None], *, priority: int = 100) -> None:
        rows = self._subscribers[event_type]
        rows.append((int(priority), self._next_order, handler))
        self._next_order += 1
        rows.sort(key=lambda row: (row[0], row[1]))

    def subscriber_count(self, event_type: Type[object]) -> int:
        return len(self._subscribers.get(event_type, ()))

    def publish(self, event: object) -> List[Exception]:
        errors: List[Exception] = []
        event_type = type(event)
        for priority, _, handler in list(self._subscribers.get(event_type, ())):
            try:
                handler(event)
            except Exception as exc:
                errors.append(exc)
                handler_name = getattr(handler, "__qualname__", getattr(handler, "__name__", repr(handler)))
                self._logger.exception(
                    "Event handler failed and was isolated",
                    extra={
                        "event_type": event_type.__name__,
                        "handler": handler_name,
                        "priority": priority,
                        "replay_key": getattr(exc, "replay_key", getattr(event, "replay_key", None)),
                    },
                )
        self._last_publish_errors = errors
        return list(errors)

    def last_publish_errors(self) -> List[Exception]:
        return list(self._last_publish_errors)
