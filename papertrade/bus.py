from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, Callable, DefaultDict, Hashable, List, Optional, Tuple, Type, TypeVar

T = TypeVar("T")

_Key = Tuple[Type[Any], Optional[Hashable]]


class EventBus:
    """Tiny in-process pub/sub bus.

    Handlers subscribe to an event type, optionally narrowed to a topic (the
    account stores use the uid). A failing handler is logged and skipped so one
    bad listener cannot break a commit.
    """

    def __init__(self) -> None:
        self._handlers: DefaultDict[_Key, List[Callable[[Any], None]]] = defaultdict(list)
        self._log = logging.getLogger("bus")

    def subscribe(
        self, event_type: Type[T], handler: Callable[[T], None], *, topic: Optional[Hashable] = None
    ) -> Callable[[], None]:
        key: _Key = (event_type, topic)
        self._handlers[key].append(handler)  # type: ignore[arg-type]

        def unsubscribe() -> None:
            handlers = self._handlers.get(key, [])
            if handler in handlers:
                handlers.remove(handler)  # type: ignore[arg-type]

        return unsubscribe

    def publish(self, event: Any, *, topic: Optional[Hashable] = None) -> None:
        et = type(event)
        targets = list(self._handlers.get((et, None), []))
        if topic is not None:
            targets += self._handlers.get((et, topic), [])
        for h in targets:
            try:
                h(event)
            except Exception:
                self._log.exception("handler_failed", extra={"event_type": et.__name__, "topic": topic})
