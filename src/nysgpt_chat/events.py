from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

STATE = "state"
MESSAGE_CREATED = "message.created"
MESSAGE_DELTA = "message.delta"
MESSAGE_FINALIZED = "message.finalized"
MESSAGE_PATCHED = "message.patched"
NOTICE = "notice"
SESSION_CREATED = "session.created"
SESSION_LOADED = "session.loaded"
SESSION_RESET = "session.reset"


@dataclass(frozen=True)
class ConversationEvent:
    type: str
    message_id: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)


Subscriber = Callable[[ConversationEvent], None]


class ConversationEvents:
    """Synchronous fan-out of conversation changes to renderers and loggers."""

    def __init__(self) -> None:
        self._subscribers: list[Subscriber] = []

    def subscribe(self, subscriber: Subscriber) -> Callable[[], None]:
        self._subscribers.append(subscriber)

        def unsubscribe() -> None:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

        return unsubscribe

    def emit(self, event_type: str, payload: dict[str, Any] | None = None, *, message_id: str | None = None) -> None:
        event = ConversationEvent(type=event_type, message_id=message_id, payload=payload or {})
        for subscriber in list(self._subscribers):
            try:
                subscriber(event)
            except Exception as ex:
                logger.warning(f"Event subscriber failed on '{event_type}': {ex}")
