from __future__ import annotations


class ChatError(Exception):
    """Base class for chat pipeline failures."""


class EmptyInputError(ChatError):
    def __init__(self) -> None:
        super().__init__("Nothing to submit: no text, attachments or selections")


class QuotaExceededError(ChatError):
    def __init__(self, words_used: int, daily_limit: float):
        self.words_used = words_used
        self.daily_limit = daily_limit
        super().__init__(
            f"Daily AI word limit reached ({words_used:,} of {daily_limit:,.0f} words used)"
        )


class StreamTransportError(ChatError):
    """HTTP or read failure while streaming. ``partial_text`` holds what arrived first."""

    def __init__(self, message: str, *, partial_text: str = "", status_code: int | None = None):
        self.partial_text = partial_text
        self.status_code = status_code
        super().__init__(message)


class LookupFailure(ChatError):
    pass


class PersistenceFailure(ChatError):
    pass
