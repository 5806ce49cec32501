from __future__ import annotations

import math
from collections.abc import Callable
from datetime import UTC, date, datetime

from loguru import logger

from nysgpt_chat.storage.sqlite_store import SqliteStore

TIER_WORD_LIMITS: dict[str, float] = {
    "free": 1000,
    "student": 10000,
    "staffer": 50000,
    "researcher": 100000,
    "professional": 500000,
    "enterprise": math.inf,
    "government": math.inf,
}


def utc_today() -> date:
    return datetime.now(UTC).date()


def count_words(text: str) -> int:
    return len(text.split())


def daily_limit_for(tier: str | None) -> float:
    return TIER_WORD_LIMITS.get((tier or "free").lower(), TIER_WORD_LIMITS["free"])


class UsageTracker:
    """Daily AI word budget. The counter starts over when the UTC date changes."""

    def __init__(
        self,
        tier: str = "free",
        *,
        user_id: str | None = None,
        store: SqliteStore | None = None,
        today: Callable[[], date] = utc_today,
    ):
        self._tier = tier
        self._user_id = user_id
        self._store = store
        self._today = today
        self._words_used = 0
        self._last_reset = today()
        self._load()

    @property
    def tier(self) -> str:
        return self._tier

    @property
    def daily_limit(self) -> float:
        return daily_limit_for(self._tier)

    @property
    def words_used(self) -> int:
        self._roll_over()
        return self._words_used

    @property
    def remaining_words(self) -> float:
        return max(0, self.daily_limit - self.words_used)

    def is_limit_exceeded(self) -> bool:
        return self.words_used >= self.daily_limit

    def add_words(self, count: int) -> int:
        if count <= 0:
            return self.words_used
        self._roll_over()
        self._words_used += count
        self._save()
        logger.debug(f"AI usage: {self._words_used} of {self.daily_limit} words used today")
        return self._words_used

    def _roll_over(self) -> None:
        today = self._today()
        if today != self._last_reset:
            logger.info(f"AI usage reset for {today.isoformat()}")
            self._words_used = 0
            self._last_reset = today
            self._save()

    def _load(self) -> None:
        if self._store is None or self._user_id is None:
            return
        row = self._store.execute(
            "SELECT words_used, last_reset_date FROM ai_usage WHERE user_id = ?",
            (self._user_id,),
        ).fetchone()
        if row is None:
            return
        if row["last_reset_date"] == self._last_reset.isoformat():
            self._words_used = int(row["words_used"])

    def _save(self) -> None:
        if self._store is None or self._user_id is None:
            return
        self._store.execute(
            """
            INSERT INTO ai_usage (user_id, words_used, last_reset_date)
            VALUES (?, ?, ?)
            ON CONFLICT(user_id) DO UPDATE SET
                words_used = excluded.words_used,
                last_reset_date = excluded.last_reset_date
            """,
            (self._user_id, self._words_used, self._last_reset.isoformat()),
        )
        self._store.commit()
