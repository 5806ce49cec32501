from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from loguru import logger

from nysgpt_chat.models import LinkedEntity, Message
from nysgpt_chat.storage.session_store import SessionStore

DEFAULT_TITLE_MAX_CHARS = 50


@dataclass(frozen=True)
class PersistenceContext:
    """Who is chatting and whether their sessions may be stored."""

    user_id: str | None = None
    public_surface: bool = False

    @property
    def eligible(self) -> bool:
        return bool(self.user_id) and not self.public_surface

    @classmethod
    def anonymous(cls) -> PersistenceContext:
        return cls(user_id=None)


def session_title(first_message: str, max_chars: int = DEFAULT_TITLE_MAX_CHARS) -> str:
    text = " ".join(first_message.split())
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + "..."


class SessionPersistenceBridge:
    def __init__(
        self,
        store: SessionStore | None,
        context: PersistenceContext,
        *,
        title_max_chars: int = DEFAULT_TITLE_MAX_CHARS,
    ):
        self._store = store
        self._context = context
        self._title_max_chars = title_max_chars

    @property
    def enabled(self) -> bool:
        return self._target() is not None

    def _target(self) -> tuple[SessionStore, str] | None:
        if self._store is None or not self._context.eligible or self._context.user_id is None:
            return None
        return self._store, self._context.user_id

    async def ensure_session(
        self,
        first_user_message: Message,
        linked_entity_hint: LinkedEntity | None = None,
    ) -> str | None:
        target = self._target()
        if target is None:
            logger.debug("Persistence not enabled for this context; skipping session creation")
            return None
        store, user_id = target

        title = session_title(first_user_message.content, self._title_max_chars)
        try:
            session_id = await store.insert_session(
                user_id,
                title,
                [first_user_message.to_snapshot()],
                linked_entity_hint,
            )
        except Exception as ex:
            logger.warning(f"Session creation failed: {ex}")
            return None
        logger.info(f"Chat session created: {session_id} ({title!r})")
        return session_id

    async def append_exchange(self, session_id: str | None, messages: Sequence[Message]) -> bool:
        target = self._target()
        if target is None or not session_id:
            return False
        store, user_id = target

        snapshots = [m.to_snapshot() for m in messages]
        try:
            await store.update_messages(user_id, session_id, snapshots)
        except Exception as ex:
            logger.warning(f"Saving {len(snapshots)} message(s) to session {session_id} failed: {ex}")
            return False
        logger.debug(f"Session {session_id} saved with {len(snapshots)} message(s)")
        return True

    async def load_session(self, session_id: str) -> list[Message] | None:
        target = self._target()
        if target is None:
            logger.debug("Persistence not enabled for this context; cannot load sessions")
            return None
        store, user_id = target

        try:
            session = await store.select_session(user_id, session_id)
        except Exception as ex:
            logger.warning(f"Loading session {session_id} failed: {ex}")
            return None
        if session is None:
            logger.info(f"Session not found: {session_id}")
            return None

        messages: list[Message] = []
        for snapshot in session.messages:
            try:
                messages.append(Message.from_snapshot(snapshot))
            except (TypeError, ValueError) as ex:
                logger.warning(f"Skipping unreadable message in session {session_id}: {ex}")
        logger.info(f"Loaded {len(messages)} message(s) from session {session_id}")
        return messages
