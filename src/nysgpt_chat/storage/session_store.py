from __future__ import annotations

import json
from typing import Any, Protocol, runtime_checkable
from uuid import uuid4

from nysgpt_chat.errors import PersistenceFailure
from nysgpt_chat.models import ConversationSession, LinkedEntity, utc_now
from nysgpt_chat.storage.sqlite_store import SqliteStore
from nysgpt_chat.supabase_rest import SupabaseRestClient, eq

_TABLE = "chat_sessions"


@runtime_checkable
class SessionStore(Protocol):
    async def insert_session(
        self,
        user_id: str,
        title: str,
        messages: list[dict[str, Any]],
        linked_entity: LinkedEntity | None = None,
    ) -> str:
        """Create a session row and return its generated id."""
        ...

    async def update_messages(self, user_id: str, session_id: str, messages: list[dict[str, Any]]) -> None:
        """Replace the whole message array of a session."""
        ...

    async def select_session(self, user_id: str, session_id: str) -> ConversationSession | None: ...


class SupabaseSessionStore:
    def __init__(self, rest: SupabaseRestClient):
        self._rest = rest

    async def insert_session(
        self,
        user_id: str,
        title: str,
        messages: list[dict[str, Any]],
        linked_entity: LinkedEntity | None = None,
    ) -> str:
        row: dict[str, Any] = {"user_id": user_id, "title": title[:100], "messages": messages}
        row.update(linked_entity.to_columns() if linked_entity else LinkedEntity.empty_columns())
        created = await self._rest.insert(_TABLE, row)
        session_id = created.get("id")
        if not session_id:
            raise PersistenceFailure("Session insert returned no id")
        return str(session_id)

    async def update_messages(self, user_id: str, session_id: str, messages: list[dict[str, Any]]) -> None:
        updated = await self._rest.update(
            _TABLE,
            {"messages": messages, "updated_at": utc_now()},
            filters={"id": eq(session_id), "user_id": eq(user_id)},
        )
        if updated == 0:
            raise PersistenceFailure(f"Session {session_id} not found for update")

    async def select_session(self, user_id: str, session_id: str) -> ConversationSession | None:
        rows = await self._rest.select(
            _TABLE,
            filters={"id": eq(session_id), "user_id": eq(user_id)},
            limit=1,
        )
        if not rows:
            return None
        row = rows[0]
        messages = row.get("messages") or []
        return ConversationSession(
            id=str(row["id"]),
            title=str(row.get("title") or ""),
            linked_entity=LinkedEntity.from_columns(row),
            messages=[m for m in messages if isinstance(m, dict)],
        )


class SqliteSessionStore:
    def __init__(self, store: SqliteStore):
        self._store = store

    async def insert_session(
        self,
        user_id: str,
        title: str,
        messages: list[dict[str, Any]],
        linked_entity: LinkedEntity | None = None,
    ) -> str:
        sid = str(uuid4())
        now = utc_now()
        columns = linked_entity.to_columns() if linked_entity else LinkedEntity.empty_columns()
        self._store.execute(
            """
            INSERT INTO chat_sessions
                (id, user_id, title, messages_json, bill_id, member_id, committee_id, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                sid,
                user_id,
                title[:100],
                json.dumps(messages, ensure_ascii=True),
                columns["bill_id"],
                columns["member_id"],
                columns["committee_id"],
                now,
                now,
            ),
        )
        self._store.commit()
        return sid

    async def update_messages(self, user_id: str, session_id: str, messages: list[dict[str, Any]]) -> None:
        cursor = self._store.execute(
            "UPDATE chat_sessions SET messages_json = ?, updated_at = ? WHERE id = ? AND user_id = ?",
            (json.dumps(messages, ensure_ascii=True), utc_now(), session_id, user_id),
        )
        self._store.commit()
        if cursor.rowcount == 0:
            raise PersistenceFailure(f"Session {session_id} not found for update")

    async def select_session(self, user_id: str, session_id: str) -> ConversationSession | None:
        row = self._store.execute(
            "SELECT * FROM chat_sessions WHERE id = ? AND user_id = ? LIMIT 1",
            (session_id, user_id),
        ).fetchone()
        if row is None:
            return None
        data = dict(row)
        try:
            messages = json.loads(data["messages_json"])
        except (TypeError, json.JSONDecodeError):
            messages = []
        if not isinstance(messages, list):
            messages = []
        return ConversationSession(
            id=data["id"],
            title=data["title"],
            linked_entity=LinkedEntity.from_columns(data),
            messages=[m for m in messages if isinstance(m, dict)],
        )
