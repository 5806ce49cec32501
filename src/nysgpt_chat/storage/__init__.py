from nysgpt_chat.storage.session_store import SessionStore, SqliteSessionStore, SupabaseSessionStore
from nysgpt_chat.storage.sqlite_store import SqliteStore

__all__ = [
    "SessionStore",
    "SqliteSessionStore",
    "SqliteStore",
    "SupabaseSessionStore",
]
