from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import httpx
from loguru import logger

from nysgpt_chat.app_config import AppConfig, RuntimeEnv
from nysgpt_chat.context_assembler import ContextAssembler
from nysgpt_chat.conversation import ConversationStateMachine
from nysgpt_chat.enrichment import EnrichmentEngine
from nysgpt_chat.events import ConversationEvents
from nysgpt_chat.logging_config import setup_logging
from nysgpt_chat.lookup import SupabaseLookup
from nysgpt_chat.persistence import PersistenceContext, SessionPersistenceBridge
from nysgpt_chat.storage import SessionStore, SqliteSessionStore, SqliteStore, SupabaseSessionStore
from nysgpt_chat.stream_consumer import StreamConsumer
from nysgpt_chat.supabase_rest import SupabaseRestClient
from nysgpt_chat.usage import UsageTracker


@dataclass
class AppRuntime:
    conversation: ConversationStateMachine
    events: ConversationEvents
    http_client: httpx.AsyncClient
    sqlite_store: SqliteStore
    usage: UsageTracker
    persistence: SessionPersistenceBridge
    log_descriptions: list[str]

    async def aclose(self) -> None:
        await self.conversation.drain()
        await self.http_client.aclose()
        self.sqlite_store.close()


def _resolve_db_path(raw: str) -> Path:
    db_path = Path(raw)
    if not db_path.is_absolute():
        db_path = Path.cwd() / db_path
    return db_path


async def bootstrap_runtime(app: AppConfig, env: RuntimeEnv) -> AppRuntime:
    log_descriptions = setup_logging(level=app.log_level, consumers=app.log_consumers)

    if not env.supabase_url or not env.supabase_anon_key:
        raise ValueError("SUPABASE_URL and SUPABASE_ANON_KEY environment variables are required.")

    timeout = httpx.Timeout(app.request_timeout_seconds or 30.0, read=app.request_timeout_seconds)
    http_client = httpx.AsyncClient(timeout=timeout)

    rest = SupabaseRestClient(
        env.supabase_url,
        env.supabase_anon_key,
        access_token=env.supabase_access_token,
        client=http_client,
    )
    lookup = SupabaseLookup(rest)

    # The local database always holds the daily usage counter.
    sqlite_store = SqliteStore(str(_resolve_db_path(app.session_db_path)))

    session_store: SessionStore | None = None
    if app.persistence_enabled:
        if app.session_store == "sqlite":
            session_store = SqliteSessionStore(sqlite_store)
        else:
            session_store = SupabaseSessionStore(rest)

    context = PersistenceContext(user_id=env.user_id)
    if not context.eligible:
        logger.info("No user id configured; chat sessions will not be saved")
    persistence = SessionPersistenceBridge(session_store, context, title_max_chars=app.title_max_chars)

    usage = UsageTracker(app.subscription_tier, user_id=env.user_id, store=sqlite_store)
    events = ConversationEvents()

    conversation = ConversationStateMachine(
        assembler=ContextAssembler(lookup, history_window=app.history_window, sibling_limit=app.sibling_limit),
        consumer=StreamConsumer(
            env.supabase_url,
            env.supabase_anon_key,
            access_token=env.supabase_access_token,
            client=http_client,
        ),
        enrichment=EnrichmentEngine(lookup, related_limit=app.related_limit),
        persistence=persistence,
        events=events,
        usage=usage,
        model=app.model,
    )

    return AppRuntime(
        conversation=conversation,
        events=events,
        http_client=http_client,
        sqlite_store=sqlite_store,
        usage=usage,
        persistence=persistence,
        log_descriptions=log_descriptions,
    )
