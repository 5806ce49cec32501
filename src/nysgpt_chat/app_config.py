from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path


@dataclass
class RuntimeEnv:
    supabase_url: str
    supabase_anon_key: str
    supabase_access_token: str | None
    user_id: str | None


@dataclass
class AppConfig:
    model: str
    history_window: int
    title_max_chars: int
    related_limit: int
    sibling_limit: int
    persistence_enabled: bool
    session_store: str
    session_db_path: str
    subscription_tier: str
    request_timeout_seconds: float | None
    log_level: str
    log_consumers: list | None


def load_json_config(path: Path | None = None) -> dict:
    config_path = path or Path.cwd() / "config.json"
    if config_path.exists():
        with open(config_path) as f:
            return json.load(f)
    return {}


def _to_bool(value: object, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
    return bool(value)


def _to_optional_float(value: object) -> float | None:
    if value is None or value == "":
        return None
    return float(value)  # type: ignore[arg-type]


def parse_app_config(config: dict) -> AppConfig:
    session_store = str(config.get("SessionStore", "supabase")).strip().lower()
    if session_store not in {"supabase", "sqlite"}:
        raise ValueError(f"Unsupported SessionStore: {session_store!r} (expected 'supabase' or 'sqlite')")

    return AppConfig(
        model=config.get("Model", "gpt-4o-mini"),
        history_window=int(config.get("HistoryWindow", 10)),
        title_max_chars=int(config.get("TitleMaxChars", 50)),
        related_limit=int(config.get("RelatedLimit", 5)),
        sibling_limit=int(config.get("SiblingLimit", 10)),
        persistence_enabled=_to_bool(config.get("PersistenceEnabled", True), default=True),
        session_store=session_store,
        session_db_path=str(config.get("SessionDbPath", ".nysgpt/sessions.db")),
        subscription_tier=str(config.get("SubscriptionTier", "free")).strip().lower(),
        request_timeout_seconds=_to_optional_float(config.get("RequestTimeoutSeconds")),
        log_level=config.get("LogLevel", "INFO"),
        log_consumers=config.get("LogConsumers"),
    )


def resolve_runtime_env() -> RuntimeEnv:
    return RuntimeEnv(
        supabase_url=os.environ.get("SUPABASE_URL", "").strip(),
        supabase_anon_key=os.environ.get("SUPABASE_ANON_KEY", "").strip(),
        supabase_access_token=os.environ.get("SUPABASE_ACCESS_TOKEN") or None,
        user_id=os.environ.get("NYSGPT_USER_ID") or None,
    )
