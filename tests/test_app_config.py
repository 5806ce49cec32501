import os
import unittest
from unittest.mock import patch

from nysgpt_chat.app_config import parse_app_config, resolve_runtime_env


class AppConfigTests(unittest.TestCase):
    def test_defaults(self) -> None:
        app = parse_app_config({})
        self.assertEqual("gpt-4o-mini", app.model)
        self.assertEqual(10, app.history_window)
        self.assertEqual(50, app.title_max_chars)
        self.assertEqual(5, app.related_limit)
        self.assertEqual(10, app.sibling_limit)
        self.assertTrue(app.persistence_enabled)
        self.assertEqual("supabase", app.session_store)
        self.assertEqual(".nysgpt/sessions.db", app.session_db_path)
        self.assertEqual("free", app.subscription_tier)
        self.assertIsNone(app.request_timeout_seconds)
        self.assertEqual("INFO", app.log_level)
        self.assertIsNone(app.log_consumers)

    def test_overrides(self) -> None:
        app = parse_app_config(
            {
                "Model": "claude-sonnet-4-5",
                "HistoryWindow": "6",
                "PersistenceEnabled": "off",
                "SessionStore": "SQLite",
                "SubscriptionTier": "Staffer",
                "RequestTimeoutSeconds": 45,
                "LogConsumers": [{"type": "console"}],
            }
        )
        self.assertEqual("claude-sonnet-4-5", app.model)
        self.assertEqual(6, app.history_window)
        self.assertFalse(app.persistence_enabled)
        self.assertEqual("sqlite", app.session_store)
        self.assertEqual("staffer", app.subscription_tier)
        self.assertEqual(45.0, app.request_timeout_seconds)
        self.assertEqual([{"type": "console"}], app.log_consumers)

    def test_unknown_session_store_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            parse_app_config({"SessionStore": "redis"})


class RuntimeEnvTests(unittest.TestCase):
    def test_reads_supabase_settings(self) -> None:
        env = {
            "SUPABASE_URL": "https://x.supabase.co",
            "SUPABASE_ANON_KEY": "anon",
            "NYSGPT_USER_ID": "u-1",
        }
        with patch.dict(os.environ, env, clear=True):
            runtime = resolve_runtime_env()
        self.assertEqual("https://x.supabase.co", runtime.supabase_url)
        self.assertEqual("anon", runtime.supabase_anon_key)
        self.assertIsNone(runtime.supabase_access_token)
        self.assertEqual("u-1", runtime.user_id)

    def test_missing_user_id_means_anonymous(self) -> None:
        with patch.dict(os.environ, {}, clear=True):
            runtime = resolve_runtime_env()
        self.assertIsNone(runtime.user_id)
        self.assertEqual("", runtime.supabase_url)


if __name__ == "__main__":
    unittest.main()
