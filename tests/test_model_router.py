import unittest

from nysgpt_chat.model_router import (
    ANTHROPIC_ROUTE,
    OPENAI_ROUTE,
    PERPLEXITY_ROUTE,
    ChunkFormat,
    select_backend,
)


class SelectBackendTests(unittest.TestCase):
    def test_claude_models_use_anthropic_backend(self) -> None:
        route = select_backend("claude-sonnet-4-5-20250929")
        self.assertIs(ANTHROPIC_ROUTE, route)
        self.assertEqual(ChunkFormat.ANTHROPIC, route.chunk_format)
        self.assertFalse(route.supports_citation_mode)

    def test_sonar_and_perplexity_models_use_citation_backend(self) -> None:
        for name in ("sonar", "sonar-pro", "Perplexity-Online"):
            route = select_backend(name)
            self.assertIs(PERPLEXITY_ROUTE, route, name)
            self.assertTrue(route.supports_citation_mode)
            self.assertEqual(ChunkFormat.OPENAI, route.chunk_format)

    def test_unknown_and_empty_names_fall_back_to_openai(self) -> None:
        for name in ("gpt-4o-mini", "some-new-model", "", None):
            self.assertIs(OPENAI_ROUTE, select_backend(name))

    def test_endpoint_url_joins_function_path(self) -> None:
        self.assertEqual(
            "https://x.supabase.co/functions/v1/generate-with-openai",
            OPENAI_ROUTE.endpoint_url("https://x.supabase.co/"),
        )
        self.assertEqual(
            "https://x.supabase.co/functions/v1/generate-with-claude",
            ANTHROPIC_ROUTE.endpoint_url("https://x.supabase.co"),
        )


if __name__ == "__main__":
    unittest.main()
