from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ChunkFormat(str, Enum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"


@dataclass(frozen=True)
class BackendRoute:
    name: str
    endpoint: str
    chunk_format: ChunkFormat
    supports_citation_mode: bool = False

    def endpoint_url(self, base_url: str) -> str:
        return f"{base_url.rstrip('/')}/functions/v1/{self.endpoint}"


OPENAI_ROUTE = BackendRoute("openai", "generate-with-openai", ChunkFormat.OPENAI)
ANTHROPIC_ROUTE = BackendRoute("anthropic", "generate-with-claude", ChunkFormat.ANTHROPIC)
PERPLEXITY_ROUTE = BackendRoute(
    "perplexity",
    "generate-with-perplexity",
    ChunkFormat.OPENAI,
    supports_citation_mode=True,
)

_CLAUDE_MARKERS = ("claude",)
_PERPLEXITY_MARKERS = ("sonar", "perplexity")


def select_backend(model_name: str | None) -> BackendRoute:
    """Route a model name to its backend. Unknown names use the OpenAI-compatible backend."""
    name = (model_name or "").strip().lower()
    if any(marker in name for marker in _CLAUDE_MARKERS):
        return ANTHROPIC_ROUTE
    if any(marker in name for marker in _PERPLEXITY_MARKERS):
        return PERPLEXITY_ROUTE
    return OPENAI_ROUTE
