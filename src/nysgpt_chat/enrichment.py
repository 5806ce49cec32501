from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass, field

from loguru import logger

from nysgpt_chat.lookup import LookupCollaborator
from nysgpt_chat.model_router import BackendRoute
from nysgpt_chat.models import Citation, normalize_bill_number

ENTITY_CODE_RE = re.compile(r"\b[ASKJBCELR]\d{1,6}[A-Z]?\b", re.IGNORECASE)
SOURCE_MARKER_RE = re.compile(r"\[(\d+)\]")

SIDE_CHANNEL_START = "<<<CLIENTS>>>"
SIDE_CHANNEL_END = "<<<END_CLIENTS>>>"

_REASONING_RE = re.compile(r"^\s*<(think|thinking)>(.*?)</\1>", re.IGNORECASE | re.DOTALL)
_REASONING_OPEN_RE = re.compile(r"^\s*<(think|thinking)>", re.IGNORECASE)
_BULLET_RE = re.compile(r"^\s*(?:[-*•]|\d+[.)])\s+")

DEFAULT_RELATED_LIMIT = 5


@dataclass(frozen=True)
class ReasoningSplit:
    content: str
    reasoning: str | None = None
    complete: bool = True


@dataclass(frozen=True)
class SideChannelResult:
    main_content: str
    entities: list[str] = field(default_factory=list)
    still_extracting: bool = False


@dataclass(frozen=True)
class InlineSegment:
    text: str
    citation: int | None = None


@dataclass(frozen=True)
class SourceReference:
    url: str
    title: str | None = None


@dataclass
class EnrichmentResult:
    content: str
    codes: list[str] = field(default_factory=list)
    citations: list[Citation] = field(default_factory=list)
    related_entities: list[Citation] = field(default_factory=list)
    side_channel_entities: list[str] = field(default_factory=list)
    reasoning: str | None = None
    source_citations: list[int] = field(default_factory=list)


def extract_entity_codes(text: str) -> list[str]:
    """All entity codes in ``text``, uppercased and deduplicated in first-seen order."""
    seen: dict[str, None] = {}
    for match in ENTITY_CODE_RE.finditer(text):
        seen.setdefault(match.group(0).upper(), None)
    return list(seen)


def extract_reasoning(text: str) -> ReasoningSplit:
    match = _REASONING_RE.match(text)
    if match:
        return ReasoningSplit(
            content=text[match.end():].strip(),
            reasoning=match.group(2).strip() or None,
            complete=True,
        )

    opening = _REASONING_OPEN_RE.match(text)
    if opening:
        # Still inside the thinking segment.
        return ReasoningSplit(content="", reasoning=text[opening.end():].strip() or None, complete=False)

    stripped = text.lstrip()
    if stripped.startswith("<") and any(tag.startswith(stripped.lower()) for tag in ("<think>", "<thinking>")):
        return ReasoningSplit(content="", reasoning=None, complete=False)

    return ReasoningSplit(content=text)


def _strip_bullet(line: str) -> str:
    return _BULLET_RE.sub("", line, count=1).strip()


def extract_side_channel(text: str) -> SideChannelResult:
    """Split a delimited side-channel list out of (possibly partial) model output."""
    start = text.find(SIDE_CHANNEL_START)
    if start < 0:
        return SideChannelResult(main_content=_hold_back_marker_prefix(text))

    main = text[:start].rstrip()
    body_start = start + len(SIDE_CHANNEL_START)
    end = text.find(SIDE_CHANNEL_END, body_start)
    if end < 0:
        body = text[body_start:]
        lines = body.split("\n")
        if not body.endswith("\n"):
            # The last line may still be growing.
            lines = lines[:-1]
        entities = [item for item in (_strip_bullet(line) for line in lines) if item]
        return SideChannelResult(main_content=main, entities=entities, still_extracting=True)

    body = text[body_start:end]
    entities = [item for item in (_strip_bullet(line) for line in body.split("\n")) if item]
    trailing = text[end + len(SIDE_CHANNEL_END):].strip()
    if trailing:
        main = f"{main}\n\n{trailing}" if main else trailing
    return SideChannelResult(main_content=main, entities=entities, still_extracting=False)


def _hold_back_marker_prefix(text: str) -> str:
    for size in range(len(SIDE_CHANNEL_START) - 1, 2, -1):
        if text.endswith(SIDE_CHANNEL_START[:size]):
            return text[:-size].rstrip()
    return text


def extract_citation_numbers(text: str) -> list[int]:
    return sorted({int(n) for n in SOURCE_MARKER_RE.findall(text)})


def parse_inline_citations(text: str) -> list[InlineSegment]:
    segments: list[InlineSegment] = []
    last = 0
    for match in SOURCE_MARKER_RE.finditer(text):
        if match.start() > last:
            segments.append(InlineSegment(text=text[last:match.start()]))
        segments.append(InlineSegment(text="", citation=int(match.group(1))))
        last = match.end()
    if last < len(text):
        segments.append(InlineSegment(text=text[last:]))
    return segments


def strip_citation_markers(text: str) -> str:
    return SOURCE_MARKER_RE.sub("", text)


def resolve_source_citations(
    numbers: Sequence[int],
    sources: Sequence[SourceReference],
) -> dict[int, SourceReference]:
    """Map 1-based ``[n]`` markers onto the backend's source list. Out-of-range markers are dropped."""
    return {n: sources[n - 1] for n in numbers if 1 <= n <= len(sources)}


class EnrichmentEngine:
    def __init__(self, lookup: LookupCollaborator | None, *, related_limit: int = DEFAULT_RELATED_LIMIT):
        self._lookup = lookup
        self._related_limit = related_limit

    def analyze_text(self, final_text: str, route: BackendRoute) -> EnrichmentResult:
        """The lookup-free part of enrichment, safe to run at finalization."""
        reasoning: str | None = None
        text = final_text
        if route.supports_citation_mode:
            split = extract_reasoning(text)
            text, reasoning = split.content, split.reasoning

        side_channel = extract_side_channel(text)
        content = side_channel.main_content
        return EnrichmentResult(
            content=content,
            codes=extract_entity_codes(content),
            side_channel_entities=side_channel.entities,
            reasoning=reasoning,
            source_citations=extract_citation_numbers(content) if route.supports_citation_mode else [],
        )

    async def enrich(self, final_text: str, route: BackendRoute) -> EnrichmentResult:
        result = self.analyze_text(final_text, route)
        result.citations = await self.resolve_citations(result.codes)
        return result

    async def resolve_citations(self, codes: Sequence[str]) -> list[Citation]:
        if not codes or self._lookup is None:
            return []
        try:
            found = await self._lookup.fetch_bills_by_codes(list(codes))
        except Exception as ex:
            logger.warning(f"Citation lookup failed for {len(codes)} code(s): {ex}")
            return []
        citations = [found[code].to_citation(code) for code in codes if code in found]
        logger.debug(f"Resolved {len(citations)} of {len(codes)} entity code(s)")
        return citations

    async def resolve_related(self, citations: Sequence[Citation]) -> list[Citation]:
        if self._lookup is None:
            return []
        anchor = next((c for c in citations if c.group_key), None)
        if anchor is None or anchor.group_key is None:
            return []
        primary = {normalize_bill_number(c.code) for c in citations}
        try:
            records = await self._lookup.fetch_bills_by_group(anchor.group_key, anchor.code, self._related_limit)
        except Exception as ex:
            logger.warning(f"Related lookup failed for group {anchor.group_key!r}: {ex}")
            return []
        related: list[Citation] = []
        seen = set(primary)
        for record in records:
            citation = record.to_citation()
            key = normalize_bill_number(citation.code)
            if key in seen:
                continue
            seen.add(key)
            related.append(citation)
        return related[: self._related_limit]
