from __future__ import annotations

import asyncio
import contextlib
import inspect
import json
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import httpx
from loguru import logger

from nysgpt_chat.context_assembler import RequestPayload
from nysgpt_chat.enrichment import extract_reasoning
from nysgpt_chat.errors import StreamTransportError
from nysgpt_chat.model_router import BackendRoute, ChunkFormat

DONE_MARKER = "[DONE]"
_DATA_PREFIX = "data:"


@dataclass(frozen=True)
class StreamUpdate:
    text: str
    content: str
    reasoning: str | None = None
    reasoning_complete: bool = True


DeltaCallback = Callable[[StreamUpdate], Awaitable[None] | None]
DoneCallback = Callable[[str], Awaitable[None] | None]


class AbortHandle:
    """Cooperative cancellation for one in-flight stream."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def aborted(self) -> bool:
        return self._event.is_set()

    def abort(self) -> None:
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()


def parse_sse_data(line: str) -> str | None:
    """Return the payload of a ``data:`` line, or None for any other line."""
    if not line.startswith(_DATA_PREFIX):
        return None
    data = line[len(_DATA_PREFIX):]
    if data.startswith(" "):
        data = data[1:]
    return data.strip()


def extract_delta(event: Any, chunk_format: ChunkFormat) -> str:
    if not isinstance(event, dict):
        return ""
    if chunk_format is ChunkFormat.ANTHROPIC:
        delta = event.get("delta")
        text = delta.get("text") if isinstance(delta, dict) else None
        return text if isinstance(text, str) else ""

    choices = event.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return ""
    delta = choices[0].get("delta")
    content = delta.get("content") if isinstance(delta, dict) else None
    return content if isinstance(content, str) else ""


async def _maybe_await(result: Awaitable[None] | None) -> None:
    if inspect.isawaitable(result):
        await result


class StreamConsumer:
    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        access_token: str | None = None,
        client: httpx.AsyncClient | None = None,
        timeout_seconds: float | None = None,
    ):
        self._base_url = base_url
        self._api_key = api_key
        self._access_token = access_token or api_key
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout_seconds or 30.0, read=timeout_seconds))
        self._owns_client = client is None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def consume(
        self,
        payload: RequestPayload,
        route: BackendRoute,
        on_delta: DeltaCallback,
        on_done: DoneCallback,
        abort: AbortHandle,
    ) -> None:
        """Stream one completion. Raises StreamTransportError; returns quietly when aborted."""
        if abort.aborted:
            return

        reader = asyncio.create_task(self._read(payload, route, on_delta))
        waiter = asyncio.create_task(abort.wait())
        try:
            await asyncio.wait({reader, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            reader.cancel()
            waiter.cancel()
            raise
        finally:
            waiter.cancel()

        if abort.aborted:
            if not reader.done():
                reader.cancel()
            with contextlib.suppress(asyncio.CancelledError, StreamTransportError):
                await reader
            logger.info(f"Stream from {route.name} aborted by caller")
            return

        final_text = reader.result()
        await _maybe_await(on_done(final_text))

    async def _read(self, payload: RequestPayload, route: BackendRoute, on_delta: DeltaCallback) -> str:
        url = route.endpoint_url(self._base_url)
        headers = {
            "Authorization": f"Bearer {self._access_token}",
            "apikey": self._api_key,
            "Accept": "text/event-stream",
        }
        accumulated = ""
        skipped = 0

        logger.debug(f"Stream request: backend={route.name}, model={payload.model}, prompt_len={len(payload.prompt)}")
        try:
            async with self._client.stream("POST", url, json=payload.to_wire(), headers=headers) as response:
                if response.status_code >= 400:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    raise StreamTransportError(
                        f"Backend {route.name} returned HTTP {response.status_code}: {body[:200]}",
                        status_code=response.status_code,
                    )

                async for line in response.aiter_lines():
                    data = parse_sse_data(line)
                    if not data:
                        continue
                    if data == DONE_MARKER:
                        break
                    try:
                        event = json.loads(data)
                    except json.JSONDecodeError:
                        skipped += 1
                        continue
                    delta = extract_delta(event, route.chunk_format)
                    if not delta:
                        continue

                    accumulated += delta
                    await _maybe_await(on_delta(self._update_for(accumulated, route)))
        except httpx.HTTPError as ex:
            raise StreamTransportError(
                f"Stream from {route.name} failed after {len(accumulated)} chars: {ex}",
                partial_text=accumulated,
            ) from ex
        except StreamTransportError as ex:
            ex.partial_text = accumulated
            raise

        logger.debug(f"Stream complete: backend={route.name}, chars={len(accumulated)}, skipped_lines={skipped}")
        return accumulated

    @staticmethod
    def _update_for(accumulated: str, route: BackendRoute) -> StreamUpdate:
        if not route.supports_citation_mode:
            return StreamUpdate(text=accumulated, content=accumulated)
        split = extract_reasoning(accumulated)
        return StreamUpdate(
            text=accumulated,
            content=split.content,
            reasoning=split.reasoning,
            reasoning_complete=split.complete,
        )
