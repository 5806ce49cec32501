import asyncio
import json
import shutil
import unittest
from collections.abc import Callable
from pathlib import Path
from uuid import uuid4

import httpx

from nysgpt_chat.models import BillRecord, ContractRecord
from nysgpt_chat.storage import SqliteSessionStore, SqliteStore

PROJECT_ROOT = Path(__file__).resolve().parents[1]
BASE_URL = "https://project.supabase.test"


def openai_frames(*deltas: str, done: bool = True) -> bytes:
    lines = [f"data: {json.dumps({'choices': [{'delta': {'content': d}}]})}\n\n" for d in deltas]
    if done:
        lines.append("data: [DONE]\n\n")
    return "".join(lines).encode()


def anthropic_frames(*deltas: str, done: bool = True) -> bytes:
    lines = [
        f"data: {json.dumps({'type': 'content_block_delta', 'delta': {'type': 'text_delta', 'text': d}})}\n\n"
        for d in deltas
    ]
    if done:
        lines.append("data: [DONE]\n\n")
    return "".join(lines).encode()


class ChunkedStream(httpx.AsyncByteStream):
    """Yields the given chunks, then fails or hangs if asked to."""

    def __init__(self, chunks: list[bytes], *, fail_after: bool = False, hang_after: bool = False):
        self._chunks = chunks
        self._fail_after = fail_after
        self._hang_after = hang_after
        self.closed = False

    async def __aiter__(self):
        for chunk in self._chunks:
            yield chunk
        if self._fail_after:
            raise httpx.ReadError("connection reset by peer")
        if self._hang_after:
            await asyncio.Event().wait()

    async def aclose(self) -> None:
        self.closed = True


class StreamBackend:
    """MockTransport handler that records requests and replays one canned stream per call."""

    def __init__(self, *streams: bytes | ChunkedStream, status_code: int = 200):
        self._streams = list(streams)
        self._status_code = status_code
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        body = self._streams.pop(0) if self._streams else openai_frames()
        headers = {"content-type": "text/event-stream"}
        if isinstance(body, ChunkedStream):
            return httpx.Response(self._status_code, headers=headers, stream=body)
        return httpx.Response(self._status_code, headers=headers, content=body)

    def payloads(self) -> list[dict]:
        return [json.loads(r.content) for r in self.requests]


def mock_client(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class FakeLookup:
    def __init__(
        self,
        bills: list[BillRecord] | None = None,
        contracts: list[ContractRecord] | None = None,
        *,
        fail: bool = False,
    ):
        self.bills = bills or []
        self.contracts = contracts or []
        self.fail = fail
        self.calls: list[tuple] = []
        self.gate: asyncio.Event | None = None

    async def fetch_bills_by_codes(self, codes: list[str]) -> dict[str, BillRecord]:
        self.calls.append(("codes", tuple(codes)))
        if self.gate is not None:
            await self.gate.wait()
        if self.fail:
            raise RuntimeError("lookup unavailable")
        by_number = {b.bill_number.upper(): b for b in self.bills}
        return {code: by_number[code] for code in codes if code in by_number}

    async def fetch_bills_by_group(self, group_key: str, exclude_code: str, limit: int) -> list[BillRecord]:
        self.calls.append(("group", group_key, exclude_code, limit))
        if self.fail:
            raise RuntimeError("lookup unavailable")
        matches = [b for b in self.bills if b.committee == group_key and b.bill_number != exclude_code]
        matches.sort(key=lambda b: b.status_date or "", reverse=True)
        return matches[:limit]

    async def fetch_contract(self, contract_number: str) -> ContractRecord | None:
        self.calls.append(("contract", contract_number))
        if self.fail:
            raise RuntimeError("lookup unavailable")
        return next((c for c in self.contracts if c.contract_number == contract_number), None)

    async def fetch_contracts_by(
        self,
        column: str,
        value: str,
        exclude_number: str,
        limit: int,
    ) -> list[ContractRecord]:
        self.calls.append(("contracts_by", column, value, exclude_number, limit))
        if self.fail:
            raise RuntimeError("lookup unavailable")
        matches = [
            c for c in self.contracts if getattr(c, column) == value and c.contract_number != exclude_number
        ]
        return matches[:limit]


class SqliteStoreTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp_dir = PROJECT_ROOT / ".test-artifacts" / f"{self.__class__.__name__.lower()}-{uuid4().hex}"
        self._tmp_dir.mkdir(parents=True, exist_ok=True)
        self._store = SqliteStore(str(self._tmp_dir / "sessions.db"))
        self._sessions = SqliteSessionStore(self._store)

    def tearDown(self) -> None:
        self._store.close()
        shutil.rmtree(self._tmp_dir, ignore_errors=True)
