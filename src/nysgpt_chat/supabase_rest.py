from __future__ import annotations

from typing import Any

import httpx
from loguru import logger
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from nysgpt_chat.errors import LookupFailure, PersistenceFailure

_TIMEOUT_SECONDS = 30
_RETRYABLE_STATUS = {429, 502, 503, 504}


class _RetryableStatusError(Exception):
    def __init__(self, response: httpx.Response):
        self.response = response
        super().__init__(f"HTTP {response.status_code} from {response.request.url.path}")


def _on_retry(retry_state) -> None:
    attempt = retry_state.attempt_number
    wait = retry_state.next_action.sleep if retry_state.next_action else 0
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    reason = type(exc).__name__ if exc else "Unknown"
    logger.warning(f"Hosted store request failed ({reason}). Retrying in {wait:.1f}s (attempt {attempt})...")


def store_retry_kwargs(max_attempts: int) -> dict:
    return {
        "retry": retry_if_exception_type((httpx.TransportError, _RetryableStatusError)),
        "wait": wait_exponential(multiplier=0.5, min=0.5, max=8),
        "stop": stop_after_attempt(max(1, max_attempts)),
        "before_sleep": _on_retry,
        "reraise": True,
    }


def eq(value: object) -> str:
    return f"eq.{value}"


def neq(value: object) -> str:
    return f"neq.{value}"


def in_(values: list[str]) -> str:
    return "in.(" + ",".join(_quote(v) for v in values) + ")"


def not_in(values: list[str]) -> str:
    return "not." + in_(values)


def _quote(value: str) -> str:
    if any(ch in value for ch in ',()"'):
        escaped = value.replace('"', '\\"')
        return f'"{escaped}"'
    return value


class SupabaseRestClient:
    """Minimal PostgREST client for the hosted Supabase project."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        access_token: str | None = None,
        client: httpx.AsyncClient | None = None,
        max_attempts: int = 3,
        timeout_seconds: float = _TIMEOUT_SECONDS,
    ):
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._access_token = access_token or api_key
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)
        # Applied per request so a shared streaming client cannot lift the read limit.
        self._timeout = httpx.Timeout(timeout_seconds)
        self._owns_client = client is None
        self._retry_kwargs = store_retry_kwargs(max_attempts)

    @property
    def base_url(self) -> str:
        return self._base_url

    def auth_headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._access_token}",
            "apikey": self._api_key,
        }

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def select(
        self,
        table: str,
        *,
        columns: str = "*",
        filters: dict[str, str] | None = None,
        order: str | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        params: dict[str, str] = {"select": columns}
        params.update(filters or {})
        if order:
            params["order"] = order
        if limit is not None:
            params["limit"] = str(limit)
        try:
            response = await self._request("GET", table, params=params)
        except (httpx.HTTPError, _RetryableStatusError) as ex:
            raise LookupFailure(f"Select from {table} failed: {ex}") from ex
        if response.status_code >= 400:
            raise LookupFailure(f"Select from {table} failed: HTTP {response.status_code} {response.text[:200]}")
        data = response.json()
        if not isinstance(data, list):
            raise LookupFailure(f"Select from {table} returned {type(data).__name__}, expected a list")
        return [row for row in data if isinstance(row, dict)]

    async def insert(self, table: str, row: dict[str, Any], *, returning: str = "id") -> dict[str, Any]:
        try:
            response = await self._request(
                "POST",
                table,
                params={"select": returning},
                json=row,
                headers={"Prefer": "return=representation"},
            )
        except (httpx.HTTPError, _RetryableStatusError) as ex:
            raise PersistenceFailure(f"Insert into {table} failed: {ex}") from ex
        if response.status_code >= 400:
            raise PersistenceFailure(f"Insert into {table} failed: HTTP {response.status_code} {response.text[:200]}")
        data = response.json()
        if isinstance(data, list):
            data = data[0] if data else None
        if not isinstance(data, dict):
            raise PersistenceFailure(f"Insert into {table} returned no row")
        return data

    async def update(self, table: str, values: dict[str, Any], *, filters: dict[str, str]) -> int:
        try:
            response = await self._request(
                "PATCH",
                table,
                params=dict(filters),
                json=values,
                headers={"Prefer": "return=representation"},
            )
        except (httpx.HTTPError, _RetryableStatusError) as ex:
            raise PersistenceFailure(f"Update of {table} failed: {ex}") from ex
        if response.status_code >= 400:
            raise PersistenceFailure(f"Update of {table} failed: HTTP {response.status_code} {response.text[:200]}")
        data = response.json() if response.content else []
        return len(data) if isinstance(data, list) else 0

    async def _request(
        self,
        method: str,
        table: str,
        *,
        params: dict[str, str],
        json: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        url = f"{self._base_url}/rest/v1/{table}"
        request_headers = {**self.auth_headers(), "Accept": "application/json"}
        request_headers.update(headers or {})
        async for attempt in AsyncRetrying(**self._retry_kwargs):
            with attempt:
                logger.debug(f"Store request: {method} {table} params={params}")
                response = await self._client.request(
                    method, url, params=params, json=json, headers=request_headers, timeout=self._timeout
                )
                if response.status_code in _RETRYABLE_STATUS or response.status_code >= 500:
                    raise _RetryableStatusError(response)
                return response
        raise AssertionError("unreachable")
