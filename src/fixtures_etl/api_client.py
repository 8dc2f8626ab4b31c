from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from .errors import TransportError
from .logging_utils import log_json

API_KEY_HEADER = "x-apisports-key"


@dataclass
class ApiConfig:
    base_url: str
    timeout_seconds: float = 20
    rate_limit_per_sec: int = 5
    fixtures_path: str = "/fixtures"


class RateLimiter:
    def __init__(self, rate_per_sec: int) -> None:
        self.rate_per_sec = max(1, rate_per_sec)
        self._lock = asyncio.Lock()
        self._tokens = self.rate_per_sec
        self._last = time.monotonic()

    async def acquire(self) -> None:
        while True:
            async with self._lock:
                now = time.monotonic()
                refill = int((now - self._last) * self.rate_per_sec)
                if refill > 0:
                    self._tokens = min(self.rate_per_sec, self._tokens + refill)
                    self._last = now
                if self._tokens > 0:
                    self._tokens -= 1
                    return
            await asyncio.sleep(max(0.01, 1 / self.rate_per_sec))


class ApiClient:
    """Thin async client for the API-Football v3 REST API.

    Requests are not retried here: a failed invocation is retried by calling
    the pipeline again, which is safe because every write is an upsert.
    """

    def __init__(self, api_key: str, cfg: ApiConfig, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self.cfg = cfg
        self._limiter = RateLimiter(cfg.rate_limit_per_sec)
        self._client = httpx.AsyncClient(
            base_url=cfg.base_url,
            timeout=cfg.timeout_seconds,
            headers={API_KEY_HEADER: api_key, "Accept": "application/json"},
            transport=transport,
        )
        self._logger = None

    @classmethod
    def from_config(cls, api_key: str, raw: Dict[str, Any], transport: Optional[httpx.AsyncBaseTransport] = None) -> "ApiClient":
        fields = {k: raw[k] for k in ("base_url", "timeout_seconds", "rate_limit_per_sec", "fixtures_path") if k in raw}
        return cls(api_key, ApiConfig(**fields), transport=transport)

    def set_logger(self, logger) -> None:
        self._logger = logger

    async def close(self) -> None:
        await self._client.aclose()

    def build_url(self, path: str, params: Dict[str, Any]) -> str:
        return str(self._client.build_request("GET", path, params=params).url)

    async def get_page(self, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        """GET one page and decode its JSON envelope.

        Raises TransportError for connection failures, timeouts, non-2xx
        statuses and bodies that are not a JSON object.
        """
        await self._limiter.acquire()
        url = self.build_url(path, params)
        if self._logger:
            log_json(self._logger, "http_request_start", path=path, params=params)
        try:
            resp = await self._client.get(path, params=params)
        except httpx.TimeoutException as exc:
            raise TransportError(f"Timed out calling upstream: {exc}", url=url) from exc
        except httpx.RequestError as exc:
            raise TransportError(f"Upstream request failed: {exc}", url=url) from exc
        if not resp.is_success:
            if self._logger:
                log_json(self._logger, "http_error", path=path, status=resp.status_code)
            raise TransportError(
                f"API-Football error {resp.status_code}: {resp.text}",
                status_code=resp.status_code,
                body=resp.text,
                url=url,
            )
        try:
            body = resp.json()
        except ValueError as exc:
            raise TransportError(
                f"Upstream returned invalid JSON: {exc}", status_code=resp.status_code, body=resp.text, url=url
            ) from exc
        if not isinstance(body, dict):
            raise TransportError("Upstream envelope is not an object", status_code=resp.status_code, body=resp.text, url=url)
        return body
