# infra/http_client.py
from __future__ import annotations

import aiohttp
import asyncio
import json
import random
from typing import Any, Callable, Dict, Mapping, Optional
from urllib.parse import urlencode

from utils.logger import get_logger


class HttpError(Exception):
    """Non-2xx status, undecodable body, or a network failure (status 599)."""

    def __init__(self, status: int, message: str) -> None:
        self.status = status
        self.message = message
        super().__init__(f"HTTP {status}: {message}")


class AuthError(HttpError):
    """401/403 from the server, or a private call attempted without credentials."""


def _build_query(params: Optional[Mapping[str, Any]]) -> str:
    if not params:
        return ""
    return "?" + urlencode(params, doseq=True, safe=":/,")


class HttpClient:
    def __init__(self,
                 cfg: Mapping[str, Any],
                 session: Optional[aiohttp.ClientSession] = None,
                 logger=None,
                 *,
                 auth=None,
                 timeout_ms: Optional[int] = None,
                 ) -> None:
        self.cfg = cfg
        self.log = get_logger("Http", logger)
        self.session = session
        self._owned_session = session is None
        # anything exposing get_auth_header() -> Mapping[str, str]
        self.auth = auth

        api_cfg = cfg.get("api", {}) or {}
        self.base_url = str(api_cfg.get("base_url") or "http://localhost:5001").rstrip("/")

        # timeouts & retries
        timeouts_cfg = cfg.get("timeouts", {}) or {}
        retries_cfg = cfg.get("retries", {}) or {}
        self.timeout_ms = int(timeout_ms or timeouts_cfg.get("rest_ms", 10000))
        self.max_attempts = max(1, int(retries_cfg.get("rest_max_attempts", 2)))
        self.backoff_ms = int(retries_cfg.get("backoff_ms", 500))

        self.log.debug(f"HttpClient init base_url={self.base_url} timeout_ms={self.timeout_ms} "
                       f"max_attempts={self.max_attempts}")

    # ---- async context manager ----------------------------------------------------
    async def __aenter__(self) -> "HttpClient":
        self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self.session is None or (self._owned_session and self.session.closed):
            timeout = aiohttp.ClientTimeout(total=self.timeout_ms / 1000.0)
            self.session = aiohttp.ClientSession(timeout=timeout, raise_for_status=False, trust_env=True)
            self._owned_session = True
        return self.session

    async def close(self) -> None:
        if self._owned_session and self.session is not None and not self.session.closed:
            await self.session.close()

    def _auth_headers(self) -> Dict[str, str]:
        header = dict(self.auth.get_auth_header()) if self.auth is not None else {}
        if not header:
            raise AuthError(401, "missing credentials for private request")
        return header

    @staticmethod
    def _decode(status: int, text: str) -> Dict[str, Any]:
        if not text:
            return {}
        try:
            payload = json.loads(text)
        except json.JSONDecodeError:
            raise HttpError(status, f"invalid json: {text[:256]}")
        if not isinstance(payload, dict):
            raise HttpError(status, f"expected a JSON object, got {type(payload).__name__}")
        return payload

    async def request(
            self,
            method: str,
            path: str,
            *,
            params: Optional[Mapping[str, Any]] = None,
            auth: bool = False,
            headers: Optional[Mapping[str, str]] = None,
            timeout_ms: Optional[int] = None,
            retry: bool = True,
        ) -> Dict[str, Any]:
        """
        Single request entry point; the body must be a JSON object.
        - path: must start with "/api/"
        - auth: attach the session's bearer header (AuthError when there is none)
        - timeout_ms: per-call override of the client default
        - retry: backoff on 429/5xx and network errors, up to rest_max_attempts
        """
        assert path.startswith("/api/"), "path must start with /api/"
        url = self.base_url + path + _build_query(params)
        req_headers = {"Accept": "application/json"}
        if headers:
            req_headers.update(headers)
        if auth:
            req_headers.update(self._auth_headers())

        session = self._ensure_session()
        timeout = aiohttp.ClientTimeout(total=(timeout_ms or self.timeout_ms) / 1000.0)
        attempts = self.max_attempts if retry else 1

        for attempt in range(1, attempts + 1):
            last = attempt == attempts
            try:
                async with session.request(method.upper(), url, headers=req_headers, timeout=timeout) as resp:
                    status, text = resp.status, await resp.text()
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                if last:
                    raise HttpError(599, f"Network error: {e!r}") from e
                self.log.warning(f"Network error: {e!r} on {method} {path}, retrying ({attempt}/{attempts})")
                await self._sleep_backoff(attempt)
                continue

            if status in (401, 403):
                raise AuthError(status, text[:256])
            if status == 429 or status >= 500:
                if last:
                    raise HttpError(status, text[:256])
                self.log.warning(f"HTTP {status} on {method} {path}, retrying ({attempt}/{attempts})")
                await self._sleep_backoff(attempt)
                continue
            if status >= 400:
                raise HttpError(status, text[:256])
            return self._decode(status, text)

        raise HttpError(599, "no attempt made")

    async def _sleep_backoff(self, attempt: int) -> None:
        base = self.backoff_ms * (2 ** (attempt - 1))
        jitter = random.randint(0, self.backoff_ms)
        await asyncio.sleep((base + jitter) / 1000.0)

    # ---- convenience wrappers -----------------------------------------------------
    async def get_public(self, path: str, params: Optional[Mapping[str, Any]] = None,
                         *, timeout_ms: Optional[int] = None) -> Dict[str, Any]:
        return await self.request("GET", path, params=params, auth=False, timeout_ms=timeout_ms)

    async def get_private(self, path: str, params: Optional[Mapping[str, Any]] = None,
                          *, timeout_ms: Optional[int] = None) -> Dict[str, Any]:
        return await self.request("GET", path, params=params, auth=True, timeout_ms=timeout_ms)

    def auth_header_provider(self) -> Callable[[], Dict[str, str]]:
        """Header callback for streaming clients sharing this client's credentials."""
        return lambda: dict(self.auth.get_auth_header()) if self.auth is not None else {}
