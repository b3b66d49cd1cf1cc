# infra/__init__.py
from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Protocol

from infra.http_client import HttpClient, HttpError, AuthError
from infra.sse_client import SSEClient, SSEEvent, parse_sse_lines


# ========== abstract ports: services depend on these, not on the concrete clients ==========
class HttpPort(Protocol):
    async def get_public(self, path: str, params: Optional[Mapping[str, Any]] = None,
                         *, timeout_ms: Optional[int] = None) -> Dict[str, Any]: ...
    async def get_private(self, path: str, params: Optional[Mapping[str, Any]] = None,
                          *, timeout_ms: Optional[int] = None) -> Dict[str, Any]: ...


class SSEPort(Protocol):
    async def run_forever(self, on_event: Callable[[SSEEvent], Awaitable[None]]) -> None: ...
    async def stop(self) -> None: ...


__all__ = [
    "HttpClient", "HttpError", "AuthError",
    "SSEClient", "SSEEvent", "parse_sse_lines",
    "HttpPort", "SSEPort",
]
