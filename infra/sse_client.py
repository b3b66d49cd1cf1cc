# infra/sse_client.py
import asyncio
import contextlib
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, Iterator, Mapping, Optional

import aiohttp

from utils.logger import get_logger

logger = get_logger("SSE")


@dataclass
class SSEEvent:
    event: str = "message"
    data: str = ""
    id: Optional[str] = None


def parse_sse_lines(lines: Iterable[str]) -> Iterator[SSEEvent]:
    """
    Incremental text/event-stream parser.

    A blank line dispatches the buffered event; ``:`` lines are comments;
    multiple ``data:`` lines are joined with ``\\n``. Buffers that never saw
    a field (e.g. consecutive blank lines) are not dispatched.
    """
    name: Optional[str] = None
    data: list[str] = []
    ev_id: Optional[str] = None
    seen = False
    for raw in lines:
        line = raw.rstrip("\r\n")
        if not line:
            if seen:
                yield SSEEvent(event=name or "message", data="\n".join(data), id=ev_id)
            name, data, ev_id, seen = None, [], None, False
            continue
        if line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "event":
            name = value
        elif field == "data":
            data.append(value)
        elif field == "id":
            ev_id = value
        else:
            continue
        seen = True


class SSEClient:
    def __init__(self,
        url: str,
        *,
        params: Optional[Mapping[str, Any]] = None,
        headers_provider: Optional[Callable[[], Dict[str, str]]] = None,
        params_provider: Optional[Callable[[], Mapping[str, Any]]] = None,
        session: Optional[aiohttp.ClientSession] = None,
        reconnect_cap_s: float = 30.0,
        name: str = "",
    ):
        self.url = url
        self.params = dict(params or {})
        self.headers_provider = headers_provider
        # evaluated on every connect
        self.params_provider = params_provider
        self.reconnect_cap_s = reconnect_cap_s
        self.name = name or "sse"
        self._session = session
        self._owned_session = session is None
        self._resp: Optional[aiohttp.ClientResponse] = None
        self._stop = False

        logger.info(f"SSEClient {self.name} init url={url} reconnect_cap_s={reconnect_cap_s}")

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or (self._owned_session and self._session.closed):
            # no total timeout: the stream is expected to stay open
            timeout = aiohttp.ClientTimeout(total=None, sock_connect=10)
            self._session = aiohttp.ClientSession(timeout=timeout, trust_env=True)
            self._owned_session = True
        return self._session

    async def listen_once(self, on_event: Callable[[SSEEvent], Awaitable[None]]) -> int:
        """Open one stream and dispatch events until the server closes it. Returns events seen."""
        headers = {"Accept": "text/event-stream", "Cache-Control": "no-cache"}
        if self.headers_provider:
            headers.update(self.headers_provider())
        params = dict(self.params)
        if self.params_provider:
            params.update(self.params_provider())
        session = self._ensure_session()
        count = 0
        async with session.get(self.url, params=params or None, headers=headers) as resp:
            if resp.status >= 400:
                raise aiohttp.ClientResponseError(
                    resp.request_info, resp.history, status=resp.status, message="stream rejected"
                )
            self._resp = resp
            try:
                pending: list[str] = []
                async for raw in resp.content:
                    line = raw.decode("utf-8", errors="replace")
                    pending.append(line)
                    if line.strip("\r\n"):
                        continue
                    for ev in parse_sse_lines(pending):
                        count += 1
                        await on_event(ev)
                    pending = []
                    if self._stop:
                        break
                # a final event without the trailing blank line is still delivered
                if pending and not self._stop:
                    for ev in parse_sse_lines(pending + [""]):
                        count += 1
                        await on_event(ev)
            finally:
                self._resp = None
        return count

    async def run_forever(self, on_event: Callable[[SSEEvent], Awaitable[None]]) -> None:
        self._stop = False
        retry = 0
        while not self._stop:
            try:
                logger.info(f"SSE {self.name} connect: connecting to {self.url} (retry={retry})")
                seen = await self.listen_once(on_event)
                logger.info(f"SSE {self.name} stream ended after {seen} events")
                if seen:
                    retry = 0
            except asyncio.CancelledError:
                raise
            except (aiohttp.ClientError, asyncio.TimeoutError, ConnectionResetError) as e:
                logger.warning(f"SSE {self.name} connection error: {type(e).__name__} ({e})")
            except Exception:
                logger.exception(f"SSE {self.name} loop: exception")
            if self._stop:
                break
            backoff = min(self.reconnect_cap_s, 2 ** min(retry, 6))
            backoff *= random.uniform(0.8, 1.3)
            retry += 1
            await asyncio.sleep(backoff)
        logger.info(f"SSE {self.name} close: stream loop finished")

    async def stop(self) -> None:
        self._stop = True
        if self._resp is not None:
            with contextlib.suppress(Exception):
                self._resp.close()
        if self._owned_session and self._session is not None and not self._session.closed:
            await self._session.close()
        logger.info(f"SSE {self.name} stop: stream closed")
