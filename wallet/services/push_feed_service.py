# wallet/services/push_feed_service.py
import asyncio
import contextlib
from typing import Optional

from infra.sse_client import SSEEvent
from utils.logger import get_logger
from utils.time import utc_ms
from ..enums import InvalidationSource
from ..event_bus import EventBus, TOPIC_INVALIDATE

PROFILE_UPDATE = "profile_update"


class PushFeedService:
    """
    Server-sent-events listener: every `profile_update` for the current user
    becomes a balance.invalidate event on the bus. The payload is not trusted
    for the balance itself; receipt alone triggers a refetch.
    """

    def __init__(self, sse_client, bus: EventBus, *, logger=None) -> None:
        self._sse = sse_client
        self._bus = bus
        self._task: Optional[asyncio.Task] = None
        self.log = get_logger("PushFeed", logger)
        self.received = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.running:
            return
        self.log.info("starting")
        self._task = asyncio.get_running_loop().create_task(self._sse.run_forever(self._on_event))

    async def stop(self) -> None:
        await self._sse.stop()
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self.log.info("stopped")

    async def _on_event(self, ev: SSEEvent) -> None:
        if ev.event != PROFILE_UPDATE:
            self.log.debug(f"ignoring event {ev.event!r}")
            return
        self.received += 1
        self.log.info("profile_update received")
        self._bus.publish(TOPIC_INVALIDATE, {"source": InvalidationSource.PUSH.value, "ts": utc_ms()})
