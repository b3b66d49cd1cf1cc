# wallet/services/balance_sync.py
import asyncio
import contextlib
from typing import Any, Callable, List, Optional, Set

from utils.logger import get_logger
from utils.time import monotonic_ms
from ..config import SyncSettings
from ..enums import InvalidationSource, SyncState
from ..errors import WalletError
from ..event_bus import EventBus, TOPIC_INVALIDATE
from ..models import CacheEnvelope, PortfolioSnapshot, Profile

RenderAdapter = Callable[[Optional[float], PortfolioSnapshot], None]


class BalanceSyncController:
    """
    Decides when the cached balance can be trusted and pulls server truth
    into the PortfolioStore otherwise.

    - TTL cache: a SYNCED balance younger than ttl_ms is served without a request
    - single-flight: concurrent readers share one in-flight fetch
    - fail-open: a failed fetch keeps serving the last good balance (state STALE)
    - epoch guard: results of fetches started before clear_all() are dropped
    """

    def __init__(self,
                 account_service,
                 store,
                 session,
                 *,
                 settings: Optional[SyncSettings] = None,
                 bus: Optional[EventBus] = None,
                 clock: Optional[Callable[[], int]] = None,
                 logger=None) -> None:
        self._account = account_service
        self._store = store
        self._session = session
        self._settings = settings or SyncSettings()
        self._bus = bus
        self._clock = clock or monotonic_ms
        self.log = get_logger("BalanceSync", logger)

        self._state = SyncState.UNINITIALIZED
        self._envelope = CacheEnvelope()
        self._epoch = 0
        self._inflight: Optional[asyncio.Task] = None
        self._poll_task: Optional[asyncio.Task] = None
        self._price_task: Optional[asyncio.Task] = None
        self._pending: Set[asyncio.Task] = set()
        self._adapters: List[RenderAdapter] = []

        if bus is not None:
            bus.subscribe(TOPIC_INVALIDATE, self._on_invalidate_event)

    # ---- state --------------------------------------------------------------------
    def _expire_if_needed(self) -> None:
        if self._state is SyncState.SYNCED and not self._envelope.is_fresh(self._clock(), self._settings.ttl_ms):
            self._state = SyncState.STALE

    @property
    def state(self) -> SyncState:
        self._expire_if_needed()
        return self._state

    @property
    def envelope(self) -> CacheEnvelope:
        return CacheEnvelope(self._envelope.cached_balance, self._envelope.last_sync_ms)

    @property
    def is_polling(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    # ---- reads --------------------------------------------------------------------
    async def get_balance(self) -> Optional[float]:
        """Cached balance within TTL, otherwise a (shared) fetch. None means unknown, not zero."""
        if not self._session.is_authenticated():
            self.log.debug("not authenticated, balance unknown")
            return None
        self._expire_if_needed()
        if self._state is SyncState.SYNCED:
            self.log.debug(f"using cached balance {self._envelope.cached_balance}")
            return self._envelope.cached_balance
        return await self._sync()

    async def refresh_balance(self) -> Optional[float]:
        """
        Drop the cache and fetch. A fetch already in flight started before this
        invalidation, so it is allowed to settle and one follow-up fetch is made;
        concurrent refreshes share that follow-up.
        """
        if not self._session.is_authenticated():
            self.log.debug("refresh skipped, not authenticated")
            return None
        self.invalidate()
        pending = self._inflight
        if pending is not None and not pending.done():
            epoch = self._epoch
            await asyncio.wait([pending])
            if epoch != self._epoch or not self._session.is_authenticated():
                return None
        return await self._sync()

    async def initialize(self) -> Optional[float]:
        self.log.info("initializing")
        return await self.refresh_balance()

    def invalidate(self) -> None:
        self._envelope.last_sync_ms = None
        if self._state is SyncState.SYNCED:
            self._state = SyncState.STALE

    # ---- fetch --------------------------------------------------------------------
    async def _sync(self) -> Optional[float]:
        task = self._inflight
        if task is None or task.done():
            self._state = SyncState.SYNCING
            task = asyncio.get_running_loop().create_task(self._fetch(self._epoch))
            self._inflight = task
        # shield: a cancelled reader must not cancel the fetch other readers share
        return await asyncio.shield(task)

    async def _fetch(self, epoch: int) -> Optional[float]:
        try:
            profile = await asyncio.wait_for(self._account.fetch_profile(),
                                             timeout=self._settings.http_timeout_s)
        except (WalletError, asyncio.TimeoutError) as e:
            return self._on_failure(epoch, e)
        except asyncio.CancelledError:
            raise
        except Exception:
            if epoch == self._epoch:
                self._state = SyncState.STALE
            raise
        finally:
            if self._inflight is asyncio.current_task():
                self._inflight = None
        return self._apply(epoch, profile)

    def _on_failure(self, epoch: int, err: BaseException) -> Optional[float]:
        if epoch != self._epoch:
            self.log.info(f"fetch from a cleared session failed, ignored ({err!r})")
            return None
        self._state = SyncState.STALE
        cached = self._envelope.cached_balance
        self.log.warning(f"balance fetch failed: {type(err).__name__}: {err} "
                         f"(serving cached={cached})")
        return cached

    def _apply(self, epoch: int, profile: Profile) -> Optional[float]:
        if epoch != self._epoch or not self._session.is_authenticated():
            self.log.info("fetch resolved after clear_all, result discarded")
            return None

        self._envelope.cached_balance = profile.balance
        self._envelope.last_sync_ms = self._clock()
        self._state = SyncState.SYNCED
        self._store.set_balance(profile.balance)

        if self._settings.sync_holdings:
            if profile.portfolio_value is not None:
                self._store.set_total_value_hint(profile.portfolio_value)
            if profile.holdings is not None and self._holdings_changed(profile.holdings):
                self._store.set_holdings(profile.holdings)
                if profile.holdings:
                    self._schedule_price_refresh()

        self.log.debug(f"fetched balance {profile.balance}")
        return profile.balance

    def _holdings_changed(self, incoming: List[dict]) -> bool:
        current = {h.symbol: h.amount for h in self._store.get_holdings()}
        wanted = {str(it.get("symbol", "")).upper(): float(it.get("amount") or 0) for it in incoming}
        return current != wanted

    def _schedule_price_refresh(self) -> None:
        if self._price_task is not None and not self._price_task.done():
            return
        self._price_task = asyncio.get_running_loop().create_task(self._store.refresh_prices())

    # ---- invalidation consumers ---------------------------------------------------
    async def on_invalidate(self, source: InvalidationSource = InvalidationSource.MANUAL) -> Optional[float]:
        """Single consumer for every invalidation producer (poll timer, push feed, UI)."""
        self.log.debug(f"invalidated by {source.value}")
        balance = await self.refresh_balance()
        self._render(balance)
        return balance

    def _on_invalidate_event(self, payload: Any) -> None:
        raw = (payload or {}).get("source") if isinstance(payload, dict) else None
        try:
            source = InvalidationSource(raw)
        except ValueError:
            source = InvalidationSource.MANUAL
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.log.warning("invalidation outside an event loop, ignored")
            return
        task = loop.create_task(self.on_invalidate(source))
        self._pending.add(task)
        task.add_done_callback(self._on_pending_done)

    def _on_pending_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.log.opt(exception=exc).error("invalidation refresh failed")

    # ---- render adapters ----------------------------------------------------------
    def register_adapter(self, adapter: RenderAdapter) -> None:
        if adapter not in self._adapters:
            self._adapters.append(adapter)

    def unregister_adapter(self, adapter: RenderAdapter) -> None:
        if adapter in self._adapters:
            self._adapters.remove(adapter)

    def _render(self, balance: Optional[float]) -> None:
        if not self._adapters:
            return
        snap = self._store.snapshot()
        for adapter in list(self._adapters):
            try:
                adapter(balance, snap)
            except Exception:
                self.log.exception(f"render adapter {getattr(adapter, '__name__', adapter)!r} failed")

    # ---- background polling -------------------------------------------------------
    def start_background_sync(self, interval_ms: Optional[int] = None) -> bool:
        """Start the poll loop. Returns False (and does nothing) if it is already running."""
        if self.is_polling:
            self.log.debug("background sync already running")
            return False
        interval = int(interval_ms or self._settings.poll_interval_ms)
        self.log.info(f"starting background sync every {interval} ms")
        self._poll_task = asyncio.get_running_loop().create_task(self._poll_loop(interval))
        return True

    async def stop_background_sync(self) -> None:
        task, self._poll_task = self._poll_task, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
            self.log.info("background sync stopped")

    async def _poll_loop(self, interval_ms: int) -> None:
        failures = 0
        while True:
            delay = interval_ms * (2 ** min(failures, 16))
            await asyncio.sleep(min(delay, max(interval_ms, self._settings.backoff_cap_ms)) / 1000.0)
            try:
                await self.on_invalidate(InvalidationSource.POLL)
            except asyncio.CancelledError:
                raise
            except Exception:
                self.log.exception("poll tick failed")
            failures = 0 if self._state is SyncState.SYNCED else failures + 1

    # ---- session end --------------------------------------------------------------
    def clear_all(self) -> None:
        """Forget everything for this session; late fetch results are ignored."""
        self._epoch += 1
        self._state = SyncState.UNINITIALIZED
        self._envelope = CacheEnvelope()
        self._inflight = None
        if self._price_task is not None and not self._price_task.done():
            self._price_task.cancel()
        self._price_task = None
        self._store.clear_all()
        self.log.info("cleared balance data")

    async def close(self) -> None:
        await self.stop_background_sync()
        for task in list(self._pending):
            task.cancel()
        if self._price_task is not None and not self._price_task.done():
            self._price_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._price_task
