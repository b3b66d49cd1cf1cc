# wallet/app/wallet_api.py
from typing import Any, Mapping, Optional

from infra.http_client import HttpClient
from infra.sse_client import SSEClient
from utils.config import get_in
from utils.logger import get_logger
from ..config import SyncSettings
from ..event_bus import EventBus
from ..models import PortfolioSnapshot
from ..services.account_service import AccountService
from ..services.balance_sync import BalanceSyncController, RenderAdapter
from ..services.endpoints import Endpoints, make_endpoints_from_cfg
from ..services.price_service import PriceService
from ..services.push_feed_service import PushFeedService
from ..stores.kv_store import InMemoryKVStore, JsonFileKVStore, KeyValueStore
from ..stores.portfolio_store import PortfolioStore


class WalletAPI:
    """
    Application-facing wallet API for one session.
    Owns the store, the sync controller and the push feed; UI code talks to this.
    """

    def __init__(self,
                 session,
                 store: PortfolioStore,
                 controller: BalanceSyncController,
                 *,
                 push_feed: Optional[PushFeedService] = None,
                 http: Optional[HttpClient] = None,
                 settings: Optional[SyncSettings] = None,
                 logger=None) -> None:
        self.session = session
        self.store = store
        self.controller = controller
        self.push_feed = push_feed
        self.http = http
        self.settings = settings or SyncSettings()
        self.log = get_logger("Wallet", logger)
        self._started = False

    @classmethod
    def from_cfg(cls,
                 cfg: Mapping[str, Any],
                 session,
                 *,
                 kv: Optional[KeyValueStore] = None,
                 logger=None) -> "WalletAPI":
        """Wire HTTP client, services, store, controller and push feed from a config dict."""
        log = get_logger("Wallet", logger)
        settings = SyncSettings.from_cfg(cfg)
        endpoints: Endpoints = make_endpoints_from_cfg(cfg)
        http = HttpClient(cfg, logger=log, auth=session, timeout_ms=int(settings.http_timeout_s * 1000))

        if kv is None:
            path = get_in(cfg, "storage.path")
            kv = JsonFileKVStore(path) if path else InMemoryKVStore()

        bus = EventBus()
        prices = PriceService(http, endpoints, symbol_map=get_in(cfg, "prices.symbol_map"),
                              timeout_s=settings.price_timeout_s, logger=log)
        store = PortfolioStore(kv, prices, bus=bus, logger=log)
        account = AccountService(http, endpoints, timeout_s=settings.http_timeout_s, logger=log)
        controller = BalanceSyncController(account, store, session, settings=settings, bus=bus, logger=log)

        push_feed = None
        if settings.push_enabled:
            sse = SSEClient(endpoints.stream_url(),
                            params_provider=lambda: {"userId": session.user_id} if session.user_id else {},
                            headers_provider=http.auth_header_provider(),
                            name="updates")
            push_feed = PushFeedService(sse, bus, logger=log)

        return cls(session, store, controller, push_feed=push_feed, http=http, settings=settings, logger=log)

    # ---- lifecycle ----------------------------------------------------------------
    async def start(self) -> Optional[float]:
        """Restore persisted state, fetch the balance, then start polling and push."""
        if not self.session.is_authenticated():
            self.log.warning("start() without a session, nothing to sync")
            return None
        self.store.load()
        balance = await self.controller.initialize()
        self.controller.start_background_sync(self.settings.poll_interval_ms)
        if self.push_feed is not None and self.session.user_id:
            await self.push_feed.start()
        self._started = True
        return balance

    async def logout(self) -> None:
        """Stop every producer, wipe cached state, then drop the session."""
        await self.controller.stop_background_sync()
        if self.push_feed is not None:
            await self.push_feed.stop()
        self.controller.clear_all()
        self.session.logout()
        self._started = False
        self.log.info("logged out, cached state cleared")

    async def close(self) -> None:
        await self.controller.close()
        if self.push_feed is not None:
            await self.push_feed.stop()
        if self.http is not None:
            await self.http.close()

    async def __aenter__(self) -> "WalletAPI":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # ---- pass-throughs ------------------------------------------------------------
    async def balance(self) -> Optional[float]:
        return await self.controller.get_balance()

    async def refresh(self) -> Optional[float]:
        return await self.controller.refresh_balance()

    async def refresh_prices(self) -> bool:
        return await self.store.refresh_prices()

    def snapshot(self) -> PortfolioSnapshot:
        return self.store.snapshot()

    def add_render_adapter(self, adapter: RenderAdapter) -> None:
        self.controller.register_adapter(adapter)
