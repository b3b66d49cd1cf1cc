# wallet/services/__init__.py
from wallet.services.endpoints import Endpoints, make_endpoints_from_cfg
from wallet.services.account_service import AccountService, decode_profile
from wallet.services.price_service import PriceService, DEFAULT_SYMBOL_MAP
from wallet.services.balance_sync import BalanceSyncController
from wallet.services.push_feed_service import PushFeedService

__all__ = [
    "Endpoints", "make_endpoints_from_cfg",
    "AccountService", "decode_profile",
    "PriceService", "DEFAULT_SYMBOL_MAP",
    "BalanceSyncController", "PushFeedService",
]
