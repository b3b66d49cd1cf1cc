# wallet/models.py
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple


@dataclass
class AssetHolding:
    symbol: str
    name: str
    amount: float = 0.0
    unit_price: float = 0.0          # last known market price, may be stale
    value: float = 0.0               # amount * unit_price after a price refresh
    allocation: float = 0.0          # value / holdings total, 0 when total is 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "name": self.name,
            "amount": self.amount,
            "price": self.unit_price,
            "value": self.value,
            "allocation": self.allocation,
        }


@dataclass(frozen=True)
class PortfolioSnapshot:
    balance: float
    holdings: Tuple[AssetHolding, ...]
    holdings_value: float            # assets only (falls back to the server hint)
    portfolio_total: float           # balance + holdings_value


@dataclass
class CacheEnvelope:
    cached_balance: Optional[float] = None
    last_sync_ms: Optional[int] = None

    def is_fresh(self, now_ms: int, ttl_ms: int) -> bool:
        if self.cached_balance is None or self.last_sync_ms is None:
            return False
        return (now_ms - self.last_sync_ms) < ttl_ms


@dataclass
class Profile:
    """Decoded /auth/me payload, independent of the envelope shape it came in."""
    balance: float
    portfolio_value: Optional[float] = None
    user_id: Optional[str] = None
    # None when the response carried no portfolio object; [] when it did but held nothing
    holdings: Optional[List[Dict[str, Any]]] = None
