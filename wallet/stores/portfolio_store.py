# wallet/stores/portfolio_store.py
import json
import math
from dataclasses import replace
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol

from utils.logger import get_logger
from utils.time import utc_ms
from ..event_bus import EventBus, TOPIC_BALANCE, TOPIC_PORTFOLIO
from ..models import AssetHolding, PortfolioSnapshot
from .kv_store import KeyValueStore, PORTFOLIO_KEY, BALANCE_KEY, TOTAL_KEY


class PriceLookup(Protocol):
    async def get_prices(self, symbols: Iterable[str]) -> Dict[str, float]: ...


def _num(x: Any) -> float:
    """Finite non-negative float, 0.0 for anything else."""
    if isinstance(x, bool) or x is None:
        return 0.0
    try:
        v = float(str(x).strip()) if isinstance(x, str) else float(x)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(v) or v < 0:
        return 0.0
    return v


def _signed_num(x: Any) -> float:
    """Finite float (sign kept), 0.0 for anything else. Balances may go negative."""
    if isinstance(x, bool) or x is None:
        return 0.0
    try:
        v = float(str(x).strip()) if isinstance(x, str) else float(x)
    except (TypeError, ValueError):
        return 0.0
    return v if math.isfinite(v) else 0.0


def _field(item: Any, *names: str) -> Any:
    for n in names:
        if isinstance(item, Mapping):
            if n in item:
                return item[n]
        elif hasattr(item, n):
            return getattr(item, n)
    return None


class PortfolioStore:
    """
    Displayed balance, holdings and valuation for one session.

    Persisted to a key-value store so a reload shows the last known state,
    but never authoritative: server values overwrite it on every sync.
    No method raises on malformed input; bad numbers become 0.
    """

    def __init__(self,
                 kv: KeyValueStore,
                 prices: PriceLookup,
                 *,
                 bus: Optional[EventBus] = None,
                 logger=None) -> None:
        self._kv = kv
        self._prices = prices
        self._bus = bus
        self.log = get_logger("Portfolio", logger)

        self._balance: float = 0.0
        self._holdings: List[AssetHolding] = []
        self._total_hint: float = 0.0
        # bumped by clear_all/set_holdings so an in-flight price refresh can tell it lost the race
        self._generation: int = 0

    # ---- persistence --------------------------------------------------------------
    def load(self) -> None:
        """Restore the last persisted state; unreadable entries keep the defaults."""
        raw = self._kv.get(PORTFOLIO_KEY)
        if raw:
            try:
                items = json.loads(raw)
                if isinstance(items, list):
                    self._holdings = self._coerce(items)
                    self._reallocate()
                else:
                    self.log.warning("persisted holdings is not a list, ignored")
            except json.JSONDecodeError as e:
                self.log.warning(f"failed to parse persisted holdings: {e}")

        raw_bal = self._kv.get(BALANCE_KEY)
        if raw_bal is not None:
            self._balance = _signed_num(raw_bal)

        raw_total = self._kv.get(TOTAL_KEY)
        if raw_total is not None:
            self._total_hint = _num(raw_total)

        self.log.debug(f"loaded balance={self._balance} holdings={len(self._holdings)} "
                       f"total_hint={self._total_hint}")

    def _save_holdings(self) -> None:
        self._kv.set(PORTFOLIO_KEY, json.dumps([h.to_dict() for h in self._holdings]))

    def _save_balance(self) -> None:
        self._kv.set(BALANCE_KEY, repr(self._balance))

    def _save_total(self) -> None:
        self._kv.set(TOTAL_KEY, repr(self._total_hint))

    # ---- reads --------------------------------------------------------------------
    def get_balance(self) -> float:
        return self._balance

    def get_holdings(self) -> List[AssetHolding]:
        return [replace(h) for h in self._holdings]

    def get_total_value(self) -> float:
        """
        Holdings-only value. Falls back to the server hint while no holding has
        been valued yet, so a display never flashes $0 between setting holdings
        and the first price refresh.
        """
        derived = sum(h.value for h in self._holdings)
        return derived if derived > 0 else self._total_hint

    def get_portfolio_total(self) -> float:
        """Cash balance plus holdings value."""
        return self._balance + self.get_total_value()

    def snapshot(self) -> PortfolioSnapshot:
        return PortfolioSnapshot(
            balance=self._balance,
            holdings=tuple(self.get_holdings()),
            holdings_value=self.get_total_value(),
            portfolio_total=self.get_portfolio_total(),
        )

    # ---- writes -------------------------------------------------------------------
    def _coerce(self, items: Iterable[Any]) -> List[AssetHolding]:
        known = {h.symbol: h for h in self._holdings}
        order: List[str] = []
        by_symbol: Dict[str, AssetHolding] = {}
        for it in items:
            symbol = str(_field(it, "symbol") or "").strip().upper()
            if not symbol:
                continue
            name = _field(it, "name")
            price = _field(it, "unit_price", "price")
            if price is None and symbol in known:
                unit_price = known[symbol].unit_price
            else:
                unit_price = _num(price)
            holding = AssetHolding(
                symbol=symbol,
                name=str(name) if name else symbol,
                amount=_num(_field(it, "amount")),
                unit_price=unit_price,
                value=_num(_field(it, "value")),
            )
            if symbol not in by_symbol:
                order.append(symbol)
            by_symbol[symbol] = holding
        return [by_symbol[s] for s in order]

    def _reallocate(self) -> None:
        total = sum(h.value for h in self._holdings)
        for h in self._holdings:
            h.allocation = (h.value / total) if total > 0 else 0.0

    def _publish_portfolio(self) -> None:
        if self._bus:
            self._bus.publish(TOPIC_PORTFOLIO, {"holdings": len(self._holdings),
                                                "total": self.get_total_value(), "ts": utc_ms()})

    def set_holdings(self, items: Any) -> None:
        """Replace holdings wholesale. Items are mappings or objects with symbol/name/amount/value."""
        if not isinstance(items, (list, tuple)):
            self.log.warning(f"set_holdings expects a list, got {type(items).__name__}")
            return
        self._holdings = self._coerce(items)
        self._generation += 1
        self._reallocate()
        self._save_holdings()
        if not self._holdings and self._total_hint:
            # no holdings, no holdings value
            self.set_total_value_hint(0)
        self._publish_portfolio()

    def add_holding(self, item: Any) -> None:
        """Merge into an existing symbol's amount, or append a new holding."""
        incoming = self._coerce([item])
        if not incoming:
            return
        new = incoming[0]
        for h in self._holdings:
            if h.symbol == new.symbol:
                h.amount += new.amount
                h.value = h.amount * h.unit_price
                break
        else:
            self._holdings.append(new)
        self._reallocate()
        self._save_holdings()
        self._publish_portfolio()

    def update_holding(self, symbol: str, amount: Any) -> bool:
        sym = str(symbol or "").upper()
        for h in self._holdings:
            if h.symbol == sym:
                h.amount = _num(amount)
                h.value = h.amount * h.unit_price
                self._reallocate()
                self._save_holdings()
                self._publish_portfolio()
                return True
        return False

    def remove_holding(self, symbol: str) -> bool:
        sym = str(symbol or "").upper()
        kept = [h for h in self._holdings if h.symbol != sym]
        if len(kept) == len(self._holdings):
            return False
        self._holdings = kept
        self._reallocate()
        self._save_holdings()
        self._publish_portfolio()
        return True

    def set_balance(self, balance: Any) -> None:
        new = _signed_num(balance)
        prev = self._balance
        if new == prev:
            self.log.debug(f"set_balance no change: {new}")
            return
        self._balance = new
        self._save_balance()
        self.log.info(f"balance {prev} -> {new}")
        if self._bus:
            self._bus.publish(TOPIC_BALANCE, {"previous": prev, "current": new, "ts": utc_ms()})

    def set_total_value_hint(self, total: Any) -> None:
        self._total_hint = _num(total)
        self._save_total()

    def clear_all(self) -> None:
        """Reset to an empty portfolio and erase persisted state. Safe to call repeatedly."""
        self._balance = 0.0
        self._holdings = []
        self._total_hint = 0.0
        self._generation += 1
        for key in (PORTFOLIO_KEY, BALANCE_KEY, TOTAL_KEY):
            self._kv.remove(key)
        self.log.info("cleared all portfolio data")

    # ---- valuation ----------------------------------------------------------------
    async def refresh_prices(self) -> bool:
        """
        Revalue every holding from the price lookup.

        Symbols missing from the response keep their previous unit price.
        A failed lookup returns False and leaves every value untouched, as does
        a refresh overtaken by clear_all/set_holdings while it was in flight.
        """
        generation = self._generation
        symbols = [h.symbol for h in self._holdings]
        prices: Dict[str, float] = {}
        if symbols:
            try:
                prices = await self._prices.get_prices(symbols)
            except Exception as e:
                self.log.warning(f"price refresh failed: {e}")
                return False

        if generation != self._generation:
            self.log.info("holdings changed during price refresh, result discarded")
            return False

        revalued: List[AssetHolding] = []
        for h in self._holdings:
            price = prices.get(h.symbol)
            unit_price = _num(price) if price is not None else h.unit_price
            revalued.append(replace(h, unit_price=unit_price, value=h.amount * unit_price))

        self._holdings = revalued
        self._reallocate()
        self._total_hint = sum(h.value for h in self._holdings)
        self._save_holdings()
        self._save_total()
        self.log.debug(f"revalued {len(revalued)} holdings, total={self._total_hint}")
        self._publish_portfolio()
        return True


def holdings_from_profile(portfolio: Any) -> List[Dict[str, Any]]:
    """`{"btc_balance": 0.5, ...}` -> `[{"symbol": "BTC", "amount": 0.5}]`; zero and junk skipped."""
    if not isinstance(portfolio, Mapping):
        return []
    items: List[Dict[str, Any]] = []
    for key, raw in portfolio.items():
        if not isinstance(key, str) or not key.endswith("_balance"):
            continue
        symbol = key[: -len("_balance")].upper()
        amount = _num(raw)
        if symbol and amount > 0:
            items.append({"symbol": symbol, "name": symbol, "amount": amount, "value": 0})
    return items
