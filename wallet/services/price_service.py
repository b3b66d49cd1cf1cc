# wallet/services/price_service.py
from __future__ import annotations

import math
from typing import Any, Dict, Iterable, Mapping, Optional

from infra.http_client import HttpError
from utils.logger import get_logger
from ..errors import MalformedResponseError, TransportError

# ticker -> market-data id
DEFAULT_SYMBOL_MAP: Dict[str, str] = {
    "BTC": "bitcoin",
    "ETH": "ethereum",
    "BNB": "binancecoin",
    "XRP": "ripple",
    "ADA": "cardano",
    "SOL": "solana",
    "DOT": "polkadot",
    "DOGE": "dogecoin",
    "MATIC": "matic-network",
    "AVAX": "avalanche-2",
    "ATOM": "cosmos",
    "LTC": "litecoin",
    "BCH": "bitcoin-cash",
    "XLM": "stellar",
    "LINK": "chainlink",
    "UNI": "uniswap",
    "AAVE": "aave",
    "USDT": "tether",
    "USDC": "usd-coin",
    "DAI": "dai",
}


def _usd(entry: Any) -> Optional[float]:
    if not isinstance(entry, Mapping):
        return None
    raw = entry.get("usd")
    if isinstance(raw, bool) or raw is None:
        return None
    try:
        v = float(raw)
    except (TypeError, ValueError):
        return None
    return v if math.isfinite(v) and v >= 0 else None


class PriceService:
    """
    USD price lookup by ticker through the /prices proxy.
    Unmapped tickers are skipped; the response is keyed by market-data id.
    """

    def __init__(self, http_client, endpoints, *,
                 symbol_map: Optional[Mapping[str, str]] = None,
                 timeout_s: Optional[float] = None,
                 logger=None) -> None:
        self._http = http_client
        self._ep = endpoints
        self._map: Dict[str, str] = {k.upper(): v for k, v in (symbol_map or DEFAULT_SYMBOL_MAP).items()}
        self._timeout_ms = int(timeout_s * 1000) if timeout_s else None
        self.log = get_logger("Prices", logger or getattr(http_client, "log", None))

    def resolve_id(self, symbol: str) -> Optional[str]:
        return self._map.get((symbol or "").upper())

    async def get_prices(self, symbols: Iterable[str]) -> Dict[str, float]:
        """
        Return {ticker: usd} for every mapped ticker present in the response.
        Raises TransportError / MalformedResponseError when the request as a whole fails.
        """
        wanted: Dict[str, str] = {}
        for s in symbols:
            sym = (s or "").upper()
            ext_id = self._map.get(sym)
            if ext_id:
                wanted[sym] = ext_id
            elif sym:
                self.log.debug(f"no market id for {sym}, skipped")
        if not wanted:
            return {}

        path = getattr(self._ep, "prices", None) or "/api/prices"
        try:
            resp = await self._http.get_public(path, params={"symbols": ",".join(wanted)},
                                               timeout_ms=self._timeout_ms)
        except HttpError as e:
            raise TransportError(str(e), status=e.status) from e

        if not isinstance(resp, dict):
            raise MalformedResponseError("price body is not an object", resp)

        out: Dict[str, float] = {}
        for sym, ext_id in wanted.items():
            usd = _usd(resp.get(ext_id))
            if usd is None:
                self.log.debug(f"{sym} ({ext_id}) missing from response")
                continue
            out[sym] = usd
        return out
