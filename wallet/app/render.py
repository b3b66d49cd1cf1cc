# wallet/app/render.py
from typing import Any, Dict, List, Optional

from utils.logger import get_logger
from ..models import PortfolioSnapshot

UNKNOWN = "—"


def format_usd(value: float) -> str:
    sign = "-" if value < 0 else ""
    return f"{sign}${abs(value):,.2f}"


def render_balance(balance: Optional[float]) -> str:
    """Unknown balance is a placeholder, never $0.00."""
    return UNKNOWN if balance is None else format_usd(balance)


def render_holdings(snapshot: PortfolioSnapshot) -> List[Dict[str, Any]]:
    rows = []
    for h in snapshot.holdings:
        rows.append({
            "symbol": h.symbol,
            "name": h.name,
            "amount": f"{h.amount:,.8f}".rstrip("0").rstrip("."),
            "price": format_usd(h.unit_price),
            "value": format_usd(h.value),
            "allocation": f"{h.allocation * 100:.2f}%",
        })
    return rows


def render_summary(balance: Optional[float], snapshot: PortfolioSnapshot) -> str:
    return (f"balance={render_balance(balance)} "
            f"holdings={format_usd(snapshot.holdings_value)} "
            f"total={format_usd(snapshot.portfolio_total)} "
            f"assets={len(snapshot.holdings)}")


class LogRenderAdapter:
    """Render adapter that writes one summary line per push."""

    def __init__(self, logger=None) -> None:
        self.log = get_logger("Render", logger)
        self.last: Optional[str] = None

    def __call__(self, balance: Optional[float], snapshot: PortfolioSnapshot) -> None:
        self.last = render_summary(balance, snapshot)
        self.log.info(f"{self.last}")
