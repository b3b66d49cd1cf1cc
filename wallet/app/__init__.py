# wallet/app/__init__.py
from wallet.app.wallet_api import WalletAPI
from wallet.app.render import LogRenderAdapter, format_usd, render_balance, render_holdings, render_summary

__all__ = ["WalletAPI", "LogRenderAdapter", "format_usd", "render_balance", "render_holdings", "render_summary"]
