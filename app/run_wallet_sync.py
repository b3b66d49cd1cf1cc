# app/run_wallet_sync.py
import os
import sys
import asyncio
import signal
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from utils import logger, load_cfg, get_in
from wallet.app import WalletAPI, LogRenderAdapter
from wallet.session import AuthSession

CFG_PATH = os.getenv("WALLET_CFG")


async def main():
    cfg = load_cfg(CFG_PATH)

    token = get_in(cfg, "auth.token") or ""
    user_id = get_in(cfg, "auth.user_id") or None
    if not token:
        logger.error("No token configured (auth.token / WALLET_TOKEN); nothing to sync")
        return

    session = AuthSession(token, user_id=user_id)
    wallet = WalletAPI.from_cfg(cfg, session)
    wallet.add_render_adapter(LogRenderAdapter())

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            pass

    try:
        balance = await wallet.start()
        logger.info(f"Wallet sync started user={user_id} balance={balance}")
        if await wallet.refresh_prices():
            snap = wallet.snapshot()
            logger.info(f"Holdings value {snap.holdings_value:.2f}, portfolio total {snap.portfolio_total:.2f}")
        await stop.wait()
    finally:
        await wallet.close()
        logger.info("Wallet sync stopped")


if __name__ == "__main__":
    asyncio.run(main())
