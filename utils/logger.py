# utils/logger.py
import os
import sys
from datetime import datetime
from pathlib import Path

from loguru import logger

log_dir = Path(os.getenv("WALLET_LOG_DIR") or Path(__file__).resolve().parents[1] / "logs")
log_dir.mkdir(parents=True, exist_ok=True)
log_file = log_dir / f"wallet_{datetime.now():%Y%m%d_%H%M%S}.log"

# records without a bound component (third-party, infra) are tagged "core"
logger.configure(extra={"component": "core"})
logger.remove()

logger.add(
    sys.stdout,
    level="INFO",
    enqueue=True,
    format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | {level:<7} | <cyan>{extra[component]}</cyan> | {message}",
)
logger.add(
    log_file,
    level="DEBUG",
    rotation="20 MB",
    retention="14 days",
    enqueue=True,
    encoding="utf-8",
    format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level} | {extra[component]} | {message}",
)


def get_logger(component: str, base=None):
    """Logger tagged with `component`; `base` is an injected logger to derive from."""
    return (base or logger).bind(component=component)


logger.debug(f"Logger initialized. Writing logs to {log_file}")
