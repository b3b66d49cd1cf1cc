# utils/time.py
import time
from datetime import datetime, timezone


def utc_ms() -> int:
    return int(datetime.now(tz=timezone.utc).timestamp() * 1000)


def monotonic_ms() -> int:
    """Milliseconds from a clock that never jumps backwards; only differences are meaningful."""
    return int(time.monotonic() * 1000)
