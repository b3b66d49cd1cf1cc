# wallet/config.py
from dataclasses import dataclass, fields
from typing import Any, Mapping


@dataclass
class SyncSettings:
    """Balance sync runtime configuration."""
    ttl_ms: int = 3000                  # cached balance trusted for this long
    poll_interval_ms: int = 5000        # background refresh period, kept above ttl_ms
    http_timeout_s: float = 10.0
    price_timeout_s: float = 5.0
    backoff_cap_ms: int = 60000         # poll delay ceiling after repeated failures

    push_enabled: bool = True           # listen to /updates/stream
    sync_holdings: bool = True          # apply server portfolio/hint on each sync

    @classmethod
    def from_cfg(cls, cfg: Mapping[str, Any]) -> "SyncSettings":
        raw = cfg.get("sync", {}) or {}
        known = {f.name: f.type for f in fields(cls)}
        kwargs = {}
        for key, value in raw.items():
            if key not in known or value is None:
                continue
            default = getattr(cls, key)
            if isinstance(default, bool):
                kwargs[key] = value if isinstance(value, bool) else str(value).lower() in ("1", "true", "yes")
            else:
                kwargs[key] = type(default)(value)
        return cls(**kwargs)
