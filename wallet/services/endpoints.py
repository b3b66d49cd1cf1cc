# wallet/services/endpoints.py
from dataclasses import dataclass


@dataclass
class Endpoints:
    # API host, e.g. http://localhost:5001
    rest_base: str

    # REST / stream paths
    auth_me: str = "/api/auth/me"
    prices: str = "/api/prices"
    updates_stream: str = "/api/updates/stream"

    def stream_url(self) -> str:
        return self.rest_base + self.updates_stream


def make_endpoints_from_cfg(cfg: dict) -> Endpoints:
    try:
        rest_base = str(cfg["api"]["base_url"]).rstrip("/")
        if not rest_base:
            raise KeyError("api.base_url")
    except (KeyError, TypeError) as e:
        raise ValueError(f"Invalid cfg missing key: {e}") from e

    paths = cfg["api"].get("paths") or {}
    return Endpoints(
        rest_base=rest_base,
        auth_me=paths.get("auth_me", Endpoints.auth_me),
        prices=paths.get("prices", Endpoints.prices),
        updates_stream=paths.get("updates_stream", Endpoints.updates_stream),
    )
