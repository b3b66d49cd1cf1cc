# utils/config.py
import os
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

import yaml
from dotenv import load_dotenv

from utils.logger import logger

_LOCAL_HOSTS = {"localhost", "127.0.0.1", "::1"}


def load_cfg(cfg_path: str | None = None) -> dict:

    base_dir = Path(__file__).resolve().parents[1]

    cfg_file = Path(cfg_path) if cfg_path else (base_dir / "config.yaml")

    load_dotenv(cfg_file.parent / ".env")

    with open(cfg_file, "r", encoding="utf-8") as f:
        raw_cfg = yaml.safe_load(f) or {}

    def resolve_env(obj):
        if isinstance(obj, dict):
            return {k: resolve_env(v) for k, v in obj.items()}
        if isinstance(obj, list):
            return [resolve_env(v) for v in obj]
        if isinstance(obj, str) and obj.startswith("${") and obj.endswith("}"):
            varname = obj[2:-1]
            return os.getenv(varname, "")
        return obj

    cfg = resolve_env(raw_cfg)

    base_url = str(get_in(cfg, "api.base_url", "") or "")
    parsed = urlparse(base_url)
    if parsed.scheme == "http" and parsed.hostname not in _LOCAL_HOSTS:
        logger.warning(f"API base {base_url} is plain http; bearer tokens will travel unencrypted")

    logger.info(f"Config loaded from {cfg_file}")
    return cfg


def get_in(cfg: Any, dotted: str, default: Any = None) -> Any:
    """Walk nested dicts with a dotted key, returning ``default`` on any miss."""
    cur = cfg
    for part in dotted.split("."):
        if not isinstance(cur, dict) or part not in cur:
            return default
        cur = cur[part]
    return cur
