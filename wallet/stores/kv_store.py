# wallet/stores/kv_store.py
import json
import os
import tempfile
from pathlib import Path
from typing import Dict, Optional, Protocol

from utils.logger import get_logger

logger = get_logger("KVStore")

PORTFOLIO_KEY = "portfolio"
BALANCE_KEY = "availableBalance"
TOTAL_KEY = "portfolioTotal"


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...
    def set(self, key: str, value: str) -> None: ...
    def remove(self, key: str) -> None: ...


class InMemoryKVStore:
    """
    Process-local string store; survives nothing, useful for tests and headless runs.
    """

    def __init__(self) -> None:
        self._data: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = str(value)

    def remove(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileKVStore:
    """
    Durable string store backed by one JSON object on disk.
    Every mutation rewrites the file through a temp file + rename.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._data: Dict[str, str] = self._read()

    def _read(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8") or "{}")
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"unreadable store {self.path}, starting empty ({e})")
            return {}
        if not isinstance(raw, dict):
            logger.warning(f"{self.path} is not a JSON object, starting empty")
            return {}
        return {str(k): str(v) for k, v in raw.items()}

    def _flush(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self._data, f, ensure_ascii=False)
            os.replace(tmp, self.path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = str(value)
        self._flush()

    def remove(self, key: str) -> None:
        if key in self._data:
            del self._data[key]
            self._flush()
