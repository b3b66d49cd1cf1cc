# wallet/stores/__init__.py
from wallet.stores.kv_store import KeyValueStore, InMemoryKVStore, JsonFileKVStore
from wallet.stores.portfolio_store import PortfolioStore

__all__ = ["KeyValueStore", "InMemoryKVStore", "JsonFileKVStore", "PortfolioStore"]
