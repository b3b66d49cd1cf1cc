# tests/test_kv_store.py
import json

from wallet.stores.kv_store import InMemoryKVStore, JsonFileKVStore


def test_in_memory_store():
    kv = InMemoryKVStore()
    kv.set("a", 1)
    assert kv.get("a") == "1"
    kv.remove("a")
    kv.remove("a")
    assert kv.get("a") is None


def test_json_file_store_persists(tmp_path):
    path = tmp_path / "state" / "wallet.json"
    kv = JsonFileKVStore(path)
    kv.set("availableBalance", "12.5")
    kv.set("portfolio", "[]")
    kv.remove("portfolio")

    assert json.loads(path.read_text(encoding="utf-8")) == {"availableBalance": "12.5"}
    assert JsonFileKVStore(path).get("availableBalance") == "12.5"
    assert not [p for p in path.parent.iterdir() if p.suffix == ".tmp"]


def test_json_file_store_recovers_from_corrupt_file(tmp_path):
    path = tmp_path / "wallet.json"
    path.write_text("{broken", encoding="utf-8")
    kv = JsonFileKVStore(path)
    assert kv.get("availableBalance") is None
    kv.set("availableBalance", "1.0")
    assert JsonFileKVStore(path).get("availableBalance") == "1.0"


def test_json_file_store_ignores_non_object(tmp_path):
    path = tmp_path / "wallet.json"
    path.write_text("[1, 2]", encoding="utf-8")
    assert JsonFileKVStore(path).get("0") is None
