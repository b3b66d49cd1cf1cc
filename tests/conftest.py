# tests/conftest.py
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import asyncio
from typing import Any, Dict, Iterable, List, Optional

import pytest
import pytest_asyncio

from infra.http_client import HttpClient
from wallet.models import Profile
from wallet.session import AuthSession

BASE = "http://api.test"


class FakeClock:
    """Millisecond clock the test moves by hand."""
    def __init__(self, now: int = 0):
        self.now = now

    def __call__(self) -> int:
        return self.now


class FakeAccount:
    """Scripted AccountService: returns/raises results in order, repeating the last one."""
    def __init__(self, results: Iterable[Any], gate: Optional[asyncio.Event] = None):
        self.results: List[Any] = list(results)
        self.gate = gate
        self.calls = 0

    async def fetch_profile(self) -> Profile:
        self.calls += 1
        idx = min(self.calls - 1, len(self.results) - 1)
        if self.gate is not None:
            await self.gate.wait()
        res = self.results[idx]
        if isinstance(res, BaseException):
            raise res
        return res


class FakePrices:
    """Price lookup keyed by ticker."""
    def __init__(self, prices: Optional[Dict[str, float]] = None,
                 error: Optional[BaseException] = None,
                 gate: Optional[asyncio.Event] = None):
        self.prices = dict(prices or {})
        self.error = error
        self.gate = gate
        self.calls: List[List[str]] = []

    async def get_prices(self, symbols):
        symbols = list(symbols)
        self.calls.append(symbols)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return {s: p for s, p in self.prices.items() if s in symbols}


@pytest.fixture
def test_cfg():
    return {
        "api": {"base_url": BASE},
        "timeouts": {"rest_ms": 2000},
        "retries": {"rest_max_attempts": 3, "backoff_ms": 1},
        "sync": {"ttl_ms": 3000, "poll_interval_ms": 5000, "push_enabled": False},
    }


@pytest.fixture
def session():
    return AuthSession("tok-123", user_id="42")


@pytest.fixture
def clock():
    return FakeClock(0)


@pytest_asyncio.fixture
async def http_client(test_cfg, session):
    """
    HttpClient inside its async context; the aiohttp session is closed after the test.
    """
    async with HttpClient(test_cfg, auth=session) as client:
        yield client


async def wait_until(predicate, timeout: float = 1.0, step: float = 0.005) -> bool:
    """Poll `predicate` until it holds or `timeout` seconds pass."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        if predicate():
            return True
        await asyncio.sleep(step)
    return predicate()
