# tests/test_balance_sync.py
import asyncio

import pytest

from conftest import FakeAccount, FakePrices, wait_until
from utils.logger import logger
from wallet.config import SyncSettings
from wallet.enums import InvalidationSource, SyncState
from wallet.errors import TransportError, UnauthenticatedError
from wallet.event_bus import EventBus, TOPIC_INVALIDATE
from wallet.models import Profile
from wallet.services.balance_sync import BalanceSyncController
from wallet.session import AuthSession
from wallet.stores.kv_store import InMemoryKVStore, BALANCE_KEY
from wallet.stores.portfolio_store import PortfolioStore


def _make(account, session, clock=None, *, prices=None, bus=None, **settings):
    store = PortfolioStore(InMemoryKVStore(), prices or FakePrices(), bus=bus)
    ctrl = BalanceSyncController(account, store, session,
                                 settings=SyncSettings(**settings), bus=bus, clock=clock)
    return ctrl, store


@pytest.mark.asyncio
async def test_fresh_login_syncs(session, clock):
    account = FakeAccount([Profile(balance=1000.0)])
    ctrl, store = _make(account, session, clock)
    assert ctrl.state is SyncState.UNINITIALIZED

    assert await ctrl.initialize() == 1000.0
    assert ctrl.state is SyncState.SYNCED
    assert store.get_balance() == 1000.0
    assert ctrl.envelope.cached_balance == 1000.0


@pytest.mark.asyncio
async def test_cached_balance_served_within_ttl(session, clock):
    account = FakeAccount([Profile(balance=500.0), Profile(balance=510.0)])
    ctrl, _ = _make(account, session, clock)

    assert await ctrl.get_balance() == 500.0
    clock.now = 2000
    assert await ctrl.get_balance() == 500.0
    assert account.calls == 1

    clock.now = 3500
    assert ctrl.state is SyncState.STALE
    assert await ctrl.get_balance() == 510.0
    assert account.calls == 2


@pytest.mark.asyncio
async def test_concurrent_reads_share_one_fetch(session, clock):
    gate = asyncio.Event()
    account = FakeAccount([Profile(balance=42.0)], gate=gate)
    ctrl, _ = _make(account, session, clock)

    readers = [asyncio.create_task(ctrl.get_balance()) for _ in range(3)]
    await asyncio.sleep(0)
    assert ctrl.state is SyncState.SYNCING
    gate.set()

    assert await asyncio.gather(*readers) == [42.0, 42.0, 42.0]
    assert account.calls == 1


@pytest.mark.asyncio
async def test_refresh_during_fetch_gets_a_follow_up_fetch(session, clock):
    gate = asyncio.Event()
    account = FakeAccount([Profile(balance=7.0), Profile(balance=8.0)], gate=gate)
    ctrl, store = _make(account, session, clock)

    first = asyncio.create_task(ctrl.get_balance())
    await asyncio.sleep(0)
    refreshes = [asyncio.create_task(ctrl.refresh_balance()) for _ in range(2)]
    await asyncio.sleep(0)
    gate.set()

    assert await first == 7.0
    assert await asyncio.gather(*refreshes) == [8.0, 8.0]
    assert account.calls == 2
    assert ctrl.state is SyncState.SYNCED
    assert store.get_balance() == 8.0


@pytest.mark.asyncio
async def test_failed_fetch_serves_cached_balance(session, clock):
    account = FakeAccount([Profile(balance=250.0), TransportError("boom", status=503)])
    ctrl, store = _make(account, session, clock)
    assert await ctrl.get_balance() == 250.0

    clock.now = 3500
    assert await ctrl.get_balance() == 250.0
    assert ctrl.state is SyncState.STALE
    assert store.get_balance() == 250.0


@pytest.mark.asyncio
async def test_failed_first_fetch_is_unknown(session, clock):
    ctrl, _ = _make(FakeAccount([UnauthenticatedError("expired")]), session, clock)
    assert await ctrl.get_balance() is None
    assert ctrl.state is SyncState.STALE


@pytest.mark.asyncio
async def test_fetch_timeout_counts_as_failure(session, clock):
    account = FakeAccount([Profile(balance=1.0)], gate=asyncio.Event())
    ctrl, _ = _make(account, session, clock, http_timeout_s=0.05)
    assert await ctrl.get_balance() is None
    assert ctrl.state is SyncState.STALE


@pytest.mark.asyncio
async def test_unexpected_error_propagates(session, clock):
    ctrl, _ = _make(FakeAccount([RuntimeError("bug")]), session, clock)
    with pytest.raises(RuntimeError):
        await ctrl.get_balance()
    assert ctrl.state is SyncState.STALE


@pytest.mark.asyncio
async def test_logout_during_fetch_discards_result(session, clock):
    gate = asyncio.Event()
    account = FakeAccount([Profile(balance=999.0)], gate=gate)
    ctrl, store = _make(account, session, clock)

    reader = asyncio.create_task(ctrl.get_balance())
    await asyncio.sleep(0)
    ctrl.clear_all()
    session.logout()
    gate.set()

    assert await reader is None
    assert ctrl.state is SyncState.UNINITIALIZED
    assert store.get_balance() == 0.0
    assert ctrl.envelope.cached_balance is None


@pytest.mark.asyncio
async def test_unauthenticated_reads_are_unknown(clock):
    account = FakeAccount([Profile(balance=5.0)])
    ctrl, _ = _make(account, AuthSession(), clock)
    assert await ctrl.get_balance() is None
    assert await ctrl.refresh_balance() is None
    assert account.calls == 0


@pytest.mark.asyncio
async def test_clear_all_resets_persisted_balance(session, clock):
    ctrl, store = _make(FakeAccount([Profile(balance=80.0)]), session, clock)
    await ctrl.initialize()
    ctrl.clear_all()
    ctrl.clear_all()
    assert ctrl.state is SyncState.UNINITIALIZED
    assert store.get_balance() == 0.0
    assert store._kv.get(BALANCE_KEY) is None


@pytest.mark.asyncio
async def test_sync_applies_holdings_and_prices_them(session, clock):
    profile = Profile(balance=100.0, portfolio_value=900.0,
                      holdings=[{"symbol": "BTC", "name": "BTC", "amount": 0.02, "value": 0}])
    gate = asyncio.Event()
    prices = FakePrices({"BTC": 50000.0}, gate=gate)
    ctrl, store = _make(FakeAccount([profile]), session, clock, prices=prices)

    await ctrl.initialize()
    assert [h.symbol for h in store.get_holdings()] == ["BTC"]
    assert store.get_total_value() == 900.0

    gate.set()
    assert await wait_until(lambda: store.get_holdings()[0].value > 0)
    assert store.get_total_value() == pytest.approx(1000.0)
    assert store.get_portfolio_total() == pytest.approx(1100.0)
    await ctrl.close()


@pytest.mark.asyncio
async def test_emptied_portfolio_clears_holdings(session, clock):
    first = Profile(balance=100.0, holdings=[{"symbol": "BTC", "amount": 1}])
    sold = Profile(balance=50100.0, holdings=[])
    ctrl, store = _make(FakeAccount([first, sold]), session, clock, prices=FakePrices({"BTC": 50000.0}))

    await ctrl.initialize()
    assert await store.refresh_prices()
    assert store.get_portfolio_total() == pytest.approx(50100.0)

    assert await ctrl.refresh_balance() == 50100.0
    assert store.get_holdings() == []
    assert store.get_total_value() == 0.0
    assert store.get_portfolio_total() == pytest.approx(50100.0)
    await ctrl.close()


@pytest.mark.asyncio
async def test_profile_without_portfolio_keeps_holdings(session, clock):
    first = Profile(balance=10.0, holdings=[{"symbol": "ETH", "amount": 2}])
    ctrl, store = _make(FakeAccount([first, Profile(balance=11.0)]), session, clock)

    await ctrl.initialize()
    await ctrl.refresh_balance()
    assert [h.symbol for h in store.get_holdings()] == ["ETH"]
    await ctrl.close()

@pytest.mark.asyncio
async def test_on_invalidate_renders_adapters(session, clock):
    ctrl, _ = _make(FakeAccount([Profile(balance=10.0), Profile(balance=20.0)]), session, clock)
    seen = []

    def adapter(balance, snapshot):
        seen.append((balance, snapshot.balance))

    def broken(balance, snapshot):
        raise ValueError("render failed")

    ctrl.register_adapter(broken)
    ctrl.register_adapter(adapter)
    ctrl.register_adapter(adapter)

    await ctrl.initialize()
    assert await ctrl.on_invalidate(InvalidationSource.MANUAL) == 20.0
    assert seen == [(20.0, 20.0)]

    ctrl.unregister_adapter(adapter)
    await ctrl.on_invalidate()
    assert len(seen) == 1


@pytest.mark.asyncio
async def test_invalidate_event_on_bus_triggers_refresh(session, clock):
    bus = EventBus()
    account = FakeAccount([Profile(balance=1.0), Profile(balance=2.0)])
    ctrl, store = _make(account, session, clock, bus=bus)
    await ctrl.initialize()

    bus.publish(TOPIC_INVALIDATE, {"source": "push"})
    assert await wait_until(lambda: store.get_balance() == 2.0)
    assert account.calls == 2
    await ctrl.close()


@pytest.mark.asyncio
async def test_background_sync_is_idempotent(session, clock):
    account = FakeAccount([Profile(balance=3.0)])
    ctrl, _ = _make(account, session, clock)

    assert ctrl.start_background_sync(interval_ms=10) is True
    assert ctrl.start_background_sync(interval_ms=10) is False
    assert ctrl.is_polling

    assert await wait_until(lambda: account.calls >= 2)
    await ctrl.stop_background_sync()
    assert not ctrl.is_polling

    calls = account.calls
    await asyncio.sleep(0.05)
    assert account.calls == calls
    assert ctrl.start_background_sync(interval_ms=10) is True
    await ctrl.close()


@pytest.mark.asyncio
async def test_failed_bus_refresh_is_logged(session, clock):
    bus = EventBus()
    account = FakeAccount([Profile(balance=1.0), RuntimeError("decoder bug")])
    ctrl, _ = _make(account, session, clock, bus=bus)
    await ctrl.initialize()

    errors = []
    sink_id = logger.add(lambda msg: errors.append(msg.record), level="ERROR")
    try:
        bus.publish(TOPIC_INVALIDATE, {"source": "push"})
        assert await wait_until(lambda: account.calls == 2 and not ctrl._pending)
    finally:
        logger.remove(sink_id)

    assert [r["message"] for r in errors] == ["invalidation refresh failed"]
    assert errors[0]["extra"]["component"] == "BalanceSync"
    assert isinstance(errors[0]["exception"].value, RuntimeError)
    await ctrl.close()
