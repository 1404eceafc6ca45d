import asyncio

import pytest

from fund_refresh.errors import AppError, StorageError
from fund_refresh.models import Fund, FundValuation, Holding, Quote
from fund_refresh.orchestrator import RefreshOrchestrator
from fund_refresh.retry import RetryExecutor


class MemoryStore:
    def __init__(self, funds=None, fail_saves: int = 0) -> None:
        self.funds = list(funds or [])
        self.saved: list[list[Fund]] = []
        self.fail_saves = fail_saves

    def load(self):
        return list(self.funds)

    def save(self, funds):
        if self.fail_saves:
            self.fail_saves -= 1
            raise StorageError("disk full")
        self.saved.append(list(funds))
        self.funds = list(funds)


class FakeValuations:
    def __init__(self, by_code) -> None:
        self.by_code = by_code
        self.calls: list[str] = []

    async def get_valuation(self, code):
        self.calls.append(code)
        value = self.by_code.get(code)
        if isinstance(value, Exception):
            raise value
        return value


class FakeQuotes:
    def __init__(self, quotes=None, error: Exception | None = None) -> None:
        self.quotes = quotes or []
        self.error = error
        self.requested: list[list[str]] = []

    async def get_quotes(self, codes):
        codes = list(codes)
        self.requested.append(codes)
        if self.error:
            raise self.error
        return [q for q in self.quotes if q.code in codes]


async def _no_sleep(_delay):
    return None


def _fund(code: str, holdings) -> Fund:
    return Fund(
        code=code,
        name=f"fund {code}",
        net_value=1.5,
        net_value_date="2026-01-02",
        estimated_value=1.5,
        estimated_change=0.0,
        update_time="old",
        holdings=holdings,
    )


def _valuation(code: str, trading: bool = True, real: bool = False) -> FundValuation:
    return FundValuation(
        fund_code=code,
        name="",
        net_value=1.6,
        net_value_date="2026-01-05",
        estimated_value=1.62,
        estimated_change=1.25,
        update_time="2026-01-05 10:30",
        is_real_value=real,
        is_trading_day=trading,
    )


def _orchestrator(store, valuations, quotes):
    return RefreshOrchestrator(store, valuations, quotes, retry=RetryExecutor(sleep=_no_sleep))


def test_empty_watchlist_makes_no_calls():
    valuations = FakeValuations({})
    quotes = FakeQuotes()
    out = asyncio.run(_orchestrator(MemoryStore(), valuations, quotes).refresh_all())

    assert out == []
    assert valuations.calls == []
    assert quotes.requested == []


def test_not_trading_returns_unchanged_without_saving():
    store = MemoryStore([_fund("A", [Holding("600519", "x", 50.0)])])
    valuations = FakeValuations({"A": _valuation("A", trading=False)})
    quotes = FakeQuotes()

    out = asyncio.run(_orchestrator(store, valuations, quotes).refresh_all())

    assert out == store.funds
    assert quotes.requested == []
    assert store.saved == []


def test_primary_valuation_preferred_and_fallback_used():
    holdings_a = [Holding("600519", "茅台", 60.0, change=0.1, price=1.0), Holding("000858", "五粮液", 40.0)]
    holdings_b = [Holding("600519", "茅台", 50.0), Holding("300750", "宁德", 50.0, change=0.7, price=9.0)]
    tracked = [_fund("A", holdings_a), _fund("B", holdings_b)]
    store = MemoryStore(tracked)
    valuations = FakeValuations({"A": _valuation("A"), "B": RuntimeError("boom")})
    quotes = FakeQuotes(
        [
            Quote("600519", "茅台", 1530.0, 2.0),
            Quote("000858", "五粮液", 150.0, -1.0),
        ]
    )

    out = asyncio.run(_orchestrator(store, valuations, quotes).refresh_all())

    a, b = out
    # codes are deduplicated across funds
    assert sorted(quotes.requested[0]) == ["000858", "300750", "600519"]

    assert a.estimated_value == pytest.approx(1.62)
    assert a.estimated_change == pytest.approx(1.25)
    assert a.net_value == 1.5  # estimate only, official value kept
    assert [h.change for h in a.holdings] == [2.0, -1.0]

    # B: fallback over 600519 only; 300750 keeps its previous quote
    assert b.estimated_change == pytest.approx(1.0)
    assert b.estimated_value == pytest.approx(1.5 * 1.01)
    assert b.is_real_value is False
    assert b.holdings[1].change == 0.7
    assert b.holdings[1].price == 9.0

    assert store.saved == [out]
    # inputs untouched
    assert tracked[0].holdings[0].change == 0.1
    assert tracked[1].estimated_value == 1.5


def test_real_value_replaces_net_value():
    store = MemoryStore([_fund("A", [])])
    valuations = FakeValuations({"A": _valuation("A", real=True)})

    (a,) = asyncio.run(_orchestrator(store, valuations, FakeQuotes()).refresh_all())

    assert a.net_value == 1.6
    assert a.net_value_date == "2026-01-05"
    assert a.is_real_value is True


def test_no_data_at_all_keeps_previous_values():
    tracked = [_fund("A", [Holding("600519", "x", 100.0)]), _fund("B", [Holding("000001", "y", 100.0)])]
    store = MemoryStore(tracked)
    valuations = FakeValuations({"A": _valuation("A")})
    quotes = FakeQuotes(error=RuntimeError("quotes down"))

    a, b = asyncio.run(_orchestrator(store, valuations, quotes).refresh_all(tracked))

    assert a.estimated_value == pytest.approx(1.62)
    assert b == tracked[1]


def test_persistence_failure_propagates_after_retries():
    store = MemoryStore([_fund("A", [])], fail_saves=10)
    valuations = FakeValuations({"A": _valuation("A")})

    with pytest.raises(AppError):
        asyncio.run(_orchestrator(store, valuations, FakeQuotes()).refresh_all())
    assert store.saved == []


def test_transient_persistence_failure_is_retried():
    store = MemoryStore([_fund("A", [])], fail_saves=1)
    valuations = FakeValuations({"A": _valuation("A")})

    out = asyncio.run(_orchestrator(store, valuations, FakeQuotes()).refresh_all())

    assert store.saved == [out]
