"""Looking up, adding and removing tracked funds."""

from __future__ import annotations

import asyncio
import datetime as dt
import logging
from typing import Callable

from .data_sources import fetch_fund_detail
from .errors import NotFoundError
from .estimator import calculate_valuation
from .models import Fund, FundDetail
from .orchestrator import merge_fund
from .providers import QuoteSource, ValuationSource
from .storage import WatchlistStore

LOGGER = logging.getLogger(__name__)


async def search_fund(
    code: str,
    detail_fetcher: Callable[[str], FundDetail] = fetch_fund_detail,
) -> FundDetail:
    """Preview a fund's name, net value and top holdings without tracking it."""
    code = code.strip()
    if not code:
        raise NotFoundError("基金代码为空")
    detail = await asyncio.to_thread(detail_fetcher, code)
    if not detail.name:
        raise NotFoundError(f"未找到基金: {code}")
    return detail


async def add_fund(
    code: str,
    store: WatchlistStore,
    valuation_provider: ValuationSource,
    quote_provider: QuoteSource,
    detail_fetcher: Callable[[str], FundDetail] = fetch_fund_detail,
) -> Fund:
    code = code.strip()
    watchlist = await asyncio.to_thread(store.load)
    if any(f.code == code for f in watchlist):
        raise ValueError(f"该基金已在自选列表中: {code}")

    detail = await asyncio.to_thread(detail_fetcher, code)
    valuation = await valuation_provider.get_valuation(code)
    quotes = await quote_provider.get_quotes(h.stock_code for h in detail.holdings)
    quote_by_code = {q.code: q for q in quotes}

    fund = Fund(
        code=detail.code,
        name=detail.name,
        net_value=detail.net_value,
        net_value_date=detail.net_value_date,
        holdings=detail.holdings,
        added_at=dt.datetime.now().isoformat(timespec="seconds"),
    )
    if valuation is None and not quote_by_code:
        # No live data yet; start from the last official value.
        computed = calculate_valuation(detail, [])
        fund.estimated_value = computed.estimated_value
        fund.update_time = computed.update_time
    else:
        fund = merge_fund(fund, valuation, quote_by_code)
        if valuation is not None and not valuation.is_real_value:
            # A freshly added fund has no earlier net value to keep.
            fund.net_value = valuation.net_value or fund.net_value
            fund.net_value_date = valuation.net_value_date or fund.net_value_date

    watchlist.append(fund)
    await asyncio.to_thread(store.save, watchlist)
    LOGGER.info("Added fund %s %s with %d holdings", fund.code, fund.name, len(fund.holdings))
    return fund


async def remove_fund(code: str, store: WatchlistStore) -> None:
    watchlist = await asyncio.to_thread(store.load)
    remaining = [f for f in watchlist if f.code != code]
    if len(remaining) == len(watchlist):
        raise NotFoundError(f"该基金不在自选列表中: {code}")
    await asyncio.to_thread(store.save, remaining)
    LOGGER.info("Removed fund %s", code)


async def clear_watchlist(store: WatchlistStore) -> None:
    await asyncio.to_thread(store.save, [])
