"""One refresh cycle over the tracked fund set."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import Mapping

from .batch import MAX_CONCURRENT_REQUESTS, batch_execute
from .estimator import calculate_valuation
from .models import Fund, FundValuation, Holding, Quote
from .providers import QuoteSource, ValuationSource
from .retry import RetryExecutor
from .storage import WatchlistStore

LOGGER = logging.getLogger(__name__)


class RefreshOrchestrator:
    def __init__(
        self,
        store: WatchlistStore,
        valuation_provider: ValuationSource,
        quote_provider: QuoteSource,
        retry: RetryExecutor | None = None,
        concurrency: int = MAX_CONCURRENT_REQUESTS,
    ) -> None:
        self.store = store
        self.valuation_provider = valuation_provider
        self.quote_provider = quote_provider
        self.retry = retry or RetryExecutor()
        self.concurrency = concurrency

    async def refresh_all(self, tracked: list[Fund] | None = None) -> list[Fund]:
        """Refresh every tracked fund and persist the merged result.

        Provider failures only leave stale data behind; a failure to persist
        is the one error that reaches the caller.
        """
        if tracked is None:
            tracked = await asyncio.to_thread(self.store.load)
        if not tracked:
            return []

        valuations = await batch_execute(tracked, self._valuation_or_none, self.concurrency)

        if not any(v is not None and v.is_trading_day for v in valuations):
            LOGGER.info("No trading session reported by any of %d funds, skip update", len(tracked))
            return tracked

        codes = list(dict.fromkeys(h.stock_code for fund in tracked for h in fund.holdings))
        quote_by_code = await self._quotes_by_code(codes)

        updated = [
            merge_fund(fund, valuation, quote_by_code)
            for fund, valuation in zip(tracked, valuations)
        ]

        await self.retry.with_retry(
            lambda: asyncio.to_thread(self.store.save, updated),
            context="save watchlist",
        )
        LOGGER.info(
            "Refreshed %d funds (%d primary valuations, %d quotes)",
            len(updated),
            sum(v is not None for v in valuations),
            len(quote_by_code),
        )
        return updated

    async def _valuation_or_none(self, fund: Fund) -> FundValuation | None:
        try:
            return await self.valuation_provider.get_valuation(fund.code)
        except Exception:
            LOGGER.exception("Valuation provider failed for %s", fund.code)
            return None

    async def _quotes_by_code(self, codes: list[str]) -> dict[str, Quote]:
        if not codes:
            return {}
        try:
            quotes = await self.quote_provider.get_quotes(codes)
        except Exception:
            LOGGER.exception("Quote provider failed for %d codes", len(codes))
            return {}
        return {q.code: q for q in quotes}


def merge_fund(
    fund: Fund,
    valuation: FundValuation | None,
    quote_by_code: Mapping[str, Quote],
) -> Fund:
    """Combine one fund with this cycle's data without touching the input."""
    has_quotes = bool(quote_by_code)
    if has_quotes:
        holdings = [_refresh_holding(h, quote_by_code.get(h.stock_code)) for h in fund.holdings]
    else:
        holdings = [replace(h) for h in fund.holdings]

    if valuation is not None:
        return replace(
            fund,
            net_value=valuation.net_value if valuation.is_real_value else fund.net_value,
            net_value_date=valuation.net_value_date if valuation.is_real_value else fund.net_value_date,
            estimated_value=valuation.estimated_value,
            estimated_change=valuation.estimated_change,
            update_time=valuation.update_time,
            is_real_value=valuation.is_real_value,
            holdings=holdings,
        )

    if has_quotes:
        computed = calculate_valuation(fund, quote_by_code.values())
        if not computed.is_complete:
            LOGGER.debug("Fallback valuation for %s is based on partial holdings", fund.code)
        return replace(
            fund,
            estimated_value=computed.estimated_value,
            estimated_change=computed.estimated_change,
            update_time=computed.update_time,
            is_real_value=False,
            holdings=holdings,
        )

    return replace(fund, holdings=holdings)


def _refresh_holding(holding: Holding, quote: Quote | None) -> Holding:
    if quote is None:
        return replace(holding)
    return replace(holding, change=quote.change, price=quote.price)
