"""Asynchronous collaborators wrapping the blocking data sources."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Iterable, Protocol

from .batch import MAX_CONCURRENT_REQUESTS, batch_execute
from .data_sources import fetch_fund_valuation, fetch_stock_quotes
from .models import FundValuation, Quote
from .retry import RetryExecutor

LOGGER = logging.getLogger(__name__)

QUOTE_GROUP_SIZE = 50


class ValuationSource(Protocol):
    async def get_valuation(self, fund_code: str) -> FundValuation | None: ...


class QuoteSource(Protocol):
    async def get_quotes(self, codes: Iterable[str]) -> list[Quote]: ...


class FundValuationProvider:
    """Primary valuation per fund; ``None`` whenever it cannot be obtained."""

    def __init__(
        self,
        retry: RetryExecutor | None = None,
        fetch: Callable[[str], FundValuation] = fetch_fund_valuation,
    ) -> None:
        self._retry = retry or RetryExecutor()
        self._fetch = fetch

    async def get_valuation(self, fund_code: str) -> FundValuation | None:
        outcome = await self._retry.execute(
            lambda: asyncio.to_thread(self._fetch, fund_code),
            context=f"fund valuation {fund_code}",
        )
        if not outcome.ok:
            LOGGER.warning("No valuation for %s: %s", fund_code, outcome.error)
            return None
        return outcome.value


class QuoteProvider:
    """Best-effort real-time quotes; missing codes are simply absent."""

    def __init__(
        self,
        retry: RetryExecutor | None = None,
        fetch: Callable[[list[str]], list[Quote]] = fetch_stock_quotes,
        group_size: int = QUOTE_GROUP_SIZE,
        concurrency: int = MAX_CONCURRENT_REQUESTS,
    ) -> None:
        self._retry = retry or RetryExecutor()
        self._fetch = fetch
        self._group_size = max(1, group_size)
        self._concurrency = concurrency

    async def get_quotes(self, codes: Iterable[str]) -> list[Quote]:
        unique = list(dict.fromkeys(c for c in codes if c))
        if not unique:
            return []

        groups = [
            unique[i : i + self._group_size] for i in range(0, len(unique), self._group_size)
        ]
        results = await batch_execute(groups, self._fetch_group, self._concurrency)

        quotes: list[Quote] = []
        for group_quotes in results:
            quotes.extend(group_quotes)
        return quotes

    async def _fetch_group(self, codes: list[str]) -> list[Quote]:
        outcome = await self._retry.execute(
            lambda: asyncio.to_thread(self._fetch, codes),
            context=f"stock quotes ({len(codes)} codes)",
        )
        if not outcome.ok:
            LOGGER.warning("Quotes unavailable for %d codes: %s", len(codes), outcome.error)
            return []
        return outcome.value or []
