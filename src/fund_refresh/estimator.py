from __future__ import annotations

import datetime as dt
from typing import Iterable, Mapping

from .models import Fund, FundDetail, Holding, Quote, Valuation


def calculate_weighted_change(
    holdings: Iterable[Holding],
    quote_by_code: Mapping[str, Quote],
) -> tuple[float, bool]:
    """Sum of quote change times holding weight, over holdings that have a quote.

    Returns ``(estimated_change, is_complete)``; the result is complete only
    when every holding matched and there was at least one holding.
    """
    total_change = 0.0
    matched = 0
    count = 0
    for h in holdings:
        count += 1
        quote = quote_by_code.get(h.stock_code)
        if quote is None:
            continue
        total_change += quote.change * (h.ratio / 100.0)
        matched += 1
    return total_change, matched == count and count > 0


def calculate_estimated_value(net_value: float, estimated_change: float) -> float:
    return net_value * (1 + estimated_change / 100.0)


def calculate_valuation(fund: Fund | FundDetail, quotes: Iterable[Quote]) -> Valuation:
    quote_by_code = {q.code: q for q in quotes}
    change, complete = calculate_weighted_change(fund.holdings, quote_by_code)
    return Valuation(
        estimated_value=calculate_estimated_value(fund.net_value, change),
        estimated_change=change,
        update_time=dt.datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
        is_complete=complete,
    )
