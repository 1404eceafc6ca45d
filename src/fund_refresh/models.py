from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field
from typing import Any


def to_float(value: Any) -> float:
    """Normalize a provider number; anything malformed becomes 0."""
    try:
        result = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(result):
        return 0.0
    return result


@dataclass(slots=True)
class Holding:
    stock_code: str
    stock_name: str
    ratio: float
    change: float = 0.0
    price: float = 0.0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Holding:
        return cls(
            stock_code=str(data.get("stock_code", "")),
            stock_name=str(data.get("stock_name", "")),
            ratio=to_float(data.get("ratio")),
            change=to_float(data.get("change")),
            price=to_float(data.get("price")),
        )


@dataclass(slots=True)
class Quote:
    code: str
    name: str
    price: float
    change: float
    change_amount: float = 0.0


@dataclass(slots=True)
class Fund:
    code: str
    name: str
    net_value: float
    net_value_date: str
    estimated_value: float = 0.0
    estimated_change: float = 0.0
    update_time: str = ""
    is_real_value: bool = False
    holdings: list[Holding] = field(default_factory=list)
    added_at: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Fund:
        return cls(
            code=str(data["code"]),
            name=str(data.get("name", "")),
            net_value=to_float(data.get("net_value")),
            net_value_date=str(data.get("net_value_date", "")),
            estimated_value=to_float(data.get("estimated_value")),
            estimated_change=to_float(data.get("estimated_change")),
            update_time=str(data.get("update_time", "")),
            is_real_value=bool(data.get("is_real_value", False)),
            holdings=[Holding.from_dict(h) for h in data.get("holdings") or []],
            added_at=str(data.get("added_at", "")),
        )


@dataclass(slots=True)
class FundValuation:
    """One reading of the primary (fundgz) valuation source."""

    fund_code: str
    name: str
    net_value: float
    net_value_date: str
    estimated_value: float
    estimated_change: float
    update_time: str
    is_real_value: bool
    is_trading_day: bool


@dataclass(slots=True)
class FundDetail:
    code: str
    name: str
    net_value: float
    net_value_date: str
    holdings: list[Holding] = field(default_factory=list)


@dataclass(slots=True)
class Valuation:
    estimated_value: float
    estimated_change: float
    update_time: str
    is_complete: bool


@dataclass(slots=True)
class ErrorState:
    kind: str
    message: str
    retryable: bool
    timestamp: str
    retry_count: int = 0


@dataclass(slots=True)
class SchedulerStatus:
    is_running: bool = False
    last_update_time: str | None = None
    last_error: str | None = None
    consecutive_errors: int = 0
