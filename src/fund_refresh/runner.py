from __future__ import annotations

import argparse
import asyncio
import logging
from dataclasses import replace
from pathlib import Path
from zoneinfo import ZoneInfo

from .config import Settings
from .data_sources import configure_proxy
from .errors import AppError
from .market_hours import is_market_open
from .models import Fund, FundDetail
from .orchestrator import RefreshOrchestrator
from .providers import FundValuationProvider, QuoteProvider
from .retry import RetryExecutor
from .scheduler import UpdateScheduler
from .storage import JsonWatchlistStore
from .watchlist import add_fund, remove_fund, search_fund

LOGGER = logging.getLogger(__name__)


def append_results(path: Path, rows: list[str]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as f:
        for row in rows:
            f.write(row + "\n")


def _format_record(f: Fund) -> str:
    return "\t".join(
        [
            f.update_time,
            f.code,
            f.name,
            f"{f.net_value:.4f}",
            f.net_value_date,
            f"{f.estimated_value:.4f}",
            f"{f.estimated_change:+.3f}%",
            "real" if f.is_real_value else "estimate",
            f"holdings={len(f.holdings)}",
        ]
    )


class TextFileListener:
    """Appends every published fund set to a tab-separated text file."""

    def __init__(self, output_file: Path) -> None:
        self.output_file = output_file

    def on_valuation_updated(self, funds: list[Fund]) -> None:
        append_results(self.output_file, [_format_record(f) for f in funds])

    def on_error(self, message: str) -> None:
        LOGGER.error("%s", message)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


class Application:
    """Composition root wiring the refresh pipeline together."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.retry = RetryExecutor(settings.retry)
        self.store = JsonWatchlistStore(settings.watchlist_file)
        self.valuation_provider = FundValuationProvider(self.retry)
        self.quote_provider = QuoteProvider(self.retry, concurrency=settings.concurrency)
        self.orchestrator = RefreshOrchestrator(
            self.store,
            self.valuation_provider,
            self.quote_provider,
            retry=self.retry,
            concurrency=settings.concurrency,
        )
        self.listener = TextFileListener(settings.output_file)
        tz = ZoneInfo(settings.market_timezone) if settings.market_timezone else None
        self.scheduler = UpdateScheduler(
            self.orchestrator,
            self.listener,
            settings.scheduler,
            market_gate=lambda: is_market_open(tz=tz),
        )

    async def serve(self) -> None:
        self.scheduler.start()
        try:
            await asyncio.Event().wait()
        finally:
            self.scheduler.stop()


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="自选基金实时估值刷新（交易时间内每60秒）")
    p.add_argument("--watchlist-file", default=None, help="自选列表json文件")
    p.add_argument("--output-file", default=None, help="估值结果txt（追加）")
    p.add_argument("--interval-seconds", type=float, default=None, help="刷新周期，默认60秒")
    p.add_argument("--proxy", default=None, help="可选代理地址，例如 http://127.0.0.1:7890")
    p.add_argument("--search", metavar="CODE", help="查询基金信息及重仓股（不加入自选）")
    p.add_argument("--add", metavar="CODE", help="添加基金到自选列表")
    p.add_argument("--remove", metavar="CODE", help="从自选列表移除基金")
    p.add_argument("--once", action="store_true", help="只执行一次（忽略交易时间），便于联调")
    p.add_argument("--log-level", default=None, help="日志级别，默认INFO")
    p.add_argument("--env-file", default=None, help="可选 .env 配置文件")
    return p


def settings_from_args(args: argparse.Namespace) -> Settings:
    settings = Settings.from_env(args.env_file)
    changes: dict = {}
    if args.watchlist_file:
        changes["watchlist_file"] = Path(args.watchlist_file)
    if args.output_file:
        changes["output_file"] = Path(args.output_file)
    if args.proxy is not None:
        changes["proxy"] = args.proxy.strip() or None
    if args.log_level:
        changes["log_level"] = args.log_level.upper()
    if args.interval_seconds is not None:
        changes["scheduler"] = replace(settings.scheduler, update_interval=args.interval_seconds)
    return replace(settings, **changes)


def _format_detail(detail: FundDetail) -> list[str]:
    rows = [f"{detail.code}\t{detail.name}\t{detail.net_value:.4f}\t{detail.net_value_date}"]
    for h in detail.holdings:
        rows.append(f"  {h.stock_code}\t{h.stock_name}\t{h.ratio:.2f}%")
    return rows


async def _run(app: Application, args: argparse.Namespace) -> int:
    if args.search:
        detail = await search_fund(args.search)
        for row in _format_detail(detail):
            LOGGER.info("%s", row)
        return 0
    if args.add:
        fund = await add_fund(args.add, app.store, app.valuation_provider, app.quote_provider)
        LOGGER.info("%s", _format_record(fund))
        return 0
    if args.remove:
        await remove_fund(args.remove, app.store)
        return 0
    if args.once:
        funds = await app.scheduler.refresh()
        return 0 if funds is not None else 1
    await app.serve()
    return 0


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = settings_from_args(args)
    configure_logging(settings.log_level)
    configure_proxy(settings.proxy)

    app = Application(settings)
    try:
        return asyncio.run(_run(app, args))
    except KeyboardInterrupt:
        LOGGER.info("Interrupted, exiting")
        return 0
    except (AppError, ValueError) as exc:
        LOGGER.error("%s", exc)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
