"""Periodic valuation refresh with failure tracking."""

from __future__ import annotations

import asyncio
import datetime as dt
import logging
from dataclasses import replace
from typing import Any, Awaitable, Callable, Protocol

from .config import SchedulerConfig
from .market_hours import is_market_open
from .models import Fund, SchedulerStatus

LOGGER = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]


class ValuationListener(Protocol):
    def on_valuation_updated(self, funds: list[Fund]) -> None: ...

    def on_error(self, message: str) -> None: ...


class Refresher(Protocol):
    async def refresh_all(self, tracked: list[Fund] | None = None) -> list[Fund]: ...


class PeriodicTimer:
    """Cancellable ticking task: calls ``callback`` every ``interval`` seconds."""

    def __init__(
        self,
        interval: float,
        callback: Callable[[], Any],
        *,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.interval = interval
        self._callback = callback
        self._sleep = sleep
        self._task: asyncio.Task | None = None

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.active:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    def cancel(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def _run(self) -> None:
        while True:
            await self._sleep(self.interval)
            self._callback()


class UpdateScheduler:
    """Drives refresh cycles on a fixed period.

    Cycles never overlap: a tick that fires while a cycle is still running is
    skipped. ``stop()`` cancels the timer and any pending retry but lets an
    in-flight cycle finish. Automatic retries are only armed while running.
    """

    def __init__(
        self,
        orchestrator: Refresher,
        listener: ValuationListener,
        config: SchedulerConfig | None = None,
        *,
        market_gate: Callable[[], bool] = is_market_open,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.config = config or SchedulerConfig()
        self._orchestrator = orchestrator
        self._listener = listener
        self._market_gate = market_gate
        self._sleep = sleep
        self._status = SchedulerStatus()
        self._timer: PeriodicTimer | None = None
        self._retry_task: asyncio.Task | None = None
        self._cycles: set[asyncio.Task] = set()
        self._busy = False

    def start(self) -> None:
        if self._status.is_running:
            LOGGER.info("Scheduler is already running")
            return

        LOGGER.info("Starting valuation update scheduler, interval: %ss", self.config.update_interval)
        self._status.is_running = True
        self._spawn_cycle()
        self._timer = PeriodicTimer(self.config.update_interval, self._spawn_cycle, sleep=self._sleep)
        self._timer.start()

    def stop(self) -> None:
        if not self._status.is_running:
            return

        LOGGER.info("Stopping valuation update scheduler")
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._cancel_retry()
        self._status.is_running = False

    async def refresh(self) -> list[Fund] | None:
        """Run one cycle now, regardless of market hours."""
        LOGGER.info("Manual valuation refresh triggered")
        return await self._execute_update(force=True)

    def get_status(self) -> SchedulerStatus:
        return replace(self._status)

    def update_config(self, **changes: Any) -> None:
        was_running = self._status.is_running
        if was_running:
            self.stop()
        self.config = replace(self.config, **changes)
        if was_running:
            self.start()

    async def wait_idle(self) -> None:
        """Wait until no cycle or pending retry is left."""
        while self._cycles:
            await asyncio.gather(*list(self._cycles), return_exceptions=True)

    def _spawn_cycle(self) -> None:
        task = asyncio.get_running_loop().create_task(self._execute_update())
        self._cycles.add(task)
        task.add_done_callback(self._cycles.discard)

    async def _execute_update(self, force: bool = False) -> list[Fund] | None:
        if not force and not self._market_gate():
            return None
        if self._busy:
            LOGGER.info("Previous refresh still running, skip this one")
            return None

        self._busy = True
        try:
            funds = await self._orchestrator.refresh_all()
        except Exception as exc:
            self._handle_update_error(exc)
            return None
        finally:
            self._busy = False

        self._status.last_update_time = dt.datetime.now().isoformat(timespec="seconds")
        self._status.last_error = None
        self._status.consecutive_errors = 0
        self._notify(self._listener.on_valuation_updated, funds)
        LOGGER.info("Valuation update successful, updated %d funds", len(funds))
        return funds

    def _handle_update_error(self, exc: Exception) -> None:
        message = str(exc) or type(exc).__name__
        self._status.last_error = message
        self._status.consecutive_errors += 1
        LOGGER.error(
            "Valuation update failed (%d/%d): %s",
            self._status.consecutive_errors,
            self.config.max_retries,
            message,
        )

        if self._status.consecutive_errors < self.config.max_retries:
            if not self._status.is_running:
                return
            LOGGER.info("Will retry in %ss", self.config.retry_delay)
            self._cancel_retry()
            self._retry_task = asyncio.get_running_loop().create_task(self._retry_later())
            self._cycles.add(self._retry_task)
            self._retry_task.add_done_callback(self._cycles.discard)
        elif self._status.consecutive_errors == self.config.max_retries:
            self._notify(self._listener.on_error, f"网络连接异常，请检查网络后重试 ({message})")

    async def _retry_later(self) -> None:
        await self._sleep(self.config.retry_delay)
        self._retry_task = None
        if not self._status.is_running:
            return
        await self._execute_update()

    def _cancel_retry(self) -> None:
        if self._retry_task is not None:
            self._retry_task.cancel()
            self._retry_task = None

    def _notify(self, callback: Callable[[Any], None], payload: Any) -> None:
        try:
            callback(payload)
        except Exception:
            LOGGER.exception("Listener %r failed", callback)
