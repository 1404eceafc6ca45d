"""Classification-aware retry with exponential backoff."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Generic, TypeVar

from .config import RetryConfig
from .errors import AppError, classify
from .models import ErrorState

LOGGER = logging.getLogger(__name__)

ERROR_HISTORY_SIZE = 100

T = TypeVar("T")


@dataclass(slots=True)
class RetryOutcome(Generic[T]):
    """Result of a retried operation: either a value or a terminal error."""

    value: T | None = None
    error: AppError | None = None
    attempts: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]


class RetryExecutor:
    def __init__(
        self,
        config: RetryConfig | None = None,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        **overrides: Any,
    ) -> None:
        self.config = replace(config or RetryConfig(), **overrides)
        self._sleep = sleep
        self._history: deque[ErrorState] = deque(maxlen=ERROR_HISTORY_SIZE)

    def delay_for(self, attempt: int) -> float:
        """Backoff before the retry that follows failed attempt ``attempt`` (1-based)."""
        cfg = self.config
        delay = cfg.base_delay * cfg.backoff_multiplier ** (attempt - 1)
        return min(delay, cfg.max_delay)

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        context: str = "operation",
    ) -> RetryOutcome[T]:
        attempts = 0
        while True:
            attempts += 1
            try:
                value = await operation()
            except Exception as exc:
                error = classify(exc)
            else:
                return RetryOutcome(value=value, attempts=attempts)

            retries_done = attempts - 1
            if not error.retryable:
                self._record(error, retries_done)
                return RetryOutcome(error=error, attempts=attempts)

            if retries_done >= self.config.max_retries:
                self._record(error, retries_done)
                exhausted = AppError(
                    f"{context} 失败，已重试 {self.config.max_retries} 次: {error.message}",
                    error.kind,
                    False,
                    error.cause or error,
                )
                return RetryOutcome(error=exhausted, attempts=attempts)

            delay = self.delay_for(attempts)
            LOGGER.warning(
                "%s failed, retrying (%d/%d) in %.2fs: %s",
                context,
                attempts,
                self.config.max_retries,
                delay,
                error.message,
            )
            await self._sleep(delay)

    async def with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        context: str = "operation",
    ) -> T:
        """Like :meth:`execute` but raise the terminal error."""
        outcome = await self.execute(operation, context)
        return outcome.unwrap()

    def _record(self, error: AppError, retry_count: int) -> None:
        state = error.to_error_state(retry_count)
        self._history.append(state)
        LOGGER.error("[%s] %s (retries=%d)", state.kind, state.message, retry_count)

    def error_history(self) -> list[ErrorState]:
        return list(self._history)

    def last_error(self) -> ErrorState | None:
        return self._history[-1] if self._history else None

    def clear_error_history(self) -> None:
        self._history.clear()
