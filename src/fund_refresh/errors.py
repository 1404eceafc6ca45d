from __future__ import annotations

import asyncio
import datetime as dt
import json
import socket
from enum import Enum
from urllib.error import URLError

from .models import ErrorState


class ErrorKind(str, Enum):
    NETWORK = "network"
    PARSE = "parse"
    STORAGE = "storage"
    NOT_FOUND = "not_found"
    UNKNOWN = "unknown"


class AppError(RuntimeError):
    """A failure that has already been classified."""

    def __init__(
        self,
        message: str,
        kind: ErrorKind = ErrorKind.UNKNOWN,
        retryable: bool = False,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.retryable = retryable
        self.cause = cause

    def to_error_state(self, retry_count: int = 0) -> ErrorState:
        return ErrorState(
            kind=self.kind.value,
            message=self.message,
            retryable=self.retryable,
            timestamp=dt.datetime.now().isoformat(timespec="seconds"),
            retry_count=retry_count,
        )


class NetworkError(AppError):
    def __init__(self, message: str, cause: BaseException | None = None) -> None:
        super().__init__(message, ErrorKind.NETWORK, True, cause)


class ParseError(AppError):
    def __init__(self, message: str, cause: BaseException | None = None) -> None:
        super().__init__(message, ErrorKind.PARSE, False, cause)


class StorageError(AppError):
    def __init__(self, message: str, cause: BaseException | None = None) -> None:
        super().__init__(message, ErrorKind.STORAGE, True, cause)


class NotFoundError(AppError):
    def __init__(self, message: str) -> None:
        super().__init__(message, ErrorKind.NOT_FOUND, False)


_NETWORK_MARKERS = (
    "network",
    "timeout",
    "timed out",
    "econnrefused",
    "connection refused",
    "enotfound",
    "name or service not known",
    "nodename nor servname",
    "socket",
    "fetch",
)
_PARSE_MARKERS = ("parse", "json", "syntax")
_STORAGE_MARKERS = ("storage", "file", "permission")
_NOT_FOUND_MARKERS = ("not found", "未找到")

# asyncio.TimeoutError is only an alias of TimeoutError from 3.11 on
_TIMEOUT_TYPES = (TimeoutError, asyncio.TimeoutError)


def classify(exc: BaseException) -> AppError:
    """Map any failure onto the error taxonomy.

    Already classified errors are returned unchanged. Well-known exception
    types are recognized first; everything else falls back to matching the
    lowercase message. Anything ambiguous ends up as a non-retryable
    ``UNKNOWN`` so an unrecoverable condition is never retried forever.
    """
    if isinstance(exc, AppError):
        return exc

    if isinstance(exc, (*_TIMEOUT_TYPES, ConnectionError, socket.gaierror, URLError)):
        return NetworkError(_network_message(exc), exc)
    if isinstance(exc, json.JSONDecodeError):
        return ParseError("数据解析失败", exc)
    if isinstance(exc, (PermissionError, FileNotFoundError, IsADirectoryError)):
        return StorageError("存储操作失败", exc)

    message = str(exc).lower()
    if any(marker in message for marker in _NETWORK_MARKERS):
        return NetworkError(_network_message(exc), exc)
    if any(marker in message for marker in _PARSE_MARKERS):
        return ParseError("数据解析失败", exc)
    if any(marker in message for marker in _STORAGE_MARKERS):
        return StorageError("存储操作失败", exc)
    if any(marker in message for marker in _NOT_FOUND_MARKERS):
        return NotFoundError(str(exc))
    return AppError(str(exc) or type(exc).__name__, ErrorKind.UNKNOWN, False, exc)


def _network_message(exc: BaseException) -> str:
    message = str(exc).lower()
    if isinstance(exc, _TIMEOUT_TYPES) or "timeout" in message or "timed out" in message:
        return "网络连接超时，请检查网络状态"
    if isinstance(exc, ConnectionRefusedError) or "econnrefused" in message or "connection refused" in message:
        return "无法连接到服务器，请稍后重试"
    if (
        isinstance(exc, socket.gaierror)
        or "enotfound" in message
        or "name or service not known" in message
        or "nodename nor servname" in message
    ):
        return "无法解析服务器地址，请检查网络连接"
    return "网络连接异常，请检查网络状态"
