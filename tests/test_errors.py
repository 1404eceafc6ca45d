import asyncio
import json
import socket
from urllib.error import URLError

import pytest

from fund_refresh.errors import (
    AppError,
    ErrorKind,
    NetworkError,
    NotFoundError,
    ParseError,
    StorageError,
    classify,
)


@pytest.mark.parametrize(
    "message, kind, retryable",
    [
        ("Network is unreachable", ErrorKind.NETWORK, True),
        ("request TIMEOUT after 10s", ErrorKind.NETWORK, True),
        ("connect ECONNREFUSED 127.0.0.1:80", ErrorKind.NETWORK, True),
        ("getaddrinfo ENOTFOUND example.com", ErrorKind.NETWORK, True),
        ("socket hang up", ErrorKind.NETWORK, True),
        ("failed to fetch", ErrorKind.NETWORK, True),
        ("could not parse payload", ErrorKind.PARSE, False),
        ("Unexpected token in JSON", ErrorKind.PARSE, False),
        ("SyntaxError: bad input", ErrorKind.PARSE, False),
        ("storage quota exceeded", ErrorKind.STORAGE, True),
        ("file is locked", ErrorKind.STORAGE, True),
        ("permission denied", ErrorKind.STORAGE, True),
        ("fund not found", ErrorKind.NOT_FOUND, False),
        ("未找到基金: 000001", ErrorKind.NOT_FOUND, False),
        ("something odd happened", ErrorKind.UNKNOWN, False),
    ],
)
def test_classify_by_message(message, kind, retryable):
    err = classify(RuntimeError(message))
    assert err.kind is kind
    assert err.retryable is retryable


def test_classify_is_idempotent():
    original = ParseError("bad")
    assert classify(original) is original
    assert classify(classify(RuntimeError("timeout"))).kind is ErrorKind.NETWORK


def test_classify_by_exception_type():
    assert isinstance(classify(TimeoutError("timed out")), NetworkError)
    assert isinstance(classify(ConnectionRefusedError()), NetworkError)
    assert isinstance(classify(socket.gaierror(-2, "Name or service not known")), NetworkError)
    assert isinstance(classify(URLError("boom")), NetworkError)
    assert isinstance(classify(json.JSONDecodeError("Expecting value", "", 0)), ParseError)
    assert isinstance(classify(PermissionError(13, "denied")), StorageError)


def test_asyncio_timeout_is_retryable_network_error():
    err = classify(asyncio.TimeoutError())
    assert err.kind is ErrorKind.NETWORK
    assert err.retryable is True
    assert "超时" in err.message


def test_network_messages_are_friendly():
    assert "超时" in classify(RuntimeError("timeout")).message
    assert "无法连接" in classify(RuntimeError("ECONNREFUSED")).message
    assert "无法解析服务器地址" in classify(RuntimeError("ENOTFOUND")).message


def test_error_state_snapshot():
    state = NotFoundError("未找到基金: 1").to_error_state(retry_count=2)
    assert state.kind == "not_found"
    assert state.retryable is False
    assert state.retry_count == 2
    assert state.timestamp


def test_unknown_keeps_original_message():
    err = classify(ValueError("weird"))
    assert type(err) is AppError
    assert err.message == "weird"
    assert isinstance(err.cause, ValueError)
