"""Tests for provider retry logic and cooperative cancellation helpers."""

from __future__ import annotations

import asyncio

import pytest

import redline.providers.shared as shared
from redline.errors import TurnCancelled
from redline.providers.base import (
    CancelToken,
    StatusEvent,
    TextDelta,
    cancellable,
    until_cancelled,
)
from redline.providers.shared import _is_retryable, render_template, tool_status, with_retry


class _FakeRateLimitError(Exception):
    pass


_FakeRateLimitError.__name__ = "RateLimitError"


class _FakeAPIStatusError(Exception):
    def __init__(self, status_code: int) -> None:
        super().__init__(f"status {status_code}")
        self.status_code = status_code


_FakeAPIStatusError.__name__ = "APIStatusError"


class _FakeOverloadedError(Exception):
    pass


_FakeOverloadedError.__name__ = "OverloadedError"


def test_is_retryable() -> None:
    assert _is_retryable(_FakeRateLimitError()) is True
    assert _is_retryable(_FakeOverloadedError()) is True
    assert _is_retryable(_FakeAPIStatusError(503)) is True
    assert _is_retryable(_FakeAPIStatusError(400)) is False
    assert _is_retryable(TimeoutError()) is True
    assert _is_retryable(ConnectionError()) is True
    assert _is_retryable(ValueError("nope")) is False


async def _collect(agen) -> list:
    return [e async for e in agen]


def test_with_retry_retries_before_output(monkeypatch) -> None:
    monkeypatch.setattr(shared, "_BASE_BACKOFF_S", 0.0)
    attempts = 0

    async def make_round():
        nonlocal attempts
        attempts += 1
        yield StatusEvent("connecting")
        if attempts < 3:
            raise _FakeRateLimitError("slow down")
        yield TextDelta("ok")

    events = asyncio.run(_collect(with_retry(make_round, CancelToken(), label="Test")))
    assert attempts == 3
    assert events[-1] == TextDelta("ok")


def test_with_retry_does_not_retry_after_text(monkeypatch) -> None:
    monkeypatch.setattr(shared, "_BASE_BACKOFF_S", 0.0)
    attempts = 0

    async def make_round():
        nonlocal attempts
        attempts += 1
        yield TextDelta("partial")
        raise _FakeRateLimitError("slow down")

    with pytest.raises(_FakeRateLimitError):
        asyncio.run(_collect(with_retry(make_round, CancelToken(), label="Test")))
    assert attempts == 1


def test_with_retry_gives_up(monkeypatch) -> None:
    monkeypatch.setattr(shared, "_BASE_BACKOFF_S", 0.0)
    attempts = 0

    async def make_round():
        nonlocal attempts
        attempts += 1
        raise _FakeAPIStatusError(500)
        yield  # pragma: no cover

    with pytest.raises(_FakeAPIStatusError):
        asyncio.run(_collect(with_retry(make_round, CancelToken(), label="Test")))
    assert attempts == shared._MAX_API_RETRIES


def test_with_retry_non_retryable_raises_immediately() -> None:
    attempts = 0

    async def make_round():
        nonlocal attempts
        attempts += 1
        raise ValueError("bad request")
        yield  # pragma: no cover

    with pytest.raises(ValueError):
        asyncio.run(_collect(with_retry(make_round, CancelToken(), label="Test")))
    assert attempts == 1


def test_cancel_token() -> None:
    token = CancelToken()
    assert token.cancelled is False
    token.raise_if_cancelled()
    token.cancel()
    assert token.cancelled is True
    with pytest.raises(TurnCancelled):
        token.raise_if_cancelled()


def test_until_cancelled_returns_result() -> None:
    async def go():
        async def value() -> int:
            return 7

        return await until_cancelled(value(), CancelToken())

    assert asyncio.run(go()) == 7


def test_until_cancelled_abandons_pending_work() -> None:
    async def go():
        token = CancelToken()
        asyncio.get_running_loop().call_later(0.01, token.cancel)
        await until_cancelled(asyncio.sleep(10), token)

    with pytest.raises(TurnCancelled):
        asyncio.run(go())


def test_cancellable_stops_mid_stream() -> None:
    async def source():
        yield 1
        yield 2
        await asyncio.sleep(10)
        yield 3  # pragma: no cover

    async def go():
        token = CancelToken()
        seen = []
        with pytest.raises(TurnCancelled):
            async for item in cancellable(source(), token):
                seen.append(item)
                if item == 2:
                    asyncio.get_running_loop().call_later(0.01, token.cancel)
        return seen

    assert asyncio.run(go()) == [1, 2]


def test_tool_status() -> None:
    assert tool_status("write_file", {"path": " src/a.ts "}) == "Running write_file on src/a.ts..."
    assert tool_status("read_file", {}) == "Running read_file..."
    assert tool_status("read_file", None) == "Running read_file..."


def test_render_template() -> None:
    assert render_template("a {{x}} b {{y}}", {"x": "1", "y": "2"}) == "a 1 b 2"
