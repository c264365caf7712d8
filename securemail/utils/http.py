"""Retry helpers for HTTP calls and flaky driver lookups."""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Type, TypeVar

import httpx

T = TypeVar("T")


class RetryConfig:
    def __init__(self, *, attempts: int = 3, backoff_seconds: float = 1.0) -> None:
        self.attempts = attempts
        self.backoff_seconds = backoff_seconds


async def call_with_retry(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    retry_on: tuple[Type[BaseException], ...],
    retry_config: RetryConfig | None = None,
    **kwargs: Any,
) -> T:
    """Await ``func`` until it succeeds or ``retry_config.attempts`` is spent.

    Only exceptions listed in ``retry_on`` are retried; the last one is
    re-raised once attempts run out.
    """
    config = retry_config or RetryConfig()
    attempt = 0

    while True:
        try:
            return await func(*args, **kwargs)
        except retry_on:
            attempt += 1
            if attempt >= config.attempts:
                raise
            if config.backoff_seconds:
                await asyncio.sleep(config.backoff_seconds * attempt)


async def request_with_retry(
    func: Callable[..., Awaitable[httpx.Response]],
    *args: Any,
    retry_config: RetryConfig | None = None,
    **kwargs: Any,
) -> httpx.Response:
    async def _send() -> httpx.Response:
        response = await func(*args, **kwargs)
        response.raise_for_status()
        return response

    return await call_with_retry(
        _send,
        retry_on=(httpx.HTTPError,),
        retry_config=retry_config,
    )


__all__ = ["RetryConfig", "call_with_retry", "request_with_retry"]
