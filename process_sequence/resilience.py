"""
Resilience wrappers for remote generation calls.

Every remote call is composed as
``with_timeout(retry_with_backoff(op, ...), timeout, label)`` so the timeout
bounds the whole retry sequence, not each attempt. A timeout cancels the
pending call instead of leaving it running unobserved.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from .errors import GenerationTimeoutError, TransientOverloadError, TransportTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


async def retry_with_backoff(
    op: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    initial_delay: float = 1.0,
    *,
    label: str = "operation",
    sleep: Optional[Sleep] = None,
) -> T:
    """Run ``op``, retrying transient failures with doubling delays.

    Args:
        op: Zero-argument coroutine factory, called once per attempt
        max_retries: Retries allowed after the first attempt
        initial_delay: Delay before the first retry, in seconds
        label: Name used in log messages
        sleep: Sleep coroutine, ``asyncio.sleep`` by default

    Returns:
        The first successful result of ``op``

    Raises:
        The last transient error once retries are exhausted, or the first
        non-transient error immediately.
    """
    sleep = sleep or asyncio.sleep
    delay = initial_delay
    attempt = 0
    while True:
        try:
            return await op()
        except TransientOverloadError as e:
            if attempt >= max_retries:
                logger.error(f"{label}: giving up after {attempt + 1} attempts: {e}")
                raise
            attempt += 1
            logger.warning(f"{label}: transient failure ({e.message}), retry {attempt}/{max_retries} in {delay:g}s")
            await sleep(delay)
            delay *= 2


async def with_timeout(op: Awaitable[T], timeout: float, label: str) -> T:
    """Race ``op`` against ``timeout`` seconds.

    On expiry the pending operation is cancelled and
    ``GenerationTimeoutError`` names ``label`` and the time limit. A timeout
    raised by ``op`` itself is reported as ``TransportTimeoutError``.
    """
    async def guarded() -> T:
        try:
            return await op
        except asyncio.TimeoutError as e:
            raise TransportTimeoutError(f"{label}: connection timed out", {"label": label}) from e

    try:
        return await asyncio.wait_for(guarded(), timeout)
    except asyncio.TimeoutError:
        logger.error(f"{label}: no result within {timeout:g}s, call cancelled")
        raise GenerationTimeoutError(label, timeout) from None


async def call_with_resilience(
    op: Callable[[], Awaitable[T]],
    *,
    timeout: float,
    label: str,
    max_retries: int = 3,
    initial_delay: float = 1.0,
    sleep: Optional[Sleep] = None,
) -> T:
    return await with_timeout(
        retry_with_backoff(op, max_retries, initial_delay, label=label, sleep=sleep),
        timeout,
        label,
    )
