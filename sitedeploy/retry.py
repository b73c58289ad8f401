"""Retry policy utilities for calls to external services."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, TypeVar

from sitedeploy.config.models import RetryConfig
from sitedeploy.exceptions import TransientClientError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryPolicy:
    """Retry policy with exponential backoff."""

    max_attempts: int = 3
    initial_delay_seconds: float = 0.5
    max_delay_seconds: float = 8.0
    backoff_multiplier: float = 2.0
    retryable: tuple[type[BaseException], ...] = field(
        default_factory=lambda: (TransientClientError, TimeoutError, asyncio.TimeoutError, ConnectionError)
    )

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.initial_delay_seconds < 0:
            raise ValueError("initial_delay_seconds must be >= 0")
        if self.max_delay_seconds < 0:
            raise ValueError("max_delay_seconds must be >= 0")
        if self.backoff_multiplier < 1.0:
            raise ValueError("backoff_multiplier must be >= 1.0")

    @classmethod
    def from_config(cls, config: RetryConfig) -> RetryPolicy:
        return cls(
            max_attempts=config.max_attempts,
            initial_delay_seconds=config.initial_delay_seconds,
            max_delay_seconds=config.max_delay_seconds,
            backoff_multiplier=config.backoff_multiplier,
        )


def calculate_backoff_delay(attempt: int, policy: RetryPolicy) -> float:
    """Delay in seconds to wait after failed attempt number ``attempt`` (1-based)."""
    if attempt <= 1:
        return min(policy.initial_delay_seconds, policy.max_delay_seconds)
    raw = policy.initial_delay_seconds * (policy.backoff_multiplier ** (attempt - 1))
    return min(policy.max_delay_seconds, raw)


def should_retry(error: BaseException, attempt: int, policy: RetryPolicy) -> bool:
    if attempt >= policy.max_attempts:
        return False
    return isinstance(error, policy.retryable)


def call_with_retry(
    func: Callable[[], T],
    policy: RetryPolicy,
    *,
    description: str,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call ``func`` and retry transient failures according to ``policy``."""
    attempt = 0
    while True:
        attempt += 1
        try:
            return func()
        except Exception as exc:
            if not should_retry(exc, attempt, policy):
                raise
            delay = calculate_backoff_delay(attempt, policy)
            logger.warning(
                "%s failed (attempt %d/%d): %s; retrying in %.1fs",
                description,
                attempt,
                policy.max_attempts,
                exc,
                delay,
            )
            sleep(delay)


async def acall_with_retry(
    func: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    description: str,
    timeout_seconds: float | None = None,
) -> T:
    """Async variant of :func:`call_with_retry` with a per-attempt timeout."""
    attempt = 0
    while True:
        attempt += 1
        try:
            if timeout_seconds is None:
                return await func()
            return await asyncio.wait_for(func(), timeout=timeout_seconds)
        except Exception as exc:
            if not should_retry(exc, attempt, policy):
                raise
            delay = calculate_backoff_delay(attempt, policy)
            logger.warning(
                "%s failed (attempt %d/%d): %s; retrying in %.1fs",
                description,
                attempt,
                policy.max_attempts,
                exc,
                delay,
            )
            await asyncio.sleep(delay)
