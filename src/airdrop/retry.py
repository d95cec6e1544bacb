"""Bounded retry around a fallible coroutine."""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from typing import TypeVar

import airdrop.constants as C
from airdrop.errors import RetriesExhausted

log = logging.getLogger("airdrop.retry")

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    max_attempts: int = C.DEFAULT_MAX_ATTEMPTS
    base_delay: float = C.DEFAULT_RETRY_DELAY
    backoff: C.Backoff = C.Backoff.CONSTANT
    max_delay: float = C.MAX_RETRY_DELAY
    jitter: bool = False

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.base_delay < 0:
            raise ValueError(f"base_delay must be >= 0, got {self.base_delay}")

    def delay_for(self, attempt: int, rng: Callable[[], float] = random.random) -> float:
        """Seconds to wait after failed attempt number ``attempt`` (1-based)."""
        match self.backoff:
            case C.Backoff.CONSTANT:
                delay = self.base_delay
            case C.Backoff.LINEAR:
                delay = self.base_delay * attempt
            case C.Backoff.EXPONENTIAL:
                delay = self.base_delay * 2 ** (attempt - 1)
            case _:
                raise ValueError(f"Unknown backoff {self.backoff!r}")
        delay = min(delay, self.max_delay)
        if self.jitter:
            # full jitter
            delay = rng() * delay
        return delay


class RetryExecutor:
    """Invoke an async operation until it succeeds or attempts run out.

    Failed attempts are logged as warnings and otherwise kept quiet until the
    final one, which raises ``RetriesExhausted`` chained to the last error.
    Only exceptions matching ``retry_on`` (and accepted by ``retry_if``, when
    given) are retried; anything else propagates unchanged.
    """

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        *,
        retry_on: tuple[type[BaseException], ...] = (Exception,),
        retry_if: Callable[[BaseException], bool] | None = None,
        sleep: Sleep = asyncio.sleep,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self.policy = policy or RetryPolicy()
        self.retry_on = retry_on
        self.retry_if = retry_if
        self._sleep = sleep
        self._rng = rng

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        max_attempts: int | None = None,
        base_delay: float | None = None,
        *,
        label: str = "operation",
    ) -> T:
        policy = self.policy
        if max_attempts is not None or base_delay is not None:
            policy = replace(
                policy,
                max_attempts=policy.max_attempts if max_attempts is None else max_attempts,
                base_delay=policy.base_delay if base_delay is None else base_delay,
            )

        attempt = 0
        while True:
            attempt += 1
            try:
                return await operation()
            except self.retry_on as e:
                if self.retry_if is not None and not self.retry_if(e):
                    log.warning("%s failed permanently: %s", label, e)
                    raise
                log.warning("%s attempt %d/%d failed: %s", label, attempt, policy.max_attempts, e)
                if attempt >= policy.max_attempts:
                    raise RetriesExhausted(attempt, e) from e
                delay = policy.delay_for(attempt, self._rng)
                log.debug("%s retrying in %.2fs", label, delay)
                await self._sleep(delay)
