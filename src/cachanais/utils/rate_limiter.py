"""Politeness policy: per-host delay with jitter, a concurrency cap and a request budget."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
import logging
import random
import time


logger = logging.getLogger(__name__)


@dataclass
class HostRateLimitState:
    """Dispatch bookkeeping for a single host."""

    host: str
    semaphore: asyncio.Semaphore
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    last_dispatch: float | None = None
    total_requests: int = 0
    total_wait: float = 0.0


class DomainRateLimiter:
    """Gate request dispatch per host.

    At most ``parallelism`` requests are in flight per host, and two
    consecutive dispatches to the same host are at least
    ``delay + uniform(0, random_delay)`` seconds apart.
    """

    def __init__(
        self,
        delay: float = 0.0,
        random_delay: float = 0.0,
        parallelism: int = 1,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], object] = asyncio.sleep,
        rng: random.Random | None = None,
    ):
        if parallelism < 1:
            raise ValueError("parallelism must be at least 1")
        if delay < 0 or random_delay < 0:
            raise ValueError("delays must not be negative")
        self.delay = delay
        self.random_delay = random_delay
        self.parallelism = parallelism
        self._clock = clock
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._host_states: dict[str, HostRateLimitState] = {}

    def _get_host_state(self, host: str) -> HostRateLimitState:
        if host not in self._host_states:
            self._host_states[host] = HostRateLimitState(
                host=host,
                semaphore=asyncio.Semaphore(self.parallelism),
            )
        return self._host_states[host]

    def next_delay(self) -> float:
        """Base delay plus jitter for the next dispatch."""
        if self.random_delay > 0:
            return self.delay + self._rng.uniform(0, self.random_delay)
        return self.delay

    async def _wait_turn(self, state: HostRateLimitState) -> None:
        async with state.lock:
            if state.last_dispatch is not None:
                wait = self.next_delay() - (self._clock() - state.last_dispatch)
                if wait > 0:
                    logger.debug(f"[{state.host}] Rate limiting: sleeping for {wait:.2f}s")
                    state.total_wait += wait
                    await self._sleep(wait)
            state.last_dispatch = self._clock()
            state.total_requests += 1

    @asynccontextmanager
    async def slot(self, host: str) -> AsyncIterator[None]:
        """Hold one of the host's in-flight slots for the duration of a request."""
        state = self._get_host_state(host)
        async with state.semaphore:
            await self._wait_turn(state)
            yield

    def get_stats(self) -> dict[str, dict[str, float]]:
        return {
            host: {
                "total_requests": state.total_requests,
                "total_wait_s": round(state.total_wait, 3),
            }
            for host, state in self._host_states.items()
        }


class RequestBudget:
    """Hard ceiling on the number of requests issued in one crawl."""

    def __init__(self, maximum: int):
        if maximum < 0:
            raise ValueError("maximum must not be negative")
        self.maximum = maximum
        self.issued = 0

    @property
    def remaining(self) -> int:
        return self.maximum - self.issued

    @property
    def exhausted(self) -> bool:
        return self.issued >= self.maximum

    def try_acquire(self) -> bool:
        """Reserve one request; contains no await so it is atomic for asyncio workers."""
        if self.issued >= self.maximum:
            return False
        self.issued += 1
        return True
