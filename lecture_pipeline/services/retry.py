"""
RetryPolicy: escalating per-attempt timeouts and bounded backoff.

Attempt n (1-based) runs with timeout n * T. Between attempts the caller's
task sleeps; sibling chunks keep running. Only errors flagged retryable are
retried; a RateLimitedError's retry_after is honoured up to max_delay.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from lecture_pipeline.config import Settings, get_settings
from lecture_pipeline.errors import RateLimitedError, TranscriptionError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryPolicy:
    max_attempts: int = 3
    base_timeout: float = 90.0
    backoff: str = "exponential"  # "linear" | "exponential"
    base_delay: float = 1.0
    max_delay: float = 10.0

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "RetryPolicy":
        s = settings or get_settings()
        return cls(
            max_attempts=max(1, s.WHISPER_MAX_RETRIES),
            base_timeout=s.WHISPER_TIMEOUT_SECONDS,
            backoff=s.RETRY_BACKOFF,
            base_delay=s.RETRY_BASE_DELAY_SECONDS,
            max_delay=s.RETRY_MAX_DELAY_SECONDS,
        )

    def timeout_for(self, attempt: int) -> float:
        return self.base_timeout * attempt

    def delay_for(self, attempt: int, error: BaseException | None = None) -> float:
        """Pause after failed attempt `attempt` (1-based)."""
        if isinstance(error, RateLimitedError) and error.retry_after is not None:
            return min(max(error.retry_after, 0.0), self.max_delay)
        if self.backoff == "linear":
            delay = self.base_delay * attempt
        else:
            delay = self.base_delay * (2 ** (attempt - 1))
        return min(delay, self.max_delay)

    def should_retry(self, error: BaseException, attempt: int) -> bool:
        if attempt >= self.max_attempts:
            return False
        return isinstance(error, TranscriptionError) and error.retryable

    async def run(
        self,
        op: Callable[[int, float], Awaitable[T]],
        label: str = "",
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> tuple[T, int]:
        """
        Call op(attempt, timeout) until it succeeds or the error is not retryable.
        Returns (result, attempts used). Re-raises the last error with .attempts set.
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                return await op(attempt, self.timeout_for(attempt)), attempt
            except Exception as e:
                e.attempts = attempt
                if not self.should_retry(e, attempt):
                    raise
                delay = self.delay_for(attempt, e)
                logger.warning(
                    "%s attempt %d/%d failed (%s); retrying in %.1fs",
                    label or "operation", attempt, self.max_attempts, e, delay,
                )
                await sleep(delay)
