"""Two-level resilience policy for model calls.

``RetryPolicy`` re-runs a whole call on transient provider failures with
exponential backoff. ``EscalationPolicy`` handles schema-invalid output by
retrying once on a fallback model. They compose as
``retry.run(lambda: escalation.run(attempt))``.
"""
import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

import httpx

from domain.errors import EvaluationError, SchemaInvalidError

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_STATUS = {429, 500, 503}


def is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, EvaluationError):
        return exc.retryable
    if isinstance(exc, httpx.HTTPStatusError) and exc.response.status_code in RETRYABLE_STATUS:
        return True
    # ConnectError also covers DNS resolution failures
    if isinstance(exc, (httpx.TimeoutException, httpx.ConnectError,
                        httpx.ReadError, httpx.RemoteProtocolError)):
        return True
    if isinstance(exc, (ConnectionResetError, asyncio.TimeoutError)):
        return True
    message = str(exc).lower()
    return "timeout" in message or "network" in message


class RetryPolicy:
    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        jitter: float = 0.3,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rand: Callable[[], float] = random.random,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.jitter = jitter
        self._sleep = sleep
        self._rand = rand

    def backoff(self, attempt: int) -> float:
        delay = min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)
        return delay + self._rand() * self.jitter * delay

    async def run(
        self,
        fn: Callable[[], Awaitable[T]],
        on_retry: Optional[Callable[[int, BaseException], None]] = None,
    ) -> T:
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await fn()
            except Exception as exc:
                if attempt == self.max_attempts or not is_retryable(exc):
                    raise
                delay = self.backoff(attempt)
                logger.warning(
                    f"Retry attempt {attempt}/{self.max_attempts} after {delay:.2f}s: {exc}")
                if on_retry is not None:
                    on_retry(attempt, exc)
                await self._sleep(delay)
        raise RuntimeError("Unexpected retry exhaustion")


@dataclass(frozen=True)
class ModelChoice:
    model: str
    temperature: float


class EscalationPolicy:
    def __init__(self, primary: ModelChoice, fallback: ModelChoice):
        self.primary = primary
        self.fallback = fallback

    async def run(
        self,
        attempt: Callable[[ModelChoice], Awaitable[T]],
        on_escalate: Optional[Callable[[SchemaInvalidError], None]] = None,
    ) -> T:
        try:
            return await attempt(self.primary)
        except SchemaInvalidError as exc:
            logger.warning(
                f"Structured output from {self.primary.model} invalid ({exc}); "
                f"escalating to {self.fallback.model} at temperature {self.fallback.temperature}")
            if on_escalate is not None:
                on_escalate(exc)
        try:
            return await attempt(self.fallback)
        except SchemaInvalidError as exc:
            raise SchemaInvalidError(
                f"both primary and fallback produced no valid output: {exc}") from exc
