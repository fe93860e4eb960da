import asyncio
import json
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Optional, TypeVar

import httpx

from app.features.analysis.services.errors import ProviderError, ProviderTimeoutError
from app.platform.config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class ClassifiedError:
    error: BaseException
    retryable: bool

    @property
    def message(self) -> str:
        return str(self.error) or type(self.error).__name__


@dataclass(frozen=True)
class AttemptResult(Generic[T]):
    """Outcome of a single attempt: either a value or a classified error."""

    value: Optional[T] = None
    failure: Optional[ClassifiedError] = None

    @property
    def ok(self) -> bool:
        return self.failure is None


@dataclass(frozen=True)
class RetryReport(Generic[T]):
    value: Optional[T]
    failure: Optional[ClassifiedError]
    attempts: int

    @property
    def ok(self) -> bool:
        return self.failure is None


def classify_error(error: BaseException) -> ClassifiedError:
    if isinstance(error, ProviderError):
        return ClassifiedError(error, error.retryable)
    if isinstance(error, (asyncio.TimeoutError, httpx.TimeoutException)):
        return ClassifiedError(error, True)
    if isinstance(error, (httpx.TransportError, ConnectionError)):
        return ClassifiedError(error, True)
    if isinstance(error, json.JSONDecodeError):
        return ClassifiedError(error, True)
    # Anything else is a bug in our code or an SDK contract change
    return ClassifiedError(error, False)


class RetryPolicy:
    """
    Bounded retry with exponential backoff for one adapter call.

    Attempt n (1-indexed) that fails with a retryable error is followed by a
    wait of ``backoff_base ** n + random() * jitter`` seconds, so with the
    defaults the second attempt starts after 2-3s and the third after 4-5s.
    Each attempt is bounded by ``attempt_timeout``; hitting it counts as a
    retryable failure.
    """

    def __init__(
        self,
        max_attempts: Optional[int] = None,
        attempt_timeout: Optional[float] = None,
        backoff_base: float = 2.0,
        jitter: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rand: Callable[[], float] = random.random,
    ):
        self.max_attempts = max(1, max_attempts or settings.ANALYSIS_MAX_ATTEMPTS)
        self.attempt_timeout = attempt_timeout if attempt_timeout is not None else settings.ANALYSIS_REQUEST_TIMEOUT
        self.backoff_base = backoff_base
        self.jitter = jitter
        self._sleep = sleep
        self._rand = rand

    def backoff_delay(self, attempt: int) -> float:
        return self.backoff_base ** attempt + self._rand() * self.jitter

    async def _attempt(self, operation: Callable[[], Awaitable[T]]) -> AttemptResult[T]:
        try:
            if self.attempt_timeout and self.attempt_timeout > 0:
                value = await asyncio.wait_for(operation(), timeout=self.attempt_timeout)
            else:
                value = await operation()
            return AttemptResult(value=value)
        except asyncio.TimeoutError:
            timeout_error = ProviderTimeoutError(
                f"Request timed out after {self.attempt_timeout:g} seconds"
            )
            return AttemptResult(failure=classify_error(timeout_error))
        except Exception as e:
            return AttemptResult(failure=classify_error(e))

    async def run(self, operation: Callable[[], Awaitable[T]], description: str = "") -> RetryReport[T]:
        """Run `operation` until it succeeds, fails terminally, or attempts run out."""
        failure: Optional[ClassifiedError] = None
        for attempt in range(1, self.max_attempts + 1):
            result = await self._attempt(operation)
            if result.ok:
                return RetryReport(value=result.value, failure=None, attempts=attempt)

            failure = result.failure
            if not failure.retryable:
                logger.error(f"Attempt {attempt}/{self.max_attempts} for {description} failed permanently: {failure.message}")
                return RetryReport(value=None, failure=failure, attempts=attempt)

            if attempt < self.max_attempts:
                delay = self.backoff_delay(attempt)
                logger.warning(
                    f"Attempt {attempt}/{self.max_attempts} failed for {description}. "
                    f"Retrying in {round(delay)}s... Error: {failure.message}"
                )
                await self._sleep(delay)

        logger.error(f"All {self.max_attempts} attempts failed for {description}: {failure.message}")
        return RetryReport(value=None, failure=failure, attempts=self.max_attempts)

    async def call(self, operation: Callable[[], Awaitable[T]], description: str = "") -> T:
        """Like `run`, but returns the value or re-raises the last error unchanged."""
        report = await self.run(operation, description)
        if not report.ok:
            raise report.failure.error
        return report.value
