"""Bounded retry loop with an explicit, independently testable backoff schedule."""

import logging
import random
import time
from dataclasses import dataclass, field
from typing import Any, Callable, TypeVar

from ticketbot.errors import BotError, ErrorKind, classify

T = TypeVar("T")

BACKOFF_LINEAR = "linear"
BACKOFF_EXPONENTIAL = "exponential"


def is_transient(exc: BaseException) -> bool:
    """Default retry predicate: only transient failures are retried."""
    return classify(exc) is ErrorKind.TRANSIENT


@dataclass(frozen=True)
class RetryPolicy:
    """
    Retry schedule for one class of external calls.

    `max_retries` counts retries after the first attempt, so a call runs at most
    `max_retries + 1` times.
    """

    max_retries: int = 3
    base_delay: float = 1.0
    backoff: str = BACKOFF_LINEAR
    jitter: float = 0.0
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.backoff not in {BACKOFF_LINEAR, BACKOFF_EXPONENTIAL}:
            raise ValueError(f"Unknown backoff: {self.backoff}")

    def delay_for(self, attempt: int) -> float:
        """Return the sleep before retry number `attempt` (1-based)."""
        if self.backoff == BACKOFF_EXPONENTIAL:
            delay = self.base_delay * (2**attempt)
        else:
            delay = self.base_delay * attempt
        if self.jitter > 0:
            delay += random.uniform(0, self.jitter)
        return delay

    def call(
        self,
        fn: Callable[[], T],
        *,
        label: str,
        logger: logging.Logger,
        retry_on: Callable[[BaseException], bool] = is_transient,
    ) -> T:
        """
        Run `fn` until it succeeds, fails permanently, or retries run out.

        Args:
            fn: Zero-argument callable performing one attempt.
            label: Operation name for log lines.
            logger: Logger used for retry diagnostics.
            retry_on: Predicate selecting retryable failures.
        Returns:
            The first successful result of `fn`.
        Raises:
            BotError: TRANSIENT once retries are exhausted.
            Exception: Non-retryable failures propagate unchanged.
        """
        attempt = 0
        while True:
            try:
                return fn()
            except Exception as exc:
                if not retry_on(exc):
                    raise
                if attempt >= self.max_retries:
                    logger.error("%s failed after %d retries: %s", label, attempt, exc)
                    if isinstance(exc, BotError) and exc.kind is ErrorKind.TRANSIENT:
                        raise
                    raise BotError.transient(f"{label} failed after {attempt} retries: {exc}", cause=exc) from exc
                attempt += 1
                delay = self.delay_for(attempt)
                logger.warning(
                    "%s hit a transient failure. Retrying (%d/%d) in %.2fs: %s",
                    label,
                    attempt,
                    self.max_retries,
                    delay,
                    exc,
                )
                self.sleep(delay)


def http_policy(**overrides: Any) -> RetryPolicy:
    """Default policy for remote API calls: linear backoff, 3 retries."""
    params: dict[str, Any] = {"max_retries": 3, "base_delay": 1.0, "backoff": BACKOFF_LINEAR}
    params.update(overrides)
    return RetryPolicy(**params)


def store_policy(**overrides: Any) -> RetryPolicy:
    """Default policy for SQLite lock contention: exponential backoff with jitter."""
    params: dict[str, Any] = {
        "max_retries": 5,
        "base_delay": 0.1,
        "backoff": BACKOFF_EXPONENTIAL,
        "jitter": 0.05,
    }
    params.update(overrides)
    return RetryPolicy(**params)
