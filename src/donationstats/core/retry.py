"""Retry policy for best-effort outbound calls.

Wraps tenacity so that callers describe *what* is retryable and how often,
independent of the operation being retried.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
import time
from typing import TypeVar

from loguru import logger
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

T = TypeVar("T")


def is_transient_status(status: int | None) -> bool:
    """True for HTTP 429 and 5xx responses."""
    if status is None:
        return False
    return status == 429 or 500 <= status <= 599


def _never(_exc: BaseException) -> bool:
    return False


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Exponential backoff: ``base_delay``, then doubling, up to ``max_attempts``.

    The final error is re-raised unchanged once attempts are exhausted or the
    error is not retryable.
    """

    max_attempts: int = 3
    base_delay: float = 0.5
    is_retryable: Callable[[BaseException], bool] = _never
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    def call(self, operation: Callable[[], T], *, name: str = "operation") -> T:
        def _log_retry(retry_state: RetryCallState) -> None:
            outcome = retry_state.outcome
            exc = outcome.exception() if outcome is not None else None
            wait = retry_state.next_action.sleep if retry_state.next_action else 0.0
            logger.bind(
                operation=name, attempt=retry_state.attempt_number, wait=wait
            ).warning(
                "{} failed (attempt {}/{}), retrying in {:.2f}s: {}",
                name,
                retry_state.attempt_number,
                self.max_attempts,
                wait,
                exc,
            )

        retrying = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.base_delay, min=self.base_delay),
            retry=retry_if_exception(self.is_retryable),
            before_sleep=_log_retry,
            sleep=self.sleep,
            reraise=True,
        )
        return retrying(operation)
