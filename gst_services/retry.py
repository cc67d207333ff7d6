"""
Bounded retry of collaborator calls.

Only ``CollaboratorUnavailableError`` is retried; every other exception
propagates on the first occurrence.  Delays grow exponentially from
``base_delay`` and are capped at ``max_delay``.  ``sleep`` is injectable so
tests run without waiting.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

from gst_kernel.exceptions import CollaboratorUnavailableError
from gst_kernel.logging_config import get_logger

logger = get_logger("services.retry")

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 0.2
    max_delay: float = 2.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("retry delays cannot be negative")

    def delay_for(self, attempt: int) -> float:
        """Delay after failed attempt number ``attempt`` (1-based)."""
        return min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)


def call_with_retry(
    func: Callable[[], T],
    *,
    operation: str,
    policy: RetryPolicy | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Call ``func`` until it succeeds or the attempts run out.

    Raises:
        CollaboratorUnavailableError: the last failure, once
            ``policy.max_attempts`` calls have failed.
    """
    policy = policy or RetryPolicy()
    attempt = 1
    while True:
        try:
            return func()
        except CollaboratorUnavailableError as exc:
            if attempt >= policy.max_attempts:
                logger.error("collaborator_retries_exhausted", extra={
                    "operation": operation,
                    "attempts": attempt,
                    "collaborator": exc.collaborator,
                })
                raise
            delay = policy.delay_for(attempt)
            logger.warning("collaborator_call_retrying", extra={
                "operation": operation,
                "attempt": attempt,
                "delay_seconds": delay,
                "collaborator": exc.collaborator,
                "detail": exc.detail,
            })
            sleep(delay)
            attempt += 1
