"""
Retry helpers with exponential backoff and jitter.

Handlers never retry backend calls themselves. The outer triggering mechanism
(the orchestrator's dispatch, the CLI) wraps a whole handler invocation with
:func:`retry_call` so that only transient backend failures are replayed.
"""

from __future__ import annotations

import random
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional, Tuple, Type

from .exceptions import TransientBackendError

@dataclass
class RetryPolicy:
    """Configuration for retry attempts."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    jitter: float = 0.2
    retry_exceptions: Tuple[Type[BaseException], ...] = (TransientBackendError,)
    respect_retry_after: bool = True

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay <= 0:
            raise ValueError("base_delay must be > 0")
        if self.max_delay < self.base_delay:
            self.max_delay = self.base_delay
        if not 0 <= self.jitter <= 1:
            raise ValueError("jitter must be between 0 and 1")


class RetryError(RuntimeError):
    """Raised when all retry attempts are exhausted."""

    def __init__(self, last_exception: BaseException, attempts: int) -> None:
        super().__init__(f"Operation failed after {attempts} attempts: {last_exception}")
        self.last_exception = last_exception
        self.attempts = attempts


def _compute_delay(policy: RetryPolicy, attempt: int, retry_after: Optional[float] = None) -> float:
    """Compute exponential backoff delay with optional jitter."""
    delay = min(policy.base_delay * (2 ** (attempt - 1)), policy.max_delay)
    if retry_after is not None:
        delay = max(delay, retry_after)
    if policy.jitter:
        jitter_amount = delay * policy.jitter
        delay = delay - jitter_amount + random.uniform(0, jitter_amount * 2)
    return max(delay, 0.0)


def _extract_retry_after(exc: BaseException) -> Optional[float]:
    metadata = getattr(exc, "metadata", None) or {}
    retry_after = metadata.get("retry_after") if isinstance(metadata, dict) else None
    if retry_after is None:
        retry_after = getattr(exc, "retry_after", None)
    if retry_after is None:
        return None
    try:
        return float(retry_after)
    except (ValueError, TypeError):
        return None


def retry_call(
    func: Callable[..., Any],
    *args: Any,
    policy: RetryPolicy,
    on_retry: Optional[Callable[[int, BaseException, float], None]] = None,
    **kwargs: Any,
) -> Any:
    """Execute ``func`` with retry semantics.

    Exceptions outside ``policy.retry_exceptions`` propagate unchanged so that
    fatal conditions such as configuration errors reach the caller as-is.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return func(*args, **kwargs)
        except policy.retry_exceptions as exc:
            if attempt >= policy.max_attempts:
                raise RetryError(exc, attempt) from exc
            delay = _compute_delay(policy, attempt, _extract_retry_after(exc) if policy.respect_retry_after else None)
            if on_retry:
                on_retry(attempt, exc, delay)
            time.sleep(delay)


def make_linearized_delays(policy: RetryPolicy, attempts: int) -> Iterable[float]:
    """Expose delays for testing purposes."""
    for attempt in range(1, attempts + 1):
        yield _compute_delay(policy, attempt)


__all__ = [
    "RetryPolicy",
    "RetryError",
    "retry_call",
    "make_linearized_delays",
]
