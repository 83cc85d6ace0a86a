"""
Caller-configured retry for calls to external services.

Only errors that declare themselves transient (``error.transient``) are
retried; everything else propagates on the first attempt.
"""
import logging
from typing import Any, Callable, TypeVar

from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential_jitter,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_transient(exc: BaseException) -> bool:
    """Whether an exception is marked as retryable."""
    return bool(getattr(exc, "transient", False))


class RetryPolicy:
    """Bounded exponential backoff with jitter, for transient failures only."""

    def __init__(self, max_attempts: int = 3, initial_wait: float = 0.5, max_wait: float = 8.0):
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")
        self.max_attempts = max_attempts
        self.initial_wait = initial_wait
        self.max_wait = max_wait

    @classmethod
    def none(cls) -> "RetryPolicy":
        """A policy that makes exactly one attempt."""
        return cls(max_attempts=1)

    def _retrying(self) -> Retrying:
        return Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential_jitter(
                initial=self.initial_wait,
                max=self.max_wait,
                jitter=self.initial_wait,
            ),
            retry=retry_if_exception(is_transient),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

    def call(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Call ``fn`` under this policy and return its result."""
        return self._retrying()(fn, *args, **kwargs)

    def __repr__(self) -> str:
        return (
            f"RetryPolicy(max_attempts={self.max_attempts}, "
            f"initial_wait={self.initial_wait}, max_wait={self.max_wait})"
        )
