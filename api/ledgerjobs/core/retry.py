"""
Retry policy and error classifier shared by the Celery tasks.

Tasks catch failures and ask ``decide_retry`` what to do:

  transient storage / DB connection errors  → retry after 60s
  resource-limit errors                     → no retry
  validation / fatal precondition errors    → no retry
  account lock held                         → re-queue after the lock delay
  anything else                             → exponential backoff with jitter
"""
from collections.abc import Iterator
from dataclasses import dataclass

from celery.utils.time import get_exponential_backoff_interval

from ledgerjobs.core.errors import (
    AccountBusyError,
    FatalPreconditionError,
    PayloadValidationError,
    ResourceLimitError,
    TransientStorageError,
)

TRANSIENT_RETRY_DELAY = 60

_TRANSIENT_MARKER = "database connection"
_RESOURCE_MARKER = "resource limit"


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    min_delay: int = 1          # seconds before the first retry
    max_delay: int = 30
    randomize: bool = True

    @property
    def max_retries(self) -> int:
        return self.max_attempts - 1

    def backoff(self, retries: int) -> int:
        """Delay before retry number ``retries + 1``: min_delay * 2**retries, capped."""
        return get_exponential_backoff_interval(
            factor=self.min_delay,
            retries=retries,
            maximum=self.max_delay,
            full_jitter=self.randomize,
        )


@dataclass(frozen=True)
class RetryDecision:
    retry: bool
    countdown: int | None
    reason: str


def _chain(exc: BaseException) -> Iterator[BaseException]:
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        current = current.__cause__ or current.__context__


def _matches(exc: BaseException, kind: type[BaseException], marker: str | None = None) -> bool:
    for e in _chain(exc):
        if isinstance(e, kind):
            return True
        if marker and marker in str(e).lower():
            return True
    return False


def decide_retry(
    exc: BaseException,
    retries: int,
    policy: RetryPolicy,
    lock_retry_delay: int = 30,
) -> RetryDecision:
    """Classify ``exc`` raised on attempt ``retries + 1`` and pick a strategy."""
    if _matches(exc, PayloadValidationError) or _matches(exc, FatalPreconditionError):
        return RetryDecision(False, None, "fatal")
    if _matches(exc, ResourceLimitError, _RESOURCE_MARKER):
        return RetryDecision(False, None, "resource limit")
    if retries >= policy.max_retries:
        return RetryDecision(False, None, "attempts exhausted")
    if _matches(exc, AccountBusyError):
        return RetryDecision(True, lock_retry_delay, "account busy")
    if _matches(exc, TransientStorageError, _TRANSIENT_MARKER):
        return RetryDecision(True, TRANSIENT_RETRY_DELAY, "transient storage error")
    return RetryDecision(True, policy.backoff(retries), "default backoff")
