"""Pure retry decision rules for failed jobs."""

from __future__ import annotations

from enum import Enum


class RetryDecision(str, Enum):
    """What the queue does with a job after a recorded failure."""

    RETRY = "retry"
    TERMINAL = "terminal"


def domain_retry_decide(retry_count: int, retry_limit: int) -> RetryDecision:
    """Decide whether a failed job with the given counters may be re-dispatched.

    Args:
        retry_count: Failures recorded so far, including the latest one.
        retry_limit: Failure ceiling fixed at submission.

    Returns:
        RetryDecision: RETRY while failures are below the ceiling, TERMINAL otherwise.

    Raises:
        ValueError: Raised when counters are negative or the limit is below one.
    """

    if retry_count < 0:
        raise ValueError("retry_count must be >= 0")
    if retry_limit < 1:
        raise ValueError("retry_limit must be >= 1")

    if retry_count < retry_limit:
        return RetryDecision.RETRY
    return RetryDecision.TERMINAL


def domain_retry_next_count(retry_count: int, retry_limit: int) -> int:
    """Return the retry counter after one more recorded failure.

    The counter never passes the limit, so `retry_count <= retry_limit` holds
    after every failure transition.
    """

    return min(retry_count + 1, retry_limit)
