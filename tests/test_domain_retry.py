"""Tests for pure retry decision rules."""

import pytest

from relayq.domain import RetryDecision, domain_retry_decide, domain_retry_next_count


def test_domain_retry_decide_retries_below_limit() -> None:
    """Return RETRY while recorded failures are below the ceiling."""

    assert domain_retry_decide(retry_count=0, retry_limit=1) == RetryDecision.RETRY
    assert domain_retry_decide(retry_count=9, retry_limit=10) == RetryDecision.RETRY


def test_domain_retry_decide_is_terminal_at_limit() -> None:
    """Return TERMINAL once the ceiling is reached."""

    assert domain_retry_decide(retry_count=2, retry_limit=2) == RetryDecision.TERMINAL


@pytest.mark.parametrize(("retry_count", "retry_limit"), [(-1, 3), (0, 0)])
def test_domain_retry_decide_rejects_invalid_counters(retry_count: int, retry_limit: int) -> None:
    """Reject negative counters and ceilings below one."""

    with pytest.raises(ValueError):
        domain_retry_decide(retry_count=retry_count, retry_limit=retry_limit)


def test_domain_retry_next_count_is_capped_at_limit() -> None:
    """Never let the counter pass the ceiling."""

    assert domain_retry_next_count(retry_count=0, retry_limit=2) == 1
    assert domain_retry_next_count(retry_count=1, retry_limit=2) == 2
    assert domain_retry_next_count(retry_count=2, retry_limit=2) == 2
