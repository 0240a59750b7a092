"""Property-based tests for retry logic with exponential backoff.

Feature: stop-place-sync
"""

import pytest
import structlog
from hypothesis import given, settings, strategies as st

from src.utils.retry import backoff_delay, exponential_backoff_retry

log = structlog.stdlib.get_logger()


@given(
    st.integers(min_value=1, max_value=6),
    st.floats(min_value=0.01, max_value=5.0),
    st.floats(min_value=1.0, max_value=60.0),
)
@settings(max_examples=100)
def test_property_16_exponential_backoff_behavior(
    num_failures: int, base_delay: float, max_delay: float
):
    """Property 16: Exponential backoff behavior.

    For any sequence of transport failures, each wait doubles the previous one
    until it reaches ``max_delay``.

    **Feature: stop-place-sync, Property 16: Exponential backoff behavior**
    """
    sleeps: list[float] = []
    call_count = 0

    @exponential_backoff_retry(
        max_retries=num_failures,
        base_delay=base_delay,
        max_delay=max_delay,
        exceptions=(ConnectionError,),
        sleep=sleeps.append,
    )
    def flaky_request():
        nonlocal call_count
        call_count += 1
        if call_count <= num_failures:
            raise ConnectionError(f"Simulated failure {call_count}")
        return "success"

    assert flaky_request() == "success"
    assert call_count == num_failures + 1
    assert sleeps == [min(base_delay * (2**i), max_delay) for i in range(num_failures)]

    for previous, current in zip(sleeps, sleeps[1:]):
        assert current == max_delay or current == pytest.approx(previous * 2)

    log.info("test_property_16_exponential_backoff_behavior_passed", delays=sleeps)


@given(st.integers(min_value=0, max_value=10))
@settings(max_examples=50)
def test_exponential_backoff_max_retries(max_retries: int):
    """The function is attempted ``max_retries + 1`` times before the error escapes."""
    call_count = 0

    @exponential_backoff_retry(
        max_retries=max_retries,
        base_delay=0.01,
        max_delay=1.0,
        exceptions=(TimeoutError,),
        sleep=lambda seconds: None,
    )
    def always_failing():
        nonlocal call_count
        call_count += 1
        raise TimeoutError("Always fails")

    with pytest.raises(TimeoutError):
        always_failing()

    assert call_count == max_retries + 1


def test_unlisted_exceptions_are_not_retried():
    sleeps: list[float] = []
    call_count = 0

    @exponential_backoff_retry(exceptions=(ConnectionError,), sleep=sleeps.append)
    def rejected():
        nonlocal call_count
        call_count += 1
        raise ValueError("not a transport failure")

    with pytest.raises(ValueError):
        rejected()

    assert call_count == 1
    assert sleeps == []


def test_backoff_delay_is_capped():
    assert backoff_delay(0, 1.0, 60.0) == 1.0
    assert backoff_delay(3, 1.0, 60.0) == 8.0
    assert backoff_delay(10, 1.0, 60.0) == 60.0


def test_negative_max_retries_rejected():
    with pytest.raises(ValueError):
        exponential_backoff_retry(max_retries=-1)
