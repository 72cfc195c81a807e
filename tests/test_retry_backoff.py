"""
Retry backoff: exponential growth, jitter window and the cap.
"""
import random

import pytest
from hypothesis import given, settings as h_settings
from hypothesis.strategies import floats, integers

from app.domain.services.delivery_queue import calculate_retry_delay


@pytest.mark.unit
@pytest.mark.parametrize(
    "retry_count, expected_base",
    [(1, 60), (2, 120), (3, 240), (4, 480), (5, 900)],
)
def test_delay_within_jitter_window(retry_count, expected_base):
    rng = random.Random(42)
    for _ in range(50):
        delay = calculate_retry_delay(retry_count, rng=rng)
        assert expected_base <= delay <= min(expected_base * 1.3, 900)


@pytest.mark.unit
def test_without_jitter_is_exact():
    delays = [calculate_retry_delay(n, jitter_ratio=0) for n in range(1, 7)]
    assert delays == [60, 120, 240, 480, 900, 900]


@pytest.mark.unit
def test_zero_retry_count_uses_base():
    assert calculate_retry_delay(0, jitter_ratio=0) == 60


@pytest.mark.unit
def test_huge_retry_count_is_capped():
    """גם retry_count עצום לא מחשב חזקה ענקית"""
    assert calculate_retry_delay(10 ** 9, jitter_ratio=0) == 900
    assert calculate_retry_delay(10 ** 9) <= 900


@pytest.mark.unit
def test_base_above_cap_returns_cap():
    assert calculate_retry_delay(1, base_seconds=1000, max_backoff_seconds=900, jitter_ratio=0) == 900


@pytest.mark.unit
def test_non_positive_settings_disable_backoff():
    assert calculate_retry_delay(3, base_seconds=0) == 0.0
    assert calculate_retry_delay(3, max_backoff_seconds=0) == 0.0


@pytest.mark.unit
@given(
    retry_count=integers(min_value=1, max_value=10_000),
    base=floats(min_value=1, max_value=600),
    cap=floats(min_value=1, max_value=7200),
    seed=integers(min_value=0, max_value=2 ** 32),
)
@h_settings(max_examples=200)
def test_delay_never_exceeds_cap_and_never_below_base_delay(retry_count, base, cap, seed):
    delay = calculate_retry_delay(
        retry_count,
        base_seconds=base,
        max_backoff_seconds=cap,
        rng=random.Random(seed),
    )
    floor = min(base * 2 ** min(retry_count - 1, 64), cap)
    assert delay <= cap
    assert delay >= floor - 1e-9


@pytest.mark.unit
@given(retry_count=integers(min_value=1, max_value=20))
def test_delay_is_monotonic_without_jitter(retry_count):
    current = calculate_retry_delay(retry_count, jitter_ratio=0)
    following = calculate_retry_delay(retry_count + 1, jitter_ratio=0)
    assert following >= current
