"""
Deadline / backoff tests.
"""

import time

import pytest

from appiumkit.wait import Deadline, backoff


class TestDeadline:
    def test_fresh_deadline(self):
        d = Deadline(1.0)
        assert not d.expired()
        assert 0.9 < d.remaining() <= 1.0

    def test_zero_timeout_is_already_expired(self):
        d = Deadline(0)
        assert d.expired()
        assert d.remaining() == 0.0

    def test_remaining_never_negative(self):
        d = Deadline(0.01, start=time.monotonic() - 5)
        assert d.expired()
        assert d.remaining() == 0.0
        assert d.elapsed() >= 5

    def test_shared_start_instant(self):
        start = time.monotonic() - 0.5
        d = Deadline(2.0, start=start)
        assert d.remaining() <= 1.5

    def test_negative_timeout_rejected(self):
        with pytest.raises(ValueError):
            Deadline(-1)


@pytest.mark.asyncio
async def test_backoff_sleeps():
    t0 = time.monotonic()
    await backoff(0.05)
    assert time.monotonic() - t0 >= 0.045


@pytest.mark.asyncio
async def test_backoff_ignores_non_positive():
    t0 = time.monotonic()
    await backoff(0)
    await backoff(-3)
    assert time.monotonic() - t0 < 0.05
