import asyncio

from linkmeta.workflows.rate_limiter import SlidingWindowRateLimiter


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now


def test_allow_accepts_exactly_limit_within_window():
    limiter = SlidingWindowRateLimiter(40, 10.0, clock=FakeClock())
    accepted = sum(1 for _ in range(1000) if limiter.allow())
    assert accepted == 40
    assert limiter.pending() == 40


def test_allow_frees_slots_after_window_passes():
    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(2, 10.0, clock=clock)
    assert limiter.allow()
    clock.now += 4
    assert limiter.allow()
    assert not limiter.allow()

    clock.now += 6  # first request ages out
    assert limiter.allow()
    assert not limiter.allow()

    clock.now += 10
    assert limiter.pending() == 0


def test_non_positive_limit_disables_limiting():
    limiter = SlidingWindowRateLimiter(0, 10.0, clock=FakeClock())
    assert not limiter.enabled
    assert all(limiter.allow() for _ in range(500))
    asyncio.run(limiter.wait())
    assert limiter.pending() == 0


def test_wait_sleeps_until_oldest_request_expires(monkeypatch):
    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(1, 5.0, clock=clock)
    sleeps = []

    async def fake_sleep(delay):
        sleeps.append(delay)
        clock.now += delay

    monkeypatch.setattr(asyncio, "sleep", fake_sleep)

    async def run():
        await limiter.wait()
        await limiter.wait()

    asyncio.run(run())
    assert sleeps == [5.0]
    assert limiter.pending() == 1
