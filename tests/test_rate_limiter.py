from gatekeeper.services.rate_limiter import SlidingWindowLimiter


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def test_window_admits_up_to_limit_then_recovers():
    clock = FakeClock()
    limiter = SlidingWindowLimiter(clock=clock)

    assert [limiter.allow("tap:lock-1", 2, 60) for _ in range(3)] == [True, True, False]

    clock.now += 61
    assert limiter.allow("tap:lock-1", 2, 60)


def test_idle_keys_are_evicted():
    clock = FakeClock()
    limiter = SlidingWindowLimiter(clock=clock, sweep_every=10)

    for n in range(500):
        limiter.allow(f"login:10.0.0.1:user{n}@example.com", 5, 60)
    assert len(limiter) > 10

    clock.now += 61
    for _ in range(10):
        limiter.allow("tap:lock-1", 100, 60)

    assert len(limiter) == 1


def test_keys_inside_their_window_survive_a_sweep():
    clock = FakeClock()
    limiter = SlidingWindowLimiter(clock=clock, sweep_every=3)

    limiter.allow("refresh:3600", 1, 3600)
    limiter.allow("refresh:60", 1, 60)
    clock.now += 120
    limiter.allow("other", 1, 60)

    assert len(limiter) == 2
    # The hourly budget is still spent
    assert not limiter.allow("refresh:3600", 1, 3600)
