from intake_flow.rate_limit import SlidingWindowRateLimiter, client_ip


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_allows_up_to_the_limit_then_blocks():
    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(max_requests=2, window_seconds=60, clock=clock)

    first = limiter.check("1.2.3.4")
    second = limiter.check("1.2.3.4")
    third = limiter.check("1.2.3.4")

    assert (first.allowed, first.remaining) == (True, 1)
    assert (second.allowed, second.remaining) == (True, 0)
    assert not third.allowed
    assert third.retry_after == 60


def test_window_slides():
    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(max_requests=1, window_seconds=10, clock=clock)

    assert limiter.check("a").allowed
    clock.now += 5
    blocked = limiter.check("a")
    assert not blocked.allowed
    assert blocked.retry_after == 5

    clock.now += 5
    assert limiter.check("a").allowed


def test_keys_are_independent():
    limiter = SlidingWindowRateLimiter(max_requests=1, window_seconds=10, clock=FakeClock())
    assert limiter.check("a").allowed
    assert limiter.check("b").allowed
    assert not limiter.check("a").allowed


def test_stale_keys_are_purged():
    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(max_requests=1, window_seconds=10, clock=clock)
    limiter.check("old")

    clock.now += SlidingWindowRateLimiter.CLEANUP_INTERVAL + 1
    limiter.check("new")

    assert "old" not in limiter._hits


def test_client_ip_prefers_forwarded_headers():
    assert client_ip({"x-forwarded-for": "9.9.9.9, 10.0.0.1"}, "127.0.0.1") == "9.9.9.9"
    assert client_ip({"x-real-ip": " 8.8.8.8 "}, "127.0.0.1") == "8.8.8.8"
    assert client_ip({}, "127.0.0.1") == "127.0.0.1"
    assert client_ip({}) == "unknown"
