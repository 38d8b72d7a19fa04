from stallfront.core.rate_limiter import AUTO_BLOCK_SECONDS, SUSPICIOUS_THRESHOLD, RateLimiter, RateLimitRule


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


RULE = RateLimitRule("test", max_requests=3, window_seconds=60)


def test_allows_up_to_the_limit_then_blocks():
    clock = FakeClock()
    limiter = RateLimiter(clock=clock)

    results = [limiter.check("1.2.3.4", RULE) for _ in range(4)]
    assert [r.allowed for r in results] == [True, True, True, False]
    assert results[0].remaining == 2
    assert results[3].retry_after == 60


def test_window_resets_after_it_expires():
    clock = FakeClock()
    limiter = RateLimiter(clock=clock)
    for _ in range(4):
        limiter.check("1.2.3.4", RULE)

    clock.now += 61
    assert limiter.check("1.2.3.4", RULE).allowed


def test_keys_and_rules_are_counted_separately():
    limiter = RateLimiter(clock=FakeClock())
    other = RateLimitRule("other", max_requests=1, window_seconds=60)
    for _ in range(3):
        limiter.check("a", RULE)
    assert limiter.check("b", RULE).allowed
    assert limiter.check("a", other).allowed


def test_repeat_offender_is_auto_blocked():
    clock = FakeClock()
    limiter = RateLimiter(clock=clock)
    tight = RateLimitRule("tight", max_requests=1, window_seconds=60)

    limiter.check("9.9.9.9", tight)
    for _ in range(SUSPICIOUS_THRESHOLD):
        limiter.check("9.9.9.9", tight)
    assert limiter.is_blocked("9.9.9.9")

    # Blocked on every rule, not just the one that was abused
    result = limiter.check("9.9.9.9", RULE)
    assert not result.allowed
    assert result.retry_after >= AUTO_BLOCK_SECONDS

    clock.now += AUTO_BLOCK_SECONDS + 1
    assert not limiter.is_blocked("9.9.9.9")


def test_manual_block_and_unblock():
    limiter = RateLimiter(clock=FakeClock())
    limiter.block_ip("5.5.5.5")
    assert not limiter.check("5.5.5.5", RULE).allowed
    limiter.unblock_ip("5.5.5.5")
    assert limiter.check("5.5.5.5", RULE).allowed


def test_cleanup_drops_expired_windows():
    clock = FakeClock()
    limiter = RateLimiter(clock=clock)
    limiter.check("a", RULE)
    limiter.check("b", RULE)
    clock.now += 120
    assert limiter.cleanup() == 2
    assert limiter.stats()["active_windows"] == 0
