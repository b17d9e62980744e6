"""
Fixed-window request throttle keyed by (source address, email).
"""

from security.rate_limit import RateLimiter, bucket_key


class TestBucketKey:
    def test_email_is_normalized(self):
        assert bucket_key("login", "10.0.0.1", " B@Example.com ") == "login:10.0.0.1:b@example.com"

    def test_missing_parts(self):
        assert bucket_key("login", None, None) == "login:unknown:unknown"


class TestRateLimiter:
    def test_allows_up_to_limit(self, app, clock):
        limiter = RateLimiter(max_requests=3, window_seconds=60)
        key = bucket_key("login", "10.0.0.1", "b@example.com")

        for _ in range(3):
            assert limiter.hit(key, clock()) == (True, 0)

        allowed, retry_after = limiter.hit(key, clock())
        assert not allowed
        assert 1 <= retry_after <= 60

    def test_keys_are_independent(self, app, clock):
        limiter = RateLimiter(max_requests=1, window_seconds=60)
        assert limiter.hit(bucket_key("login", "10.0.0.1", "b@example.com"), clock())[0]
        assert limiter.hit(bucket_key("login", "10.0.0.1", "c@example.com"), clock())[0]
        assert limiter.hit(bucket_key("login", "10.0.0.2", "b@example.com"), clock())[0]

    def test_window_resets(self, app, clock):
        limiter = RateLimiter(max_requests=1, window_seconds=60)
        key = bucket_key("login", "10.0.0.1", "b@example.com")

        assert limiter.hit(key, clock())[0]
        assert not limiter.hit(key, clock())[0]

        clock.advance(seconds=61)
        assert limiter.hit(key, clock())[0]

    def test_refund_returns_slot(self, app, clock):
        limiter = RateLimiter(max_requests=1, window_seconds=60)
        key = bucket_key("login", "10.0.0.1", "b@example.com")

        assert limiter.hit(key, clock())[0]
        limiter.refund(key)
        assert limiter.hit(key, clock())[0]
