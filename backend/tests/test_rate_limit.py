"""Token bucket limiter, on its own and wired into the API."""

from wallet_tracker.rate_limit import (
    RateLimitPolicy,
    RateLimitPresets,
    TokenBucketRateLimiter,
    UnlimitedRateLimiter,
)


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


POLICY = RateLimitPolicy("test", 60, 3)


class TestTokenBucket:

    def test_first_request_consumes_one_token(self):
        limiter = TokenBucketRateLimiter(clock=FakeClock())
        result = limiter.allow("user:alice", POLICY)
        assert result.success
        assert result.limit == 3
        assert result.remaining == 2

    def test_exhausted_bucket_rejects_with_retry_after(self):
        clock = FakeClock()
        limiter = TokenBucketRateLimiter(clock=clock)
        for _ in range(3):
            assert limiter.allow("user:alice", POLICY).success

        clock.advance(15)
        denied = limiter.allow("user:alice", POLICY)
        assert not denied.success
        assert denied.remaining == 0
        assert denied.retry_after == 45

    def test_tokens_refill_in_proportion_to_elapsed_time(self):
        clock = FakeClock()
        limiter = TokenBucketRateLimiter(clock=clock)
        for _ in range(3):
            limiter.allow("user:alice", POLICY)

        clock.advance(20)  # one third of the interval, one token
        assert limiter.allow("user:alice", POLICY).success
        assert not limiter.allow("user:alice", POLICY).success

        clock.advance(600)
        result = limiter.allow("user:alice", POLICY)
        assert result.success
        assert result.remaining == 2

    def test_identifiers_and_policies_have_separate_buckets(self):
        limiter = TokenBucketRateLimiter(clock=FakeClock())
        for _ in range(3):
            limiter.allow("user:alice", POLICY)

        assert not limiter.allow("user:alice", POLICY).success
        assert limiter.allow("user:bob", POLICY).success
        assert limiter.allow("user:alice", RateLimitPresets.RELAXED).success
        assert len(limiter) == 3

    def test_idle_buckets_are_swept(self):
        clock = FakeClock()
        limiter = TokenBucketRateLimiter(clock=clock, sweep_interval=600, idle_ttl=3600)
        limiter.allow("user:alice", POLICY)
        assert len(limiter) == 1

        clock.advance(3601)
        limiter.allow("user:bob", POLICY)
        assert len(limiter) == 1

    def test_headers_and_body(self):
        clock = FakeClock()
        limiter = TokenBucketRateLimiter(clock=clock)
        for _ in range(3):
            limiter.allow("ip:10.0.0.1", POLICY)
        denied = limiter.allow("ip:10.0.0.1", POLICY)

        headers = denied.headers()
        assert headers["X-RateLimit-Limit"] == "3"
        assert headers["X-RateLimit-Remaining"] == "0"
        assert headers["Retry-After"] == "60"
        assert denied.body()["error"] == "RATE_LIMIT_EXCEEDED"

    def test_unlimited_limiter_always_admits(self):
        limiter = UnlimitedRateLimiter(clock=FakeClock())
        for _ in range(100):
            assert limiter.allow("user:alice", POLICY).success


class TestApiRateLimiting:

    def test_strict_endpoints_return_429_after_five_writes(self, client, auth_headers):
        client.app.state.rate_limiter = TokenBucketRateLimiter(clock=FakeClock())
        headers = auth_headers()

        for i in range(5):
            response = client.post("/api/accounts", json={"name": f"Wallet {i}"}, headers=headers)
            assert response.status_code == 201

        response = client.post("/api/accounts", json={"name": "One too many"}, headers=headers)
        assert response.status_code == 429
        assert response.json()["error"] == "RATE_LIMIT_EXCEEDED"
        assert response.headers["X-RateLimit-Limit"] == "5"
        assert "Retry-After" in response.headers

    def test_limits_are_per_user(self, client, auth_headers):
        client.app.state.rate_limiter = TokenBucketRateLimiter(clock=FakeClock())

        for i in range(5):
            client.post("/api/accounts", json={"name": f"Wallet {i}"}, headers=auth_headers("alice"))

        response = client.post("/api/accounts", json={"name": "Bob's"}, headers=auth_headers("bob"))
        assert response.status_code == 201
