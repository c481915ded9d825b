"""
Tests for the sharded fixed-window rate limiter (coderun/ratelimit.py)
"""

import asyncio
from coderun.ratelimit import ShardedRateLimiter, RateLimiterShard


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def _checks(limiter, key, n):
    async def run():
        return [await limiter.check(key) for _ in range(n)]
    return asyncio.run(run())


class TestShardedRateLimiter:
    def test_rejects_past_limit(self):
        """Should allow exactly `limit` requests per window"""
        limiter = ShardedRateLimiter(shards=4, limit=3, window_seconds=60, clock=FakeClock())
        assert _checks(limiter, 'rate_limit:1.2.3.4', 4) == [True, True, True, False]

    def test_keys_are_independent(self):
        """Should count each client key separately"""
        limiter = ShardedRateLimiter(shards=1, limit=1, window_seconds=60, clock=FakeClock())
        assert _checks(limiter, 'a', 2) == [True, False]
        assert _checks(limiter, 'b', 1) == [True]

    def test_window_resets_after_expiry(self):
        """Should start a fresh window once the old one has expired"""
        clock = FakeClock()
        limiter = ShardedRateLimiter(shards=2, limit=2, window_seconds=60, clock=clock)
        assert _checks(limiter, 'k', 3) == [True, True, False]
        clock.now += 60
        assert _checks(limiter, 'k', 1) == [False]
        clock.now += 0.5
        assert _checks(limiter, 'k', 3) == [True, True, False]

    def test_rejected_requests_do_not_extend_window(self):
        """Should keep the window anchored at its first request"""
        clock = FakeClock()
        limiter = ShardedRateLimiter(shards=1, limit=1, window_seconds=10, clock=clock)
        _checks(limiter, 'k', 1)
        clock.now += 9
        assert _checks(limiter, 'k', 1) == [False]
        clock.now += 2
        assert _checks(limiter, 'k', 1) == [True]

    def test_sharding_is_deterministic(self):
        """Should always route a key to the same shard instance"""
        limiter = ShardedRateLimiter(shards=8)
        idx = limiter.shard_index('rate_limit:10.0.0.1')
        assert 0 <= idx < 8
        assert limiter.shard_index('rate_limit:10.0.0.1') == idx
        assert limiter.shard_for('rate_limit:10.0.0.1') is limiter.shard_for('rate_limit:10.0.0.1')
        assert limiter.shard_for('rate_limit:10.0.0.1').name == f"rate-limiter-{idx}"

    def test_keys_spread_over_shards(self):
        """Should use more than one shard for many keys"""
        limiter = ShardedRateLimiter(shards=8)
        assert len({limiter.shard_index(f"rate_limit:10.0.0.{i}") for i in range(64)}) > 1

    def test_fails_open(self, monkeypatch):
        """Should let the request through when a shard errors"""
        async def broken(self, key, limit, window_seconds):
            raise RuntimeError('shard down')
        monkeypatch.setattr(RateLimiterShard, 'check', broken)
        limiter = ShardedRateLimiter(shards=2, limit=0)
        assert _checks(limiter, 'k', 3) == [True, True, True]

    def test_sweep_drops_expired_counters(self):
        """Should remove counters whose window has passed"""
        clock = FakeClock()
        limiter = ShardedRateLimiter(shards=4, limit=5, window_seconds=30, clock=clock)
        _checks(limiter, 'old', 1)
        clock.now += 20
        _checks(limiter, 'new', 1)
        clock.now += 15
        assert asyncio.run(limiter.sweep()) == 1
        assert asyncio.run(limiter.sweep()) == 0
        assert 'new' in limiter.shard_for('new').counters
        assert 'old' not in limiter.shard_for('old').counters
