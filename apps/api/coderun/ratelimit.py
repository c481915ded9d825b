import asyncio, hashlib, logging, time
from dataclasses import dataclass
from typing import Dict, Optional
from .actors import Actor, ActorNamespace

log = logging.getLogger(__name__)

@dataclass
class Counter:
    count: int
    expires_at: float

class RateLimiterShard(Actor):
    """Fixed-window counters for the client keys hashed onto this shard."""
    def __init__(self, name:str, clock=time.time):
        super().__init__(name); self.clock=clock; self.counters:Dict[str,Counter]={}

    async def check(self, key:str, limit:int, window_seconds:float)->bool:
        async with self.turn():
            now=self.clock(); entry=self.counters.get(key)
            if entry is not None and now > entry.expires_at:
                del self.counters[key]; entry=None
            if entry is None: entry=Counter(0, now + window_seconds)
            if entry.count >= limit: return False
            entry.count+=1; self.counters[key]=entry
            return True

    async def sweep(self)->int:
        async with self.turn():
            now=self.clock(); stale=[k for k,e in self.counters.items() if now > e.expires_at]
            for k in stale: del self.counters[k]
            return len(stale)

class ShardedRateLimiter:
    def __init__(self, shards:int=8, limit:int=60, window_seconds:float=60, clock=time.time):
        self.shards=max(1, int(shards)); self.limit=limit; self.window_seconds=window_seconds
        self.namespace=ActorNamespace('rate-limiter', lambda name: RateLimiterShard(name, clock))

    def shard_index(self, key:str)->int:
        return int.from_bytes(hashlib.sha1(key.encode('utf-8')).digest()[:4], 'big') % self.shards

    def shard_for(self, key:str)->RateLimiterShard:
        return self.namespace.get(self.shard_index(key))

    async def check(self, key:str, limit:Optional[int]=None, window_seconds:Optional[float]=None)->bool:
        """True when the request may proceed. Any shard failure lets the request through."""
        try:
            return await self.shard_for(key).check(key, limit or self.limit, window_seconds or self.window_seconds)
        except Exception:
            log.exception("rate limiter unavailable for %s, failing open", key)
            return True

    async def sweep(self)->int:
        removed=0
        for shard in self.namespace: removed+=await shard.sweep()
        return removed

    async def run_sweeper(self, interval:float):
        while True:
            await asyncio.sleep(interval)
            try:
                n=await self.sweep()
                if n: log.debug("rate limiter sweep dropped %d expired counters", n)
            except Exception:
                log.exception("rate limiter sweep failed")
