"""
Lightweight async metrics that write counters and latency samples to Redis.

- Counters: Redis INCRBY on `metrics:counter:{name}`
- Latency samples: LPUSH to `metrics:lat:{name}`, LTRIM to the last N samples
- `get_metrics()` aggregates counters and simple latency stats (count, avg, p50)
- Without Redis (or when it errors) samples are kept in process memory.
"""

import logging
import statistics
from typing import Any, Dict, List, Optional


logger = logging.getLogger(__name__)


def _summarize(values: List[float]) -> Dict[str, float]:
    return {
        'count': len(values),
        'avg_ms': sum(values) / len(values),
        'p50_ms': float(statistics.median(values)),
    }


def _decode(key) -> str:
    return key.decode() if isinstance(key, (bytes, bytearray)) else key


class Metrics:

    def __init__(self, redis_client=None, max_samples: int = 1000):
        self.redis = redis_client
        self.max_samples = max_samples
        self._counters: Dict[str, int] = {}
        self._latencies: Dict[str, List[float]] = {}

    def _mem_increment(self, name: str, amount: int) -> None:
        self._counters[name] = self._counters.get(name, 0) + amount

    def _mem_observe(self, name: str, ms: float) -> None:
        samples = self._latencies.setdefault(name, [])
        samples.insert(0, ms)
        del samples[self.max_samples:]

    async def increment(self, name: str, amount: int = 1) -> None:
        """Increment a named counter by amount."""
        if self.redis is not None:
            try:
                await self.redis.incrby(f"metrics:counter:{name}", amount)
                return
            except Exception as e:
                logger.debug("Redis counter %s failed, using memory: %s", name, e)
        self._mem_increment(name, amount)

    async def observe_latency(self, name: str, ms: float) -> None:
        """Record a latency sample (milliseconds) for a named metric."""
        if self.redis is not None:
            key = f"metrics:lat:{name}"
            try:
                await self.redis.lpush(key, str(ms))
                await self.redis.ltrim(key, 0, self.max_samples - 1)
                return
            except Exception as e:
                logger.debug("Redis latency %s failed, using memory: %s", name, e)
        self._mem_observe(name, ms)

    async def _redis_snapshot(self) -> Optional[Dict[str, Any]]:
        counters: Dict[str, int] = {}
        latencies: Dict[str, List[float]] = {}
        try:
            for k in await self.redis.keys('metrics:counter:*'):
                key = _decode(k)
                value = await self.redis.get(key)
                counters[key.split(':', 2)[-1]] = int(value) if value is not None else 0
            for k in await self.redis.keys('metrics:lat:*'):
                key = _decode(k)
                values = await self.redis.lrange(key, 0, -1)
                latencies[key.split(':', 2)[-1]] = [float(v) for v in values]
        except Exception as e:
            logger.warning("Reading metrics from Redis failed: %s", e)
            return None
        return {'counters': counters, 'latencies': latencies}

    async def get_metrics(self) -> Dict[str, Any]:
        """JSON-serializable counters and latency summaries.

        Redis values are merged with any in-memory samples recorded while
        Redis was unavailable.
        """
        counters: Dict[str, int] = {}
        raw: Dict[str, List[float]] = {}
        if self.redis is not None:
            snapshot = await self._redis_snapshot()
            if snapshot is not None:
                counters.update(snapshot['counters'])
                raw.update(snapshot['latencies'])

        for name, value in self._counters.items():
            counters[name] = counters.get(name, 0) + value
        for name, values in self._latencies.items():
            raw[name] = list(values) + raw.get(name, [])

        return {
            'counters': counters,
            'latencies': {name: _summarize(values) for name, values in raw.items() if values},
        }
