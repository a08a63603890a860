"""Redis-backed pooled distribution store shared across workers."""
import json

import redis.asyncio as redis

from autoplay_audit.config import settings
from autoplay_audit.errors import ModelMismatch, PoolNotFound
from autoplay_audit.logic.distribution import DistributionAggregator, build_report
from autoplay_audit.logic.models import DistributionReport, SegmentSet, load_segment_set


class DistributionStore:
    """
    Pools per-segment counts from many sessions and processes.

    Key layout (per pool):
    - {prefix}:model:{pool}  -> JSON {"fingerprint", "segments"}, pinned on first write
    - {prefix}:counts:{pool} -> hash segment_index -> count

    Counts of one write are applied by a single Lua script (all segments or
    none) and read with HGETALL, so a report never sees part of a session's
    counts and concurrent writers never lose updates.
    """

    # KEYS[1] = counts hash; ARGV = field, increment, field, increment, ...
    ADD_COUNTS_SCRIPT = """
    for i = 1, #ARGV, 2 do
        redis.call("hincrby", KEYS[1], ARGV[i], ARGV[i + 1])
    end
    return #ARGV / 2
    """

    def __init__(self, redis_url: str | None = None, key_prefix: str | None = None):
        self._url = redis_url or settings.redis_url
        prefix = key_prefix or settings.store_key_prefix
        self.model_prefix = f"{prefix}:model:"
        self.counts_prefix = f"{prefix}:counts:"
        self._client: redis.Redis | None = None

    async def connect(self) -> None:
        """Connect to Redis."""
        if self._client is None:
            self._client = redis.from_url(self._url, decode_responses=True)

    async def close(self) -> None:
        """Close Redis connection."""
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> redis.Redis:
        """Get Redis client, raise if not connected."""
        if self._client is None:
            raise RuntimeError("Redis not connected")
        return self._client

    async def bind_model(self, pool: str, segments: SegmentSet) -> None:
        """
        Pin the wheel model of a pool on first use.

        Raises MODEL_MISMATCH if the pool already holds a different model.
        """
        key = f"{self.model_prefix}{pool}"
        fingerprint = segments.fingerprint()
        payload = json.dumps(
            {
                "fingerprint": fingerprint,
                "segments": [s.model_dump() for s in segments.segments],
            },
            sort_keys=True,
        )
        # SET NX returns True if the key was set (first writer)
        stored = await self.client.set(key, payload, nx=True)
        if stored is True:
            return

        existing = await self.client.get(key)
        if existing is not None and json.loads(existing).get("fingerprint") != fingerprint:
            raise ModelMismatch(
                f"Pool {pool} holds model {json.loads(existing).get('fingerprint')}, not {fingerprint}"
            )

    async def add_counts(self, pool: str, segments: SegmentSet, counts: dict[int, int]) -> None:
        """Add per-segment counts to a pool in one atomic step."""
        for index, count in counts.items():
            segments.get(index)
            if count < 0:
                raise ValueError(f"Negative count {count} for segment {index}")

        await self.bind_model(pool, segments)
        args: list[str] = []
        for index in segments.indices:
            count = int(counts.get(index, 0))
            if count:
                args.extend((str(index), str(count)))
        if not args:
            return
        await self.client.eval(self.ADD_COUNTS_SCRIPT, 1, f"{self.counts_prefix}{pool}", *args)

    async def add_aggregator(self, pool: str, aggregator: DistributionAggregator) -> None:
        await self.add_counts(pool, aggregator.segments, aggregator.snapshot())

    async def get_model(self, pool: str) -> SegmentSet | None:
        cached = await self.client.get(f"{self.model_prefix}{pool}")
        if cached is None:
            return None
        return load_segment_set(json.loads(cached))

    async def snapshot(self, pool: str) -> dict[int, int]:
        raw = await self.client.hgetall(f"{self.counts_prefix}{pool}")
        return {int(index): int(count) for index, count in raw.items()}

    async def report(
        self,
        pool: str,
        confidence_level: float | None = None,
        min_expected_count: float | None = None,
    ) -> DistributionReport:
        """Pooled report; raises POOL_NOT_FOUND for an unknown pool."""
        segments = await self.get_model(pool)
        if segments is None:
            raise PoolNotFound(f"No distribution data stored for pool {pool}")
        counts = await self.snapshot(pool)
        return build_report(segments, counts, confidence_level, min_expected_count)

    async def clear(self, pool: str) -> None:
        """Drop a pool's model and counts."""
        await self.client.delete(f"{self.model_prefix}{pool}")
        await self.client.delete(f"{self.counts_prefix}{pool}")


# Global instance
distribution_store = DistributionStore()
