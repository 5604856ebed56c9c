"""
Traffic Cost Service

Segment costs for the route predictor, with bounded latency.

Features:
- Pluggable TrafficProvider (HTTP flow-segment API or static table)
- Response caching with TTL
- Parallel fetching under a single deadline
- Retry with backoff on transient provider errors
- Fallback to stale cache, then to speed-limit-derived historical costs
- Global set of blocked segments fed by traffic deltas
"""

import asyncio
import logging
import os
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Set

import aiohttp

from corridor_engine.errors import TrafficProviderError
from corridor_engine.models import CongestionLevel, CostSource, RoadSegment, SegmentCost, TrafficDelta
from corridor_engine.retry import retry_async

logger = logging.getLogger(__name__)


def congestion_from_speeds(current_speed: float, free_flow_speed: float) -> CongestionLevel:
    """
    Congestion level from the current/free-flow speed ratio

    Args:
        current_speed: Current traffic speed (km/h)
        free_flow_speed: Free flow speed (km/h)
    """
    if free_flow_speed <= 0:
        return CongestionLevel.LOW

    ratio = current_speed / free_flow_speed

    if ratio >= 0.8:
        return CongestionLevel.LOW
    elif ratio >= 0.5:
        return CongestionLevel.MEDIUM
    elif ratio >= 0.2:
        return CongestionLevel.HIGH
    else:
        return CongestionLevel.JAM


# ============================================
# Providers
# ============================================

class TrafficProvider(ABC):
    """Source of live segment costs"""

    name: str = "provider"

    @abstractmethod
    async def cost(self, segment: RoadSegment) -> SegmentCost:
        """Live cost of a segment; raise TrafficProviderError when unavailable"""

    async def close(self):
        pass


class StaticTrafficProvider(TrafficProvider):
    """
    Deterministic provider driven by per-segment speed factors

    ``latency_seconds`` delays every answer, which makes deadline
    behaviour reproducible in simulations.
    """

    name = "static"

    def __init__(
        self,
        speed_factors: Optional[Dict[str, float]] = None,
        default_factor: float = 0.8,
        latency_seconds: float = 0.0,
        failing_segments: Optional[Iterable[str]] = None
    ):
        self.speed_factors: Dict[str, float] = dict(speed_factors or {})
        self.default_factor = default_factor
        self.latency_seconds = latency_seconds
        self.failing_segments: Set[str] = set(failing_segments or ())
        self.calls = 0

    def set_factor(self, segment_id: str, factor: float):
        self.speed_factors[segment_id] = factor

    async def cost(self, segment: RoadSegment) -> SegmentCost:
        self.calls += 1
        if self.latency_seconds > 0:
            await asyncio.sleep(self.latency_seconds)
        if segment.segment_id in self.failing_segments:
            raise TrafficProviderError(f"No data for {segment.segment_id}")

        factor = max(0.01, self.speed_factors.get(segment.segment_id, self.default_factor))
        speed = segment.speed_limit_kmh * factor
        return SegmentCost(
            segment_id=segment.segment_id,
            congestion_level=congestion_from_speeds(speed, segment.speed_limit_kmh),
            average_speed_kmh=speed,
            source=CostSource.LIVE,
        )


class HttpTrafficProvider(TrafficProvider):
    """
    Flow-segment traffic API over aiohttp

    Usage:
        provider = HttpTrafficProvider(api_key=os.getenv("TRAFFIC_API_KEY"))
        cost = await provider.cost(segment)
        await provider.close()
    """

    name = "http"

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: str = "https://api.tomtom.com/traffic/services/4/flowSegmentData",
        request_timeout: float = 2.0
    ):
        self.api_key = api_key or os.getenv("TRAFFIC_API_KEY", "")
        self.base_url = base_url
        self.request_timeout = request_timeout
        self._session: Optional[aiohttp.ClientSession] = None

        self.request_count = 0
        self.error_count = 0

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def initialize(self):
        """Initialize the HTTP session"""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.request_timeout)
            self._session = aiohttp.ClientSession(timeout=timeout)

    async def close(self):
        """Close the HTTP session"""
        if self._session and not self._session.closed:
            await self._session.close()

    async def cost(self, segment: RoadSegment) -> SegmentCost:
        if not self.is_configured:
            raise TrafficProviderError("Traffic API key not configured")

        await self.initialize()

        # Query at the segment midpoint
        query_lat = (segment.start_latitude + segment.end_latitude) / 2
        query_lon = (segment.start_longitude + segment.end_longitude) / 2
        url = f"{self.base_url}/absolute/10/json"
        params = {
            'key': self.api_key,
            'point': f"{query_lat},{query_lon}",
            'unit': 'KMPH',
            'openLr': 'false'
        }

        self.request_count += 1
        try:
            async with self._session.get(url, params=params) as response:
                if response.status != 200:
                    self.error_count += 1
                    raise TrafficProviderError(f"Traffic API error {response.status} for {segment.segment_id}")
                data = await response.json()
        except aiohttp.ClientError as e:
            self.error_count += 1
            raise TrafficProviderError(f"Network error for {segment.segment_id}: {e}") from e

        flow_data = data.get('flowSegmentData', {})
        free_flow_speed = float(flow_data.get('freeFlowSpeed') or segment.speed_limit_kmh)
        current_speed = float(flow_data.get('currentSpeed') or 0.0)
        if current_speed <= 0:
            raise TrafficProviderError(f"Traffic API returned no speed for {segment.segment_id}")

        return SegmentCost(
            segment_id=segment.segment_id,
            congestion_level=congestion_from_speeds(current_speed, free_flow_speed),
            average_speed_kmh=current_speed,
            source=CostSource.LIVE,
        )


# ============================================
# Cost service
# ============================================

@dataclass
class CacheEntry:
    cost: SegmentCost
    expires_at: float


class TrafficCostService:
    """
    Bounded-latency segment costing

    Never raises for provider trouble: every requested segment gets a
    cost, and the cost's ``source`` says how trustworthy it is.

    Usage:
        service = TrafficCostService(StaticTrafficProvider(), config.get_traffic_config())
        costs = await service.costs(segments, timeout=1.5)
    """

    def __init__(self, provider: Optional[TrafficProvider] = None, config: Optional[Dict[str, Any]] = None):
        config = config or {}
        self.provider = provider or StaticTrafficProvider()

        self.cache_ttl = float(config.get('cacheTtlSeconds', 60.0))
        self.stale_ttl = float(config.get('staleTtlSeconds', 900.0))
        self.deadline_seconds = float(config.get('deadlineSeconds', 2.0))
        self.retry_delays: List[float] = [float(d) for d in config.get('retryDelays', [0.1, 0.25])]
        self.historical_speed_factor = float(config.get('historicalSpeedFactor', 0.7))

        self._cache: Dict[str, CacheEntry] = {}
        self.blocked: Set[str] = set()

        # Statistics
        self.cache_hits = 0
        self.live_fetches = 0
        self.fallbacks = 0

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def is_blocked(self, segment_id: Optional[str]) -> bool:
        return segment_id is not None and segment_id in self.blocked

    def historical(self, segment: RoadSegment) -> SegmentCost:
        """Cost derived from the speed limit alone"""
        return SegmentCost(
            segment_id=segment.segment_id,
            congestion_level=CongestionLevel.LOW,
            average_speed_kmh=segment.speed_limit_kmh * self.historical_speed_factor,
            source=CostSource.HISTORICAL,
        )

    def peek(self, segment: RoadSegment, now: Optional[float] = None) -> SegmentCost:
        """Best cost available without calling the provider"""
        now = now if now is not None else time.time()
        entry = self._cache.get(segment.segment_id)
        if entry is not None:
            if now < entry.expires_at:
                return entry.cost
            if now - entry.cost.fetched_at < self.stale_ttl:
                return entry.cost.model_copy(update={'source': CostSource.CACHED})
        return self.historical(segment)

    async def costs(
        self,
        segments: Iterable[RoadSegment],
        timeout: Optional[float] = None
    ) -> Dict[str, SegmentCost]:
        """
        Cost every segment within ``timeout`` seconds

        Fresh cache entries are returned as-is. Misses are fetched in
        parallel; whatever has not answered by the deadline is cancelled
        and served from stale cache or historical data.

        Returns:
            Mapping segment_id -> SegmentCost
        """
        timeout = self.deadline_seconds if timeout is None else timeout
        now = time.time()

        unique: Dict[str, RoadSegment] = {}
        for segment in segments:
            unique.setdefault(segment.segment_id, segment)

        result: Dict[str, SegmentCost] = {}
        pending: Dict[asyncio.Task, RoadSegment] = {}

        for segment_id, segment in unique.items():
            entry = self._cache.get(segment_id)
            if entry is not None and now < entry.expires_at:
                self.cache_hits += 1
                result[segment_id] = entry.cost
                continue
            task = asyncio.create_task(self._fetch(segment))
            pending[task] = segment

        if pending:
            done, not_done = await asyncio.wait(pending.keys(), timeout=max(0.0, timeout))

            for task in not_done:
                task.cancel()

            for task, segment in pending.items():
                if task in done and not task.cancelled() and task.exception() is None:
                    result[segment.segment_id] = task.result()
                else:
                    self.fallbacks += 1
                    result[segment.segment_id] = self.peek(segment, now)

            if not_done:
                logger.warning(
                    "[TRAFFIC] %d/%d segment lookups missed the %.2fs deadline",
                    len(not_done), len(pending), timeout
                )

        return result

    async def _fetch(self, segment: RoadSegment) -> SegmentCost:
        cost = await retry_async(
            self.provider.cost,
            segment,
            delays=self.retry_delays,
            retry_on=(TrafficProviderError, asyncio.TimeoutError, OSError),
            label=f"traffic:{segment.segment_id}",
        )
        self.live_fetches += 1
        self._store(cost)
        return cost

    def _store(self, cost: SegmentCost):
        self._cache[cost.segment_id] = CacheEntry(cost=cost, expires_at=cost.fetched_at + self.cache_ttl)

    # ------------------------------------------------------------------
    # Deltas
    # ------------------------------------------------------------------

    def apply_delta(self, delta: TrafficDelta):
        """Record blocked/reopened segments and pushed costs"""
        self.blocked |= set(delta.blocked_segments)
        self.blocked -= set(delta.reopened_segments)
        for segment_id, cost in delta.segment_costs.items():
            self._store(cost.model_copy(update={'segment_id': segment_id, 'source': CostSource.LIVE}))

        if not delta.empty:
            logger.info(
                "[TRAFFIC] Delta applied: +%d blocked, %d reopened, %d costs (blocked now %d)",
                len(delta.blocked_segments), len(delta.reopened_segments),
                len(delta.segment_costs), len(self.blocked)
            )

    def get_statistics(self) -> Dict[str, Any]:
        return {
            'provider': self.provider.name,
            'cachedSegments': len(self._cache),
            'blockedSegments': len(self.blocked),
            'cacheHits': self.cache_hits,
            'liveFetches': self.live_fetches,
            'fallbacks': self.fallbacks,
        }

    async def close(self):
        await self.provider.close()
