"""
Cache Monitoring

Health checks for the cache backend. The cache is never a correctness
dependency, so an unhealthy cache is reported, not raised.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List

from .redis_cache import CacheBackend

logger = logging.getLogger(__name__)

MAX_LATENCY_MS = 50.0
MIN_HIT_RATE = 0.5
MIN_REQUESTS_FOR_HIT_RATE = 100


class HealthStatus(Enum):
    """Health check status."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


@dataclass
class HealthCheckResult:
    """Result of a health check."""
    status: HealthStatus
    backend: str
    latency_ms: float
    checks: Dict[str, bool]
    issues: List[Dict[str, Any]]
    stats: Dict[str, Any]
    key_count: int = 0
    memory_used_bytes: int = 0
    timestamp: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "backend": self.backend,
            "latency_ms": round(self.latency_ms, 2),
            "checks": self.checks,
            "issues": self.issues,
            "stats": self.stats,
            "key_count": self.key_count,
            "memory_used_bytes": self.memory_used_bytes,
            "timestamp": self.timestamp.isoformat(),
        }


class CacheMonitor:
    """Aggregates backend diagnostics into a single health status."""

    def __init__(self, cache: CacheBackend):
        self._cache = cache

    async def health_check(self) -> HealthCheckResult:
        checks: Dict[str, bool] = {}
        issues: List[Dict[str, Any]] = []

        start = time.time()
        checks["connectivity"] = await self._cache.ping()
        latency_ms = (time.time() - start) * 1000

        stats = self._cache.get_stats()

        if not stats.get("enabled", False):
            issues.append({
                "type": "backend",
                "severity": "warning",
                "message": f"Cache not in use ({stats.get('reason', 'disabled')}); "
                           "queries go straight to the database",
            })
            return HealthCheckResult(
                status=HealthStatus.DEGRADED,
                backend=self._cache.name,
                latency_ms=latency_ms,
                checks=checks,
                issues=issues,
                stats=stats,
            )

        if not checks["connectivity"]:
            issues.append({
                "type": "connectivity",
                "severity": "critical",
                "message": "Redis did not answer PING",
                "action": "Check Redis server status and network connectivity",
            })

        checks["latency"] = latency_ms < MAX_LATENCY_MS
        if checks["connectivity"] and not checks["latency"]:
            issues.append({
                "type": "latency",
                "severity": "warning",
                "message": f"High cache latency: {latency_ms:.2f}ms",
                "threshold": MAX_LATENCY_MS,
            })

        requests = stats.get("hits", 0) + stats.get("misses", 0)
        hit_rate = stats.get("hit_rate_percent", 0) / 100
        checks["hit_rate"] = requests < MIN_REQUESTS_FOR_HIT_RATE or hit_rate >= MIN_HIT_RATE
        if not checks["hit_rate"]:
            issues.append({
                "type": "hit_rate",
                "severity": "warning",
                "message": f"Low cache hit rate: {hit_rate * 100:.1f}%",
                "threshold": MIN_HIT_RATE * 100,
            })

        circuit_breaker_open = stats.get("circuit_breaker_open", False)
        checks["circuit_breaker"] = not circuit_breaker_open
        if circuit_breaker_open:
            issues.append({
                "type": "circuit_breaker",
                "severity": "critical",
                "message": "Circuit breaker is open (cache bypassed)",
                "action": "Investigate Redis connectivity issues",
            })

        if not checks["connectivity"] or circuit_breaker_open:
            status = HealthStatus.UNHEALTHY
        elif not (checks["latency"] and checks["hit_rate"]):
            status = HealthStatus.DEGRADED
        else:
            status = HealthStatus.HEALTHY

        key_count = await self._cache.key_count() if checks["connectivity"] else 0
        memory = await self._cache.memory_usage() if checks["connectivity"] else 0

        if status != HealthStatus.HEALTHY:
            logger.warning(f"Cache health {status.value}: {[i['type'] for i in issues]}")

        return HealthCheckResult(
            status=status,
            backend=self._cache.name,
            latency_ms=latency_ms,
            checks=checks,
            issues=issues,
            stats=stats,
            key_count=key_count,
            memory_used_bytes=memory,
        )
