"""Metrics collection for discovery services.

Provides a thin convenience wrapper around ``prometheus_client`` so services
consistently record HTTP, conversation turn, search, cache and session
metrics.

Design notes
- Metrics and labels are predeclared to avoid cardinality explosions
- Each collector owns its registry (inject one for testing)
"""

from typing import Optional
from prometheus_client import Counter, Histogram, CollectorRegistry, generate_latest
import structlog

logger = structlog.get_logger("metrics")


class MetricsCollector:
    """Centralized metrics collection for discovery services.

    Parameters
    - service_name: Logical name used for scoping/labels if desired
    - registry: Optional custom ``CollectorRegistry`` (e.g. for testing)
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry or CollectorRegistry()

        self.request_count = Counter(
            'http_requests_total',
            'Total HTTP requests',
            ['method', 'endpoint', 'status'],
            registry=self.registry
        )

        self.request_duration = Histogram(
            'http_request_duration_seconds',
            'HTTP request duration',
            ['method', 'endpoint'],
            registry=self.registry
        )

        self.turns = Counter(
            'discovery_turns_total',
            'Total conversation turns handled',
            ['intent', 'channel', 'success'],
            registry=self.registry
        )

        self.search_requests = Counter(
            'discovery_search_requests_total',
            'Total directory searches',
            ['search_type'],
            registry=self.registry
        )

        self.search_duration = Histogram(
            'discovery_search_duration_seconds',
            'Directory search duration',
            ['search_type'],
            registry=self.registry
        )

        self.cache_hits = Counter(
            'discovery_cache_hits_total',
            'Total cache hits',
            ['cache_type'],
            registry=self.registry
        )

        self.cache_misses = Counter(
            'discovery_cache_misses_total',
            'Total cache misses',
            ['cache_type'],
            registry=self.registry
        )

        self.session_operations = Counter(
            'discovery_session_operations_total',
            'Session manager operations partitioned by outcome',
            ['action', 'outcome'],
            registry=self.registry
        )

    def record_http_request(
        self,
        method: str,
        endpoint: str,
        status: int,
        duration: float
    ) -> None:
        """Record HTTP request metrics.

        duration is expected in seconds to match Prometheus histogram units.
        """
        self.request_count.labels(method=method, endpoint=endpoint, status=status).inc()
        self.request_duration.labels(method=method, endpoint=endpoint).observe(duration)

    def record_turn(self, intent: str, channel: str, success: bool) -> None:
        """Record a handled conversation turn."""
        self.turns.labels(intent=intent, channel=channel, success=str(success).lower()).inc()

    def record_search(
        self,
        search_type: str,
        duration: float
    ) -> None:
        """Record search metrics."""
        self.search_requests.labels(search_type=search_type).inc()
        self.search_duration.labels(search_type=search_type).observe(duration)

    def record_cache_hit(self, cache_type: str) -> None:
        """Record cache hit."""
        self.cache_hits.labels(cache_type=cache_type).inc()

    def record_cache_miss(self, cache_type: str) -> None:
        """Record cache miss."""
        self.cache_misses.labels(cache_type=cache_type).inc()

    def record_session_operation(self, action: str, outcome: str) -> None:
        """Record a session manager operation (``start``, ``continue``, ``end``) and its outcome."""
        self.session_operations.labels(action=action, outcome=outcome).inc()

    def get_metrics(self) -> str:
        """Get metrics in Prometheus exposition format for scraping."""
        return generate_latest(self.registry).decode('utf-8')


def create_metrics_collector(
    service_name: str,
    registry: Optional[CollectorRegistry] = None
) -> MetricsCollector:
    """Create a metrics collector with its own registry."""
    return MetricsCollector(service_name, registry=registry)
