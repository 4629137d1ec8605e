"""Metrics collection facade for the discovery service.

Re-exports shared metrics helpers so callers can import from a consistent
local path within the service.
"""

from libs.common.metrics import MetricsCollector, create_metrics_collector
