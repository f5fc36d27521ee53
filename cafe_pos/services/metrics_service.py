"""
Prometheus collectors shared by the services and the metrics blueprint.
"""
import os

from prometheus_client import Counter, Histogram, Gauge, CollectorRegistry
from prometheus_client import multiprocess, REGISTRY

# Gunicorn workers share metrics through PROMETHEUS_MULTIPROC_DIR
MULTIPROCESS_MODE = os.environ.get('PROMETHEUS_MULTIPROC_DIR') is not None

if MULTIPROCESS_MODE:
    registry = CollectorRegistry()
    multiprocess.MultiProcessCollector(registry)
    _metric_registry = None
else:
    registry = REGISTRY
    _metric_registry = REGISTRY

pos_http_requests_total = Counter(
    'pos_http_requests_total',
    'POS API requests',
    ['method', 'endpoint', 'http_status'],
    registry=_metric_registry
)

pos_http_request_duration_seconds = Histogram(
    'pos_http_request_duration_seconds',
    'POS API latency in seconds',
    ['method', 'endpoint'],
    registry=_metric_registry,
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0)
)

pos_http_requests_in_flight = Gauge(
    'pos_http_requests_in_flight',
    'POS API requests being processed',
    registry=_metric_registry
)

pos_settlements_total = Counter(
    'pos_settlements_total',
    'Settlement attempts by outcome',
    ['outcome'],  # completed, rejected, failed
    registry=_metric_registry
)

pos_settlement_duration_seconds = Histogram(
    'pos_settlement_duration_seconds',
    'Time from the first remote write to the end of finalizing',
    registry=_metric_registry,
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0)
)

pos_kitchen_tickets_total = Counter(
    'pos_kitchen_tickets_total',
    'Kitchen tickets dispatched',
    ['target'],  # queue, http
    registry=_metric_registry
)
