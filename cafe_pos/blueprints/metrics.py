"""
Prometheus metrics blueprint.

Times every request and serves /metrics. The endpoint is unauthenticated;
expose it to the monitoring network only.
"""
import time

from flask import Blueprint, Response, request, g
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST

from cafe_pos.services.metrics_service import (
    registry, pos_http_requests_total, pos_http_request_duration_seconds, pos_http_requests_in_flight
)

metrics_bp = Blueprint('metrics', __name__)


def _observe(response):
    started = g.pop('_pos_request_started', None)
    if started is None:
        return
    endpoint = request.endpoint or 'unknown'
    pos_http_request_duration_seconds.labels(request.method, endpoint).observe(time.perf_counter() - started)
    pos_http_requests_total.labels(request.method, endpoint, response.status_code).inc()
    pos_http_requests_in_flight.dec()


def setup_metrics_instrumentation(app):
    """Time every request handled by `app`."""

    @app.before_request
    def start_request_timer():
        g._pos_request_started = time.perf_counter()
        pos_http_requests_in_flight.inc()

    @app.after_request
    def record_request(response):
        try:
            _observe(response)
        except Exception as e:
            app.logger.warning(f"[METRICS] Could not record request: {e}")
        return response


@metrics_bp.route('/metrics')
def metrics():
    return Response(generate_latest(registry), mimetype=CONTENT_TYPE_LATEST)
