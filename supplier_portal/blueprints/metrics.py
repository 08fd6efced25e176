"""
Prometheus metrics blueprint.

Exposes /metrics with HTTP request metrics plus dispatch order submission
and image upload counters.
This endpoint should be restricted to internal network or monitoring systems only.
"""
from flask import Blueprint, Response, request, g
from prometheus_client import Counter, Histogram, generate_latest, CollectorRegistry, CONTENT_TYPE_LATEST
from prometheus_client import multiprocess, REGISTRY
import time
import os

metrics_bp = Blueprint('metrics', __name__)

# Check if running in multi-process mode (Gunicorn)
MULTIPROCESS_MODE = os.environ.get('PROMETHEUS_MULTIPROC_DIR') is not None

if MULTIPROCESS_MODE:
    registry = CollectorRegistry()
    multiprocess.MultiProcessCollector(registry)
else:
    registry = REGISTRY

http_requests_total = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'http_status'],
    registry=registry if not MULTIPROCESS_MODE else None
)

http_request_duration_seconds = Histogram(
    'http_request_duration_seconds',
    'HTTP request latency in seconds',
    ['method', 'endpoint'],
    registry=registry if not MULTIPROCESS_MODE else None,
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0)
)

dispatch_submissions_total = Counter(
    'dispatch_submissions_total',
    'Dispatch order submissions by outcome',
    ['outcome'],
    registry=registry if not MULTIPROCESS_MODE else None
)

dispatch_image_uploads_total = Counter(
    'dispatch_image_uploads_total',
    'Dispatch order item image uploads by status',
    ['status'],
    registry=registry if not MULTIPROCESS_MODE else None
)


def record_outcome(outcome):
    """Count a finished submission (or upload retry) and its image results."""
    if outcome is None:
        return
    dispatch_submissions_total.labels(outcome=outcome.status.value).inc()
    if outcome.uploaded_count:
        dispatch_image_uploads_total.labels(status='success').inc(outcome.uploaded_count)
    if outcome.failed_count:
        dispatch_image_uploads_total.labels(status='error').inc(outcome.failed_count)


def setup_metrics_instrumentation(app):
    """Setup before_request and after_request hooks for automatic metrics collection."""

    @app.before_request
    def before_request_metrics():
        g._prometheus_metrics_start_time = time.time()

    @app.after_request
    def after_request_metrics(response):
        try:
            if hasattr(g, '_prometheus_metrics_start_time'):
                duration = time.time() - g._prometheus_metrics_start_time
                endpoint = request.endpoint or 'unknown'

                http_request_duration_seconds.labels(
                    method=request.method,
                    endpoint=endpoint
                ).observe(duration)

                http_requests_total.labels(
                    method=request.method,
                    endpoint=endpoint,
                    http_status=response.status_code
                ).inc()
        except Exception as e:
            # Don't break request flow if metrics fail
            app.logger.warning(f"Failed to record metrics: {e}")

        return response


@metrics_bp.route('/metrics')
def metrics():
    """
    Prometheus metrics endpoint.

    SECURITY NOTE: not authenticated, restrict by network/firewall rules.
    """
    data = generate_latest(registry)
    return Response(data, mimetype=CONTENT_TYPE_LATEST)
