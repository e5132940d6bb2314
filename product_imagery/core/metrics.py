"""
Prometheus Metrics for Observability

Tracks transform latency, provider calls and HTTP traffic.
Exposes /api/metrics endpoint for Prometheus scraping.
"""

import time
from contextlib import contextmanager

from prometheus_client import (
    Counter,
    Histogram,
    Info,
    generate_latest,
    CONTENT_TYPE_LATEST,
    REGISTRY
)

# =============================================================================
# Metrics Definitions
# =============================================================================

# Transform latency - per operation
transform_latency_seconds = Histogram(
    "transform_latency_seconds",
    "Time spent in each image operation",
    labelnames=["operation", "status"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0]
)

# Background removal provider calls
background_removal_calls_total = Counter(
    "background_removal_calls_total",
    "Total number of background removal provider invocations",
    labelnames=["provider", "status"]
)

# Persisted artifacts
artifacts_written_total = Counter(
    "artifacts_written_total",
    "Total number of processed images written to the result store",
    labelnames=["operation"]
)

# API Request Metrics
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labelnames=["method", "endpoint", "status"]
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration",
    labelnames=["method", "endpoint"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0]
)

# Application Info
app_info = Info(
    "imagery_app",
    "Application information"
)


# =============================================================================
# Helper Functions
# =============================================================================

def set_app_info(version: str, environment: str):
    """Set application info metric."""
    app_info.info({
        "version": version,
        "environment": environment
    })


@contextmanager
def track_stage_latency(operation: str):
    """
    Context manager to track operation latency.

    Usage:
        with track_stage_latency("resize"):
            # do work
    """
    start = time.time()
    status = "success"
    try:
        yield
    except Exception:
        status = "error"
        raise
    finally:
        duration = time.time() - start
        transform_latency_seconds.labels(operation=operation, status=status).observe(duration)


def record_provider_call(provider: str, status: str):
    """Record a background removal provider invocation."""
    background_removal_calls_total.labels(provider=provider, status=status).inc()


def record_artifact_written(operation: str):
    """Record a processed image written to the result store."""
    artifacts_written_total.labels(operation=operation).inc()


def get_metrics() -> bytes:
    """Generate Prometheus metrics output."""
    return generate_latest(REGISTRY)


def get_metrics_content_type() -> str:
    """Get the content type for Prometheus metrics."""
    return CONTENT_TYPE_LATEST
