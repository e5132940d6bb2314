"""
Metrics Endpoint

GET /api/metrics - Prometheus metrics endpoint
"""

from fastapi import APIRouter, Response

from product_imagery.core.metrics import get_metrics, get_metrics_content_type

router = APIRouter()


@router.get("/metrics")
async def metrics():
    """
    Prometheus metrics endpoint.

    Exposes:
    - transform_latency_seconds (per operation)
    - background_removal_calls_total (per provider)
    - artifacts_written_total
    - http_requests_total
    """
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )
