"""
Prometheus metrics endpoint.

PUBLIC endpoint (no authentication) exposing the counters and histograms
recorded by ``@BaseService.measure_operation`` and the gateway, lock and
outbox instrumentation.
"""

from fastapi import APIRouter, Response

from ...monitoring.prometheus_metrics import prometheus_metrics

router = APIRouter(tags=["monitoring"])


@router.get("/prometheus", include_in_schema=False, response_class=Response, response_model=None)
async def get_prometheus_metrics() -> Response:
    """Expose metrics in Prometheus exposition format."""
    return Response(
        content=prometheus_metrics.get_metrics(),
        media_type=prometheus_metrics.get_content_type(),
        headers={"Cache-Control": "no-cache, no-store, must-revalidate"},
    )
