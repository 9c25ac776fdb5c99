"""
Health check routes.
"""

from fastapi import APIRouter, Request
from fastapi.responses import Response

from helpqueue import __version__
from helpqueue.api.dependencies import Registry
from helpqueue.observability.metrics import get_metrics
from helpqueue.types.api import HealthResponse
from helpqueue.types.members import utcnow

router = APIRouter(tags=["Health"])


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Check the health of the service.",
)
async def health_check(registry: Registry) -> HealthResponse:
    """
    Perform a health check.

    Returns:
        HealthResponse with service status and the number of joined servers.
    """
    return HealthResponse(
        status="healthy",
        version=__version__,
        servers=len(registry),
        timestamp=utcnow(),
    )


@router.get(
    "/ready",
    summary="Readiness check",
    description="Check if the service is ready to receive traffic.",
)
async def readiness_check(request: Request) -> dict:
    """
    Kubernetes readiness check endpoint.

    Ready once the lifespan has installed the registry.
    """
    return {"ready": getattr(request.app.state, "registry", None) is not None}


@router.get(
    "/live",
    summary="Liveness check",
    description="Check if the service is alive.",
)
async def liveness_check() -> dict:
    """
    Kubernetes liveness check endpoint.

    Returns:
        Alive status.
    """
    return {"alive": True}


@router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="Expose Prometheus metrics.",
)
async def metrics() -> Response:
    """
    Expose Prometheus metrics.

    Returns:
        Prometheus-formatted metrics.
    """
    metrics_collector = get_metrics()
    return Response(
        content=metrics_collector.get_metrics(),
        media_type=metrics_collector.get_content_type(),
    )
