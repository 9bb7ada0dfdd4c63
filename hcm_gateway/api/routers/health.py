"""Health check API router."""

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from hcm_gateway import __version__
from hcm_gateway.infra.metrics import get_metrics_response

router = APIRouter()


@router.get("/health", tags=["Health"])
async def health_check():
    """Combined health check endpoint."""
    return {
        "status": "ok",
        "service": "hcm-mcp-gateway",
        "version": __version__,
    }


@router.get("/health/live", tags=["Health"])
async def liveness_probe():
    """Liveness probe - indicates if the process is running."""
    return {"status": "alive"}


@router.get("/health/ready", tags=["Health"])
async def readiness_probe(request: Request):
    """Readiness probe - the dispatch pipeline has been built."""
    if getattr(request.app.state, "dispatcher", None) is None:
        return JSONResponse({"status": "not_ready"}, status_code=503)
    return {"status": "ready", "tools": len(request.app.state.registry)}


@router.get("/metrics", tags=["Health"])
async def metrics():
    """Prometheus metrics endpoint."""
    return get_metrics_response()
