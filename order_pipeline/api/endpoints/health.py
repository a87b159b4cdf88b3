import logging

from fastapi import APIRouter, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health/live")
async def liveness():
    return {"status": "alive"}


@router.get("/health")
async def health(request: Request):
    """Gateway readiness: database and SQS checks, cached briefly."""
    health_service = getattr(request.app.state, "health_service", None)
    if health_service is None:
        return JSONResponse(status_code=503, content={"status": "starting"})

    result = await health_service.get_health_status()
    status_code = 200 if result.status == "healthy" else 503
    if status_code != 200:
        logger.warning("Health check degraded", extra={"checks": jsonable_encoder(result.checks)})
    return JSONResponse(status_code=status_code, content=jsonable_encoder(result))
