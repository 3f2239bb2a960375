"""Health check endpoint."""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from rtm_triage import __version__
from rtm_triage.api.dependencies import get_triage_app
from rtm_triage.api.models.triage import HealthResponse
from rtm_triage.app_initializer import TriageApplication
from rtm_triage.core.models import utcnow

router = APIRouter(prefix="/api/v1", tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health_check(
    triage_app: TriageApplication = Depends(get_triage_app),
):
    """Health check endpoint."""
    try:
        health = await triage_app.health_check()
    except Exception as e:
        return JSONResponse(
            status_code=503,
            content={
                "status": "unhealthy",
                "error": str(e),
                "timestamp": utcnow().isoformat(),
            },
        )

    response = HealthResponse(
        status="healthy" if health["healthy"] else "unhealthy",
        timestamp=utcnow().isoformat(),
        version=__version__,
        components=health["components"],
    )
    if not health["healthy"]:
        return JSONResponse(status_code=503, content=response.model_dump())
    return response
