import asyncio

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from ...core.config import Settings, get_settings
from ...services.health import build_health_report

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(settings: Settings = Depends(get_settings)):
    """
    Dependency-aware health check.

    Returns 200 when both Tesseract and ImageMagick respond, 503 otherwise.
    """
    report = await asyncio.to_thread(build_health_report, settings)
    return JSONResponse(
        status_code=status.HTTP_200_OK if report.healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content=report.model_dump(mode="json", by_alias=True, exclude_none=True),
    )
