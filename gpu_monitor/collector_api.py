import logging

from fastapi import APIRouter, Request
from fastapi.responses import PlainTextResponse, Response

from . import collector, models

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/gpu-info", response_model=models.HostTelemetry, response_model_exclude_none=True)
async def get_gpu_info(request: Request) -> models.HostTelemetry | Response:
    """Run the diagnostic tool and return this host's normalized telemetry."""
    settings = request.app.state.collector_settings
    try:
        return await collector.get_telemetry(settings)
    except collector.CollectorError as e:
        logger.warning("Failed to get GPU info: %s", e)
        return PlainTextResponse(f"Failed to get GPU info: {e}", status_code=500)


@router.get("/health", response_class=PlainTextResponse)
async def health() -> str:
    """Liveness probe."""
    return "OK"
