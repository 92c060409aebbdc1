"""System Status Route - configuration and connectivity of every backing service."""
from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse
from fastapi.encoders import jsonable_encoder
import logging

import settings
from models import utc_now
from services.status_service import status_service
from utils.http import HTTP_STATUS

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/system-status", tags=["system-status"])


@router.get("")
async def system_status(request: Request):
    """
    Cached health state; `?refresh=true` forces a fresh check of every service.

    Status is `ok` when every required service is configured and connected.
    """
    refresh = request.query_params.get("refresh") == "true"
    try:
        state = status_service.get_health_state()
        if refresh or state is None:
            state = await status_service.force_health_check()

        body = {
            "services": state.services,
            "system_info": {
                "environment": settings.ENVIRONMENT,
                "timestamp": utc_now(),
                "last_health_check": state.last_checked,
            },
            "status": "ok" if state.is_healthy else "issues_detected",
        }
        cache_control = "no-store, max-age=0" if refresh else "public, max-age=60"
        return JSONResponse(content=jsonable_encoder(body), headers={"Cache-Control": cache_control})
    except Exception as e:
        logger.error(f"System status check failed: {e}")
        raise HTTPException(status_code=HTTP_STATUS.INTERNAL_SERVER_ERROR, detail="Failed to check system status")
