from fastapi import APIRouter, HTTPException, Request
import logging

import settings
from middleware import require_auth
from services.inference_service import inference_service
from utils.http import HTTP_STATUS

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/ai", tags=["ai"])


@router.post("/generate-content")
async def generate_content(request: Request):
    """Draft a short note body for the note editor."""
    if not settings.has_ai_configured():
        raise HTTPException(
            status_code=HTTP_STATUS.INTERNAL_SERVER_ERROR,
            detail="AI content generation is not configured",
        )

    await require_auth(request)

    try:
        content = await inference_service.generate_content()
        return {"content": content}
    except Exception as e:
        logger.error(f"AI content generation failed: {e}")
        raise HTTPException(
            status_code=HTTP_STATUS.INTERNAL_SERVER_ERROR,
            detail="Content generation failed. Please try again.",
        )
