"""Notes Routes - per-user notes scoped to a company, with live title updates.

GET /api/notes/events is a Server-Sent Events stream; it must be declared
before /{note_id} so it is not captured as an id.
"""
from fastapi import APIRouter, HTTPException, Request, BackgroundTasks
from fastapi.responses import StreamingResponse
from typing import Optional
import logging

import settings
from middleware import require_auth
from models import NoteCreateRequest, NoteUpdateRequest, NoteSort
from repositories import repos
from routes.companies import get_company_for_user
from services import event_manager
from services.inference_service import generate_timestamp_title, generate_title_in_background
from utils.http import HTTP_STATUS

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/notes", tags=["notes"])

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100


def _positive_int(value: Optional[str], fallback: int, maximum: Optional[int] = None) -> int:
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return fallback
    if parsed < 1:
        return fallback
    if maximum and parsed > maximum:
        return maximum
    return parsed


async def _owned_note(note_id: str, user_id: str) -> dict:
    note = await repos.note.find_by_id(note_id)
    if not note:
        raise HTTPException(status_code=HTTP_STATUS.NOT_FOUND, detail="Note not found")
    if note["user_id"] != user_id:
        raise HTTPException(status_code=HTTP_STATUS.FORBIDDEN, detail="Unauthorized")
    return note


@router.post("", status_code=201)
async def create_note(body: NoteCreateRequest, request: Request, background_tasks: BackgroundTasks):
    """Save immediately; an AI title replaces the timestamp title later when configured."""
    user = await require_auth(request)

    if not body.content:
        raise HTTPException(status_code=HTTP_STATUS.BAD_REQUEST, detail="Content is required")

    try:
        if body.company_id:
            await get_company_for_user(body.company_id, user["user_id"])

        note = await repos.note.create({
            "user_id": user["user_id"],
            "company_id": body.company_id,
            "title": body.title or generate_timestamp_title(),
            "content": body.content,
        })

        if not body.title and settings.has_ai_configured():
            background_tasks.add_task(generate_title_in_background, note["note_id"], body.content, user["user_id"])

        return note
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error creating note: {e}")
        raise HTTPException(status_code=HTTP_STATUS.INTERNAL_SERVER_ERROR, detail="Failed to create note")


@router.get("")
async def list_notes(request: Request):
    user = await require_auth(request)
    params = request.query_params

    company_id = params.get("company_id")
    if not company_id:
        raise HTTPException(status_code=HTTP_STATUS.BAD_REQUEST, detail="companyId query parameter is required")

    try:
        await get_company_for_user(company_id, user["user_id"])

        page = _positive_int(params.get("page"), 1)
        page_size = _positive_int(params.get("page_size"), DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE)
        search = (params.get("search") or "").strip() or None
        sort_by = params.get("sort_by")
        if sort_by not in {s.value for s in NoteSort}:
            sort_by = NoteSort.NEWEST.value

        notes, total = await repos.note.find_for_user(
            user["user_id"],
            company_id=company_id,
            search=search,
            sort_by=sort_by,
            skip=(page - 1) * page_size,
            limit=page_size,
        )
        return {"notes": notes, "total": total}

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error fetching notes: {e}")
        raise HTTPException(status_code=HTTP_STATUS.INTERNAL_SERVER_ERROR, detail="Failed to fetch notes")


@router.get("/events")
async def note_events(request: Request):
    """Per-user event stream: `connected`, then `title_updated` events and `ping` keepalives."""
    user = await require_auth(request)
    return StreamingResponse(
        event_manager.event_stream(user["user_id"]),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache, no-transform",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@router.get("/{note_id}")
async def get_note(note_id: str, request: Request):
    user = await require_auth(request)
    try:
        return await _owned_note(note_id, user["user_id"])
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error fetching note {note_id}: {e}")
        raise HTTPException(status_code=HTTP_STATUS.INTERNAL_SERVER_ERROR, detail="Failed to fetch note")


@router.put("/{note_id}")
async def update_note(note_id: str, body: NoteUpdateRequest, request: Request):
    user = await require_auth(request)

    updates = body.model_dump(exclude_none=True)
    if not updates:
        raise HTTPException(
            status_code=HTTP_STATUS.BAD_REQUEST,
            detail="At least one field (title or content) is required",
        )

    try:
        await _owned_note(note_id, user["user_id"])
        return await repos.note.update(note_id, updates)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error updating note {note_id}: {e}")
        raise HTTPException(status_code=HTTP_STATUS.INTERNAL_SERVER_ERROR, detail="Failed to update note")


@router.delete("/{note_id}")
async def delete_note(note_id: str, request: Request):
    user = await require_auth(request)
    try:
        await _owned_note(note_id, user["user_id"])
        await repos.note.delete(note_id)
        return {"success": True}
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error deleting note {note_id}: {e}")
        raise HTTPException(status_code=HTTP_STATUS.INTERNAL_SERVER_ERROR, detail="Failed to delete note")
