"""User Profile Routes - view profile, change display name and avatar."""
from fastapi import APIRouter, HTTPException, Request, Form, File, UploadFile
from typing import Optional
from urllib.parse import urlparse
import logging
import os
import uuid

from middleware import require_auth
from models import public_user
from repositories import repos
from services.storage_service import storage_service
from utils.http import HTTP_STATUS

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/profile", tags=["profile"])

ALLOWED_IMAGE_TYPES = ("image/jpeg", "image/png")
MAX_IMAGE_SIZE = 5 * 1024 * 1024


def file_name_from_url(url: Optional[str]) -> Optional[str]:
    """Last path segment of a stored image URL."""
    if not url:
        return None
    name = urlparse(url).path.rsplit("/", 1)[-1]
    return name or None


@router.get("")
async def get_profile(request: Request):
    user = await require_auth(request)
    db_user = await repos.user.find_by_id(user["user_id"])
    if not db_user:
        raise HTTPException(status_code=HTTP_STATUS.NOT_FOUND, detail="User doesn't exist")
    return {"user": public_user(db_user)}


@router.patch("")
async def update_profile(
    request: Request,
    name: Optional[str] = Form(None),
    file: Optional[UploadFile] = File(None),
):
    """
    Multipart update of `name` and/or `file` (JPG or PNG up to 5MB).

    The avatar is stored public-read under the user's folder; the previous
    image is removed once the new one is in place.
    """
    user = await require_auth(request)

    if name is not None and name.strip() == "":
        raise HTTPException(status_code=HTTP_STATUS.BAD_REQUEST, detail="Name invalid")

    try:
        db_user = await repos.user.find_by_id(user["user_id"])
        if not db_user:
            raise HTTPException(status_code=HTTP_STATUS.NOT_FOUND, detail="User doesn't exist")

        updates = {}
        if file is not None and file.filename:
            if file.content_type not in ALLOWED_IMAGE_TYPES:
                raise HTTPException(status_code=HTTP_STATUS.BAD_REQUEST, detail="Only JPG or PNG files are allowed")

            content = await file.read()
            if len(content) > MAX_IMAGE_SIZE:
                raise HTTPException(status_code=HTTP_STATUS.BAD_REQUEST, detail="File size must be 5MB or less")

            extension = os.path.splitext(file.filename)[1]
            folder = user["user_id"]
            file_name = await storage_service.upload_file(
                folder, f"{uuid.uuid4()}{extension}", content, file.content_type, acl="public-read"
            )
            # objects are public-read, the signature is not needed
            updates["image"] = (await storage_service.get_file_url(folder, file_name)).split("?")[0]

            old_image = file_name_from_url(db_user.get("image"))
            if old_image:
                await storage_service.delete_file(folder, old_image)

        if name is not None:
            updates["name"] = name

        if updates:
            db_user = await repos.user.update(user["user_id"], updates)

        return {"name": db_user.get("name"), "image": db_user.get("image")}

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Profile update error: {e}")
        raise HTTPException(
            status_code=HTTP_STATUS.INTERNAL_SERVER_ERROR,
            detail=(
                "Profile update error. Check your DigitalOcean Spaces and DB settings "
                f"on the system status page. [{type(e).__name__}: {e}]"
            ),
        )
