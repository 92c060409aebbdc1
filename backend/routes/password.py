from fastapi import APIRouter, HTTPException, Request, Form
from typing import Optional
import logging

from auth import hash_password, verify_password
from middleware import require_auth
from repositories import repos
from services.email_service import email_service
from services.email_templates import build_information_email
from utils.http import HTTP_STATUS

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/password", tags=["profile"])


@router.put("")
async def update_password(
    request: Request,
    current_password: Optional[str] = Form(None),
    new_password: Optional[str] = Form(None),
    confirm_new_password: Optional[str] = Form(None),
):
    """Change the caller's password and send a confirmation notice."""
    user = await require_auth(request)

    if not current_password:
        raise HTTPException(status_code=HTTP_STATUS.BAD_REQUEST, detail="Current password cannot be empty")
    if not new_password:
        raise HTTPException(status_code=HTTP_STATUS.BAD_REQUEST, detail="New password cannot be empty")
    if not confirm_new_password:
        raise HTTPException(status_code=HTTP_STATUS.BAD_REQUEST, detail="Confirm new password cannot be empty")
    if new_password != confirm_new_password:
        raise HTTPException(status_code=HTTP_STATUS.BAD_REQUEST, detail="New passwords do not match")

    try:
        db_user = await repos.user.find_by_id(user["user_id"])
        if not db_user:
            raise HTTPException(status_code=HTTP_STATUS.NOT_FOUND, detail="User doesn't exist")

        if not verify_password(current_password, db_user.get("password_hash")):
            raise HTTPException(status_code=HTTP_STATUS.UNAUTHORIZED, detail="Current password is incorrect")

        await repos.user.update(db_user["user_id"], {"password_hash": hash_password(new_password)})
        logger.info(f"Password updated for {db_user['user_id']}")

        if email_service.is_email_enabled():
            try:
                await email_service.send_template(db_user["email"], build_information_email(
                    title="Your password has been updated",
                    greeting_text="Your password has been updated successfully.",
                    info_text="Your password has been updated successfully and you can use it to log into your account.",
                    second_info_text="If you didn't request this change, please contact us immediately.",
                ))
            except Exception as e:
                logger.error(f"Error sending password change notification: {e}")

        return {"name": db_user.get("name"), "image": db_user.get("image")}

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error updating password: {e}")
        raise HTTPException(status_code=HTTP_STATUS.INTERNAL_SERVER_ERROR, detail="Internal server error")
