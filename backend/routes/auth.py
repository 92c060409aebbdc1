"""Authentication Routes - signup, login, magic link, password reset, email verification.

Sessions are bearer JWTs minted by /api/auth/login. Magic links and password
resets share the verification_tokens collection (one hour validity).
"""
from fastapi import APIRouter, HTTPException, Request
from datetime import timedelta
from urllib.parse import quote
import logging
import uuid

import settings
from auth import hash_password, verify_password, create_access_token
from models import (
    SignupRequest, LoginRequest, EmailRequest, ResetPasswordRequest,
    UserRole, utc_now, public_user,
)
from repositories import repos
from services.email_service import email_service
from services.email_templates import build_action_button_email
from services.subscription_service import ensure_subscription
from utils.http import HTTP_STATUS

logger = logging.getLogger(__name__)
router = APIRouter(tags=["auth"])

TOKEN_TTL = timedelta(hours=1)
FALLBACK_TEXT = "If the button above does not work, copy and paste the following link into your browser:"


async def require_email_service():
    """500 unless email is switched on and Postmark answers."""
    if not email_service.is_email_enabled():
        raise HTTPException(status_code=HTTP_STATUS.INTERNAL_SERVER_ERROR, detail="Email feature is disabled")

    email_status = await email_service.check_configuration()
    if not email_status.configured or not email_status.connected:
        logger.error(f"Email not available: {email_status.error}")
        raise HTTPException(
            status_code=HTTP_STATUS.INTERNAL_SERVER_ERROR,
            detail="Email not configured or connected. Check System Status page",
        )


@router.post("/api/auth/signup")
async def signup(body: SignupRequest):
    """Register a user. The first account ever created becomes ADMIN."""
    if not body.name or not body.email or not body.password:
        raise HTTPException(status_code=HTTP_STATUS.BAD_REQUEST, detail="Missing required fields")

    try:
        is_first_user = await repos.user.count() == 0
        if await repos.user.find_by_email(body.email):
            raise HTTPException(status_code=HTTP_STATUS.CONFLICT, detail="User already exists")

        email_enabled = email_service.is_email_enabled()
        verification_token = str(uuid.uuid4()) if email_enabled else None

        user = await repos.user.create({
            "name": body.name,
            "email": body.email,
            "image": None,
            "password_hash": hash_password(body.password),
            "role": (UserRole.ADMIN if is_first_user else UserRole.USER).value,
            "verification_token": verification_token,
            "email_verified": not email_enabled,
        })
        logger.info(f"User registered: {user['user_id']} role={user['role']}")

        if email_enabled:
            verify_url = f"{settings.BASE_URL}/verify-email?token={verification_token}"
            await email_service.send_template(user["email"], build_action_button_email(
                title="Verify your email address",
                button_url=verify_url,
                button_text="Verify Email",
                greeting_text="Hello! Thank you for signing up.",
                info_text="Please verify your email address by clicking the button below:",
                fallback_text=FALLBACK_TEXT,
            ))
            return {"ok": True, "message": "Verification email sent."}

        # no verification step, so the free plan is attached now
        await ensure_subscription(user)
        return {"ok": True, "message": "Account created. You can now log in."}

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Signup error: {e}")
        raise HTTPException(status_code=HTTP_STATUS.INTERNAL_SERVER_ERROR, detail=str(e) or "Internal server error")


@router.post("/api/auth/login")
async def login(body: LoginRequest):
    """Exchange a password or a magic-link token for an access token."""
    if not body.password and not body.magic_link_token:
        raise HTTPException(status_code=HTTP_STATUS.BAD_REQUEST, detail="Missing credentials")

    user = await repos.user.find_by_email(body.email)
    if not user:
        raise HTTPException(status_code=HTTP_STATUS.UNAUTHORIZED, detail="Invalid credentials")

    if body.magic_link_token:
        token = await repos.verification_token.find_valid(body.magic_link_token, body.email)
        if not token:
            raise HTTPException(status_code=HTTP_STATUS.UNAUTHORIZED, detail="Invalid or expired magic link")
        await repos.verification_token.delete_token(body.email, body.magic_link_token)
    else:
        if settings.is_email_enabled() and not user.get("email_verified"):
            raise HTTPException(status_code=HTTP_STATUS.UNAUTHORIZED, detail="Email not verified")
        if not verify_password(body.password, user.get("password_hash")):
            logger.warning(f"Failed login for {user['user_id']}")
            raise HTTPException(status_code=HTTP_STATUS.UNAUTHORIZED, detail="Invalid credentials")

    access_token = create_access_token({
        "user_id": user["user_id"],
        "email": user["email"],
        "name": user.get("name"),
        "role": user.get("role"),
    })
    return {"access_token": access_token, "token_type": "bearer", "user": public_user(user)}


@router.post("/api/auth/magic-link")
async def send_magic_link(body: EmailRequest):
    try:
        await require_email_service()

        if not body.email:
            raise HTTPException(status_code=HTTP_STATUS.BAD_REQUEST, detail="Email is required")

        user = await repos.user.find_by_email(body.email)
        if not user:
            raise HTTPException(status_code=HTTP_STATUS.NOT_FOUND, detail="User not found")

        token = str(uuid.uuid4())
        await repos.verification_token.create_token(body.email, token, utc_now() + TOKEN_TTL)

        login_url = f"{settings.BASE_URL}/magic-link?token={token}&email={quote(body.email)}"
        await email_service.send_template(user["email"], build_action_button_email(
            title="Login to your account",
            button_url=login_url,
            button_text="Login",
            greeting_text=f"Hi, You can login to your {settings.APP_NAME} account by clicking the button below:",
            fallback_text=FALLBACK_TEXT,
        ))
        return {"ok": True}

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Magic link error: {e}")
        raise HTTPException(status_code=HTTP_STATUS.INTERNAL_SERVER_ERROR, detail=str(e) or "Internal server error")


@router.post("/api/forgot-password")
async def forgot_password(body: EmailRequest):
    """Always succeeds for unknown addresses so accounts cannot be enumerated."""
    try:
        await require_email_service()

        if not body.email:
            raise HTTPException(status_code=HTTP_STATUS.BAD_REQUEST, detail="Email is required")

        user = await repos.user.find_by_email(body.email)
        if not user:
            return {"success": True}

        token = str(uuid.uuid4())
        await repos.verification_token.create_token(user["email"], token, utc_now() + TOKEN_TTL)

        reset_url = f"{settings.BASE_URL}/reset-password?token={token}"
        await email_service.send_template(user["email"], build_action_button_email(
            title="Reset your password",
            button_url=reset_url,
            button_text="Reset Password",
            greeting_text="Hello! We received a request to reset the password for your account.",
            info_text="If you did not request this, you can safely ignore this email.",
            fallback_text=FALLBACK_TEXT,
        ))
        return {"success": True}

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Forgot password error: {e}")
        raise HTTPException(status_code=HTTP_STATUS.INTERNAL_SERVER_ERROR, detail=str(e) or "Internal server error")


@router.post("/api/reset-password")
async def reset_password(body: ResetPasswordRequest):
    try:
        if not body.token or not body.password:
            raise HTTPException(status_code=HTTP_STATUS.BAD_REQUEST, detail="Token and password are required")

        record = await repos.verification_token.find_valid(body.token)
        if not record:
            raise HTTPException(status_code=HTTP_STATUS.BAD_REQUEST, detail="Invalid or expired token")

        await repos.user.update_by_email(record["identifier"], {"password_hash": hash_password(body.password)})
        await repos.verification_token.delete_token(record["identifier"], body.token)
        logger.info(f"Password reset completed for {record['identifier']}")
        return {"success": True}

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Reset password error: {e}")
        raise HTTPException(status_code=HTTP_STATUS.INTERNAL_SERVER_ERROR, detail="An unexpected error occurred.")


@router.get("/api/verify-email")
async def verify_email(request: Request):
    token = request.query_params.get("token")
    if not token:
        raise HTTPException(status_code=HTTP_STATUS.BAD_REQUEST, detail="Missing token")

    user = await repos.user.find_one({"verification_token": token})
    if not user:
        raise HTTPException(status_code=HTTP_STATUS.BAD_REQUEST, detail="Invalid or expired token")

    await repos.user.update(user["user_id"], {"email_verified": True, "verification_token": None})

    try:
        await ensure_subscription(user)
    except Exception as e:
        logger.error(f"Error creating subscription: {e}")
        raise HTTPException(status_code=HTTP_STATUS.INTERNAL_SERVER_ERROR, detail="Error creating subscription")

    return {"success": True}
