from passlib.context import CryptContext
from jose import JWTError, jwt
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, List
import settings

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    """Hash a password using bcrypt."""
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its hash."""
    if not hashed_password:
        return False
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(data: Dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create a JWT access token."""
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(hours=settings.JWT_EXPIRATION_HOURS)

    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> Optional[Dict]:
    """Decode and validate a JWT token."""
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        return None


def create_client_portal_token(email: str, party_ids: List[str]) -> str:
    """Sign a short-lived token granting read access to a party's contracts."""
    expire = datetime.now(timezone.utc) + timedelta(minutes=settings.CLIENT_PORTAL_TOKEN_EXPIRY_MINUTES)
    payload = {"email": email, "party_ids": party_ids, "exp": expire}
    return jwt.encode(payload, settings.CLIENT_PORTAL_JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def verify_client_portal_token(token: str) -> Dict:
    """Return `{email, party_ids}` or raise ValueError."""
    try:
        payload = jwt.decode(
            token, settings.CLIENT_PORTAL_JWT_SECRET, algorithms=[settings.JWT_ALGORITHM]
        )
    except JWTError as e:
        raise ValueError(f"Invalid client portal token: {e}")

    email = payload.get("email")
    party_ids = payload.get("party_ids")
    if not isinstance(email, str) or not isinstance(party_ids, list):
        raise ValueError("Invalid client portal token payload")

    return {"email": email, "party_ids": party_ids}
