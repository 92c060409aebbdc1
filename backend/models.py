from pydantic import BaseModel, EmailStr, Field, ConfigDict
from typing import Optional, Dict, Any, List, Union
from datetime import datetime, timezone
from enum import Enum
import uuid

# ============================================================================
# ENUMS (System Constants)
# ============================================================================

class UserRole(str, Enum):
    ADMIN = "ADMIN"
    USER = "USER"

class SubscriptionStatus(str, Enum):
    ACTIVE = "ACTIVE"
    CANCELED = "CANCELED"
    PENDING = "PENDING"

class SubscriptionPlan(str, Enum):
    FREE = "FREE"
    PRO = "PRO"

class BillingPlan(str, Enum):
    """Price selector understood by the billing service (GIFT is PRO at $0)."""
    FREE = "FREE"
    PRO = "PRO"
    GIFT = "GIFT"

class ContractStatus(str, Enum):
    DRAFT = "DRAFT"
    ACTIVE = "ACTIVE"
    PENDING_SIGNATURE = "PENDING_SIGNATURE"
    COMPLETED = "COMPLETED"
    TERMINATED = "TERMINATED"

class WorkItemStatus(str, Enum):
    NOT_STARTED = "NOT_STARTED"
    IN_PROGRESS = "IN_PROGRESS"
    BLOCKED = "BLOCKED"
    COMPLETED = "COMPLETED"

class LineItemType(str, Enum):
    INFLOW = "INFLOW"
    OUTFLOW = "OUTFLOW"

class NoteSort(str, Enum):
    NEWEST = "newest"
    OLDEST = "oldest"
    TITLE = "title"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


PRIVATE_USER_FIELDS = ("password_hash", "verification_token")


def public_user(user: Dict[str, Any]) -> Dict[str, Any]:
    """User document without credentials."""
    return {k: v for k, v in user.items() if k not in PRIVATE_USER_FIELDS}

# ============================================================================
# DOCUMENT MODELS
# ============================================================================

class User(BaseModel):
    model_config = ConfigDict(extra="ignore")

    user_id: str = Field(default_factory=new_id)
    name: str
    email: EmailStr
    password_hash: str
    image: Optional[str] = None
    role: UserRole = UserRole.USER
    email_verified: bool = False
    verification_token: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)


class Subscription(BaseModel):
    model_config = ConfigDict(extra="ignore")

    subscription_id: str = Field(default_factory=new_id)
    user_id: str
    customer_id: Optional[str] = None
    status: Optional[SubscriptionStatus] = None
    plan: Optional[SubscriptionPlan] = None
    created_at: datetime = Field(default_factory=utc_now)


class VerificationToken(BaseModel):
    model_config = ConfigDict(extra="ignore")

    identifier: str  # email address
    token: str
    expires: datetime

# ============================================================================
# REQUEST BODIES
# ============================================================================

class SignupRequest(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None


class LoginRequest(BaseModel):
    email: str
    password: Optional[str] = None
    magic_link_token: Optional[str] = None


class EmailRequest(BaseModel):
    email: Optional[str] = None


class ResetPasswordRequest(BaseModel):
    token: Optional[str] = None
    password: Optional[str] = None


class SubscriptionEdit(BaseModel):
    model_config = ConfigDict(extra="ignore")

    plan: Optional[SubscriptionPlan] = None
    status: Optional[SubscriptionStatus] = None


class EditUserRequest(BaseModel):
    """Admin edit: only these keys are honoured."""
    model_config = ConfigDict(extra="ignore")

    name: Optional[str] = None
    role: Optional[UserRole] = None
    subscription: Optional[SubscriptionEdit] = None


class NoteCreateRequest(BaseModel):
    title: Optional[str] = None
    content: Optional[str] = None
    company_id: Optional[str] = None


class NoteUpdateRequest(BaseModel):
    title: Optional[str] = None
    content: Optional[str] = None


class CompanyRequest(BaseModel):
    """Company create/update payload. Unset keys are left untouched on update."""
    model_config = ConfigDict(extra="ignore")

    legal_name: Optional[str] = None
    display_name: Optional[str] = None
    industry: Optional[str] = None
    ein: Optional[str] = None
    formation_date: Optional[str] = None
    website: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    address_line1: Optional[str] = None
    address_line2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None
    description: Optional[str] = None


class ContactRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    full_name: Optional[str] = None
    title: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    is_primary: Optional[bool] = None


class CompanyNoteRequest(BaseModel):
    content: Optional[str] = None
    author_name: Optional[str] = None


class ContractRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    company_id: Optional[str] = None
    title: Optional[str] = None
    counterparty_name: Optional[str] = None
    counterparty_email: Optional[str] = None
    contract_value: Optional[Union[float, str]] = None
    currency: Optional[str] = None
    status: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    signed_date: Optional[str] = None
    payment_terms: Optional[str] = None
    renewal_terms: Optional[str] = None
    description: Optional[str] = None
    is_billing_enabled: Optional[bool] = None
    stripe_price_id: Optional[str] = None
    billing_amount: Optional[Union[float, str]] = None
    billing_currency: Optional[str] = None


class WorkItemRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    title: Optional[str] = None
    description: Optional[str] = None
    status: Optional[str] = None
    due_date: Optional[str] = None
    completed_at: Optional[str] = None
    position: Optional[Union[float, str]] = None
    linked_file_id: Optional[str] = None


class RelevantPartyRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    full_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    role: Optional[str] = None
    notes: Optional[str] = None
    magic_link_token: Optional[str] = None
    magic_link_expires_at: Optional[str] = None


class CreateSubscriptionRequest(BaseModel):
    plan: Optional[SubscriptionPlan] = None


class ConnectProductRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    currency: Optional[str] = None
    amount: Optional[Union[float, str]] = None


class StoreCheckoutRequest(BaseModel):
    price_id: Optional[str] = None


class ClientPortalLinkRequest(BaseModel):
    email: Optional[str] = None
