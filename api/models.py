"""
API request and response models for the auth REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from auth.models import Organization, SubscriptionPlan, User, UserRole

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Deliberately loose: one "@", no whitespace, a dot in the domain. Deliverability
# is proven by the verification email, not by a regex.
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"

PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_LENGTH = 20


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterOrganizationRequest(BaseModel):
    """Request body for POST /auth/register-organization.

    subscription_plan is optional (absent or null) and defaults to the free tier.
    Passwords are taken byte for byte: only the identifying fields are trimmed.
    """

    organization_name: str = Field(min_length=1, max_length=255)
    admin_email: str = Field(max_length=255, pattern=EMAIL_PATTERN)
    password: str = Field(min_length=PASSWORD_MIN_LENGTH, max_length=PASSWORD_MAX_LENGTH)
    subscription_plan: Optional[SubscriptionPlan] = None
    admin_first_name: Optional[str] = Field(default=None, max_length=100)
    admin_last_name: Optional[str] = Field(default=None, max_length=100)

    @field_validator("admin_email", mode="before")
    @classmethod
    def normalize_email(cls, value):
        """Lower-case before validation so lookups and uniqueness are case-insensitive."""
        return value.strip().lower() if isinstance(value, str) else value

    @field_validator("organization_name", "admin_first_name", "admin_last_name", mode="before")
    @classmethod
    def strip_text(cls, value):
        return value.strip() if isinstance(value, str) else value


class LoginRequest(BaseModel):
    """Request body for POST /auth/login."""

    email: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=255)

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, value):
        return value.strip().lower() if isinstance(value, str) else value


class ChangePasswordRequest(BaseModel):
    """Request body for PATCH /auth/change-password."""

    current_password: str = Field(min_length=1, max_length=255)
    new_password: str = Field(min_length=PASSWORD_MIN_LENGTH, max_length=PASSWORD_MAX_LENGTH)


class ForgotPasswordRequest(BaseModel):
    """Request body for POST /auth/forgot-password."""

    email: str = Field(max_length=255, pattern=EMAIL_PATTERN)

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, value):
        return value.strip().lower() if isinstance(value, str) else value


class ResetPasswordRequest(BaseModel):
    """Request body for POST /auth/reset-password. The token travels in the query string."""

    new_password: str = Field(min_length=PASSWORD_MIN_LENGTH, max_length=PASSWORD_MAX_LENGTH)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserSummary(BaseModel):
    """A user as returned to clients. Never includes the password hash or tokens."""

    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    first_name: Optional[str]
    last_name: Optional[str]
    role: UserRole
    organization_id: str
    is_verified: bool

    @classmethod
    def from_user(cls, user: User) -> "UserSummary":
        return cls(
            id=user.id,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            role=user.role,
            organization_id=user.organization_id,
            is_verified=user.is_verified,
        )


class OrganizationSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    subscription_plan: SubscriptionPlan

    @classmethod
    def from_organization(cls, org: Organization) -> "OrganizationSummary":
        return cls(id=org.id, name=org.name, subscription_plan=org.subscription_plan)


class RegisterOrganizationResponse(BaseModel):
    """Response body for POST /auth/register-organization (201)."""

    model_config = ConfigDict(frozen=True)

    message: str = "Organization and admin user created successfully"
    user: UserSummary
    organization: OrganizationSummary
    access_token: str
    token_type: str = "bearer"


class LoginResponse(BaseModel):
    """Response body for POST /auth/login. role is a list to leave room for multi-role users."""

    model_config = ConfigDict(frozen=True)

    message: str = "Successfully Logged In"
    role: list[UserRole]
    access_token: str
    token_type: str = "bearer"
    expires_in: int


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class IdentityResponse(BaseModel):
    """Response body for GET /auth/me."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    email: str
    role: UserRole
    organization_id: str


# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]
