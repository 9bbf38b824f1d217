"""
api/routes/auth.py -- Registration, login, and password lifecycle endpoints.

Routes:
  POST  /auth/register-organization     -- organization + admin; 201 with bearer token
  POST  /auth/login                     -- email/password; bearer token
  PATCH /auth/change-password           -- requires bearer token
  POST  /auth/forgot-password           -- always the same 200 body
  POST  /auth/reset-password?token=...  -- consume a reset token
  GET   /auth/verify-email?token=...    -- consume the registration verification token
  GET   /auth/me                        -- identity behind a bearer token

Handlers are plain `def`: bcrypt, SQL and the email provider call all block,
so FastAPI runs them in its thread pool.

Errors: handlers never build error responses themselves. AuthService raises
auth.errors.AuthError subclasses; api/main.py renders them.

Security:
  Cache-Control: no-store on every response that carries a token.
  Forgot-password returns one fixed body for every input.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request, Response

from api.models import (
    ChangePasswordRequest,
    ForgotPasswordRequest,
    IdentityResponse,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    OrganizationSummary,
    RegisterOrganizationRequest,
    RegisterOrganizationResponse,
    ResetPasswordRequest,
    UserSummary,
)
from auth.dependencies import get_current_identity
from auth.models import Identity
from auth.service import AuthService
from core.config import get_settings

# Auth policy:
# - POST  /auth/register-organization: public -- self-service signup
# - POST  /auth/login:                 public
# - POST  /auth/forgot-password:       public
# - POST  /auth/reset-password:        public -- possession of the token is the proof
# - GET   /auth/verify-email:          public -- possession of the token is the proof
# - PATCH /auth/change-password:       requires auth (get_current_identity)
# - GET   /auth/me:                    requires auth (get_current_identity)
router = APIRouter()

_TOKEN_QUERY = Query(min_length=1, max_length=128, description="One-time token from the emailed link.")


@router.post("/auth/register-organization", response_model=RegisterOrganizationResponse, status_code=201)
def register_organization(
    request: Request,
    response: Response,
    body: RegisterOrganizationRequest,
) -> RegisterOrganizationResponse:
    """Create an organization with its first admin user and return a bearer token for the admin."""
    auth_service: AuthService = request.app.state.auth_service
    result = auth_service.register_organization(
        organization_name=body.organization_name,
        admin_email=body.admin_email,
        password=body.password,
        subscription_plan=body.subscription_plan.value if body.subscription_plan else None,
        admin_first_name=body.admin_first_name,
        admin_last_name=body.admin_last_name,
    )
    response.headers["Cache-Control"] = "no-store"
    return RegisterOrganizationResponse(
        user=UserSummary.from_user(result.user),
        organization=OrganizationSummary.from_organization(result.organization),
        access_token=result.access_token,
    )


@router.post("/auth/login", response_model=LoginResponse)
def login(request: Request, response: Response, body: LoginRequest) -> LoginResponse:
    """Authenticate with email and password.

    Unknown email and wrong password produce the same 401 body.
    """
    auth_service: AuthService = request.app.state.auth_service
    result = auth_service.login(body.email, body.password)
    response.headers["Cache-Control"] = "no-store"
    return LoginResponse(
        role=result.roles,
        access_token=result.access_token,
        expires_in=get_settings().token_expire_seconds,
    )


@router.patch("/auth/change-password", response_model=MessageResponse)
def change_password(
    request: Request,
    body: ChangePasswordRequest,
    identity: Identity = Depends(get_current_identity),
) -> MessageResponse:
    """Replace the caller's password after proving the current one. The bearer token stays valid."""
    auth_service: AuthService = request.app.state.auth_service
    message = auth_service.change_password(identity.user_id, body.current_password, body.new_password)
    return MessageResponse(message=message)


@router.post("/auth/forgot-password", response_model=MessageResponse)
def forgot_password(request: Request, body: ForgotPasswordRequest) -> MessageResponse:
    """Email a reset link when the account can use one. The response never says whether it did."""
    auth_service: AuthService = request.app.state.auth_service
    return MessageResponse(message=auth_service.forgot_password(body.email))


@router.post("/auth/reset-password", response_model=MessageResponse)
def reset_password(
    request: Request,
    response: Response,
    body: ResetPasswordRequest,
    token: str = _TOKEN_QUERY,
) -> MessageResponse:
    auth_service: AuthService = request.app.state.auth_service
    message = auth_service.reset_password(token, body.new_password)
    response.headers["Cache-Control"] = "no-store"
    return MessageResponse(message=message)


@router.get("/auth/verify-email", response_model=MessageResponse)
def verify_email(request: Request, token: str = _TOKEN_QUERY) -> MessageResponse:
    auth_service: AuthService = request.app.state.auth_service
    return MessageResponse(message=auth_service.verify_email(token))


@router.get("/auth/me", response_model=IdentityResponse)
def me(identity: Identity = Depends(get_current_identity)) -> IdentityResponse:
    """Return the identity behind the presented bearer token."""
    return IdentityResponse(
        user_id=identity.user_id,
        email=identity.email,
        role=identity.role,
        organization_id=identity.organization_id,
    )
