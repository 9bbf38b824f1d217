"""
auth/service.py -- Account lifecycle use cases for tenants and their users.

AuthService composes the credential store, password hashing, token issuance
and the email notifier into the operations the API exposes:

  register_organization  -- organization + first admin, atomically
  login                  -- email/password -> bearer token
  change_password        -- authenticated, proves the current password
  forgot_password        -- issues a 15-minute reset link (never reveals accounts)
  reset_password         -- consumes a reset token exactly once
  verify_email           -- consumes the verification token sent at registration
  resolve_identity       -- bearer token subject -> Identity

Error contract: every method raises only AuthError subclasses. Known outcomes
(conflict, bad credentials, unknown token...) are raised directly; anything
else is logged with its traceback and re-raised as InternalError so internals
never reach the client. Each method's database work runs in one
StoreTransaction and is rolled back on any error.

Email is sent after commit where the data must survive a provider outage
(registration, reset confirmation) and inside the transaction where the data
is useless without the email (the reset token itself).

Layer rule: no imports from api/.
"""

from __future__ import annotations

import functools
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from urllib.parse import urlencode

from sqlalchemy.exc import IntegrityError

from auth.errors import (
    AuthError,
    BadRequestError,
    ConflictError,
    InternalError,
    NotFoundError,
    UnauthorizedError,
)
from auth.models import Identity, Organization, SubscriptionPlan, User, UserRole
from auth.store import CredentialStore, normalize_key
from auth.tokens import (
    authenticate_user,
    create_access_token,
    expiry_from_now,
    generate_one_time_token,
    hash_password,
    is_expired,
    verify_password,
)
from core.config import Settings
from notify.mailer import EmailDeliveryError, EmailNotifier

logger = logging.getLogger("tenantauth.auth")

FORGOT_PASSWORD_MESSAGE = "If an account with that email exists, a password reset link has been sent."
PASSWORD_CHANGED_MESSAGE = "Password updated successfully."
PASSWORD_RESET_MESSAGE = "Password has been reset successfully."
EMAIL_VERIFIED_MESSAGE = "Email verified successfully."


@dataclass
class RegistrationResult:
    user: User
    organization: Organization
    access_token: str


@dataclass
class LoginResult:
    user: User
    roles: list[str]
    access_token: str


def _internal_on_unexpected(failure_message: str):
    """Let AuthError through; log anything else and raise InternalError(failure_message)."""

    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except AuthError:
                raise
            except Exception as exc:
                logger.exception("Unexpected error in %s", func.__name__)
                raise InternalError(failure_message) from exc

        return wrapper

    return decorator


def _display_name(user: User) -> str:
    return user.first_name or user.email


class AuthService:
    """Orchestrates the credential lifecycle. One instance per application."""

    def __init__(self, store: CredentialStore, notifier: EmailNotifier, settings: Settings) -> None:
        self._store = store
        self._notifier = notifier
        self._settings = settings

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    @_internal_on_unexpected("Failed to register organization due to an unexpected error.")
    def register_organization(
        self,
        organization_name: str,
        admin_email: str,
        password: str,
        subscription_plan: str | None = None,
        admin_first_name: str | None = None,
        admin_last_name: str | None = None,
    ) -> RegistrationResult:
        """Create an organization and its first admin user in one transaction.

        The name/email pre-checks reject the common duplicate case early; the
        UNIQUE constraints catch the concurrent one (IntegrityError -> Conflict).
        """
        plan = subscription_plan or SubscriptionPlan.free.value
        password_hash = hash_password(password)
        verification_token = generate_one_time_token()
        verification_window = self._settings.verification_token_expire_seconds

        with self._store.transaction() as tx:
            if tx.get_organization_by_name(organization_name) is not None:
                raise ConflictError(f'Organization with name "{organization_name.strip()}" already exists.')
            if tx.get_user_by_email(admin_email) is not None:
                raise ConflictError(f'User with email "{normalize_key(admin_email)}" already exists.')

            try:
                org_id = tx.create_organization(
                    Organization(
                        name=organization_name.strip(),
                        normalized_name=normalize_key(organization_name),
                        subscription_plan=plan,
                    )
                )
                user_id = tx.create_user(
                    User(
                        organization_id=org_id,
                        email=admin_email,
                        password_hash=password_hash,
                        role=UserRole.admin.value,
                        first_name=admin_first_name,
                        last_name=admin_last_name,
                        verification_token=verification_token,
                        verification_expires=expiry_from_now(verification_window),
                    )
                )
            except IntegrityError as exc:
                logger.warning("Registration of %r lost a uniqueness race", organization_name)
                raise ConflictError("An organization with that name or a user with that email already exists.") from exc

            organization = tx.get_organization(org_id)
            admin = tx.get_user_by_id(user_id)

        if organization is None or admin is None:
            raise InternalError("Failed to retrieve organization after creation.")
        logger.info("Registered organization %s with admin user %s", organization.id, admin.id)

        link = self._link("/auth/verify-email", verification_token)
        try:
            self._notifier.send_verification_email(
                admin.email, _display_name(admin), organization.name, link, verification_window
            )
            logger.info("Verification email sent to %s", admin.email)
        except EmailDeliveryError:
            # The account exists either way; the admin can still log in.
            logger.error("Verification email to %s could not be sent", admin.email)

        return RegistrationResult(user=admin, organization=organization, access_token=create_access_token(admin))

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    @_internal_on_unexpected("Failed to log in due to an unexpected error.")
    def login(self, email: str, password: str) -> LoginResult:
        """Verify credentials and issue a bearer token.

        Unknown email and wrong password share one message. The deactivated
        message is only reachable with the correct password.
        """
        user = authenticate_user(self._store, email, password)
        if user is None:
            raise UnauthorizedError("Invalid credentials.")
        if not user.is_active:
            logger.warning("Deactivated user %s attempted to log in", user.id)
            raise UnauthorizedError("User account is deactivated.")
        if self._settings.require_verified_login and not user.is_verified:
            raise UnauthorizedError("Email address has not been verified.")

        self._store.update_user(user.id, last_login=datetime.now(timezone.utc).isoformat())
        logger.info("User %s logged in", user.id)
        return LoginResult(user=user, roles=[user.role], access_token=create_access_token(user))

    # ------------------------------------------------------------------
    # Password management
    # ------------------------------------------------------------------

    @_internal_on_unexpected("Failed to change password due to an unexpected error.")
    def change_password(self, user_id: str, current_password: str, new_password: str) -> str:
        with self._store.transaction() as tx:
            user = tx.get_user_by_id(user_id)
            if user is None:
                raise NotFoundError(f"User with ID {user_id} does not exist.")
            if not verify_password(current_password, user.password_hash):
                raise UnauthorizedError("Current password is incorrect.")
            tx.update_user(user.id, password_hash=hash_password(new_password))
        logger.info("Password changed for user %s", user_id)
        return PASSWORD_CHANGED_MESSAGE

    @_internal_on_unexpected("Failed to process password reset request due to an unexpected error.")
    def forgot_password(self, email: str) -> str:
        """Send a reset link if the account can use one. Always returns the same message.

        The token is written and the email sent in one transaction: if the
        provider fails, the token is rolled back and the caller still sees
        the generic message.
        """
        reset_window = self._settings.reset_token_expire_seconds
        try:
            with self._store.transaction() as tx:
                user = tx.get_user_by_email(email)
                if user is None or not user.is_active or not user.is_verified:
                    logger.warning("Password reset requested for unknown, inactive, or unverified account %s", email)
                    tx.rollback()
                    return FORGOT_PASSWORD_MESSAGE

                token = generate_one_time_token()
                tx.update_user(user.id, reset_token=token, reset_expires=expiry_from_now(reset_window))
                self._notifier.send_password_reset_email(
                    user.email, _display_name(user), self._link("/reset-password", token), reset_window
                )
            logger.info("Password reset email sent to user %s", user.id)
        except EmailDeliveryError:
            logger.error("Password reset email to %s could not be sent; reset token discarded", email)
        return FORGOT_PASSWORD_MESSAGE

    @_internal_on_unexpected("Failed to reset password due to an unexpected error.")
    def reset_password(self, token: str, new_password: str) -> str:
        """Consume a reset token: new hash stored, token cleared, confirmation emailed."""
        with self._store.transaction() as tx:
            user = tx.get_user_by_reset_token(token) if token else None
            if user is None:
                raise BadRequestError("Invalid or expired password reset token.")
            if is_expired(user.reset_expires):
                raise BadRequestError("Password reset token has expired. Please request a new one.")
            tx.update_user(
                user.id,
                password_hash=hash_password(new_password),
                reset_token=None,
                reset_expires=None,
            )
        logger.info("Password reset for user %s", user.id)

        try:
            self._notifier.send_password_changed_email(user.email, _display_name(user))
        except EmailDeliveryError:
            logger.error("Password change confirmation to %s could not be sent", user.email)
        return PASSWORD_RESET_MESSAGE

    # ------------------------------------------------------------------
    # Email verification
    # ------------------------------------------------------------------

    @_internal_on_unexpected("Failed to verify email due to an unexpected error.")
    def verify_email(self, token: str) -> str:
        with self._store.transaction() as tx:
            user = tx.get_user_by_verification_token(token) if token else None
            if user is None:
                raise BadRequestError("Invalid or expired verification token.")
            if is_expired(user.verification_expires):
                raise BadRequestError("Verification token has expired.")
            tx.update_user(user.id, is_verified=True, verification_token=None, verification_expires=None)
        logger.info("Email verified for user %s", user.id)
        return EMAIL_VERIFIED_MESSAGE

    # ------------------------------------------------------------------
    # Token validation
    # ------------------------------------------------------------------

    @_internal_on_unexpected("Failed to validate session due to an unexpected error.")
    def resolve_identity(self, user_id: str) -> Identity:
        """Map a validated token subject to the caller's current identity.

        Role and organization come from the store, not the token, so a role
        change takes effect on the next request.
        """
        user = self._store.get_user_by_id(user_id)
        if user is None:
            logger.warning("Token subject %s does not match any user", user_id)
            raise NotFoundError("Invalid ID or token.")
        if not user.is_active:
            logger.warning("Deactivated user %s presented a token", user.id)
            raise UnauthorizedError("User account is deactivated.")
        return Identity(
            user_id=user.id,
            email=user.email,
            role=user.role,
            organization_id=user.organization_id,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _link(self, path: str, token: str) -> str:
        return f"{self._settings.app_base_url.rstrip('/')}{path}?{urlencode({'token': token})}"
