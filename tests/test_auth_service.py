"""
Tests for auth/service.py -- AuthService use cases against a real store.

The notifier is the RecordingNotifier from conftest: templates render, nothing
leaves the process, and .fail simulates a provider outage.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock
from urllib.parse import parse_qs, urlparse

import pytest

from auth.errors import BadRequestError, ConflictError, InternalError, NotFoundError, UnauthorizedError
from auth.service import (
    EMAIL_VERIFIED_MESSAGE,
    FORGOT_PASSWORD_MESSAGE,
    PASSWORD_CHANGED_MESSAGE,
    PASSWORD_RESET_MESSAGE,
    AuthService,
)
from auth.store import StoreTransaction
from auth.tokens import decode_access_token, verify_password
from core.config import get_settings
from notify.mailer import EmailNotifier


def _past_iso(**delta) -> str:
    return (datetime.now(timezone.utc) - timedelta(**delta)).isoformat()


def _token_from_link(html: str) -> str:
    start = html.index('href="') + len('href="')
    url = html[start : html.index('"', start)]
    return parse_qs(urlparse(url).query)["token"][0]


@pytest.fixture
def acme(service):
    return service.register_organization("Acme", "a@acme.io", "Passw0rd1", admin_first_name="Ada")


@pytest.fixture
def verified_acme(acme, store):
    store.update_user(acme.user.id, is_verified=True, verification_token=None, verification_expires=None)
    return acme


class TestRegisterOrganization:
    def test_creates_org_and_admin_with_token(self, acme, store):
        assert acme.organization.name == "Acme"
        assert acme.organization.subscription_plan == "free"
        assert acme.user.role == "admin"
        assert acme.user.organization_id == acme.organization.id
        assert acme.user.is_verified is False

        payload = decode_access_token(acme.access_token)
        assert payload["sub"] == acme.user.id
        assert payload["organization_id"] == acme.organization.id
        assert payload["role"] == "admin"

        stored = store.get_user_by_email("a@acme.io")
        assert stored.password_hash != "Passw0rd1"
        assert verify_password("Passw0rd1", stored.password_hash)

    def test_sends_verification_link_matching_stored_token(self, acme, store, notifier):
        assert len(notifier.sent) == 1
        message = notifier.sent[0]
        assert message["to"] == "a@acme.io"
        assert "Hello Ada" in message["html"]
        stored = store.get_user_by_email("a@acme.io")
        assert _token_from_link(message["html"]) == stored.verification_token
        assert "/auth/verify-email?token=" in message["html"]

    def test_explicit_plan_is_kept(self, service):
        result = service.register_organization("Beta", "b@beta.io", "Passw0rd1", subscription_plan="premium")
        assert result.organization.subscription_plan == "premium"

    def test_name_collision_ignores_case(self, acme, service, store):
        with pytest.raises(ConflictError, match="already exists"):
            service.register_organization("ACME", "other@acme.io", "Passw0rd1")
        assert store.get_user_by_email("other@acme.io") is None

    def test_email_collision_leaves_no_new_organization(self, acme, service, store):
        with pytest.raises(ConflictError, match='User with email "a@acme.io" already exists.'):
            service.register_organization("Beta", "A@Acme.io", "Passw0rd1")
        assert store.get_organization_by_name("Beta") is None

    def test_lost_uniqueness_race_is_a_conflict(self, acme, service, store, monkeypatch):
        # Skip the pre-check so only the UNIQUE constraint can catch the duplicate.
        monkeypatch.setattr(StoreTransaction, "get_organization_by_name", lambda self, name: None)
        with pytest.raises(ConflictError):
            service.register_organization("acme", "late@acme.io", "Passw0rd1")
        assert store.get_user_by_email("late@acme.io") is None

    def test_email_outage_does_not_undo_registration(self, service, store, notifier):
        notifier.fail = True
        result = service.register_organization("Gamma", "g@gamma.io", "Passw0rd1")
        assert store.get_user_by_id(result.user.id) is not None
        assert notifier.sent == []

    def test_provider_accepting_with_unexpected_body_still_registers(self, store):
        accepted = MagicMock()
        accepted.raise_for_status.return_value = None
        accepted.json.return_value = ["queued"]
        session = MagicMock()
        session.post.return_value = accepted
        real_notifier = EmailNotifier(api_key="re_key", from_address="noreply@acme.io", session=session)

        result = AuthService(store, real_notifier, get_settings()).register_organization(
            "Delta", "d@delta.io", "Passw0rd1"
        )
        assert store.get_user_by_id(result.user.id) is not None
        session.post.assert_called_once()


class TestLogin:
    def test_success_returns_role_list_and_stamps_last_login(self, acme, service, store):
        result = service.login("A@ACME.IO", "Passw0rd1")
        assert result.roles == ["admin"]
        assert decode_access_token(result.access_token)["sub"] == acme.user.id
        assert store.get_user_by_id(acme.user.id).last_login is not None

    def test_unknown_email_and_wrong_password_share_one_message(self, acme, service):
        with pytest.raises(UnauthorizedError) as unknown:
            service.login("nobody@acme.io", "Passw0rd1")
        with pytest.raises(UnauthorizedError) as wrong:
            service.login("a@acme.io", "WrongPass1")
        assert unknown.value.message == wrong.value.message == "Invalid credentials."

    def test_deactivated_account_is_refused(self, acme, service, store):
        store.update_user(acme.user.id, is_active=False)
        with pytest.raises(UnauthorizedError, match="deactivated"):
            service.login("a@acme.io", "Passw0rd1")

    def test_unverified_login_allowed_by_default(self, acme, service):
        assert service.login("a@acme.io", "Passw0rd1").access_token

    def test_unverified_login_refused_when_required(self, acme, store, notifier):
        strict = get_settings().model_copy(update={"require_verified_login": True})
        with pytest.raises(UnauthorizedError, match="not been verified"):
            AuthService(store, notifier, strict).login("a@acme.io", "Passw0rd1")


class TestChangePassword:
    def test_success_replaces_hash(self, acme, service, store):
        assert service.change_password(acme.user.id, "Passw0rd1", "N3wPassw0rd") == PASSWORD_CHANGED_MESSAGE
        stored = store.get_user_by_id(acme.user.id)
        assert verify_password("N3wPassw0rd", stored.password_hash)
        assert not verify_password("Passw0rd1", stored.password_hash)

    def test_wrong_current_password_leaves_hash_unchanged(self, acme, service, store):
        before = store.get_user_by_id(acme.user.id).password_hash
        with pytest.raises(UnauthorizedError, match="Current password is incorrect."):
            service.change_password(acme.user.id, "WrongPass1", "N3wPassw0rd")
        assert store.get_user_by_id(acme.user.id).password_hash == before

    def test_unknown_user(self, service):
        with pytest.raises(NotFoundError):
            service.change_password("no-such-id", "Passw0rd1", "N3wPassw0rd")


class TestForgotPassword:
    def test_unknown_email_sends_nothing(self, service, notifier):
        assert service.forgot_password("nobody@acme.io") == FORGOT_PASSWORD_MESSAGE
        assert notifier.sent == []

    def test_unverified_account_gets_no_token(self, acme, service, store, notifier):
        notifier.sent.clear()
        assert service.forgot_password("a@acme.io") == FORGOT_PASSWORD_MESSAGE
        assert store.get_user_by_id(acme.user.id).reset_token is None
        assert notifier.sent == []

    def test_verified_account_gets_a_fifteen_minute_link(self, verified_acme, service, store, notifier):
        notifier.sent.clear()
        assert service.forgot_password("a@acme.io") == FORGOT_PASSWORD_MESSAGE

        stored = store.get_user_by_id(verified_acme.user.id)
        assert len(stored.reset_token) == 64
        window = datetime.fromisoformat(stored.reset_expires) - datetime.now(timezone.utc)
        assert timedelta(minutes=14) < window <= timedelta(minutes=15)

        assert len(notifier.sent) == 1
        assert notifier.sent[0]["subject"] == "Password Reset Request"
        assert _token_from_link(notifier.sent[0]["html"]) == stored.reset_token
        assert "/reset-password?token=" in notifier.sent[0]["html"]

    def test_email_outage_discards_token_and_keeps_generic_message(self, verified_acme, service, store, notifier):
        notifier.fail = True
        assert service.forgot_password("a@acme.io") == FORGOT_PASSWORD_MESSAGE
        assert store.get_user_by_id(verified_acme.user.id).reset_token is None

    def test_second_request_replaces_the_first_token(self, verified_acme, service, store):
        service.forgot_password("a@acme.io")
        first = store.get_user_by_id(verified_acme.user.id).reset_token
        service.forgot_password("a@acme.io")
        second = store.get_user_by_id(verified_acme.user.id).reset_token
        assert first != second


class TestResetPassword:
    def _issue(self, service, store, user_id):
        service.forgot_password("a@acme.io")
        return store.get_user_by_id(user_id).reset_token

    def test_token_works_exactly_once(self, verified_acme, service, store, notifier):
        token = self._issue(service, store, verified_acme.user.id)
        notifier.sent.clear()

        assert service.reset_password(token, "N3wPassw0rd") == PASSWORD_RESET_MESSAGE
        stored = store.get_user_by_id(verified_acme.user.id)
        assert verify_password("N3wPassw0rd", stored.password_hash)
        assert stored.reset_token is None
        assert stored.reset_expires is None
        assert notifier.sent[0]["subject"] == "Your Password Has Been Changed"

        with pytest.raises(BadRequestError):
            service.reset_password(token, "An0therPass")

    def test_expired_token_is_refused(self, verified_acme, service, store):
        token = self._issue(service, store, verified_acme.user.id)
        # Issued sixteen minutes ago: one minute past the window.
        store.update_user(verified_acme.user.id, reset_expires=_past_iso(minutes=1))
        with pytest.raises(BadRequestError, match="expired"):
            service.reset_password(token, "N3wPassw0rd")
        assert verify_password("Passw0rd1", store.get_user_by_id(verified_acme.user.id).password_hash)

    def test_unknown_token_is_refused(self, service):
        with pytest.raises(BadRequestError, match="Invalid or expired password reset token."):
            service.reset_password("f" * 64, "N3wPassw0rd")

    def test_confirmation_outage_does_not_undo_reset(self, verified_acme, service, store, notifier):
        token = self._issue(service, store, verified_acme.user.id)
        notifier.fail = True
        assert service.reset_password(token, "N3wPassw0rd") == PASSWORD_RESET_MESSAGE
        assert verify_password("N3wPassw0rd", store.get_user_by_id(verified_acme.user.id).password_hash)


class TestVerifyEmail:
    def test_marks_user_verified_and_consumes_token(self, acme, service, store):
        token = store.get_user_by_id(acme.user.id).verification_token
        assert service.verify_email(token) == EMAIL_VERIFIED_MESSAGE
        stored = store.get_user_by_id(acme.user.id)
        assert stored.is_verified is True
        assert stored.verification_token is None
        with pytest.raises(BadRequestError):
            service.verify_email(token)

    def test_expired_token_is_refused(self, acme, service, store):
        token = store.get_user_by_id(acme.user.id).verification_token
        store.update_user(acme.user.id, verification_expires=_past_iso(seconds=1))
        with pytest.raises(BadRequestError, match="Verification token has expired."):
            service.verify_email(token)
        assert store.get_user_by_id(acme.user.id).is_verified is False


class TestResolveIdentity:
    def test_returns_current_role_from_store(self, acme, service, store):
        store.update_user(acme.user.id, role="manager")
        identity = service.resolve_identity(acme.user.id)
        assert identity.role == "manager"
        assert identity.organization_id == acme.organization.id

    def test_unknown_subject(self, service):
        with pytest.raises(NotFoundError, match="Invalid ID or token."):
            service.resolve_identity("no-such-id")

    def test_deactivated_subject(self, acme, service, store):
        store.update_user(acme.user.id, is_active=False)
        with pytest.raises(UnauthorizedError):
            service.resolve_identity(acme.user.id)


def test_unexpected_failure_becomes_internal_error(notifier):
    broken_store = MagicMock()
    broken_store.get_user_by_id.side_effect = RuntimeError("database is locked")
    service = AuthService(broken_store, notifier, get_settings())
    with pytest.raises(InternalError) as exc_info:
        service.resolve_identity("u1")
    assert "database is locked" not in exc_info.value.message
    assert exc_info.value.status_code == 500
