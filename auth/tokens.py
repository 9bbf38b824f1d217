"""
auth/tokens.py -- JWT, password hashing, and one-time token utilities.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with SECRET_KEY and carry
       sub (user id), email, organization_id, role, and expiry. Verification
       returns None on any failure -- the dependency layer turns that into 401.

  Passwords: bcrypt directly. Its cost factor makes brute-force expensive for
       low-entropy secrets. The _DUMMY_HASH constant enables timing
       equalization in authenticate_user() so response time does not reveal
       whether an email is registered.

  One-time tokens (email verification, password reset): secrets.token_hex(32)
       gives 256 bits of entropy. They are single-use and short-lived, so they
       are stored as issued and looked up by exact match.

  SECRET_KEY: sourced from core.config.get_settings(), which refuses to start
       without one outside dev mode.

Layer rule: no imports from api/ or notify/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import bcrypt
from jose import JWTError, jwt

from core.config import get_settings

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import CredentialStore

logger = logging.getLogger("tenantauth.auth")

_settings = get_settings()

_ALGORITHM = "HS256"

# Claims every token this service issues must carry.
_REQUIRED_CLAIMS = ("sub", "email", "organization_id", "role")

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a salted bcrypt hash of the given plaintext password.

    bcrypt ignores input past 72 bytes; the API caps passwords at 20
    characters, well below that.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed hash in the DB -- treat as a failed match.
        return False


# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
_DUMMY_HASH: str = hash_password("tenantauth_timing_dummy")


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def create_access_token(user: User, expire_seconds: int = 0) -> str:
    """Encode a signed JWT identifying the user and their tenant.

    Args:
        user:           Persisted user (id must be set).
        expire_seconds: Token lifetime. If 0 (default), uses
                        Settings.token_expire_seconds.
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.token_expire_seconds
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user.id,
        "email": user.email,
        "organization_id": user.organization_id,
        "role": user.role,
        "iat": now,
        "exp": now + timedelta(seconds=duration),
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


def decode_access_token(token: str) -> dict | None:
    """Decode and verify a JWT. Returns the payload dict or None on any failure.

    Signature, expiry, and the presence of every identity claim are checked.
    """
    try:
        payload = jwt.decode(token, _settings.secret_key, algorithms=[_ALGORITHM])
    except JWTError:
        return None
    if any(not payload.get(claim) for claim in _REQUIRED_CLAIMS):
        return None
    return payload


# ---------------------------------------------------------------------------
# User authentication (constant-time)
# ---------------------------------------------------------------------------


def authenticate_user(store: CredentialStore, email: str, password: str) -> User | None:
    """Return the user whose email and password match, or None.

    Always runs bcrypt whether or not the email exists:
    - Unknown email: bcrypt runs against _DUMMY_HASH (same cost as real check)
    - Wrong password: bcrypt runs against the real hash (same cost)

    The active flag is NOT checked here. The caller decides how to report a
    deactivated account once the password has been proven.
    """
    user = store.get_user_by_email(email)
    if user is None:
        # Equalize timing -- do NOT return early before running bcrypt.
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, user.password_hash):
        return None
    return user


# ---------------------------------------------------------------------------
# One-time tokens
# ---------------------------------------------------------------------------


def generate_one_time_token() -> str:
    """Return 32 random bytes as 64 hex characters."""
    return secrets.token_hex(32)


def expiry_from_now(seconds: int) -> str:
    """Return the ISO 8601 UTC timestamp `seconds` from now."""
    return (datetime.now(timezone.utc) + timedelta(seconds=seconds)).isoformat()


def is_expired(expires_iso: str | None) -> bool:
    """True if the stored expiry is missing, unparseable, or in the past."""
    if not expires_iso:
        return True
    try:
        expires = datetime.fromisoformat(expires_iso)
    except ValueError:
        logger.warning("Unparseable token expiry %r -- treating as expired", expires_iso)
        return True
    if expires.tzinfo is None:
        expires = expires.replace(tzinfo=timezone.utc)
    return expires <= datetime.now(timezone.utc)
