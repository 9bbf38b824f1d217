"""
auth/models.py -- Domain dataclasses for tenants and their users.

Pattern: Data class (pure data container, zero logic). Stores and the service
do the work; these own the domain shape.

Timestamps are ISO 8601 UTC strings, exactly as persisted. Expiry checks parse
them on demand (see auth/service.py).

Layer rule: no imports from api/, core/, or notify/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class SubscriptionPlan(str, Enum):
    free = "free"
    basic = "basic"
    premium = "premium"
    enterprise = "enterprise"


class UserRole(str, Enum):
    admin = "admin"
    manager = "manager"
    user = "user"


@dataclass
class Organization:
    """A tenant. name keeps the caller's casing; normalized_name is the unique key.

    id is None before the record is written to the database.
    """

    name: str
    normalized_name: str
    subscription_plan: str = SubscriptionPlan.free.value
    id: str | None = None
    is_active: bool = True
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class User:
    """A user owned by exactly one organization.

    email is stored lower-cased. password_hash is always a bcrypt hash -- the
    service hashes before every write, so plaintext never reaches the store.

    verification_* and reset_* are single-use tokens: set on demand, cleared
    on successful use, and dead once their expiry passes.
    """

    organization_id: str
    email: str
    password_hash: str
    role: str = UserRole.user.value
    id: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    is_active: bool = True
    is_verified: bool = False
    verification_token: str | None = None
    verification_expires: str | None = None
    reset_token: str | None = None
    reset_expires: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    last_login: str | None = None


@dataclass(frozen=True)
class Identity:
    """The authenticated caller, as resolved from a validated bearer token."""

    user_id: str
    email: str
    role: str
    organization_id: str
