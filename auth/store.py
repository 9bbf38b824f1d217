"""
auth/store.py -- SQLAlchemy Core persistence layer for organizations and users.

Pattern: Repository + Data Mapper + Unit of Work.
CredentialStore is the repository; StoreTransaction is the unit of work that
every multi-step use case runs inside; _row_to_* are the mappers. Service and
route code never touches SQL directly.

Uniqueness:
  organizations.normalized_name and users.email are UNIQUE at the SQL level.
  That constraint is the authoritative guard -- two concurrent registrations
  can both pass an application-level pre-check, but only one insert survives.
  The loser gets sqlalchemy.exc.IntegrityError, which the service translates
  into a Conflict. Both keys are stored lower-cased and stripped (normalize_key)
  so the constraint is case-insensitive in practice on every backend.

Security:
  All queries use bound parameters. No f-strings in SQL.

Layer rule: no imports from api/, core/, or notify/.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import Column, ForeignKey, Integer, MetaData, String, Table, Text, create_engine, event, select
from sqlalchemy.engine import Connection, Engine

from auth.models import Organization, User

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_organizations = Table(
    "organizations",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("name", String(255), nullable=False),
    Column("normalized_name", String(255), nullable=False, unique=True),
    Column("subscription_plan", String(30), nullable=False, server_default="free"),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_users = Table(
    "users",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column(
        "organization_id",
        String(36),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    ),
    Column("email", String(255), nullable=False, unique=True),
    Column("password_hash", Text, nullable=False),
    Column("first_name", String(100)),
    Column("last_name", String(100)),
    Column("role", String(30), nullable=False, server_default="user"),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("is_verified", Integer, nullable=False, server_default="0"),
    Column("verification_token", String(64), index=True),
    Column("verification_expires", String(32)),
    Column("reset_token", String(64), index=True),
    Column("reset_expires", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Column("last_login", String(32)),
)

# Columns update_user() may touch. Identity columns (id, organization_id,
# created_at) are immutable after insert.
_MUTABLE_USER_FIELDS = frozenset(
    {
        "email",
        "password_hash",
        "first_name",
        "last_name",
        "role",
        "is_active",
        "is_verified",
        "verification_token",
        "verification_expires",
        "reset_token",
        "reset_expires",
        "last_login",
    }
)
_BOOL_USER_FIELDS = frozenset({"is_active", "is_verified"})


# ---------------------------------------------------------------------------
# SQLite connection setup
# ---------------------------------------------------------------------------


def _configure_sqlite(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and foreign key enforcement.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool. foreign_keys is off by default in SQLite, and
    ON DELETE CASCADE from organizations to users depends on it.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")
    dbapi_conn.execute("PRAGMA foreign_keys=ON")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def normalize_key(value: str) -> str:
    """Return the case-insensitive lookup key for an organization name or email."""
    return value.strip().lower()


# ---------------------------------------------------------------------------
# Unit of work
# ---------------------------------------------------------------------------


class StoreTransaction:
    """All reads and writes of one use case, on one connection, in one transaction.

    Obtained from CredentialStore.transaction(). Commits when the with-block
    exits normally, rolls back when it raises. Call rollback() to discard the
    work explicitly and still leave the block normally (e.g. the forgot-password
    "nothing to do" path).
    """

    def __init__(self, conn: Connection) -> None:
        self._conn = conn
        self.rolled_back = False

    def rollback(self) -> None:
        self._conn.rollback()
        self.rolled_back = True

    # ------------------------------------------------------------------
    # Organizations
    # ------------------------------------------------------------------

    def create_organization(self, org: Organization) -> str:
        """Insert an organization and return its generated id.

        Raises sqlalchemy.exc.IntegrityError if normalized_name is taken.
        """
        org_id = str(uuid.uuid4())
        now = _now_iso()
        self._conn.execute(
            _organizations.insert().values(
                id=org_id,
                name=org.name,
                normalized_name=normalize_key(org.normalized_name or org.name),
                subscription_plan=org.subscription_plan,
                is_active=1 if org.is_active else 0,
                created_at=now,
                updated_at=now,
            )
        )
        return org_id

    def get_organization(self, org_id: str) -> Organization | None:
        row = self._conn.execute(_organizations.select().where(_organizations.c.id == org_id)).fetchone()
        return _row_to_organization(row) if row is not None else None

    def get_organization_by_name(self, name: str) -> Organization | None:
        """Case-insensitive lookup by organization name."""
        row = self._conn.execute(
            _organizations.select().where(_organizations.c.normalized_name == normalize_key(name))
        ).fetchone()
        return _row_to_organization(row) if row is not None else None

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> str:
        """Insert a user and return its generated id.

        Raises sqlalchemy.exc.IntegrityError if the email is taken or the
        organization does not exist.
        """
        user_id = str(uuid.uuid4())
        now = _now_iso()
        self._conn.execute(
            _users.insert().values(
                id=user_id,
                organization_id=user.organization_id,
                email=normalize_key(user.email),
                password_hash=user.password_hash,
                first_name=user.first_name,
                last_name=user.last_name,
                role=user.role,
                is_active=1 if user.is_active else 0,
                is_verified=1 if user.is_verified else 0,
                verification_token=user.verification_token,
                verification_expires=user.verification_expires,
                reset_token=user.reset_token,
                reset_expires=user.reset_expires,
                created_at=now,
                updated_at=now,
            )
        )
        return user_id

    def get_user_by_id(self, user_id: str) -> User | None:
        row = self._conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_user_by_email(self, email: str) -> User | None:
        """Case-insensitive lookup by email."""
        row = self._conn.execute(_users.select().where(_users.c.email == normalize_key(email))).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_user_by_reset_token(self, token: str) -> User | None:
        row = self._conn.execute(_users.select().where(_users.c.reset_token == token)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_user_by_verification_token(self, token: str) -> User | None:
        row = self._conn.execute(_users.select().where(_users.c.verification_token == token)).fetchone()
        return _row_to_user(row) if row is not None else None

    def update_user(self, user_id: str, **fields) -> bool:
        """Update mutable fields on an existing user and stamp updated_at.

        Unknown field names raise ValueError rather than being silently
        dropped. Booleans are converted to int for SQLite.

        Returns True if a row was updated, False if user_id was not found.
        """
        unknown = set(fields) - _MUTABLE_USER_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {sorted(unknown)!r}")
        for name in _BOOL_USER_FIELDS & set(fields):
            fields[name] = 1 if fields[name] else 0
        if "email" in fields:
            fields["email"] = normalize_key(fields["email"])
        result = self._conn.execute(
            _users.update().where(_users.c.id == user_id).values(updated_at=_now_iso(), **fields)
        )
        return result.rowcount > 0


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class CredentialStore:
    """Repository for Organization and User entities.

    Usage:
        store = CredentialStore("sqlite:///auth.db")
        with store.transaction() as tx:
            org_id = tx.create_organization(Organization(name="Acme", normalized_name="acme"))
            tx.create_user(User(organization_id=org_id, email="a@acme.io", password_hash=...))
        user = store.get_user_by_email("A@Acme.io")
        store.close()

    The single-call helpers below each run in their own short transaction.
    """

    def __init__(self, db_url: str, **engine_kwargs) -> None:
        """engine_kwargs go to create_engine() (e.g. poolclass for in-memory test DBs)."""
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            # FastAPI runs sync handlers in a thread pool, so one pooled
            # connection may be used from several threads over its lifetime.
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args, **engine_kwargs)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _configure_sqlite)
        _metadata.create_all(self.engine)

    @contextmanager
    def transaction(self) -> Iterator[StoreTransaction]:
        """Yield a StoreTransaction; commit on normal exit, roll back on error."""
        with self.engine.connect() as conn:
            tx = StoreTransaction(conn)
            try:
                yield tx
            except Exception:
                conn.rollback()
                raise
            if not tx.rolled_back:
                conn.commit()

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            return conn.execute(select(1)).scalar() == 1

    def get_organization(self, org_id: str) -> Organization | None:
        with self.transaction() as tx:
            return tx.get_organization(org_id)

    def get_organization_by_name(self, name: str) -> Organization | None:
        with self.transaction() as tx:
            return tx.get_organization_by_name(name)

    def get_user_by_id(self, user_id: str) -> User | None:
        with self.transaction() as tx:
            return tx.get_user_by_id(user_id)

    def get_user_by_email(self, email: str) -> User | None:
        with self.transaction() as tx:
            return tx.get_user_by_email(email)

    def update_user(self, user_id: str, **fields) -> bool:
        with self.transaction() as tx:
            return tx.update_user(user_id, **fields)

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_organization(row) -> Organization:
    return Organization(
        id=row.id,
        name=row.name,
        normalized_name=row.normalized_name,
        subscription_plan=row.subscription_plan,
        is_active=bool(row.is_active),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        organization_id=row.organization_id,
        email=row.email,
        password_hash=row.password_hash,
        first_name=row.first_name,
        last_name=row.last_name,
        role=row.role,
        is_active=bool(row.is_active),
        is_verified=bool(row.is_verified),
        verification_token=row.verification_token,
        verification_expires=row.verification_expires,
        reset_token=row.reset_token,
        reset_expires=row.reset_expires,
        created_at=row.created_at,
        updated_at=row.updated_at,
        last_login=row.last_login,
    )
