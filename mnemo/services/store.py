"""Relational store for users, linked provider accounts and user threads.

SQLAlchemy asyncio Core over three tables.  SQLite (``aiosqlite``) is used for
local development and tests; production points ``DATABASE_URL`` at
PostgreSQL (``postgresql+psycopg``).

Any driver-level failure is re-raised as ``StoreError``.  Store errors are
infrastructure failures: callers let them propagate so the request fails
loudly instead of being reported to the model as a tool error.
"""

from __future__ import annotations

import logging
import secrets
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    insert,
    select,
    update,
)
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import StaticPool

from mnemo.preferences import (
    UserPreferences,
    parse_user_preferences,
    stringify_user_preferences,
)

logger = logging.getLogger(__name__)

# Tokens expiring within this window are treated as already expired
EXPIRY_LEEWAY = timedelta(seconds=60)

metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("name", String(255), nullable=True),
    Column("email", String(255), nullable=True),
    Column("phone_number", String(32), nullable=True, unique=True),
    Column("phone_number_verified", Boolean, nullable=False, default=False),
    Column("preferences", Text, nullable=True),
)

accounts = Table(
    "accounts",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("user_id", String(64), ForeignKey("users.id"), nullable=False),
    Column("provider_id", String(32), nullable=False),
    Column("account_id", String(255), nullable=True),
    Column("access_token", Text, nullable=True),
    Column("refresh_token", Text, nullable=True),
    Column("access_token_expires_at", DateTime(timezone=True), nullable=True),
    Column("scope", Text, nullable=True),
    UniqueConstraint("user_id", "provider_id", name="uq_accounts_user_provider"),
)

user_threads = Table(
    "user_threads",
    metadata,
    Column("user_id", String(64), primary_key=True),
    Column("thread_id", String(255), nullable=False, unique=True),
    Column("created_at", DateTime(timezone=True), nullable=False),
)


class StoreError(Exception):
    """Raised when the relational store cannot be reached or queried."""


@dataclass
class User:
    id: str
    name: str | None = None
    email: str | None = None
    phone_number: str | None = None
    phone_number_verified: bool = False
    preferences: UserPreferences = field(default_factory=UserPreferences)

    def profile(self) -> dict:
        """The snapshot of profile fields shown to the model."""
        return {
            "name": self.name,
            "email": self.email,
            "phone_number": self.phone_number,
            "interests": self.preferences.interests,
            "enabled_capabilities": [
                key for key, on in self.preferences.capabilities.items() if on
            ],
            "communication_settings": self.preferences.communication_settings.model_dump(),
            "notes": self.preferences.text_input,
        }


@dataclass
class ProviderAccount:
    user_id: str
    provider_id: str
    access_token: str | None = None
    refresh_token: str | None = None
    access_token_expires_at: datetime | None = None
    scope: str | None = None
    account_id: str | None = None

    def is_expired(self, now: datetime | None = None) -> bool:
        """True when the access token is missing or about to expire.

        Accounts without a recorded expiry (GitHub, LinkedIn) never expire
        from our point of view.
        """
        if not self.access_token:
            return True
        if self.access_token_expires_at is None:
            return False
        expires_at = self.access_token_expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=UTC)
        now = now or datetime.now(UTC)
        return expires_at - EXPIRY_LEEWAY <= now


def normalize_phone_number(raw: str) -> str:
    raw = raw.strip()
    return raw if raw.startswith("+") else f"+{raw}"


def new_thread_id(user_id: str) -> str:
    """``thread_<user>_<epoch ms>_<8 random chars>``; opaque to callers."""
    return f"thread_{user_id}_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


def _row_to_account(row) -> ProviderAccount:
    return ProviderAccount(
        user_id=row.user_id,
        provider_id=row.provider_id,
        access_token=row.access_token,
        refresh_token=row.refresh_token,
        access_token_expires_at=row.access_token_expires_at,
        scope=row.scope,
        account_id=row.account_id,
    )


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        name=row.name,
        email=row.email,
        phone_number=row.phone_number,
        phone_number_verified=bool(row.phone_number_verified),
        preferences=parse_user_preferences(row.preferences),
    )


class Database:
    """Async access to the users / accounts / user_threads tables."""

    def __init__(self, engine: AsyncEngine):
        self._engine = engine

    @classmethod
    def from_url(cls, url: str) -> Database:
        kwargs = {}
        if url.startswith("sqlite") and ":memory:" in url:
            # One shared connection, otherwise every checkout sees an empty DB
            kwargs = {
                "poolclass": StaticPool,
                "connect_args": {"check_same_thread": False},
            }
        return cls(create_async_engine(url, **kwargs))

    async def create_all(self) -> None:
        try:
            async with self._engine.begin() as conn:
                await conn.run_sync(metadata.create_all)
        except SQLAlchemyError as exc:
            raise StoreError(f"Could not initialise tables: {exc}") from exc

    async def close(self) -> None:
        await self._engine.dispose()

    # ── Users ────────────────────────────────────────────────────────

    async def add_user(self, user: User) -> None:
        try:
            async with self._engine.begin() as conn:
                await conn.execute(insert(users).values(
                    id=user.id,
                    name=user.name,
                    email=user.email,
                    phone_number=(
                        normalize_phone_number(user.phone_number)
                        if user.phone_number else None
                    ),
                    phone_number_verified=user.phone_number_verified,
                    preferences=stringify_user_preferences(user.preferences),
                ))
        except SQLAlchemyError as exc:
            raise StoreError(f"Could not add user {user.id}: {exc}") from exc

    async def get_user(self, user_id: str) -> User | None:
        return await self._fetch_user(users.c.id == user_id)

    async def find_user_by_phone(self, phone_number: str) -> User | None:
        return await self._fetch_user(
            users.c.phone_number == normalize_phone_number(phone_number),
        )

    async def _fetch_user(self, clause) -> User | None:
        try:
            async with self._engine.connect() as conn:
                row = (await conn.execute(select(users).where(clause))).first()
        except SQLAlchemyError as exc:
            raise StoreError(f"User lookup failed: {exc}") from exc
        return _row_to_user(row) if row else None

    async def list_users_with_provider(self, provider_id: str) -> list[User]:
        """Users that linked *provider_id* and have a phone number on file."""
        stmt = (
            select(users)
            .join(accounts, accounts.c.user_id == users.c.id)
            .where(accounts.c.provider_id == provider_id)
            .where(users.c.phone_number.is_not(None))
            .order_by(users.c.id)
        )
        try:
            async with self._engine.connect() as conn:
                rows = (await conn.execute(stmt)).all()
        except SQLAlchemyError as exc:
            raise StoreError(f"User listing failed: {exc}") from exc
        return [_row_to_user(row) for row in rows]

    # ── Provider accounts ────────────────────────────────────────────

    async def link_account(self, account: ProviderAccount) -> None:
        """Insert the (user, provider) account; a second link is rejected."""
        try:
            async with self._engine.begin() as conn:
                await conn.execute(insert(accounts).values(
                    id=secrets.token_hex(12),
                    user_id=account.user_id,
                    provider_id=account.provider_id,
                    account_id=account.account_id,
                    access_token=account.access_token,
                    refresh_token=account.refresh_token,
                    access_token_expires_at=account.access_token_expires_at,
                    scope=account.scope,
                ))
        except IntegrityError as exc:
            raise ValueError(
                f"User {account.user_id} already linked {account.provider_id}"
            ) from exc
        except SQLAlchemyError as exc:
            raise StoreError(f"Could not link account: {exc}") from exc

    async def get_account(self, user_id: str, provider_id: str) -> ProviderAccount | None:
        stmt = select(accounts).where(
            accounts.c.user_id == user_id, accounts.c.provider_id == provider_id,
        )
        try:
            async with self._engine.connect() as conn:
                row = (await conn.execute(stmt)).first()
        except SQLAlchemyError as exc:
            raise StoreError(f"Account lookup failed: {exc}") from exc
        return _row_to_account(row) if row else None

    async def update_tokens(
        self,
        user_id: str,
        provider_id: str,
        *,
        access_token: str,
        expires_at: datetime | None,
        refresh_token: str | None = None,
    ) -> None:
        """Persist a refreshed token.  Concurrent refreshes: last writer wins."""
        values = {"access_token": access_token, "access_token_expires_at": expires_at}
        if refresh_token:
            values["refresh_token"] = refresh_token
        stmt = (
            update(accounts)
            .where(accounts.c.user_id == user_id, accounts.c.provider_id == provider_id)
            .values(**values)
        )
        try:
            async with self._engine.begin() as conn:
                await conn.execute(stmt)
        except SQLAlchemyError as exc:
            raise StoreError(f"Token update failed: {exc}") from exc

    # ── Threads ──────────────────────────────────────────────────────

    async def get_thread_id(self, user_id: str) -> str | None:
        stmt = select(user_threads.c.thread_id).where(user_threads.c.user_id == user_id)
        try:
            async with self._engine.connect() as conn:
                return (await conn.execute(stmt)).scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise StoreError(f"Thread lookup failed: {exc}") from exc

    async def get_thread_owner(self, thread_id: str) -> str | None:
        stmt = select(user_threads.c.user_id).where(user_threads.c.thread_id == thread_id)
        try:
            async with self._engine.connect() as conn:
                return (await conn.execute(stmt)).scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise StoreError(f"Thread lookup failed: {exc}") from exc

    async def get_or_create_thread_id(self, user_id: str) -> str:
        """Return the user's thread id, creating it on first use.

        Two concurrent first calls may both try to insert; the primary key on
        ``user_id`` lets exactly one win and the loser re-reads the winner's
        id, so every caller sees the same thread.
        """
        existing = await self.get_thread_id(user_id)
        if existing:
            return existing

        thread_id = new_thread_id(user_id)
        try:
            async with self._engine.begin() as conn:
                await conn.execute(insert(user_threads).values(
                    user_id=user_id,
                    thread_id=thread_id,
                    created_at=datetime.now(UTC),
                ))
        except IntegrityError:
            logger.info("Thread for user %s created concurrently, re-reading", user_id)
            winner = await self.get_thread_id(user_id)
            if winner is None:
                raise StoreError(f"Thread for user {user_id} vanished after conflict")
            return winner
        except SQLAlchemyError as exc:
            raise StoreError(f"Thread creation failed: {exc}") from exc

        logger.info("Created thread %s for user %s", thread_id, user_id)
        return thread_id
