"""
Pytest fixtures for backend tests.
"""

import os
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncGenerator, Dict, List, Optional, Set
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Set test environment before importing app
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("SUPABASE_JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("SITE_URL", "https://app.test")

from onboarding.config import get_settings
from onboarding.contracts.member import Actor
from onboarding.core.identity import (
    NO_BAN,
    IdentityConflictError,
    IdentityStore,
    IdentityStoreError,
    IdentityUser,
)
from onboarding.dependencies.auth import get_current_user
from onboarding.dependencies.db import get_db
from onboarding.dependencies.identity import get_identity_store
from onboarding.main import app
from onboarding.models import AuditLog, Base, Invitation, Office, Profile, Team, TeamMember, UserRole
from onboarding.models.enums import AccessLevel, AppRole, ProfileStatus
from onboarding.services.roles import active_roles
from onboarding.services.utils.emails import normalize_email


# --- Identity store double ---

class InMemoryIdentityStore(IdentityStore):
    """
    Credential store kept in a dict. Put an operation name in ``failing``
    (``create``, ``update``, ``get``, ``delete``, ``find_by_email``,
    ``list_users``) to make it raise IdentityStoreError.
    """

    def __init__(self):
        self.users: Dict[UUID, IdentityUser] = {}
        self.passwords: Dict[UUID, str] = {}
        self.failing: Set[str] = set()

    def _check(self, operation: str) -> None:
        if operation in self.failing:
            raise IdentityStoreError(f"{operation} unavailable")

    def add(self, email: str, user_id: Optional[UUID] = None, password: str = "secret-pass") -> IdentityUser:
        user = IdentityUser(id=user_id or uuid4(), email=normalize_email(email))
        self.users[user.id] = user
        self.passwords[user.id] = password
        return user

    def by_email(self, email: str):
        wanted = normalize_email(email)
        return [u for u in self.users.values() if normalize_email(u.email) == wanted]

    async def list_users(self) -> List[IdentityUser]:
        self._check("list_users")
        return list(self.users.values())

    async def find_by_email(self, email: str) -> Optional[IdentityUser]:
        self._check("find_by_email")
        matches = self.by_email(email)
        return matches[0] if matches else None

    async def get(self, user_id: UUID) -> Optional[IdentityUser]:
        self._check("get")
        return self.users.get(user_id)

    async def create(self, email: str, password: str, metadata: Dict[str, Any]) -> IdentityUser:
        self._check("create")
        if self.by_email(email):
            raise IdentityConflictError("A user with this email address has already been registered")
        user = self.add(email, password=password)
        user.user_metadata = dict(metadata)
        return user

    async def update(
        self,
        user_id: UUID,
        *,
        email: Optional[str] = None,
        password: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        ban_duration: Optional[str] = None,
        email_confirm: Optional[bool] = None,
    ) -> IdentityUser:
        self._check("update")
        user = self.users.get(user_id)
        if user is None:
            raise IdentityStoreError("User not found")
        if email is not None:
            user.email = email
        if password is not None:
            self.passwords[user_id] = password
        if metadata is not None:
            user.user_metadata = {**user.user_metadata, **metadata}
        if ban_duration is not None:
            user.banned_until = (
                None if ban_duration == NO_BAN else datetime.now(timezone.utc) + timedelta(days=3650)
            )
        return user

    async def delete(self, user_id: UUID) -> None:
        self._check("delete")
        self.users.pop(user_id, None)
        self.passwords.pop(user_id, None)


# --- Data seeding ---

class Seeder:
    """Writes fixture rows straight into the test database."""

    def __init__(self, session_factory: async_sessionmaker, identity: InMemoryIdentityStore):
        self.session_factory = session_factory
        self.identity = identity

    async def _save(self, *rows):
        async with self.session_factory() as session:
            session.add_all(rows)
            await session.commit()

    async def office(self, name: str = "Downtown") -> Office:
        office = Office(id=uuid4(), name=name)
        await self._save(office)
        return office

    async def team(self, office: Office, name: str = "Sales", team_code: Optional[str] = None) -> Team:
        team = Team(id=uuid4(), name=name, office_id=office.id, team_code=team_code)
        await self._save(team)
        return team

    async def user(
        self,
        email: str,
        office: Optional[Office] = None,
        role: Optional[AppRole] = None,
        team: Optional[Team] = None,
        status: ProfileStatus = ProfileStatus.active,
        credential: bool = True,
    ) -> Profile:
        user_id = self.identity.add(email).id if credential else uuid4()
        profile = Profile(
            id=user_id,
            email=normalize_email(email),
            full_name=email.split("@")[0].title(),
            status=status.value,
            office_id=office.id if office else None,
            primary_team_id=team.id if team else None,
            password_set=True,
            onboarding_completed=True,
        )
        rows = [profile]
        if team:
            rows.append(TeamMember(user_id=user_id, team_id=team.id, access_level=AccessLevel.edit))
        if role:
            rows.append(UserRole(user_id=user_id, role=role))
        await self._save(*rows)
        return profile

    async def membership(
        self, profile: Profile, team: Team, access_level: AccessLevel = AccessLevel.member
    ) -> TeamMember:
        membership = TeamMember(user_id=profile.id, team_id=team.id, access_level=access_level)
        await self._save(membership)
        return membership

    async def admin(self, office: Office, email: str = "admin@agency.com") -> Profile:
        team = await self.team(office, name=f"{email} team")
        return await self.user(email, office, AppRole.platform_admin, team)

    async def invitation(
        self,
        email: str,
        office: Optional[Office],
        role: AppRole = AppRole.assistant,
        team: Optional[Team] = None,
        invited_by: Optional[UUID] = None,
        status: str = "pending",
        expires_in: timedelta = timedelta(days=7),
        legacy_office_column: bool = False,
    ) -> Invitation:
        office_id = office.id if office else None
        invitation = Invitation(
            id=uuid4(),
            email=normalize_email(email),
            full_name=None,
            role=role,
            team_id=team.id if team else None,
            office_id=None if legacy_office_column else office_id,
            agency_id=office_id if legacy_office_column else None,
            invite_code=f"code-{uuid4().hex}",
            invited_by=invited_by,
            status=status,
            expires_at=datetime.now(timezone.utc) + expires_in,
        )
        await self._save(invitation)
        return invitation


class Store:
    """Read helpers for assertions."""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def all(self, model, *where):
        async with self.session_factory() as session:
            result = await session.execute(select(model).where(*where))
            return list(result.scalars().all())

    async def one(self, model, *where):
        rows = await self.all(model, *where)
        return rows[0] if rows else None

    async def audit_actions(self):
        return [entry.action for entry in await self.all(AuditLog)]

    async def roles(self, user_id: UUID):
        async with self.session_factory() as session:
            return await active_roles(session, user_id)

    async def actor(self, profile: Profile) -> Actor:
        return Actor(
            user_id=profile.id,
            email=profile.email,
            office_id=profile.office_id,
            roles=await self.roles(profile.id),
        )


class FakeRedis:
    """Just enough of redis.asyncio.Redis for the rate limiter."""

    def __init__(self):
        self.counters: Dict[str, int] = {}
        self.ttls: Dict[str, int] = {}
        self.broken = False

    async def incr(self, key: str) -> int:
        if self.broken:
            raise ConnectionError("redis down")
        self.counters[key] = self.counters.get(key, 0) + 1
        return self.counters[key]

    async def expire(self, key: str, seconds: int) -> bool:
        self.ttls[key] = seconds
        return True


class CurrentUser:
    """Whose bearer token the test client presents."""

    def __init__(self):
        self.user_id: Optional[UUID] = None

    def login(self, profile: Profile) -> None:
        self.user_id = profile.id

    def claims(self) -> Dict[str, Any]:
        return {"id": str(self.user_id), "email": ""}


# --- Fixtures ---

@pytest.fixture(scope="session")
def settings():
    """Get application settings."""
    return get_settings()


@pytest_asyncio.fixture(scope="function")
async def engine():
    """Fresh in-memory SQLite schema per test."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """
    Create a database session for service-level tests.
    """
    async with session_factory() as session:
        yield session


@pytest.fixture
def identity() -> InMemoryIdentityStore:
    return InMemoryIdentityStore()


@pytest.fixture
def seed(session_factory, identity) -> Seeder:
    return Seeder(session_factory, identity)


@pytest.fixture
def store(session_factory) -> Store:
    return Store(session_factory)


@pytest.fixture
def fake_redis():
    """Installs an in-memory Redis on the app for the duration of a test."""
    redis = FakeRedis()
    app.state.redis_client = redis
    yield redis
    app.state.redis_client = None


@pytest.fixture
def current_user() -> CurrentUser:
    return CurrentUser()


@pytest_asyncio.fixture(scope="function")
async def async_client(session_factory, identity, current_user) -> AsyncGenerator[AsyncClient, None]:
    """
    Async test client for FastAPI.

    Database, identity store and bearer verification are overridden; call
    ``current_user.login(profile)`` to act as a seeded user.
    """

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_identity_store] = lambda: identity
    app.dependency_overrides[get_current_user] = current_user.claims
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
