"""
Test Configuration and Fixtures

Shared fixtures for Threat Combat API tests.
Provides an isolated database, users for every role, and a notifier that
captures outgoing messages instead of sending them.
"""

import os

os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-for-the-threatcombat-suite")

import uuid
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, List, Optional

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from threatcombat.api.access.audit import AuditAction, AuditRecorder
from threatcombat.api.access.rbac import Role
from threatcombat.api.auth.jwt import create_access_token
from threatcombat.api.auth.passwords import hash_password
from threatcombat.api.db.models import (
    AuditLog,
    Base,
    Chapter,
    ChapterStatus,
    MembershipStatus,
    User,
)
from threatcombat.api.db.session import get_db
from threatcombat.api.dependencies import get_audit_recorder, get_notifier
from threatcombat.api.main import create_app
from threatcombat.api.services.notifications import NotificationKind, NotificationResult


PASSWORD = "CorrectHorse42!"


class CapturingNotifier:
    """Records every notification instead of delivering it."""

    def __init__(self):
        self.sent: List[tuple] = []

    async def notify(self, kind, recipient, payload) -> NotificationResult:
        self.sent.append((NotificationKind(kind), recipient, dict(payload)))
        return NotificationResult(success=True)

    def last(self, kind: NotificationKind) -> Optional[dict]:
        for sent_kind, _, payload in reversed(self.sent):
            if sent_kind == kind:
                return payload
        return None


# ==================== Database Fixtures ====================


@pytest_asyncio.fixture(scope="function")
async def async_engine():
    """Create async SQLite engine for testing."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture(scope="function")
def session_maker(async_engine) -> async_sessionmaker:
    return async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for tests."""
    async with session_maker() as session:
        yield session
        await session.rollback()


@pytest.fixture(scope="function")
def recorder(session_maker) -> AuditRecorder:
    return AuditRecorder(session_maker)


@pytest.fixture(scope="function")
def notifier() -> CapturingNotifier:
    return CapturingNotifier()


# ==================== Application Fixtures ====================


@pytest.fixture(scope="function")
def app(db_session, recorder, notifier) -> FastAPI:
    """Create FastAPI app with test database, audit sink and notifier."""
    test_app = create_app()

    async def override_get_db():
        yield db_session

    test_app.dependency_overrides[get_db] = override_get_db
    test_app.dependency_overrides[get_audit_recorder] = lambda: recorder
    test_app.dependency_overrides[get_notifier] = lambda: notifier
    return test_app


@pytest_asyncio.fixture(scope="function")
async def async_client(app) -> AsyncGenerator[AsyncClient, None]:
    """Create async test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture(scope="function")
def client_from(app):
    """Build a client whose requests come from the given address."""
    def _client(ip_address: str) -> AsyncClient:
        transport = ASGITransport(app=app, client=(ip_address, 4321))
        return AsyncClient(transport=transport, base_url="http://test")
    return _client


# ==================== Chapter Fixtures ====================


async def _chapter(db_session, name: str, university: str) -> Chapter:
    chapter = Chapter(
        name=name,
        university=university,
        location="Nairobi",
        status=ChapterStatus.ACTIVE,
    )
    db_session.add(chapter)
    await db_session.commit()
    await db_session.refresh(chapter)
    return chapter


@pytest_asyncio.fixture(scope="function")
async def chapter_a(db_session) -> Chapter:
    return await _chapter(db_session, "Strathmore Chapter", "Strathmore University")


@pytest_asyncio.fixture(scope="function")
async def chapter_b(db_session) -> Chapter:
    return await _chapter(db_session, "Kenyatta Chapter", "Kenyatta University")


# ==================== User Fixtures ====================


@pytest.fixture(scope="function")
def make_user(db_session):
    """Persist a user with sensible defaults."""
    async def _make(
        email: str,
        role: Role = Role.MEMBER,
        chapter: Optional[Chapter] = None,
        membership_status: MembershipStatus = MembershipStatus.ACTIVE,
        email_verified: bool = True,
        password: str = PASSWORD,
    ) -> User:
        user = User(
            id=uuid.uuid4(),
            name=email.split("@")[0].replace(".", " ").title(),
            email=email,
            password_hash=hash_password(password),
            role=role,
            chapter_id=chapter.id if chapter else None,
            membership_status=membership_status,
            email_verified=email_verified,
        )
        db_session.add(user)
        await db_session.commit()
        await db_session.refresh(user)
        return user
    return _make


@pytest_asyncio.fixture(scope="function")
async def super_admin(make_user) -> User:
    return await make_user("root@threatcombat.com", Role.SUPER_ADMIN)


@pytest_asyncio.fixture(scope="function")
async def admin_a(make_user, chapter_a) -> User:
    return await make_user("admin.a@threatcombat.com", Role.CHAPTER_ADMIN, chapter_a)


@pytest_asyncio.fixture(scope="function")
async def executive_a(make_user, chapter_a) -> User:
    return await make_user("exec.a@threatcombat.com", Role.EXECUTIVE, chapter_a)


@pytest_asyncio.fixture(scope="function")
async def member_a(make_user, chapter_a) -> User:
    return await make_user("member.a@threatcombat.com", Role.MEMBER, chapter_a)


@pytest_asyncio.fixture(scope="function")
async def member_b(make_user, chapter_b) -> User:
    return await make_user("member.b@threatcombat.com", Role.MEMBER, chapter_b)


@pytest_asyncio.fixture(scope="function")
async def partner(make_user) -> User:
    return await make_user("partner@acme.io", Role.INDUSTRY_PARTNER)


@pytest.fixture(scope="function")
def headers_for():
    """Authorization headers for a user."""
    def _headers(user: User) -> dict:
        token = create_access_token(user.id, user.role, user.chapter_id)
        return {"Authorization": f"Bearer {token}"}
    return _headers


# ==================== Audit Helpers ====================


@pytest.fixture(scope="function")
def seed_failed_logins(session_maker):
    """Insert failed login entries for an address, optionally back-dated."""
    async def _seed(ip_address: str, count: int, age: timedelta = timedelta(0)) -> None:
        created_at = datetime.now(timezone.utc) - age
        async with session_maker() as session:
            for _ in range(count):
                session.add(AuditLog(
                    action=AuditAction.LOGIN_ATTEMPT_FAILED.value,
                    resource="AUTHENTICATION",
                    details={"email": "someone@example.com"},
                    ip_address=ip_address,
                    status_code=401,
                    success=False,
                    risk_level="MEDIUM",
                    requires_review=True,
                    created_at=created_at,
                ))
            await session.commit()
    return _seed


@pytest.fixture(scope="function")
def audit_entries(session_maker):
    """Fetch audit entries for an action, oldest first."""
    async def _entries(action: AuditAction) -> List[AuditLog]:
        async with session_maker() as session:
            result = await session.execute(
                select(AuditLog)
                .where(AuditLog.action == AuditAction(action).value)
                .order_by(AuditLog.created_at)
            )
            return list(result.scalars().all())
    return _entries
