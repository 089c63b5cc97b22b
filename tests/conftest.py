"""
Audit Trail Test Configuration

Provides shared fixtures for async testing with:
- In-memory SQLite database
- Test client with async support
- Authenticated user fixtures (admin, manager, writer, regular user)
- Sample data factories for users, tools, reviews, blogs and audit entries
"""
from datetime import datetime
from typing import AsyncGenerator, Dict, List, Optional
import uuid

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from audittrail.core.database import Base, get_db
from audittrail.core.security import create_access_token
from audittrail.main import app
from audittrail.models.user import User, UserRole
from audittrail.models.tool import Tool
from audittrail.models.review import Review, ReviewStatus
from audittrail.models.blog import Blog, BlogStatus
from audittrail.models.audit import AuditEntry, AuditCategory, TargetType


# Test database URL - SQLite in-memory with async support
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture(scope="function")
async def async_engine():
    """Create an async engine for testing with in-memory SQLite."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False}
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(async_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create a fresh database session for each test."""
    async_session_maker = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )

    async with async_session_maker() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture(scope="function")
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Create an async test client with database override."""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# -----------------------------------------------------------------------------
# Data Factories
# -----------------------------------------------------------------------------

class UserFactory:
    """Factory for creating test users."""

    @staticmethod
    async def create(
        db: AsyncSession,
        email: str = None,
        name: str = None,
        role: UserRole = UserRole.USER,
        is_blocked: bool = False,
        audit_log: Optional[List[dict]] = None
    ) -> User:
        user = User(
            id=str(uuid.uuid4()),
            email=email or f"user-{uuid.uuid4().hex[:8]}@test.com",
            name=name or f"Test {role.value.title()}",
            role=role,
            is_blocked=is_blocked,
            audit_log=audit_log or []
        )
        db.add(user)
        await db.commit()
        await db.refresh(user)
        return user


class ToolFactory:
    """Factory for creating test tools."""

    @staticmethod
    async def create(
        db: AsyncSession,
        name: str = "Test Tool",
        created_by: str = None
    ) -> Tool:
        suffix = uuid.uuid4().hex[:6]
        tool = Tool(
            id=str(uuid.uuid4()),
            name=name,
            slug=f"test-tool-{suffix}",
            description="A tool used in tests",
            category="productivity",
            url="https://example.com",
            price="free",
            rating=4.5,
            review_count=2,
            created_by=created_by
        )
        db.add(tool)
        await db.commit()
        await db.refresh(tool)
        return tool


class ReviewFactory:
    """Factory for creating test reviews."""

    @staticmethod
    async def create(
        db: AsyncSession,
        tool_id: str,
        user_id: str = None,
        rating: int = 4,
        comment: str = "Works well",
        status: ReviewStatus = ReviewStatus.VISIBLE
    ) -> Review:
        review = Review(
            id=str(uuid.uuid4()),
            tool_id=tool_id,
            user_id=user_id,
            rating=rating,
            comment=comment,
            status=status
        )
        db.add(review)
        await db.commit()
        await db.refresh(review)
        return review


class BlogFactory:
    """Factory for creating test blog posts."""

    @staticmethod
    async def create(
        db: AsyncSession,
        author_id: str = None,
        title: str = "Test Post",
        content: str = "Some content",
        status: BlogStatus = BlogStatus.PENDING_APPROVAL
    ) -> Blog:
        blog = Blog(
            id=str(uuid.uuid4()),
            author_id=author_id,
            title=title,
            slug=f"test-post-{uuid.uuid4().hex[:6]}",
            content=content,
            excerpt=content[:50],
            tags=["testing"],
            status=status
        )
        db.add(blog)
        await db.commit()
        await db.refresh(blog)
        return blog


class AuditEntryFactory:
    """Factory for inserting centralized audit entries directly."""

    @staticmethod
    async def create(
        db: AsyncSession,
        action: str,
        target_id: str,
        performed_by: User,
        timestamp: datetime = None,
        category: AuditCategory = AuditCategory.USER_MANAGEMENT,
        target_type: TargetType = TargetType.USER,
        target_name: str = "Target",
        changes: Optional[List[dict]] = None,
        reason: str = None,
        details: Optional[dict] = None
    ) -> AuditEntry:
        entry = AuditEntry(
            id=str(uuid.uuid4()),
            category=category.value,
            action=action,
            performed_by_id=performed_by.id,
            performed_by_name=performed_by.name,
            performed_by_role=performed_by.role.value,
            target_id=target_id,
            target_type=target_type.value,
            target_name=target_name,
            changes=changes or [],
            reason=reason,
            details=details,
            ip_address="127.0.0.1",
            user_agent="pytest",
            timestamp=timestamp or datetime.utcnow()
        )
        db.add(entry)
        await db.commit()
        return entry


def legacy_record(action: str, performed_by: User, timestamp: datetime, reason: str = None,
                  changes: Optional[List[dict]] = None) -> dict:
    """Build a legacy embedded record as older code stored it."""
    return {
        "action": action,
        "performed_by": performed_by.id,
        "performed_by_name": performed_by.name,
        "performed_by_role": performed_by.role.value,
        "timestamp": timestamp.isoformat(),
        "reason": reason,
        "changes": changes or [],
        "metadata": {"ip_address": "10.0.0.1", "user_agent": "legacy", "session_id": None},
    }


def fail_next_commit(db: AsyncSession, monkeypatch) -> None:
    """Make the session's next commit fail as a locked database would; later commits go through."""
    original_commit = db.commit
    calls = {"count": 0}

    async def commit():
        calls["count"] += 1
        if calls["count"] == 1:
            raise OperationalError("INSERT INTO audit_entries", {}, Exception("database is locked"))
        await original_commit()

    monkeypatch.setattr(db, "commit", commit)


# -----------------------------------------------------------------------------
# Fixtures
# -----------------------------------------------------------------------------

@pytest_asyncio.fixture
async def admin_user(db_session: AsyncSession) -> User:
    """Create an admin test user."""
    return await UserFactory.create(
        db_session,
        email="admin@test.com",
        name="Alice Admin",
        role=UserRole.ADMIN
    )


@pytest_asyncio.fixture
async def manager_user(db_session: AsyncSession) -> User:
    """Create a manager test user."""
    return await UserFactory.create(
        db_session,
        email="manager@test.com",
        name="Morgan Manager",
        role=UserRole.MANAGER
    )


@pytest_asyncio.fixture
async def writer_user(db_session: AsyncSession) -> User:
    """Create a writer test user."""
    return await UserFactory.create(
        db_session,
        email="writer@test.com",
        name="Wren Writer",
        role=UserRole.WRITER
    )


@pytest_asyncio.fixture
async def regular_user(db_session: AsyncSession) -> User:
    """Create a regular test user."""
    return await UserFactory.create(
        db_session,
        email="dana@test.com",
        name="Dana",
        role=UserRole.USER
    )


def token_for(user: User) -> str:
    return create_access_token(
        data={"sub": user.id, "email": user.email, "role": user.role.value}
    )


@pytest_asyncio.fixture
async def auth_headers_admin(admin_user: User) -> Dict[str, str]:
    """Get auth headers for admin user."""
    return {"Authorization": f"Bearer {token_for(admin_user)}"}


@pytest_asyncio.fixture
async def auth_headers_manager(manager_user: User) -> Dict[str, str]:
    """Get auth headers for manager user."""
    return {"Authorization": f"Bearer {token_for(manager_user)}"}


@pytest_asyncio.fixture
async def auth_headers_writer(writer_user: User) -> Dict[str, str]:
    """Get auth headers for writer user."""
    return {"Authorization": f"Bearer {token_for(writer_user)}"}


@pytest_asyncio.fixture
async def auth_headers_user(regular_user: User) -> Dict[str, str]:
    """Get auth headers for regular user."""
    return {"Authorization": f"Bearer {token_for(regular_user)}"}


# Export factories for use in tests
__all__ = [
    "UserFactory",
    "ToolFactory",
    "ReviewFactory",
    "BlogFactory",
    "AuditEntryFactory",
    "legacy_record",
    "token_for",
]
