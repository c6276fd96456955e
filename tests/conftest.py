import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")

from decimal import Decimal
from typing import AsyncGenerator, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from schoolfees.auth.models import Role, User
from schoolfees.auth.security import create_access_token
from schoolfees.core.enums import StudentStatus
from schoolfees.core.models import SchoolClass, Student, Tenant
from schoolfees.db.schema_check import ensure_tables
from schoolfees.db.session import get_db
from schoolfees.main import app


TEST_DATABASE_URL = "sqlite+aiosqlite://"


@pytest.fixture()
async def engine():
    """One in-memory database per test; StaticPool keeps every session on the same connection."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    await ensure_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture()
async def db_session(engine) -> AsyncGenerator[AsyncSession, None]:
    """Provide a database session for a test and override FastAPI dependency."""
    async_session = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with async_session() as session:

        async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
            yield session

        app.dependency_overrides[get_db] = override_get_db
        yield session

    app.dependency_overrides.clear()


@pytest.fixture()
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client bound to the FastAPI app."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture()
async def tenant(db_session: AsyncSession) -> Tenant:
    t = Tenant(organization_name="Green Valley School")
    db_session.add(t)
    await db_session.commit()
    return t


@pytest.fixture()
async def operator(db_session: AsyncSession, tenant: Tenant) -> User:
    user = User(tenant_id=tenant.id, full_name="Office Clerk", email="clerk@example.com", role="OWNER")
    db_session.add(user)
    await db_session.commit()
    return user


@pytest.fixture()
async def school_class(db_session: AsyncSession, tenant: Tenant) -> SchoolClass:
    cl = SchoolClass(tenant_id=tenant.id, name="5th", display_order=5, monthly_fee=Decimal("3000"), exam_fee=Decimal("500"))
    db_session.add(cl)
    await db_session.commit()
    return cl


@pytest.fixture()
def make_student(db_session: AsyncSession, tenant: Tenant):
    """Factory for students; pass class_id=None for a student with no class."""

    async def _make(
        name: str = "Ali Raza",
        class_id=None,
        status: str = StudentStatus.ACTIVE.value,
        **fees,
    ) -> Student:
        student = Student(tenant_id=tenant.id, name=name, class_id=class_id, status=status, **fees)
        db_session.add(student)
        await db_session.commit()
        return student

    return _make


@pytest.fixture()
def auth_headers(operator: User, tenant: Tenant):
    """Bearer token for the seeded operator, shaped like the auth provider's tokens."""

    def _headers(user: Optional[User] = None) -> dict:
        user = user or operator
        token = create_access_token(
            subject={
                "user_id": str(user.id),
                "tenant_id": str(tenant.id),
                "role": user.role,
            }
        )
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture()
async def clerk(db_session: AsyncSession, tenant: Tenant) -> User:
    """Operator with read-only access to challans and fees."""
    role = Role(
        tenant_id=tenant.id,
        name="CLERK",
        permissions={"challans": {"read": True}, "fees": {"read": True}},
    )
    user = User(tenant_id=tenant.id, full_name="Front Desk", email="desk@example.com", role="CLERK")
    db_session.add_all([role, user])
    await db_session.commit()
    return user
