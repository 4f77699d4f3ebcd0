import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")
os.environ.setdefault("BULK_MAX_CONCURRENCY", "1")

from dataclasses import dataclass
from typing import AsyncGenerator, Dict

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.main import app
from app.auth.models import User
from app.auth.security import create_access_token
from app.core.models import Department, Subject
from app.db.session import Base, get_db, get_session_factory


TEST_DATABASE_URL = "sqlite+aiosqlite://"


@pytest.fixture()
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """One in-memory SQLite database per test; StaticPool keeps it on a single connection."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture()
def session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture()
async def db_session(session_factory: async_sessionmaker) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture()
async def client(session_factory: async_sessionmaker) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client bound to the FastAPI app, with every request on the test database."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@dataclass
class Campus:
    admin: User
    faculty: User
    other_faculty: User
    students: Dict[str, User]
    department: Department
    data_structures: Subject
    algorithms: Subject


@pytest.fixture()
async def campus(db_session: AsyncSession) -> Campus:
    """A department with two subjects, two faculty members, an admin and three students."""
    dept = Department(code="CSE", name="Computer Science")
    db_session.add(dept)
    await db_session.flush()

    admin = User(full_name="Asha Admin", email="admin@uni.test", role="admin")
    faculty = User(full_name="Farhan Faculty", email="farhan@uni.test", role="faculty", department_id=dept.id)
    other_faculty = User(full_name="Gita Faculty", email="gita@uni.test", role="faculty", department_id=dept.id)
    students = {
        name: User(
            full_name=f"{name} Student",
            email=f"{name.lower()}@uni.test",
            role="student",
            department_id=dept.id,
            semester=3,
        )
        for name in ("Sam", "Ravi", "Mina")
    }
    db_session.add_all([admin, faculty, other_faculty, *students.values()])
    await db_session.flush()

    data_structures = Subject(
        department_id=dept.id, name="Data Structures", code="CS201", semester=3, faculty_id=faculty.id,
    )
    algorithms = Subject(
        department_id=dept.id, name="Algorithms", code="CS301", semester=3, faculty_id=other_faculty.id,
    )
    db_session.add_all([data_structures, algorithms])
    await db_session.commit()
    return Campus(
        admin=admin,
        faculty=faculty,
        other_faculty=other_faculty,
        students=students,
        department=dept,
        data_structures=data_structures,
        algorithms=algorithms,
    )


@pytest.fixture()
def auth_headers():
    """Build bearer headers for a seeded user."""

    def _headers(user: User) -> Dict[str, str]:
        token = create_access_token(subject={"sub": str(user.id), "role": user.role})
        return {"Authorization": f"Bearer {token}"}

    return _headers
