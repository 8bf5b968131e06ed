import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.core.db import Base, get_db
from app.core.security import create_access_token
from app.main import app
from app.models.category import Category
from app.models.exercise import Exercise
from app.models.user import User


@pytest_asyncio.fixture
async def engine():
    # One shared in-memory database per test
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory) -> AsyncSession:
    async with session_factory() as session:
        yield session


async def _user(db: AsyncSession, email: str, role: str) -> User:
    user = User(email=email, full_name=email.split("@")[0], role=role, is_active=True)
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


@pytest_asyncio.fixture
async def admin(db):
    return await _user(db, "admin@academy.test", "admin")


@pytest_asyncio.fixture
async def trainer(db):
    return await _user(db, "coach@academy.test", "trainer")


@pytest_asyncio.fixture
async def other_trainer(db):
    return await _user(db, "coach2@academy.test", "trainer")


@pytest_asyncio.fixture
async def students(db):
    return [await _user(db, f"student{i}@academy.test", "student") for i in range(1, 4)]


@pytest_asyncio.fixture
async def category(db):
    cat = Category(name="Technique", type="routine", color="#FF0000")
    db.add(cat)
    await db.commit()
    await db.refresh(cat)
    return cat


@pytest_asyncio.fixture
async def make_exercise(db, trainer):
    async def _make(**overrides) -> Exercise:
        fields = {
            "name": "Jab drill",
            "duration": 10,
            "work_type": "technique",
            "difficulty": "beginner",
            "intensity": "medium",
            "visibility": "public",
            "created_by": trainer.id,
            "usage_count": 0,
        }
        fields.update(overrides)
        exercise = Exercise(**fields)
        db.add(exercise)
        await db.commit()
        await db.refresh(exercise)
        return exercise

    return _make


@pytest_asyncio.fixture
async def client(session_factory):
    async def _get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def auth():
    def _headers(user: User) -> dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(user.id, user.role)}"}

    return _headers
