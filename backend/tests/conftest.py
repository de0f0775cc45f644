from __future__ import annotations

import os
import sys
import tempfile
from pathlib import Path

import pytest
import pytest_asyncio
from fastapi import Depends, FastAPI, HTTPException
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

# Add backend folder to sys.path so `import billsplit...` works in tests when running from the repo root
BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

# Configure the app for tests before anything imports billsplit.core.config
_TMP = Path(tempfile.mkdtemp(prefix="billsplit-tests-"))
os.environ["ENVIRONMENT"] = "test"
os.environ["DB_DEV_FALLBACK_SQLITE"] = "true"
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TMP / 'app.db'}"
os.environ["STORAGE_DIRECTORY"] = str(_TMP / "storage")
os.environ["DEV_AUTH_BYPASS"] = "false"
os.environ.pop("SENTRY_DSN", None)

from billsplit.api.error_handlers import register_exception_handlers  # noqa: E402
from billsplit.core.database import Base, get_db  # noqa: E402
from billsplit.core.security import get_current_user  # noqa: E402
from billsplit.models import tables  # noqa: E402,F401
from billsplit.models.enums import PlanType  # noqa: E402
from billsplit.models.tables import User  # noqa: E402


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def free_user(db_session):
    user = User(email="free@example.com", name="Free", plan=PlanType.FREE)
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user


@pytest_asyncio.fixture
async def premium_user(db_session):
    user = User(email="premium@example.com", name="Premium", plan=PlanType.PREMIUM, subscription_status="active")
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user


@pytest.fixture
def sqlite_file(tmp_path):
    """A file-backed SQLite database with every table created."""
    path = tmp_path / "routes.db"
    sync_engine = create_engine(f"sqlite:///{path}")
    Base.metadata.create_all(sync_engine)
    sync_engine.dispose()
    return path


@pytest.fixture
def make_client(sqlite_file):
    """Build a TestClient around the given routers.

    Each request gets a fresh aiosqlite connection (``NullPool``) so the
    client's event loop never reuses a connection from another loop.
    ``user_id`` selects which stored user the auth dependency returns.
    """
    url = f"sqlite+aiosqlite:///{sqlite_file}"

    def _build(*routers, user_id: int | None = None, prefix: str = "") -> TestClient:
        engine = create_async_engine(url, poolclass=NullPool)
        Session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

        async def _get_db():
            async with Session() as session:
                yield session

        async def _get_current_user(db: AsyncSession = Depends(get_db)):
            user = await db.get(User, user_id) if user_id is not None else None
            if user is None:
                raise HTTPException(status_code=401, detail="Not authenticated")
            return user

        app = FastAPI()
        register_exception_handlers(app)
        for router in routers:
            app.include_router(router, prefix=prefix)
        app.dependency_overrides[get_db] = _get_db
        app.dependency_overrides[get_current_user] = _get_current_user
        return TestClient(app)

    return _build


@pytest.fixture
def create_user(sqlite_file):
    """Insert a user into the route database and return its id."""

    def _create(email: str = "user@example.com", plan: PlanType = PlanType.FREE, **fields) -> int:
        fields.setdefault("name", email.split("@")[0])
        sync_engine = create_engine(f"sqlite:///{sqlite_file}")
        with sync_engine.begin() as conn:
            result = conn.execute(User.__table__.insert().values(email=email, plan=plan, **fields))
            user_id = result.inserted_primary_key[0]
        sync_engine.dispose()
        return user_id

    return _create
