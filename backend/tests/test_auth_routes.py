from __future__ import annotations

import datetime as dt

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from billsplit.api.error_handlers import register_exception_handlers
from billsplit.api.routes.auth import router as auth_router
from billsplit.core.config import settings
from billsplit.core.database import get_db
from billsplit.core.security import create_access_token, hash_password, verify_password


@pytest.fixture
def client(sqlite_file):
    engine = create_async_engine(f"sqlite+aiosqlite:///{sqlite_file}", poolclass=NullPool)
    Session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async def _get_db():
        async with Session() as session:
            yield session

    app = FastAPI()
    register_exception_handlers(app)
    app.include_router(auth_router)
    app.dependency_overrides[get_db] = _get_db
    return TestClient(app)


def _register(client, email="New.User@Example.com", password="correct-horse"):
    return client.post("/auth/register", json={"email": email, "password": password, "name": "New User"})


def test_register_login_and_me(client):
    resp = _register(client)
    assert resp.status_code == 201
    body = resp.json()
    assert body["token_type"] == "bearer"
    assert body["user"]["email"] == "new.user@example.com"
    assert body["user"]["plan"] == "free"

    login = client.post("/auth/login", json={"email": "new.user@example.com", "password": "correct-horse"})
    assert login.status_code == 200
    token = login.json()["access_token"]

    me = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.json()["id"] == body["user"]["id"]


def test_duplicate_email_is_400(client):
    assert _register(client).status_code == 201
    assert _register(client, email="new.user@example.com").status_code == 400


def test_wrong_password_is_401(client):
    _register(client)
    resp = client.post("/auth/login", json={"email": "new.user@example.com", "password": "nope-nope"})
    assert resp.status_code == 401


def test_short_password_is_422(client):
    assert _register(client, password="short").status_code == 422


def test_me_requires_valid_token(client):
    assert client.get("/auth/me").status_code == 401
    assert client.get("/auth/me", headers={"Authorization": "Bearer garbage"}).status_code == 401

    expired = jwt.encode(
        {"sub": "1", "exp": dt.datetime.now(dt.timezone.utc) - dt.timedelta(minutes=1)},
        settings.SECRET_KEY,
        algorithm=settings.JWT_ALGORITHM,
    )
    resp = client.get("/auth/me", headers={"Authorization": f"Bearer {expired}"})
    assert resp.status_code == 401
    assert resp.json()["detail"] == "Token expired"


def test_token_for_deleted_user_is_401(client):
    token = create_access_token(999)
    assert client.get("/auth/me", headers={"Authorization": f"Bearer {token}"}).status_code == 401


def test_password_hashing():
    hashed = hash_password("s3cret-pass")
    assert hashed != "s3cret-pass"
    assert verify_password("s3cret-pass", hashed) is True
    assert verify_password("other", hashed) is False
    assert verify_password("anything", None) is False


def test_change_password(client):
    token = _register(client).json()["access_token"]
    headers = {"Authorization": f"Bearer {token}"}

    wrong = client.post(
        "/auth/change-password",
        json={"current_password": "not-it-at-all", "new_password": "battery-staple"},
        headers=headers,
    )
    assert wrong.status_code == 400
    assert wrong.json()["detail"] == "Current password is incorrect"

    ok = client.post(
        "/auth/change-password",
        json={"current_password": "correct-horse", "new_password": "battery-staple"},
        headers=headers,
    )
    assert ok.status_code == 200
    assert ok.json() == {"message": "Password changed successfully"}

    old = client.post("/auth/login", json={"email": "new.user@example.com", "password": "correct-horse"})
    assert old.status_code == 401
    new = client.post("/auth/login", json={"email": "new.user@example.com", "password": "battery-staple"})
    assert new.status_code == 200


def test_change_password_requires_auth_and_valid_new_password(client):
    body = {"current_password": "correct-horse", "new_password": "battery-staple"}
    assert client.post("/auth/change-password", json=body).status_code == 401

    token = _register(client).json()["access_token"]
    resp = client.post(
        "/auth/change-password",
        json={"current_password": "correct-horse", "new_password": "short"},
        headers={"Authorization": f"Bearer {token}"},
    )
    assert resp.status_code == 422


def test_logout(client):
    resp = client.post("/auth/logout")
    assert resp.status_code == 200
    assert resp.json() == {"message": "Logged out successfully"}
