import os
from datetime import datetime, UTC, timedelta
from uuid import uuid4

import jwt
import pytest
from fastapi import status
from httpx import AsyncClient

pytestmark = [pytest.mark.contract]

PASSWORD = "correct-horse-battery"


@pytest.mark.asyncio
async def test_register_then_login_and_me(async_client: AsyncClient):
    reg = await async_client.post("/api/v1/auth/register", json={
        "email": "Priya@Example.com",
        "password": "s3cret-pass",
        "name": "Priya Shah",
        "position": "Accountant",
    })
    assert reg.status_code == status.HTTP_201_CREATED, reg.text
    user = reg.json()["data"]["user"]
    assert user["email"] == "priya@example.com"
    assert user["position"] == "Accountant"

    login = await async_client.post("/api/v1/auth/login", json={
        "email": "priya@example.com", "password": "s3cret-pass"})
    assert login.status_code == 200, login.text
    data = login.json()["data"]
    assert data["token_type"] == "bearer"
    assert data["expires_in"] > 0

    me = await async_client.get(
        "/api/v1/auth/me", headers={"Authorization": f"Bearer {data['access_token']}"})
    assert me.status_code == 200, me.text
    assert me.json()["data"]["id"] == user["id"]


@pytest.mark.asyncio
async def test_duplicate_registration_conflict(async_client: AsyncClient, user_a):
    resp = await async_client.post("/api/v1/auth/register", json={
        "email": user_a.email, "password": "another-pass", "name": "Dup"})
    assert resp.status_code == status.HTTP_409_CONFLICT, resp.text
    assert resp.json()["error"]["code"] == "USER_EXISTS"


@pytest.mark.asyncio
async def test_register_rejects_malformed_email(async_client: AsyncClient):
    resp = await async_client.post("/api/v1/auth/register", json={
        "email": "not-an-email", "password": "long-enough", "name": "X"})
    assert resp.status_code == 422, resp.text
    assert resp.json()["error"]["code"] == "VALIDATION_ERROR"


@pytest.mark.asyncio
async def test_login_wrong_password(async_client: AsyncClient, user_a):
    resp = await async_client.post("/api/v1/auth/login", json={
        "email": user_a.email, "password": "wrong"})
    assert resp.status_code == status.HTTP_401_UNAUTHORIZED
    body = resp.json()
    assert body["status"] == "error"
    assert body["error"]["code"] == "AUTH_INVALID_CREDENTIALS"
    assert body["path"] == "/api/v1/auth/login"


@pytest.mark.asyncio
async def test_login_with_fixture_password(async_client: AsyncClient, user_a):
    resp = await async_client.post("/api/v1/auth/login", json={
        "email": user_a.email, "password": PASSWORD})
    assert resp.status_code == 200, resp.text


@pytest.mark.asyncio
async def test_missing_token_rejected(async_client: AsyncClient):
    resp = await async_client.get("/api/v1/invoices")
    assert resp.status_code == status.HTTP_401_UNAUTHORIZED
    assert resp.json()["error"]["code"] == "AUTH_INVALID_CREDENTIALS"


@pytest.mark.asyncio
async def test_expired_token_rejected(async_client: AsyncClient, user_a):
    secret = os.getenv("JWT_SECRET", "dev-insecure-secret-change")
    alg = os.getenv("JWT_ALGORITHM", "HS256")
    past_exp = datetime.now(UTC) - timedelta(hours=1)
    expired_token = jwt.encode(
        {"sub": str(user_a.id), "exp": past_exp}, secret, algorithm=alg)

    resp = await async_client.get(
        "/api/v1/invoices", headers={"Authorization": f"Bearer {expired_token}"})
    assert resp.status_code == status.HTTP_401_UNAUTHORIZED, resp.text
    assert resp.json()["error"]["code"] == "AUTH_TOKEN_EXPIRED"


@pytest.mark.asyncio
async def test_token_for_unknown_user_rejected(async_client: AsyncClient):
    secret = os.getenv("JWT_SECRET", "dev-insecure-secret-change")
    token = jwt.encode({"sub": str(uuid4()), "exp": datetime.now(UTC) + timedelta(minutes=5)},
                       secret, algorithm=os.getenv("JWT_ALGORITHM", "HS256"))
    resp = await async_client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == status.HTTP_401_UNAUTHORIZED
    assert resp.json()["error"]["code"] == "AUTH_INVALID_CREDENTIALS"


@pytest.mark.asyncio
async def test_logout_is_stateless(auth_client: AsyncClient):
    resp = await auth_client.post("/api/v1/auth/logout")
    assert resp.status_code == 200
    assert resp.json()["status"] == "success"
