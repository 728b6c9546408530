"""Auth + helper directory tests.

Learn: Tests cover:
1. User registration (receiver or helper) + duplicate prevention
2. Login → JWT tokens carrying the user's role
3. Token refresh
4. Protected /me endpoint
5. The public helper directory
"""

import uuid

import pytest

from helpmatch.auth.jwt import verify_token
from helpmatch.services.errors import ValidationError
from helpmatch.services.user_service import UserService


async def _register(client, role="receiver", password="password_123", **extra):
    email = f"{role}-{uuid.uuid4().hex[:8]}@example.com"
    body = {"email": email, "name": "Test User", "password": password, "role": role}
    body.update(extra)
    r = await client.post("/api/v1/auth/register", json=body)
    return email, r


# ═══════════════════════════════════════════════════════════
# Registration
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_register_user(client):
    """Register a new receiver account."""
    email, r = await _register(client)
    assert r.status_code == 201
    user = r.json()
    assert user["email"] == email
    assert user["name"] == "Test User"
    assert user["role"] == "receiver"
    assert "id" in user
    assert "password_hash" not in user


@pytest.mark.asyncio
async def test_register_helper_with_city(client):
    email, r = await _register(client, role="helper", city="Lisbon")
    assert r.status_code == 201
    assert r.json()["role"] == "helper"
    assert r.json()["city"] == "Lisbon"


@pytest.mark.asyncio
async def test_register_email_is_case_insensitive(client):
    """Emails are stored lowercased, so case variants collide."""
    email = f"Case-{uuid.uuid4().hex[:8]}@Example.com"
    body = {"email": email, "name": "U", "password": "password_123"}
    r1 = await client.post("/api/v1/auth/register", json=body)
    assert r1.status_code == 201
    assert r1.json()["email"] == email.lower()

    body["email"] = email.upper()
    r2 = await client.post("/api/v1/auth/register", json=body)
    assert r2.status_code == 409


@pytest.mark.asyncio
async def test_register_duplicate_email(client):
    """Can't register with the same email twice."""
    email = f"dup-{uuid.uuid4().hex[:8]}@example.com"
    body = {"email": email, "name": "User 1", "password": "password_123"}

    r1 = await client.post("/api/v1/auth/register", json=body)
    assert r1.status_code == 201

    r2 = await client.post("/api/v1/auth/register", json=body)
    assert r2.status_code == 409


@pytest.mark.asyncio
async def test_register_short_password(client):
    """Password must be at least 8 characters."""
    _, r = await _register(client, password="abc")
    assert r.status_code == 400  # validation error


@pytest.mark.asyncio
async def test_register_admin_role_rejected(client):
    """Admins are not self-service."""
    _, r = await _register(client, role="admin")
    assert r.status_code == 400


@pytest.mark.asyncio
async def test_register_lost_race_is_conflict(client, monkeypatch):
    """Two signups for one email that both pass the lookup: the loser gets 409."""

    async def _not_found(self, email):
        return None

    monkeypatch.setattr(UserService, "get_by_email", _not_found)
    email = f"race-{uuid.uuid4().hex[:8]}@example.com"
    body = {"email": email, "name": "Racer", "password": "password_123"}

    r1 = await client.post("/api/v1/auth/register", json=body)
    assert r1.status_code == 201

    r2 = await client.post("/api/v1/auth/register", json=body)
    assert r2.status_code == 409


@pytest.mark.asyncio
async def test_service_rejects_unknown_role(db_session):
    with pytest.raises(ValidationError):
        await UserService(db_session).register(
            email="ghost@example.com", name="Ghost", password="password_123", role="superuser"
        )


# ═══════════════════════════════════════════════════════════
# Login
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_login_success(client):
    """Login with valid credentials returns tokens with the role claim."""
    email, _ = await _register(client, role="helper", password="my_password_123")

    r = await client.post(
        "/api/v1/auth/login",
        json={"email": email, "password": "my_password_123"},
    )
    assert r.status_code == 200
    tokens = r.json()
    assert tokens["token_type"] == "bearer"
    payload = verify_token(tokens["access_token"])
    assert payload["role"] == "helper"
    assert "refresh_token" in tokens


@pytest.mark.asyncio
async def test_login_wrong_password(client):
    """Login with wrong password returns 401."""
    email, _ = await _register(client, password="correct_password")

    r = await client.post(
        "/api/v1/auth/login",
        json={"email": email, "password": "wrong_password"},
    )
    assert r.status_code == 401


@pytest.mark.asyncio
async def test_login_nonexistent_user(client):
    """Login with nonexistent email returns 401."""
    r = await client.post(
        "/api/v1/auth/login",
        json={"email": "nobody@example.com", "password": "whatever"},
    )
    assert r.status_code == 401


# ═══════════════════════════════════════════════════════════
# Token Refresh
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_refresh_token(client):
    """Refresh token returns new access + refresh tokens."""
    email, _ = await _register(client)
    r = await client.post(
        "/api/v1/auth/login",
        json={"email": email, "password": "password_123"},
    )
    refresh = r.json()["refresh_token"]

    r = await client.post("/api/v1/auth/refresh", json={"refresh_token": refresh})
    assert r.status_code == 200
    assert "access_token" in r.json()
    assert "refresh_token" in r.json()


@pytest.mark.asyncio
async def test_refresh_with_access_token_fails(client):
    """Can't use access token as refresh token."""
    email, _ = await _register(client)
    r = await client.post(
        "/api/v1/auth/login",
        json={"email": email, "password": "password_123"},
    )
    access = r.json()["access_token"]

    r = await client.post("/api/v1/auth/refresh", json={"refresh_token": access})
    assert r.status_code == 401


# ═══════════════════════════════════════════════════════════
# Protected Endpoint (/me)
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_me_with_token(client, receiver, headers_for):
    """Access /me with a valid JWT."""
    r = await client.get("/api/v1/auth/me", headers=headers_for(receiver))
    assert r.status_code == 200
    assert r.json()["id"] == str(receiver.id)
    assert r.json()["role"] == "receiver"


@pytest.mark.asyncio
async def test_me_without_token(client):
    r = await client.get("/api/v1/auth/me")
    assert r.status_code == 401


@pytest.mark.asyncio
async def test_me_with_garbage_token(client):
    r = await client.get(
        "/api/v1/auth/me", headers={"Authorization": "Bearer not-a-jwt"}
    )
    assert r.status_code == 401


# ═══════════════════════════════════════════════════════════
# Helper directory
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_list_helpers_only_returns_helpers(client, receiver, helper, stranger):
    r = await client.get("/api/v1/users/helpers")
    assert r.status_code == 200
    ids = {h["id"] for h in r.json()}
    assert ids == {str(helper.id), str(stranger.id)}
    assert all("email" not in h for h in r.json())


@pytest.mark.asyncio
async def test_list_helpers_by_city(client, make_user):
    porto = await make_user("helper", name="Paula", city="Porto")
    await make_user("helper", name="Bernd", city="Berlin")

    r = await client.get("/api/v1/users/helpers", params={"city": "Porto"})
    assert r.status_code == 200
    assert [h["id"] for h in r.json()] == [str(porto.id)]
