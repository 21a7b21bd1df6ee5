"""
API surface tests: health, bearer auth, error envelope and rate limits.
"""

import time

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from jose import jwt

from onboarding.dependencies.db import get_db
from onboarding.dependencies.identity import get_identity_store
from onboarding.main import app
from onboarding.models.enums import AppRole


def make_token(settings, sub, audience="authenticated", expires_in=3600, secret=None):
    claims = {"sub": str(sub), "aud": audience, "exp": int(time.time()) + expires_in, "email": "user@x.com"}
    return jwt.encode(claims, secret or settings.supabase_jwt_secret, algorithm="HS256")


@pytest_asyncio.fixture
async def bearer_client(session_factory, identity):
    """Client that runs real bearer verification."""

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_identity_store] = lambda: identity
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


class TestHealthEndpoints:
    """Test health and info endpoints."""

    @pytest.mark.asyncio
    async def test_root_endpoint(self, async_client):
        response = await async_client.get("/")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    @pytest.mark.asyncio
    async def test_openapi_lists_routes(self, async_client):
        response = await async_client.get("/openapi.json")
        assert response.status_code == 200
        paths = response.json()["paths"]
        assert "/api/invitations/accept" in paths
        assert "/api/admin/repair-user" in paths
        assert "/api/members/{user_id}/role" in paths


class TestBearerAuth:
    """Supabase access tokens"""

    @pytest.mark.asyncio
    async def test_missing_token(self, bearer_client):
        response = await bearer_client.get("/api/members/me")
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_valid_token(self, bearer_client, seed, settings):
        office = await seed.office()
        profile = await seed.user("ana@x.com", office, AppRole.assistant)

        response = await bearer_client.get(
            "/api/members/me", headers={"Authorization": f"Bearer {make_token(settings, profile.id)}"}
        )

        assert response.status_code == 200
        assert response.json()["id"] == str(profile.id)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "overrides",
        [
            {"audience": "anon"},
            {"expires_in": -60},
            {"secret": "not-the-secret"},
        ],
    )
    async def test_rejected_tokens(self, bearer_client, seed, settings, overrides):
        office = await seed.office()
        profile = await seed.user("ana@x.com", office, AppRole.assistant)

        response = await bearer_client.get(
            "/api/members/me", headers={"Authorization": f"Bearer {make_token(settings, profile.id, **overrides)}"}
        )

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_token_without_profile(self, bearer_client, settings):
        token = make_token(settings, "00000000-0000-0000-0000-0000000000cc")

        response = await bearer_client.get("/api/members/me", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_validate_needs_no_token(self, bearer_client, seed):
        office = await seed.office()
        invitation = await seed.invitation("ana@x.com", office)

        response = await bearer_client.get(f"/api/invitations/validate/{invitation.invite_code}")

        assert response.status_code == 200


class TestErrorEnvelope:
    @pytest.mark.asyncio
    async def test_domain_errors_share_one_shape(self, async_client):
        response = await async_client.get("/api/invitations/validate/unknown")

        assert response.status_code == 404
        assert response.json() == {
            "success": False,
            "code": "invalid_token",
            "message": "Invalid or unknown invitation",
        }


class TestRateLimits:
    @pytest.mark.asyncio
    async def test_accept_is_limited_per_hour(self, async_client, fake_redis):
        body = {"token": "unknown", "full_name": "Ana", "password": "Sup3rSecret!"}

        statuses = [(await async_client.post("/api/invitations/accept", json=body)).status_code for _ in range(6)]

        assert statuses == [404] * 5 + [429]
        limited = await async_client.post("/api/invitations/accept", json=body)
        assert limited.json()["code"] == "rate_limited"
        assert int(limited.headers["Retry-After"]) > 0

    @pytest.mark.asyncio
    async def test_admin_check_runs_before_counting(self, async_client, seed, current_user, fake_redis):
        office = await seed.office()
        seller = await seed.user("seller@agency.com", office, AppRole.salesperson)
        current_user.login(seller)

        response = await async_client.delete(f"/api/members/{seller.id}")

        assert response.status_code == 403
        assert fake_redis.counters == {}

    @pytest.mark.asyncio
    async def test_redis_outage_fails_open(self, async_client, seed, current_user, fake_redis):
        office = await seed.office()
        current_user.login(await seed.admin(office))
        fake_redis.broken = True

        response = await async_client.post(
            "/api/invitations", json={"email": "new@x.com", "role": "assistant", "office_id": str(office.id)}
        )

        assert response.status_code == 201
