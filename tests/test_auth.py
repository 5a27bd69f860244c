"""
JWT authentication and role checks.
"""
from datetime import timedelta

import pytest

from leadflow.config import settings
from leadflow.dependencies.auth import Role
from leadflow.services.jwt_service import JWTService


@pytest.mark.parametrize("raw, expected", [
    ("admin", "Admin"),
    (" Agent ", "Agent"),
    ("read-only", "ReadOnly"),
    ("read_only", "ReadOnly"),
    ("READONLY", "ReadOnly"),
    ("", "ReadOnly"),
    (None, "ReadOnly"),
    ("Auditor", "Auditor"),
])
def test_role_normalization(raw, expected):
    assert Role.normalize(raw) == expected


def test_token_round_trip_carries_claims():
    service = JWTService()
    payload = service.verify_token(service.create_token("user-7", "agent@example.com", "Agent"))

    assert payload["sub"] == "user-7"
    assert payload["email"] == "agent@example.com"
    assert payload["role"] == "Agent"
    assert payload["iss"] == settings.JWT_ISSUER


def test_expired_token_is_rejected():
    service = JWTService()
    token = service.create_token("user-7", "agent@example.com", "Agent", expires_in=timedelta(seconds=-5))

    assert service.verify_token(token) is None


async def test_invalid_token_is_401(api):
    response = await api.get("/api/settings", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401


async def test_token_from_cookie_is_accepted(api):
    token = JWTService().create_token("user-1", "viewer@example.com", "read-only")
    api.cookies.set(settings.AUTH_COOKIE_NAME, token)

    response = await api.get("/api/settings")

    assert response.status_code == 200
