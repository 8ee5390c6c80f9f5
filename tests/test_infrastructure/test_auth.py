"""Tests for the JWT authorizer."""

from __future__ import annotations

import uuid
from datetime import timedelta

import pytest
from jose import jwt

from visa_escrow.domain.enums import Role
from visa_escrow.domain.exceptions import NotAuthenticatedError
from visa_escrow.infrastructure.auth import JwtAuthorizer

SECRET = "unit-test-secret"
USER = uuid.UUID("22222222-2222-4222-8222-222222222222")


class TestJwtAuthorizer:
    def test_issue_and_resolve(self) -> None:
        authorizer = JwtAuthorizer(SECRET)
        actor = authorizer.resolve(authorizer.issue(USER, Role.AGENT))
        assert actor.actor_id == USER
        assert actor.role == Role.AGENT

    def test_wrong_secret(self) -> None:
        token = JwtAuthorizer("another-secret").issue(USER, Role.CLIENT)
        with pytest.raises(NotAuthenticatedError):
            JwtAuthorizer(SECRET).resolve(token)

    def test_expired_token(self) -> None:
        authorizer = JwtAuthorizer(SECRET)
        token = authorizer.issue(USER, Role.CLIENT, expires_in=timedelta(seconds=-30))
        with pytest.raises(NotAuthenticatedError):
            authorizer.resolve(token)

    def test_missing_role_claim(self) -> None:
        token = jwt.encode({"sub": str(USER)}, SECRET, algorithm="HS256")
        with pytest.raises(NotAuthenticatedError) as exc_info:
            JwtAuthorizer(SECRET).resolve(token)
        assert exc_info.value.code == "NOT_AUTHENTICATED"

    def test_unknown_role(self) -> None:
        token = jwt.encode({"sub": str(USER), "role": "superuser"}, SECRET, algorithm="HS256")
        with pytest.raises(NotAuthenticatedError):
            JwtAuthorizer(SECRET).resolve(token)

    def test_malformed_subject(self) -> None:
        token = jwt.encode({"sub": "not-a-uuid", "role": "client"}, SECRET, algorithm="HS256")
        with pytest.raises(NotAuthenticatedError):
            JwtAuthorizer(SECRET).resolve(token)
