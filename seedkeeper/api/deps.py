"""
seedkeeper.api.deps — FastAPI dependency injection
===================================================
"""

from __future__ import annotations

import os
import secrets
from functools import lru_cache
from typing import Annotated

import jwt
from fastapi import Header, HTTPException, status
from jwt.exceptions import InvalidTokenError
from sqlalchemy import Engine

from seedkeeper.config import SeedkeeperConfig, load_config
from seedkeeper.database.engine import create_db_engine
from seedkeeper.services.notify_service import Notifier, build_notifier
from seedkeeper.services.whitelist_service import WhitelistService, build_whitelist_service

_WEAK_SECRETS = frozenset({
    "seedkeeper-dev-secret-change-me",
    "change-me",
    "secret",
    "dev",
    "",
})

_MIN_SECRET_LENGTH = 32

JWT_ALGORITHM = "HS256"


def _load_jwt_secret() -> str:
    """Load and validate JWT_SECRET from the environment.

    Raises RuntimeError at import time if the secret is missing, blank,
    too short (< 32 chars), or a known weak default.
    """
    secret = os.getenv("JWT_SECRET", "")
    if not secret:
        raise RuntimeError(
            "JWT_SECRET environment variable is not set. "
            "Generate one with: python -c \"import secrets; print(secrets.token_urlsafe(64))\""
        )
    if secret in _WEAK_SECRETS:
        raise RuntimeError(
            f"JWT_SECRET is set to a known weak default ('{secret}'). "
            "Please set a strong, unique secret."
        )
    if len(secret) < _MIN_SECRET_LENGTH:
        raise RuntimeError(
            f"JWT_SECRET is too short ({len(secret)} chars). "
            f"Minimum length is {_MIN_SECRET_LENGTH} characters."
        )
    return secret


JWT_SECRET: str = _load_jwt_secret()


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_db_engine()


@lru_cache(maxsize=1)
def get_config() -> SeedkeeperConfig:
    return load_config()


@lru_cache(maxsize=1)
def get_whitelist_service() -> WhitelistService:
    return build_whitelist_service(get_config())


@lru_cache(maxsize=1)
def get_notifier() -> Notifier:
    return build_notifier(get_config())


def get_current_admin(
    authorization: Annotated[str | None, Header()] = None,
) -> dict:
    """Validate JWT and return admin user payload. Raises 401 if invalid."""
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Missing token")
    token = authorization.split(" ", 1)[1]
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except InvalidTokenError:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token")
    if not payload.get("is_admin"):
        raise HTTPException(status.HTTP_403_FORBIDDEN, "Not admin")
    return payload


def require_feed_token(
    x_feed_token: Annotated[str | None, Header()] = None,
) -> None:
    """Authenticate the presence feed by its shared ``X-Feed-Token``.

    503 when ``PRESENCE_FEED_TOKEN`` is not configured, so a missing env var
    never leaves the endpoint open.
    """
    expected = os.getenv("PRESENCE_FEED_TOKEN", "")
    if not expected:
        raise HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, "Presence feed disabled")
    if not x_feed_token or not secrets.compare_digest(x_feed_token, expected):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid feed token")
