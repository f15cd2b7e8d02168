# app/security.py
"""Bearer-token identity for the HTTP surface and the presence relay.

Tokens are issued elsewhere (the login service); the core only verifies them
and trusts the ``id`` / ``role`` claims they carry.
"""
import logging
import os
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

import jwt
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .errors import AuthenticationError
from .models import Role
from .utils import utcnow

logger = logging.getLogger(__name__)

JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret")
JWT_ALGORITHM = "HS256"

# HTTPBearer scheme so Swagger-UI can attach the Authorization header globally
auth_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Identity:
    user_id: str
    role: Optional[Role] = None


def issue_token(user_id: str, role: Optional[Role] = None, expires_in: int = 3600) -> str:
    """Sign a token the way the login service does; used by seeds and tests."""
    claims = {"id": user_id, "exp": utcnow() + timedelta(seconds=expires_in)}
    if role is not None:
        claims["role"] = role.value
    return jwt.encode(claims, JWT_SECRET, algorithm=JWT_ALGORITHM)


def verify_token(token: Optional[str]) -> Identity:
    if not token:
        raise AuthenticationError("Unauthorized")
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Token expired")
    except jwt.InvalidTokenError:
        raise AuthenticationError("Invalid token")

    user_id = payload.get("id")
    if not user_id:
        raise AuthenticationError("Invalid token")
    role = None
    if payload.get("role"):
        try:
            role = Role(payload["role"])
        except ValueError:
            logger.warning("Token for user %s carries unknown role %r", user_id, payload["role"])
    return Identity(user_id=str(user_id), role=role)


def current_identity(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(auth_scheme),
) -> Identity:
    """Resolve the caller from the Authorization header, falling back to the token cookie."""
    token = None
    if credentials is not None and credentials.scheme.lower() == "bearer":
        token = credentials.credentials
    if token is None:
        token = request.cookies.get("token")
    return verify_token(token)
