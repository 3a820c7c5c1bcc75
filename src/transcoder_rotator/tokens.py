"""Signed tokens shared between the rotator, worker agents and callers.

Every mutating request in either direction carries a body of the form
``{"jwt": "<token>"}`` where the token is an HS256 JWT signed with the shared
service key.
"""

from __future__ import annotations

import time
from typing import Any

import jwt

DEFAULT_ALGORITHM = "HS256"


class AuthorizationError(Exception):
    """Raised when a signed token is missing, malformed or fails verification."""


class TokenCodec:
    def __init__(self, service_key: str, algorithm: str = DEFAULT_ALGORITHM):
        if not service_key:
            raise ValueError("service_key must not be empty")
        self._service_key = service_key
        self.algorithm = algorithm

    def sign(self, claims: dict[str, Any] | None = None) -> str:
        payload = dict(claims or {})
        payload.setdefault("iat", int(time.time()))
        return jwt.encode(payload, self._service_key, algorithm=self.algorithm)

    def verify(self, token: str | None) -> dict[str, Any]:
        if not isinstance(token, str) or not token:
            raise AuthorizationError("missing token")
        try:
            return jwt.decode(token, self._service_key, algorithms=[self.algorithm])
        except jwt.PyJWTError as exc:
            raise AuthorizationError(str(exc)) from exc

    def wrap(self, claims: dict[str, Any] | None = None) -> dict[str, str]:
        """Build the ``{"jwt": ...}`` request body for ``claims``."""
        return {"jwt": self.sign(claims)}

    def unwrap(self, body: Any) -> dict[str, Any]:
        """Verify a ``{"jwt": ...}`` request body and return its claims."""
        if not isinstance(body, dict):
            raise AuthorizationError("request body must be a JSON object")
        return self.verify(body.get("jwt"))
