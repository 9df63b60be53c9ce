"""
Identity resolution: bearer credential in, ``Principal`` out.

The resolver performs no I/O beyond the verifier call and keeps no state, so a
single instance can serve concurrent requests.
"""

import enum
import logging
from typing import Any, Protocol

from .domain import Principal, normalize_role
from .security import CredentialError

logger = logging.getLogger(__name__)


class AuthErrorKind(str, enum.Enum):
    MISSING = "missing"
    INVALID = "invalid"


class AuthError(Exception):
    def __init__(self, kind: AuthErrorKind, detail: str = ""):
        super().__init__(detail or kind.value)
        self.kind = kind
        self.detail = detail or kind.value


class CredentialVerifier(Protocol):
    def verify(self, token: str) -> dict[str, Any]: ...


def extract_bearer(authorization: str | None) -> str:
    if authorization is None or not authorization.strip():
        raise AuthError(AuthErrorKind.MISSING, "No token")
    parts = authorization.strip().split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer" or not parts[1].strip():
        raise AuthError(AuthErrorKind.INVALID, "Invalid auth scheme")
    return parts[1].strip()


class IdentityResolver:
    def __init__(self, verifier: CredentialVerifier):
        self.verifier = verifier

    def resolve(self, authorization: str | None) -> Principal:
        token = extract_bearer(authorization)
        try:
            claims = self.verifier.verify(token)
        except CredentialError as exc:
            logger.info(f"Rejected bearer token: {exc}")
            raise AuthError(AuthErrorKind.INVALID, str(exc)) from exc
        return principal_from_claims(claims)


def principal_from_claims(claims: dict[str, Any]) -> Principal:
    try:
        principal_id = int(claims["sub"])
    except (KeyError, TypeError, ValueError) as exc:
        raise AuthError(AuthErrorKind.INVALID, "Invalid token payload") from exc
    role = claims.get("role")
    if not isinstance(role, str) or not role:
        raise AuthError(AuthErrorKind.INVALID, "Invalid token payload")
    name = claims.get("name")
    return Principal(
        id=principal_id,
        role=normalize_role(role),
        display_name=name if isinstance(name, str) else "",
    )
