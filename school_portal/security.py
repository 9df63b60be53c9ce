from datetime import datetime, timedelta, timezone
from typing import Any

import bcrypt
import jwt


class CredentialError(Exception):
    pass


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed stored hash.
        return False


class TokenVerifier:
    """Signs and verifies HS256 bearer tokens carrying ``sub``, ``role`` and ``name``."""

    def __init__(self, secret: str, algorithm: str = "HS256", exp_minutes: int = 720):
        self.secret = secret
        self.algorithm = algorithm
        self.exp_minutes = exp_minutes

    def create_access_token(
        self,
        subject: str,
        role: str,
        name: str = "",
        expires_minutes: int | None = None,
    ) -> str:
        exp_minutes = self.exp_minutes if expires_minutes is None else expires_minutes
        now = datetime.now(timezone.utc)
        payload: dict[str, Any] = {
            "sub": subject,
            "role": role,
            "name": name,
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(minutes=exp_minutes)).timestamp()),
        }
        return jwt.encode(payload, self.secret, algorithm=self.algorithm)

    def verify(self, token: str) -> dict[str, Any]:
        try:
            payload = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                options={"require": ["exp", "sub"]},
            )
        except jwt.ExpiredSignatureError as exc:
            raise CredentialError("Token expired") from exc
        except jwt.InvalidTokenError as exc:
            raise CredentialError("Invalid token") from exc
        if "role" not in payload:
            raise CredentialError("Invalid token payload")
        return payload
