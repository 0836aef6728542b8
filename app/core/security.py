# app/core/security.py
"""
Password hashing and session tokens.

Passwords: PBKDF2-HMAC-SHA256, 32 byte key, hex encoded. The salt is a hex
string and is fed to the KDF as its UTF-8 bytes.

Session tokens: compact HS256 JWTs carrying user_id/email, valid for a
fixed number of days and verified by recomputing the signature.
"""
import hmac
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, Optional

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from jose import ExpiredSignatureError, JWTError, jwt

from app.core.exceptions import AuthError

MIN_PASSWORD_HASH_ITERATIONS = 100000
PASSWORD_HASH_LENGTH = 32
SALT_BYTES = 16


def generate_salt() -> str:
    return secrets.token_hex(SALT_BYTES)


def hash_password(password: str, salt: str, iterations: int = MIN_PASSWORD_HASH_ITERATIONS) -> str:
    """Derive the stored hash for a password"""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=PASSWORD_HASH_LENGTH,
        salt=salt.encode(),
        iterations=max(iterations, MIN_PASSWORD_HASH_ITERATIONS),
    )
    return kdf.derive(password.encode()).hex()


def verify_password(
    password: str,
    salt: str,
    stored_hash: str,
    iterations: int = MIN_PASSWORD_HASH_ITERATIONS,
) -> bool:
    candidate = hash_password(password, salt, iterations)
    return hmac.compare_digest(candidate, stored_hash.lower())


@dataclass
class SessionPayload:
    user_id: str
    email: str
    issued_at: datetime
    expires_at: datetime

    @classmethod
    def from_claims(cls, claims: Dict[str, Any]) -> "SessionPayload":
        user_id = claims.get("user_id") or claims.get("sub")
        email = claims.get("email")
        if not user_id or not email or "iat" not in claims or "exp" not in claims:
            raise AuthError("Invalid token")
        return cls(
            user_id=str(user_id),
            email=email,
            issued_at=datetime.fromtimestamp(int(claims["iat"]), tz=timezone.utc),
            expires_at=datetime.fromtimestamp(int(claims["exp"]), tz=timezone.utc),
        )


class SessionTokenService:
    """Issues and verifies signed session tokens"""

    def __init__(
        self,
        secret: str,
        previous_secrets: Iterable[str] = (),
        expire_days: int = 30,
        algorithm: str = "HS256",
    ):
        if not secret:
            raise ValueError("Session token secret must not be empty")
        self.secret = secret
        self.previous_secrets = [s for s in previous_secrets if s and s != secret]
        self.expire_days = expire_days
        self.algorithm = algorithm

    def issue(self, user_id: str, email: str, issued_at: Optional[datetime] = None) -> str:
        """Sign a new token for the user"""
        issued_at = issued_at or datetime.now(timezone.utc)
        iat = int(issued_at.timestamp())
        claims = {
            "user_id": str(user_id),
            "email": email,
            "sub": str(user_id),
            "iat": iat,
            "exp": iat + int(timedelta(days=self.expire_days).total_seconds()),
        }
        return jwt.encode(claims, self.secret, algorithm=self.algorithm)

    def verify(self, token: str) -> SessionPayload:
        """
        Check the signature against the current key, then any retired keys.

        Raises:
            AuthError: malformed, tampered or expired token
        """
        if not token:
            raise AuthError("Invalid token")

        for key in [self.secret, *self.previous_secrets]:
            try:
                claims = jwt.decode(token, key, algorithms=[self.algorithm])
            except ExpiredSignatureError:
                raise AuthError("Token expired")
            except JWTError:
                continue
            return SessionPayload.from_claims(claims)

        raise AuthError("Invalid token")
