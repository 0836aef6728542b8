# app/api/dependencies.py
from functools import lru_cache
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import AuthError
from app.core.identity import (
    GitHubOAuthProvider,
    GoogleIdentityProvider,
    build_github_provider,
    build_google_provider,
)
from app.core.security import SessionPayload, SessionTokenService
from app.db.database import get_db
from app.services.quota_service import QuotaService
from app.services.registration_service import RegistrationService

security = HTTPBearer(auto_error=False)


@lru_cache()
def get_token_service() -> SessionTokenService:
    return SessionTokenService(
        secret=settings.JWT_SECRET_KEY,
        previous_secrets=settings.previous_secret_keys,
        expire_days=settings.SESSION_TOKEN_EXPIRE_DAYS,
        algorithm=settings.JWT_ALGORITHM,
    )


def get_google_provider() -> GoogleIdentityProvider:
    return build_google_provider()


def get_github_provider() -> GitHubOAuthProvider:
    return build_github_provider()


def get_registration_service(
    db: AsyncSession = Depends(get_db),
    token_service: SessionTokenService = Depends(get_token_service),
    google_provider: GoogleIdentityProvider = Depends(get_google_provider),
) -> RegistrationService:
    return RegistrationService(db, token_service, google_provider=google_provider)


def get_quota_service(db: AsyncSession = Depends(get_db)) -> QuotaService:
    return QuotaService(db)


def get_bearer_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> str:
    if not credentials or not credentials.credentials:
        raise AuthError("Unauthorized")
    return credentials.credentials


def get_session_payload(
    token: str = Depends(get_bearer_token),
    token_service: SessionTokenService = Depends(get_token_service),
) -> SessionPayload:
    """Verified token payload; the signature is the only check"""
    return token_service.verify(token)
