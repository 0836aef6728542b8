# app/core/identity.py
"""
External identity providers.

Each provider turns an opaque credential (a Google ID token, a GitHub OAuth
code) into an ExternalIdentity carrying at least an email. Validation is
delegated to the provider's own endpoints.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import httpx

from app.core.config import settings
from app.core.constants import IdentityProviderName
from app.core.exceptions import AuthError, InputError, ServiceError, UpstreamError
from app.core.logging import logger


@dataclass
class ExternalIdentity:
    provider: str
    subject_id: str
    email: str
    name: Optional[str] = None
    avatar_url: Optional[str] = None


class IdentityProvider(ABC):
    """Abstract base class for external identity providers"""

    name: str

    def __init__(self, http_client: Optional[httpx.AsyncClient] = None, timeout: float = 10.0):
        self._http_client = http_client
        self.timeout = timeout

    @abstractmethod
    async def resolve(self, credential: str) -> ExternalIdentity:
        """Resolve a provider credential into an identity"""
        pass

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            if self._http_client is not None:
                return await self._http_client.request(method, url, **kwargs)
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                return await client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"{self.name} request to {url} failed: {e.__class__.__name__}")
            raise UpstreamError()

    def _json(self, response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            logger.error(f"{self.name} returned a non-JSON body (status {response.status_code})")
            raise UpstreamError()


class GoogleIdentityProvider(IdentityProvider):
    """Google ID tokens, validated through the tokeninfo endpoint"""

    name = IdentityProviderName.GOOGLE.value

    def __init__(
        self,
        tokeninfo_url: str,
        client_id: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ):
        super().__init__(http_client, timeout)
        self.tokeninfo_url = tokeninfo_url
        self.client_id = client_id

    async def resolve(self, credential: str) -> ExternalIdentity:
        if not credential:
            raise AuthError("Invalid ID Token")

        response = await self._request("GET", self.tokeninfo_url, params={"id_token": credential})
        if response.status_code != 200:
            logger.warning(f"Google rejected ID token (status {response.status_code})")
            raise AuthError("Invalid ID Token")

        payload = self._json(response)
        if not isinstance(payload, dict) or not payload.get("email"):
            raise AuthError("Invalid ID Token")

        if self.client_id and payload.get("aud") != self.client_id:
            logger.warning("Google ID token issued for a different client")
            raise AuthError("Invalid ID Token")

        # tokeninfo reports the flag as the string "true"
        if str(payload.get("email_verified")).lower() != "true":
            logger.warning("Google ID token carries an unverified email")
            raise AuthError("Invalid ID Token")

        return ExternalIdentity(
            provider=self.name,
            subject_id=str(payload.get("sub") or ""),
            email=payload["email"],
            name=payload.get("name"),
            avatar_url=payload.get("picture"),
        )


class GitHubOAuthProvider(IdentityProvider):
    """GitHub OAuth web flow: authorization code exchange plus profile lookup"""

    name = IdentityProviderName.GITHUB.value

    def __init__(
        self,
        client_id: Optional[str],
        client_secret: Optional[str],
        authorize_url: str = "https://github.com/login/oauth/authorize",
        token_url: str = "https://github.com/login/oauth/access_token",
        api_url: str = "https://api.github.com",
        scope: str = "user:email read:user",
        user_agent: str = "Topoo-Gateway",
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ):
        super().__init__(http_client, timeout)
        self.client_id = client_id
        self.client_secret = client_secret
        self.authorize_url = authorize_url
        self.token_url = token_url
        self.api_url = api_url.rstrip("/")
        self.scope = scope
        self.user_agent = user_agent

    def authorization_url(self) -> str:
        if not self.client_id:
            raise ServiceError("GitHub OAuth is not configured", error="OAUTH_NOT_CONFIGURED")
        params = urlencode({"client_id": self.client_id, "scope": self.scope})
        return f"{self.authorize_url}?{params}"

    async def resolve(self, credential: str) -> ExternalIdentity:
        if not credential:
            raise InputError("Missing code")

        access_token = await self._exchange_code(credential)
        headers = {
            "Authorization": f"Bearer {access_token}",
            "User-Agent": self.user_agent,
            "Accept": "application/vnd.github+json",
        }

        profile_response = await self._request("GET", f"{self.api_url}/user", headers=headers)
        profile = self._json(profile_response)
        if profile_response.status_code != 200 or not isinstance(profile, dict):
            logger.error(f"GitHub profile lookup failed (status {profile_response.status_code})")
            raise UpstreamError()

        email = profile.get("email")
        if not email:
            emails_response = await self._request("GET", f"{self.api_url}/user/emails", headers=headers)
            emails = self._json(emails_response)
            if emails_response.status_code != 200:
                logger.error(f"GitHub email lookup failed (status {emails_response.status_code})")
                raise UpstreamError()
            email = select_primary_email(emails if isinstance(emails, list) else [])

        if not email:
            raise InputError("Email not found")

        return ExternalIdentity(
            provider=self.name,
            subject_id=str(profile.get("id") or ""),
            email=email,
            name=profile.get("name") or profile.get("login"),
            avatar_url=profile.get("avatar_url"),
        )

    async def _exchange_code(self, code: str) -> str:
        response = await self._request(
            "POST",
            self.token_url,
            json={
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "code": code,
            },
            headers={"Accept": "application/json"},
        )
        data = self._json(response)
        if not isinstance(data, dict):
            raise UpstreamError()
        if data.get("error"):
            logger.warning(f"GitHub code exchange failed: {data.get('error')}")
            raise UpstreamError()
        if not data.get("access_token"):
            raise UpstreamError()
        return data["access_token"]


def select_primary_email(emails: List[Dict[str, Any]]) -> Optional[str]:
    """Primary and verified entry first, otherwise the first listed email"""
    for entry in emails:
        if entry.get("primary") and entry.get("verified") and entry.get("email"):
            return entry["email"]
    if emails:
        return emails[0].get("email")
    return None


def build_google_provider() -> GoogleIdentityProvider:
    return GoogleIdentityProvider(
        tokeninfo_url=settings.GOOGLE_TOKENINFO_URL,
        client_id=settings.GOOGLE_CLIENT_ID,
        timeout=settings.IDENTITY_PROVIDER_TIMEOUT_SECONDS,
    )


def build_github_provider() -> GitHubOAuthProvider:
    return GitHubOAuthProvider(
        client_id=settings.GITHUB_CLIENT_ID,
        client_secret=settings.GITHUB_CLIENT_SECRET,
        authorize_url=settings.GITHUB_AUTHORIZE_URL,
        token_url=settings.GITHUB_TOKEN_URL,
        api_url=settings.GITHUB_API_URL,
        scope=settings.GITHUB_OAUTH_SCOPE,
        user_agent=settings.OAUTH_USER_AGENT,
        timeout=settings.IDENTITY_PROVIDER_TIMEOUT_SECONDS,
    )
