"""
Pytest configuration and fixtures
Shared test setup for all test modules
"""

import os

os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./topoo-test.db")

import pytest
from typing import AsyncGenerator, Callable, Dict, Optional
import httpx
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import NullPool

from app.main import app
from app.api.dependencies import get_github_provider, get_google_provider, get_token_service
from app.core.exceptions import AuthError
from app.core.identity import ExternalIdentity, GitHubOAuthProvider, IdentityProvider
from app.core.security import SessionTokenService
from app.db.database import init_db
from app.db.seed import seed_invite_codes
from app.db.session import get_db

TEST_SECRET = "test-secret-key"
INVITE_CODES = ["TOPOO-2024-TEST-01", "TOPOO-2024-TEST-02", "TOPOO-VIP-8888"]


class FakeGoogleProvider(IdentityProvider):
    """Resolves ID tokens from a fixed table instead of calling Google"""

    name = "google"

    def __init__(self, identities: Optional[Dict[str, ExternalIdentity]] = None):
        super().__init__()
        self.identities = identities or {}

    async def resolve(self, credential: str) -> ExternalIdentity:
        if credential not in self.identities:
            raise AuthError("Invalid ID Token")
        return self.identities[credential]


def github_transport(
    profile: Dict,
    emails: Optional[list] = None,
    token_response: Optional[Dict] = None,
) -> httpx.MockTransport:
    """Fake GitHub: code exchange, /user and /user/emails"""

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/login/oauth/access_token":
            return httpx.Response(200, json=token_response or {"access_token": "gho_test", "token_type": "bearer"})
        if request.url.path == "/user":
            return httpx.Response(200, json=profile)
        if request.url.path == "/user/emails":
            return httpx.Response(200, json=emails or [])
        return httpx.Response(404, json={"message": "Not Found"})

    return httpx.MockTransport(handler)


@pytest.fixture
async def test_engine(tmp_path):
    """Fresh SQLite database file per test, with products and invite codes seeded"""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        poolclass=NullPool,
    )
    await init_db(bind=engine)

    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        await seed_invite_codes(session, INVITE_CODES)

    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker:
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def token_service() -> SessionTokenService:
    return SessionTokenService(TEST_SECRET)


@pytest.fixture
def google_provider() -> FakeGoogleProvider:
    return FakeGoogleProvider()


@pytest.fixture
def github_profile() -> Dict:
    return {
        "id": 4242,
        "login": "octocat",
        "name": "The Octocat",
        "email": "octocat@github.test",
        "avatar_url": "https://avatars.github.test/u/4242",
    }


@pytest.fixture
def github_provider(github_profile) -> GitHubOAuthProvider:
    return GitHubOAuthProvider(
        client_id="gh-client-id",
        client_secret="gh-client-secret",
        http_client=AsyncClient(transport=github_transport(github_profile)),
    )


@pytest.fixture
async def client(session_factory, token_service, google_provider, github_provider) -> AsyncGenerator[AsyncClient, None]:
    """Test client with database and provider overrides"""

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_token_service] = lambda: token_service
    app.dependency_overrides[get_google_provider] = lambda: google_provider
    app.dependency_overrides[get_github_provider] = lambda: github_provider

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture
def register_user(client) -> Callable:
    """Register through the API and return the JSON body"""

    async def _register(email: str, password: str = "secret1", invite_code: str = "TOPOO-2024-TEST-01") -> Dict:
        response = await client.post("/api/auth/register", json={
            "email": email,
            "password": password,
            "invite_code": invite_code,
        })
        assert response.status_code == 200, response.text
        return response.json()

    return _register


@pytest.fixture
async def auth_headers(register_user) -> Dict[str, str]:
    body = await register_user("a@x.com")
    return {"Authorization": f"Bearer {body['token']}"}


@pytest.fixture
def make_github_transport() -> Callable[..., httpx.MockTransport]:
    return github_transport
