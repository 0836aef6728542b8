# app/api/v1/auth.py
from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends
from fastapi.responses import HTMLResponse, RedirectResponse
from jinja2 import Template

from app.api.dependencies import (
    get_bearer_token,
    get_github_provider,
    get_registration_service,
)
from app.core.config import settings
from app.core.exceptions import InputError
from app.core.identity import GitHubOAuthProvider
from app.schemas.auth import (
    AccessRequestCreate,
    AccessRequestResponse,
    AuthResponse,
    LoginRequest,
    LogoutResponse,
    RegisterRequest,
    VerifyResponse,
)
from app.schemas.user import UserOut
from app.services.registration_service import AuthResult, RegistrationService

router = APIRouter()

OAUTH_BRIDGE_TEMPLATE = Template("""<!DOCTYPE html>
<html>
<body>
    <script>
        var token = {{ token|tojson }};
        if (window.opener) {
            window.opener.postMessage({ type: 'GITHUB_AUTH_SUCCESS', token: token, user: {{ user|tojson }} }, '*');
            window.close();
        } else {
            window.location.href = '/?token=' + encodeURIComponent(token);
        }
    </script>
    <p>Authentication successful. You can close this window.</p>
</body>
</html>
""")


def _auth_response(result: AuthResult, with_plan: bool = False) -> AuthResponse:
    user = UserOut.model_validate(result.user)
    if with_plan:
        user.plan = result.plan
    return AuthResponse(token=result.token, user=user)


@router.post("/register", response_model=AuthResponse, response_model_exclude_none=True)
async def register(
    request: RegisterRequest,
    service: RegistrationService = Depends(get_registration_service),
):
    """Register with a Google ID token or email/password; new accounts need an invite"""
    result = await service.register(
        id_token=request.id_token,
        email=request.email,
        password=request.password,
        invite_code=request.invite_code,
    )
    return _auth_response(result, with_plan=True)


@router.post("/login", response_model=AuthResponse, response_model_exclude_none=True)
async def login(
    request: LoginRequest,
    service: RegistrationService = Depends(get_registration_service),
):
    """Login with email and password"""
    result = await service.login(request.email, request.password)
    return _auth_response(result)


@router.post("/verify", response_model=VerifyResponse, response_model_exclude_none=True)
async def verify(
    token: str = Depends(get_bearer_token),
    service: RegistrationService = Depends(get_registration_service),
):
    """Resolve a session token to its user"""
    user = await service.verify(token)
    return VerifyResponse(user=UserOut.model_validate(user))


@router.post("/logout", response_model=LogoutResponse)
async def logout():
    """Logout user (client should discard the token)"""
    return LogoutResponse()


@router.get("/github")
async def github_login(provider: GitHubOAuthProvider = Depends(get_github_provider)):
    """Send the browser to GitHub's consent page"""
    return RedirectResponse(provider.authorization_url(), status_code=302)


@router.get("/github/callback")
async def github_callback(
    code: Optional[str] = None,
    provider: GitHubOAuthProvider = Depends(get_github_provider),
    service: RegistrationService = Depends(get_registration_service),
):
    """Finish the GitHub flow and hand the session token back to the app"""
    if not code:
        raise InputError("Missing code")

    identity = await provider.resolve(code)
    result = await service.oauth_sign_in(identity)

    if settings.OAUTH_SUCCESS_REDIRECT_URL:
        separator = "&" if "?" in settings.OAUTH_SUCCESS_REDIRECT_URL else "?"
        target = f"{settings.OAUTH_SUCCESS_REDIRECT_URL}{separator}{urlencode({'token': result.token})}"
        return RedirectResponse(target, status_code=302)

    user = UserOut.model_validate(result.user).model_dump(exclude_none=True)
    html = OAUTH_BRIDGE_TEMPLATE.render(token=result.token, user=user)
    return HTMLResponse(content=html)


@router.post("/access-request", response_model=AccessRequestResponse)
async def access_request(
    request: AccessRequestCreate,
    service: RegistrationService = Depends(get_registration_service),
):
    """Apply for beta access without an invite code"""
    await service.submit_access_request(request.email, request.reason)
    return AccessRequestResponse()
