# app/services/registration_service.py
"""
Registration and login flows.

Invites gate new accounts only: an email that already has an account never
goes through an invite check, whichever credential it arrives with. New
accounts are written in one transaction (invite consumption, user row,
default license, usage row) so either all of it is visible or none of it.
"""
import asyncio
import functools
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.constants import AccessRequestStatus, DEFAULT_PLAN_TIER
from app.core.exceptions import AccessError, AuthError, InputError, NotFoundError
from app.core.identity import ExternalIdentity, IdentityProvider
from app.core.logging import logger
from app.core.security import SessionTokenService, generate_salt, hash_password, verify_password
from app.db.models.access_request import AccessRequest
from app.db.models.user import GlobalUser
from app.db.repositories.access_request_repository import AccessRequestRepository
from app.db.repositories.invite_repository import InviteRepository
from app.db.repositories.user_repository import UserRepository
from app.services.quota_service import QuotaService

INVALID_CREDENTIALS = "Invalid credentials"

# Used to spend the same KDF time on unknown emails as on real ones
_DUMMY_SALT = "0" * 32
_DUMMY_HASH = "0" * 64


@dataclass
class AuthResult:
    token: str
    user: GlobalUser
    plan: str = DEFAULT_PLAN_TIER.value


async def _run_blocking(func, *args):
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, functools.partial(func, *args))


class RegistrationService:
    """Composes credential checks, the identity store, invites and entitlements"""

    def __init__(
        self,
        session: AsyncSession,
        token_service: SessionTokenService,
        google_provider: Optional[IdentityProvider] = None,
    ):
        self.session = session
        self.token_service = token_service
        self.google_provider = google_provider
        self.users = UserRepository(session)
        self.invites = InviteRepository(session)
        self.quota = QuotaService(session)
        self.iterations = settings.PASSWORD_HASH_ITERATIONS

    async def register(
        self,
        id_token: Optional[str] = None,
        email: Optional[str] = None,
        password: Optional[str] = None,
        invite_code: Optional[str] = None,
    ) -> AuthResult:
        """
        Register with a Google ID token or with email and password.

        Existing accounts are returned (linking a first Google id where the
        token path is used); new accounts need an unused invite code.
        """
        identity: Optional[ExternalIdentity] = None

        if id_token:
            if self.google_provider is None:
                raise AuthError("Invalid ID Token")
            identity = await self.google_provider.resolve(id_token)
            email = identity.email
            nickname = identity.name
            avatar_url = identity.avatar_url
        elif email and password:
            if len(password) < settings.PASSWORD_MIN_LENGTH:
                raise InputError("Password too short")
            nickname = email.split("@")[0]
            avatar_url = None
        else:
            raise InputError("Missing Credentials")

        if not email:
            raise InputError("Email required")

        user = await self.users.get_by_email(email)
        if user is None and identity:
            user = await self._find_linked_account(identity)
        if user is None:
            user = await self._create_with_invite(
                email=email,
                password=None if identity else password,
                identity=identity,
                nickname=nickname,
                avatar_url=avatar_url,
                invite_code=invite_code,
            )
        elif identity:
            user = await self._link_identity(user, identity)
        else:
            await self._check_password(user, password)
            user = await self._ensure_entitlements(user)

        return self._issue(user)

    async def login(self, email: Optional[str], password: Optional[str]) -> AuthResult:
        """Password login; every failure looks the same to the caller"""
        if not email or not password:
            raise InputError("Email and password required")

        user = await self.users.get_by_email(email)
        if user is None or not user.has_password:
            await _run_blocking(verify_password, password, _DUMMY_SALT, _DUMMY_HASH, self.iterations)
            logger.info("Login rejected")
            raise AuthError(INVALID_CREDENTIALS)

        await self._check_password(user, password)
        logger.info("Login succeeded", extra={"user_id": user.id})
        return self._issue(user)

    async def verify(self, token: str) -> GlobalUser:
        payload = self.token_service.verify(token)
        user = await self.users.get(payload.user_id)
        if user is None:
            raise NotFoundError("User not found")
        return user

    async def oauth_sign_in(self, identity: ExternalIdentity) -> AuthResult:
        """
        Sign in through an OAuth provider callback.

        Unknown emails get an account straight away; the provider flow has
        no place to ask for an invite.
        """
        user = await self.users.get_by_email(identity.email)
        if user is None:
            user = await self._find_linked_account(identity)
        if user is None:
            try:
                user = await self._create_account(
                    email=identity.email,
                    external_ids={identity.provider: identity.subject_id},
                    nickname=identity.name,
                    avatar_url=identity.avatar_url,
                )
            except IntegrityError:
                user = await self._existing_after_conflict(identity.email, identity)
                user = await self._link_identity(user, identity)
        else:
            user = await self._link_identity(user, identity)
        return self._issue(user)

    async def submit_access_request(self, email: Optional[str], reason: Optional[str]) -> AccessRequest:
        if not email or not reason:
            raise InputError("Email and reason are required")
        request = await AccessRequestRepository(self.session).create(
            {"email": email, "reason": reason, "status": AccessRequestStatus.PENDING.value},
            commit=True,
        )
        logger.info("Access request submitted")
        return request

    async def _create_with_invite(
        self,
        email: str,
        password: Optional[str],
        identity: Optional[ExternalIdentity],
        nickname: Optional[str],
        avatar_url: Optional[str],
        invite_code: Optional[str],
    ) -> GlobalUser:
        if not invite_code:
            raise AccessError("Invite code is required for registration", error="INVITE_REQUIRED")

        password_hash = salt = None
        if password:
            salt = generate_salt()
            password_hash = await _run_blocking(hash_password, password, salt, self.iterations)

        external_ids: Dict[str, str] = {}
        if identity and identity.subject_id:
            external_ids[identity.provider] = identity.subject_id

        try:
            return await self._create_account(
                email=email,
                password_hash=password_hash,
                salt=salt,
                external_ids=external_ids,
                nickname=nickname,
                avatar_url=avatar_url,
                invite_code=invite_code,
            )
        except IntegrityError:
            # Someone registered the same email between our lookup and insert.
            # The rollback left the invite unused; carry on as an existing user.
            user = await self._existing_after_conflict(email, identity)
            if identity:
                return await self._link_identity(user, identity)
            await self._check_password(user, password)
            return user

    async def _create_account(
        self,
        email: str,
        password_hash: Optional[str] = None,
        salt: Optional[str] = None,
        external_ids: Optional[Dict[str, str]] = None,
        nickname: Optional[str] = None,
        avatar_url: Optional[str] = None,
        invite_code: Optional[str] = None,
    ) -> GlobalUser:
        """Invite, user, license and usage rows in a single transaction"""
        user_id = str(uuid.uuid4())
        now = datetime.utcnow()
        try:
            if invite_code is not None:
                result = await self.invites.try_consume(invite_code, user_id, now=now)
                if not result.applied:
                    logger.info(f"Invite code rejected ({result.reason})")
                    raise AccessError("Invalid or used invite code", error="INVALID_INVITE_CODE")

            user = await self.users.create_user(
                email=email,
                password_hash=password_hash,
                salt=salt,
                external_ids=external_ids,
                nickname=nickname,
                avatar_url=avatar_url,
                user_id=user_id,
                now=now,
            )
            await self.quota.ensure_entitlements(user.id, now=now)
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        logger.info("User registered", extra={"user_id": user.id})
        return user

    async def _link_identity(self, user: GlobalUser, identity: ExternalIdentity) -> GlobalUser:
        if identity.subject_id:
            user_id = user.id
            try:
                result = await self.users.link_external_identity(
                    user_id, identity.provider, identity.subject_id, avatar_fallback=identity.avatar_url
                )
                await self.session.commit()
            except IntegrityError:
                # The provider id already belongs to a different account
                await self.session.rollback()
                raise AccessError("Identity is linked to another account", error="IDENTITY_CONFLICT")
            except Exception:
                await self.session.rollback()
                raise
            if result.applied:
                # TODO: require proof of ownership through the new provider before merging accounts by email
                logger.warning(
                    f"Linked {identity.provider} identity to existing account by email match",
                    extra={"user_id": user_id},
                )
            user = await self.users.refresh_user(user_id)
        return await self._ensure_entitlements(user)

    async def _ensure_entitlements(self, user: GlobalUser) -> GlobalUser:
        user_id = user.id
        try:
            await self.quota.ensure_entitlements(user_id)
            await self.session.commit()
        except IntegrityError:
            # A concurrent request created the rows first
            await self.session.rollback()
            logger.info("Entitlements already created", extra={"user_id": user_id})
        except Exception:
            await self.session.rollback()
            raise
        return await self.users.refresh_user(user_id)

    async def _find_linked_account(self, identity: ExternalIdentity) -> Optional[GlobalUser]:
        """Account holding this provider id under a different email"""
        if not identity.subject_id:
            return None
        user = await self.users.get_by_external_id(identity.provider, identity.subject_id)
        if user is not None:
            logger.info(
                f"Signed in by {identity.provider} id; provider email differs from account email",
                extra={"user_id": user.id},
            )
        return user

    async def _check_password(self, user: GlobalUser, password: Optional[str]) -> None:
        if not user.has_password or not password:
            raise AuthError(INVALID_CREDENTIALS)
        valid = await _run_blocking(verify_password, password, user.salt, user.password_hash, self.iterations)
        if not valid:
            logger.info("Password check failed", extra={"user_id": user.id})
            raise AuthError(INVALID_CREDENTIALS)

    async def _existing_after_conflict(
        self,
        email: str,
        identity: Optional[ExternalIdentity] = None,
    ) -> GlobalUser:
        user = await self.users.get_by_email(email)
        if user is None and identity:
            user = await self._find_linked_account(identity)
        if user is None:
            raise AccessError("Identity is linked to another account", error="IDENTITY_CONFLICT")
        return user

    def _issue(self, user: GlobalUser) -> AuthResult:
        token = self.token_service.issue(user.id, user.email)
        return AuthResult(token=token, user=user)
