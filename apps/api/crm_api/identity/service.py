from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from starlette.concurrency import run_in_threadpool

from crm_api import audit
from crm_api.core.config import Settings
from crm_api.events import publish_domain_event
from crm_api.identity.models import SELF_REGISTRATION, UserAccount
from crm_api.identity.schemas import (
    AuthResponse,
    ChangePasswordRequest,
    LoginRequest,
    ProfileUpdate,
    RegisterRequest,
    TokenPairRead,
    UserCreate,
    UserRead,
    UserUpdate,
)
from crm_api.platform.security.context import IdentityContext
from crm_api.platform.security.errors import (
    AlreadyDeleted,
    Conflict,
    NotFound,
    PermissionDenied,
    StoreUnavailable,
    TokenExpired,
    TokenRevoked,
    Unauthenticated,
    ValidationFailed,
)
from crm_api.platform.security.passwords import hash_password, verify_and_maybe_upgrade, verify_password
from crm_api.platform.security.roles import (
    ADMIN_ROLES,
    Role,
    authorize_role_change,
    authorize_user_creation,
    authorize_user_deletion,
    can_see_in_directory,
    capabilities_for,
    is_admin,
    parse_role,
)
from crm_api.platform.security.tokens import RefreshClaims, TokenService
from crm_api.platform.store import RecordStore


logger = logging.getLogger("crm_api.identity")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_user_read(user: UserAccount) -> UserRead:
    return UserRead(
        user_id=user.user_id,
        email=user.email,
        first_name=user.first_name,
        last_name=user.last_name,
        username=user.username,
        role=user.role,
        tenant_id=user.tenant_id,
        phone_number=user.phone_number,
        permissions=sorted(capabilities_for(user.role)),
        is_deleted=user.is_deleted,
        created_by=user.created_by,
        created_at=user.created_at,
        updated_at=user.updated_at,
    )


def _user_audit_view(user: UserAccount) -> dict[str, Any]:
    return to_user_read(user).model_dump(mode="json")


class _UserDirectory:
    def __init__(self, store: RecordStore) -> None:
        self._store = store

    async def _get_by_email(self, email: str) -> UserAccount | None:
        return await self._store.get(UserAccount, email.lower())

    async def _get_by_user_id(self, user_id: str) -> UserAccount | None:
        return await self._store.find_one(UserAccount, UserAccount.user_id == user_id)

    async def _ensure_phone_available(self, phone_number: str | None, exclude_user_id: str | None = None) -> None:
        if not phone_number:
            return
        existing = await self._store.find_one(UserAccount, UserAccount.phone_number == phone_number)
        if existing is not None and existing.user_id != exclude_user_id:
            raise Conflict("User already exists with this phone number")

    async def _insert(self, user: UserAccount) -> UserAccount:
        result = await self._store.put_if_absent(user)
        if not result.applied:
            raise Conflict("User already exists")
        return result.record  # type: ignore[return-value]

    async def _update_live(self, user: UserAccount, values: dict[str, Any]) -> UserAccount:
        values["updated_at"] = utcnow()
        result = await self._store.update_where(UserAccount, user.email, {"is_deleted": False}, values)
        if not result.applied:
            raise NotFound("User not found")
        return result.record  # type: ignore[return-value]


class AuthService(_UserDirectory):
    """Self-service authentication: registration, login, refresh and profile."""

    def __init__(self, store: RecordStore, tokens: TokenService, settings: Settings) -> None:
        super().__init__(store)
        self._tokens = tokens
        self._settings = settings

    async def register(self, dto: RegisterRequest) -> AuthResponse:
        role = parse_role(dto.role)
        if role is None:
            raise ValidationFailed(f"Unknown role: {dto.role}")
        if role in ADMIN_ROLES:
            raise PermissionDenied("Self-registration cannot create admin accounts")

        await self._ensure_phone_available(dto.phone_number)
        password_hash = await run_in_threadpool(hash_password, dto.password)
        now = utcnow()
        user = await self._insert(
            UserAccount(
                email=str(dto.email).lower(),
                user_id=str(uuid.uuid4()),
                password_hash=password_hash,
                role=role.value,
                tenant_id=self._settings.unassigned_tenant_id,
                created_by=SELF_REGISTRATION,
                first_name=dto.first_name,
                last_name=dto.last_name,
                username=f"{dto.first_name} {dto.last_name}".strip(),
                phone_number=dto.phone_number or None,
                is_deleted=False,
                created_at=now,
                updated_at=now,
            )
        )
        logger.info("user_registered", extra={"user_id": user.user_id, "tenant_id": user.tenant_id})
        return await self._issue(user)

    async def login(self, dto: LoginRequest) -> AuthResponse:
        user = await self._get_by_email(str(dto.email))
        if user is None:
            raise Unauthenticated("Invalid credentials")
        ok, new_hash = await run_in_threadpool(verify_and_maybe_upgrade, dto.password, user.password_hash)
        if not ok or user.is_deleted:
            logger.info("login_rejected", extra={"user_id": user.user_id, "reason": "credentials"})
            raise Unauthenticated("Invalid credentials")
        if new_hash is not None:
            await self._store.update_where(
                UserAccount,
                user.email,
                {"password_hash": user.password_hash},
                {"password_hash": new_hash},
            )
        logger.info("user_logged_in", extra={"user_id": user.user_id, "tenant_id": user.tenant_id})
        return await self._issue(user)

    async def refresh(self, refresh_token: str) -> TokenPairRead:
        async def load_user(claims: RefreshClaims) -> UserAccount | None:
            return await self._get_by_email(claims.email)

        pair = await self._tokens.rotate(refresh_token, load_user)
        return TokenPairRead(access_token=pair.access_token, refresh_token=pair.refresh_token)

    async def logout(self, refresh_token: str) -> None:
        try:
            claims = await self._tokens.verify_refresh_token(refresh_token)
        except (TokenRevoked, TokenExpired):
            return
        await self._tokens.invalidate_refresh_token(claims.jti)
        logger.info("user_logged_out", extra={"user_id": claims.user_id, "jti": claims.jti})

    async def get_profile(self, identity: IdentityContext) -> UserRead:
        return to_user_read(await self._require_self(identity))

    async def update_profile(self, identity: IdentityContext, dto: ProfileUpdate) -> UserRead:
        user = await self._require_self(identity)
        values = dto.model_dump(exclude_unset=True)
        if "phone_number" in values:
            values["phone_number"] = values["phone_number"] or None
            await self._ensure_phone_available(values["phone_number"], exclude_user_id=user.user_id)
        return to_user_read(await self._update_live(user, values))

    async def change_password(self, identity: IdentityContext, dto: ChangePasswordRequest) -> None:
        user = await self._require_self(identity)
        if not await run_in_threadpool(verify_password, dto.current_password, user.password_hash):
            raise Unauthenticated("Current password is incorrect")
        new_hash = await run_in_threadpool(hash_password, dto.new_password)
        result = await self._store.update_where(
            UserAccount,
            user.email,
            {"password_hash": user.password_hash, "is_deleted": False},
            {"password_hash": new_hash, "updated_at": utcnow()},
        )
        if not result.applied:
            raise Conflict("Password was changed concurrently")
        await self._tokens.invalidate_all_for_user(user.user_id)
        logger.info("password_changed", extra={"user_id": user.user_id})

    async def _require_self(self, identity: IdentityContext) -> UserAccount:
        user = await self._get_by_email(identity.email)
        if user is None or user.is_deleted:
            raise NotFound("User not found")
        return user

    async def _issue(self, user: UserAccount) -> AuthResponse:
        return AuthResponse(
            access_token=self._tokens.issue_access_token(user),
            refresh_token=await self._tokens.issue_refresh_token(user),
            user=to_user_read(user),
        )


class UserAdminService(_UserDirectory):
    """User administration under the role hierarchy."""

    def __init__(self, store: RecordStore, tokens: TokenService) -> None:
        super().__init__(store)
        self._tokens = tokens

    async def create_user(self, identity: IdentityContext, dto: UserCreate) -> UserRead:
        self._require_live(identity)
        assignment = authorize_user_creation(identity.role, identity.tenant_id, dto.role)
        await self._ensure_phone_available(dto.phone_number)
        password_hash = await run_in_threadpool(hash_password, dto.password)
        now = utcnow()
        user = await self._insert(
            UserAccount(
                email=str(dto.email).lower(),
                user_id=str(uuid.uuid4()),
                password_hash=password_hash,
                role=assignment.role.value,
                tenant_id=assignment.tenant_id,
                created_by=identity.user_id,
                first_name=dto.first_name,
                last_name=dto.last_name,
                username=dto.username or f"{dto.first_name} {dto.last_name}".strip(),
                phone_number=dto.phone_number or None,
                is_deleted=False,
                created_at=now,
                updated_at=now,
            )
        )
        self._record(identity, user, "create", None, _user_audit_view(user))
        logger.info(
            "user_created",
            extra={"user_id": identity.user_id, "tenant_id": user.tenant_id, "entity_id": user.user_id},
        )
        return to_user_read(user)

    async def list_tenant_users(self, identity: IdentityContext) -> list[UserRead]:
        if parse_role(identity.role) == Role.SUPER_ADMIN:
            candidates = await self._store.query(
                UserAccount,
                UserAccount.role.in_([role.value for role in ADMIN_ROLES]),
                order_by=UserAccount.created_at,
            )
        else:
            candidates = await self._store.query(
                UserAccount,
                UserAccount.tenant_id == identity.tenant_id,
                order_by=UserAccount.created_at,
            )
        return [
            to_user_read(user)
            for user in candidates
            if not user.is_deleted and can_see_in_directory(identity.role, identity.tenant_id, user.role, user.tenant_id)
        ]

    async def get_user(self, identity: IdentityContext, user_id: str) -> UserRead:
        return to_user_read(await self._get_visible(identity, user_id))

    async def update_user(self, identity: IdentityContext, user_id: str, dto: UserUpdate) -> UserRead:
        is_self = identity.user_id == user_id
        if not is_self and not is_admin(identity.role):
            raise PermissionDenied("You can only update your own profile")
        self._require_live(identity)
        target = await self._get_visible(identity, user_id)

        values = dto.model_dump(exclude_unset=True)
        if not values:
            raise ValidationFailed("No valid fields to update")
        if "role" in values:
            new_role = values.pop("role")
            if new_role is not None:
                values["role"] = authorize_role_change(
                    identity.role, identity.tenant_id, target.tenant_id, new_role
                ).value
        if "password" in values:
            password = values.pop("password")
            if password:
                if is_self:
                    raise PermissionDenied("Use /api/auth/change-password to change your own password")
                values["password_hash"] = await run_in_threadpool(hash_password, password)
        if not values:
            raise ValidationFailed("No valid fields to update")
        if "phone_number" in values:
            values["phone_number"] = values["phone_number"] or None
            await self._ensure_phone_available(values["phone_number"], exclude_user_id=target.user_id)

        before = _user_audit_view(target)
        updated = await self._update_live(target, values)
        if "password_hash" in values:
            await self._tokens.invalidate_all_for_user(updated.user_id)
            logger.info("password_reset", extra={"user_id": identity.user_id, "entity_id": updated.user_id})
        self._record(identity, updated, "update", before, _user_audit_view(updated))
        return to_user_read(updated)

    async def soft_delete_user(self, identity: IdentityContext, user_id: str) -> UserRead:
        self._require_live(identity)
        target = await self._get_by_user_id(user_id)
        if target is None:
            raise NotFound("User not found")
        authorize_user_deletion(
            identity.user_id,
            identity.role,
            identity.tenant_id,
            target.user_id,
            target.role,
            target.tenant_id,
        )
        now = utcnow()
        result = await self._store.update_where(
            UserAccount,
            target.email,
            {"is_deleted": False},
            {"is_deleted": True, "deleted_by": identity.user_id, "deleted_at": now, "updated_at": now},
        )
        if not result.applied:
            raise AlreadyDeleted("User is already deleted")
        deleted: UserAccount = result.record  # type: ignore[assignment]
        await self._tokens.invalidate_all_for_user(deleted.user_id)
        self._record(identity, deleted, "soft_delete", _user_audit_view(target), _user_audit_view(deleted))
        logger.info(
            "user_soft_deleted",
            extra={"user_id": identity.user_id, "tenant_id": deleted.tenant_id, "entity_id": deleted.user_id},
        )
        return to_user_read(deleted)

    async def _get_visible(self, identity: IdentityContext, user_id: str) -> UserAccount:
        user = await self._get_by_user_id(user_id)
        if user is None or user.is_deleted:
            raise NotFound("User not found")
        if user.user_id == identity.user_id:
            return user
        if not can_see_in_directory(identity.role, identity.tenant_id, user.role, user.tenant_id):
            raise NotFound("User not found")
        return user

    @staticmethod
    def _require_live(identity: IdentityContext) -> None:
        # Privileged decisions need the live record, not token claims.
        if identity.degraded:
            raise StoreUnavailable("User administration is unavailable")

    @staticmethod
    def _record(
        identity: IdentityContext,
        user: UserAccount,
        action: str,
        before: dict[str, Any] | None,
        after: dict[str, Any] | None,
    ) -> None:
        audit.record(
            identity,
            tenant_id=user.tenant_id,
            entity_type="identity.user",
            entity_id=user.user_id,
            action=action,
            before=before,
            after=after,
        )
        publish_domain_event(
            identity,
            f"identity.user.{action}",
            tenant_id=user.tenant_id,
            payload={"user_id": user.user_id, "role": user.role},
        )
