from __future__ import annotations

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import Response

from crm_api.identity.schemas import (
    AuthResponse,
    ChangePasswordRequest,
    LoginRequest,
    ProfileUpdate,
    RefreshRequest,
    RegisterRequest,
    TokenPairRead,
    UserCreate,
    UserRead,
    UserUpdate,
)
from crm_api.identity.service import AuthService, UserAdminService
from crm_api.platform.security.authenticator import get_identity
from crm_api.platform.security.context import IdentityContext


auth_router = APIRouter(prefix="/api/auth", tags=["auth"])
users_router = APIRouter(prefix="/api/users", tags=["users"])


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def get_user_admin_service(request: Request) -> UserAdminService:
    return request.app.state.user_admin_service


@auth_router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
async def register(dto: RegisterRequest, service: AuthService = Depends(get_auth_service)) -> AuthResponse:
    return await service.register(dto)


@auth_router.post("/login", response_model=AuthResponse)
async def login(dto: LoginRequest, service: AuthService = Depends(get_auth_service)) -> AuthResponse:
    return await service.login(dto)


@auth_router.post("/refresh", response_model=TokenPairRead)
async def refresh(dto: RefreshRequest, service: AuthService = Depends(get_auth_service)) -> TokenPairRead:
    return await service.refresh(dto.refresh_token)


@auth_router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(dto: RefreshRequest, service: AuthService = Depends(get_auth_service)) -> Response:
    await service.logout(dto.refresh_token)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@auth_router.get("/profile", response_model=UserRead)
async def get_profile(
    identity: IdentityContext = Depends(get_identity),
    service: AuthService = Depends(get_auth_service),
) -> UserRead:
    return await service.get_profile(identity)


@auth_router.put("/profile", response_model=UserRead)
async def update_profile(
    dto: ProfileUpdate,
    identity: IdentityContext = Depends(get_identity),
    service: AuthService = Depends(get_auth_service),
) -> UserRead:
    return await service.update_profile(identity, dto)


@auth_router.post("/change-password", status_code=status.HTTP_204_NO_CONTENT)
async def change_password(
    dto: ChangePasswordRequest,
    identity: IdentityContext = Depends(get_identity),
    service: AuthService = Depends(get_auth_service),
) -> Response:
    await service.change_password(identity, dto)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@users_router.post("", response_model=UserRead, status_code=status.HTTP_201_CREATED)
async def create_user(
    dto: UserCreate,
    identity: IdentityContext = Depends(get_identity),
    service: UserAdminService = Depends(get_user_admin_service),
) -> UserRead:
    return await service.create_user(identity, dto)


@users_router.get("/tenant-users", response_model=list[UserRead])
async def list_tenant_users(
    identity: IdentityContext = Depends(get_identity),
    service: UserAdminService = Depends(get_user_admin_service),
) -> list[UserRead]:
    return await service.list_tenant_users(identity)


@users_router.get("/me", response_model=UserRead)
async def me(
    identity: IdentityContext = Depends(get_identity),
    service: UserAdminService = Depends(get_user_admin_service),
) -> UserRead:
    return await service.get_user(identity, identity.user_id)


@users_router.get("/{user_id}", response_model=UserRead)
async def get_user(
    user_id: str,
    identity: IdentityContext = Depends(get_identity),
    service: UserAdminService = Depends(get_user_admin_service),
) -> UserRead:
    return await service.get_user(identity, user_id)


@users_router.put("/{user_id}", response_model=UserRead)
async def update_user(
    user_id: str,
    dto: UserUpdate,
    identity: IdentityContext = Depends(get_identity),
    service: UserAdminService = Depends(get_user_admin_service),
) -> UserRead:
    return await service.update_user(identity, user_id, dto)


@users_router.put("/{user_id}/soft-delete", response_model=UserRead)
async def soft_delete_user(
    user_id: str,
    identity: IdentityContext = Depends(get_identity),
    service: UserAdminService = Depends(get_user_admin_service),
) -> UserRead:
    return await service.soft_delete_user(identity, user_id)
