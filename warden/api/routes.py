from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Header, Query, Response

from warden.api.schemas import (
    AuthResponse,
    Envelope,
    LoginRequest,
    PasswordChangeRequest,
    RegisterRequest,
    UpdateUserRoleRequest,
    UserListResponse,
    UserResponse,
    UserUpdateRequest,
)
from warden.logging import get_logger
from warden.service.auth import AuthenticatedUser
from warden.service.errors import ForbiddenError
from warden.service.runtime import get_runtime
from warden.storage.models import User

logger = get_logger(__name__)

router = APIRouter(prefix="/api")


def _user_out(user: User) -> UserResponse:
    return UserResponse.model_validate(user)


def _users_out(users: List[User]) -> List[UserResponse]:
    return [_user_out(user) for user in users]


async def get_identity(authorization: Optional[str] = Header(None)) -> AuthenticatedUser:
    runtime = get_runtime()
    return await runtime.authenticator.authenticate(authorization)


async def get_admin_identity(
    identity: AuthenticatedUser = Depends(get_identity),
) -> AuthenticatedUser:
    if not identity.is_admin:
        raise ForbiddenError("Admin access required")
    return identity


def _require_self_or_admin(identity: AuthenticatedUser, user_id: int) -> None:
    if identity.user_id != user_id and not identity.is_admin:
        raise ForbiddenError("Not authorized to access this user")


# auth


@router.post("/auth/register", response_model=Envelope, status_code=201, tags=["auth"])
async def register(body: RegisterRequest):
    runtime = get_runtime()
    user = await runtime.auth.register(
        body.username,
        body.email,
        body.password,
        full_name=body.full_name,
        phone_number=body.phone_number,
        admin_code=body.admin_code,
    )
    return Envelope(message="User registered successfully", data=_user_out(user))


@router.post("/auth/login", response_model=Envelope, tags=["auth"])
async def login(body: LoginRequest):
    runtime = get_runtime()
    token, user = await runtime.auth.login(body.username_or_email, body.password)
    return Envelope(
        message="Login successful",
        data=AuthResponse(token=token, user_id=user.id, username=user.username, role=user.role),
    )


@router.post("/auth/logout", status_code=204, tags=["auth"])
async def logout(identity: AuthenticatedUser = Depends(get_identity)):
    runtime = get_runtime()
    await runtime.auth.logout(identity)
    return Response(status_code=204)


@router.get("/auth/test-auth", response_model=Envelope, tags=["auth"])
async def test_auth(identity: AuthenticatedUser = Depends(get_identity)):
    return Envelope(
        message="Authenticated",
        data={
            "user_id": identity.user_id,
            "role": identity.role,
            "issued_at": identity.claims.iat,
            "expires_at": identity.claims.exp,
        },
    )


# users


@router.get("/users", response_model=Envelope, tags=["users"])
async def list_users(
    page: int = Query(0, ge=0),
    page_size: int = Query(20, ge=1, le=100),
    _: AuthenticatedUser = Depends(get_admin_identity),
):
    runtime = get_runtime()
    users, total = await runtime.users.list_users(page, page_size)
    return Envelope(
        data=UserListResponse(
            users=_users_out(users), total=total, page=page, page_size=page_size
        )
    )


@router.get("/users/email/{email}", response_model=Envelope, tags=["users"])
async def get_user_by_email(
    email: str, _: AuthenticatedUser = Depends(get_admin_identity)
):
    runtime = get_runtime()
    user = await runtime.users.get_user_by_email(email)
    return Envelope(data=_user_out(user))


@router.get("/users/search/{query}", response_model=Envelope, tags=["users"])
async def search_users(
    query: str,
    page: int = Query(0, ge=0),
    page_size: int = Query(20, ge=1, le=100),
    _: AuthenticatedUser = Depends(get_admin_identity),
):
    runtime = get_runtime()
    users = await runtime.users.search_users(query, page, page_size)
    return Envelope(data=_users_out(users))


@router.get("/users/recent", response_model=Envelope, tags=["users"])
async def recent_users(
    days: int = Query(7, ge=1, le=365),
    limit: int = Query(10, ge=1, le=100),
    _: AuthenticatedUser = Depends(get_admin_identity),
):
    runtime = get_runtime()
    users = await runtime.users.recent_users(days, limit)
    return Envelope(data=_users_out(users))


@router.get("/users/{user_id}", response_model=Envelope, tags=["users"])
async def get_user(user_id: int, identity: AuthenticatedUser = Depends(get_identity)):
    _require_self_or_admin(identity, user_id)
    runtime = get_runtime()
    user = await runtime.users.get_user(user_id)
    return Envelope(data=_user_out(user))


@router.put("/users", response_model=Envelope, tags=["users"])
async def update_user(
    body: UserUpdateRequest, identity: AuthenticatedUser = Depends(get_identity)
):
    _require_self_or_admin(identity, body.id)
    runtime = get_runtime()
    user = await runtime.users.update_profile(
        body.id,
        username=body.username,
        full_name=body.full_name,
        email=body.email,
        password=body.password,
        phone_number=body.phone_number,
    )
    return Envelope(message="User updated successfully", data=_user_out(user))


@router.put("/users/password", response_model=Envelope, tags=["users"])
async def change_password(
    body: PasswordChangeRequest, identity: AuthenticatedUser = Depends(get_identity)
):
    runtime = get_runtime()
    await runtime.users.change_password(
        identity.user_id, body.current_password, body.new_password
    )
    return Envelope(message="Password changed successfully")


@router.put("/users/{user_id}/role", response_model=Envelope, tags=["users"])
async def update_user_role(
    user_id: int,
    body: UpdateUserRoleRequest,
    _: AuthenticatedUser = Depends(get_admin_identity),
):
    runtime = get_runtime()
    await runtime.users.set_role(user_id, body.role)
    return Envelope(message=f"User role updated to {body.role.value}")


@router.delete("/users/{user_id}", response_model=Envelope, tags=["users"])
async def deactivate_user(
    user_id: int, identity: AuthenticatedUser = Depends(get_admin_identity)
):
    runtime = get_runtime()
    await runtime.users.deactivate(identity.user_id, user_id)
    return Envelope(message="User deactivated successfully")


@router.post("/users/{user_id}/activate", response_model=Envelope, tags=["users"])
async def activate_user(
    user_id: int, _: AuthenticatedUser = Depends(get_admin_identity)
):
    runtime = get_runtime()
    await runtime.users.reactivate(user_id)
    return Envelope(message="User activated successfully")


@router.post("/users/{user_id}/verify-email", response_model=Envelope, tags=["users"])
async def verify_email(user_id: int, identity: AuthenticatedUser = Depends(get_identity)):
    _require_self_or_admin(identity, user_id)
    runtime = get_runtime()
    await runtime.users.verify_email(user_id)
    return Envelope(message="Email verified successfully")
